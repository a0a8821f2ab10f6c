import json
import os
import sys
import threading
import unittest
from unittest.mock import patch


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from fastapi.testclient import TestClient

os.environ["USE_DB"] = "0"
os.environ["OPENAI_API_KEY"] = ""

import app.main as main
from app.db import fetch_all
from app.stores import MemoryStoreBackend


class ScriptedLLM:
    def __init__(self) -> None:
        self.replies = []

    def complete(self, system_prompt, user_message, config):
        return json.dumps(self.replies.pop(0))


class _Cursor:
    rowcount = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params):
        pass

    def fetchall(self):
        return []


class _Conn:
    def cursor(self, cursor_factory=None):
        return _Cursor()


class QueryingStore(MemoryStoreBackend):
    def list_products(self, merchant_id):
        fetch_all(_Conn(), "select id from products", [merchant_id], query_name="products.list")
        return super().list_products(merchant_id)


class TestAgentApi(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryStoreBackend()
        self.store.seed_merchant("m1", store_name="Glow", brand_tone="warm")
        self.llm = ScriptedLLM()
        self._orig = (main.store, main.llm)
        main.store = self.store
        main.llm = self.llm
        main.reset_sessions()
        self.client = TestClient(main.app)

    def tearDown(self) -> None:
        main.store, main.llm = self._orig
        main.reset_sessions()

    def test_health(self) -> None:
        res = self.client.get("/health")
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.json()["ok"])

    def test_get_state(self) -> None:
        res = self.client.get("/agent/m1/state")
        body = res.json()
        self.assertEqual(res.status_code, 200)
        self.assertTrue(body["ok"])
        self.assertEqual(body["state"]["brand"]["name"], "Glow")
        self.assertTrue(body["version"].startswith("sha256:"))

    def test_invalid_merchant_id(self) -> None:
        res = self.client.get("/agent/bad%20id/state")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "MERCHANT_ID_INVALID")

    def test_process_turn(self) -> None:
        self.llm.replies.append(
            {"thinking": "", "actions": [{"type": "SetBrandInfo", "payload": {"tagline": "Warm hugs"}}], "explanation": "ok"}
        )
        res = self.client.post("/agent/m1/process", json={"instruction": "set a tagline"})
        body = res.json()
        self.assertEqual(res.status_code, 200)
        self.assertTrue(body["result"]["success"])
        self.assertEqual(body["state"]["brand"]["tagline"], "Warm hugs")
        self.assertEqual(self.store.get_merchant("m1")["tagline"], "Warm hugs")

        history = self.client.get("/agent/m1/history").json()
        self.assertEqual(len(history["history"]), 2)
        self.assertEqual(history["actions"][0]["type"], "SetBrandInfo")

    def test_process_requires_instruction(self) -> None:
        res = self.client.post("/agent/m1/process", json={"instruction": "  "})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["errors"][0]["code"], "INSTRUCTION_REQUIRED")

    def test_process_version_conflict(self) -> None:
        res = self.client.post("/agent/m1/process", json={"instruction": "x", "expected_version": "sha256:old"})
        self.assertEqual(res.status_code, 409)
        body = res.json()
        self.assertEqual(body["errors"][0]["code"], "STATE_VERSION_CONFLICT")
        self.assertTrue(body["errors"][0]["detail"]["version"].startswith("sha256:"))

    def test_process_with_current_version(self) -> None:
        version = self.client.get("/agent/m1/state").json()["version"]
        self.llm.replies.append({"actions": [], "explanation": "nothing"})
        res = self.client.post("/agent/m1/process", json={"instruction": "x", "expected_version": version})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["result"]["explanation"], "nothing")

    def test_reset(self) -> None:
        self.llm.replies.append({"actions": [{"type": "SetHeroLayout", "payload": {"layout": "left"}}]})
        self.client.post("/agent/m1/process", json={"instruction": "layout"})
        res = self.client.post("/agent/m1/reset")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(self.client.get("/agent/m1/history").json()["history"], [])

    def test_validate_endpoint(self) -> None:
        res = self.client.post(
            "/actions/validate",
            json={"actions": [{"type": "SetHeroLayout", "payload": {"layout": "left"}}, {"type": "Nope"}]},
        )
        body = res.json()
        self.assertEqual(res.status_code, 200)
        self.assertFalse(body["valid"])
        self.assertEqual(len(body["valid_actions"]), 1)

    def test_validate_requires_list(self) -> None:
        res = self.client.post("/actions/validate", json={"actions": "x"})
        self.assertEqual(res.status_code, 400)

    def test_history_waits_for_running_turn(self) -> None:
        self.client.get("/agent/m1/state")
        session = main._session("m1")
        results = []
        session.lock.acquire()
        try:
            worker = threading.Thread(target=lambda: results.append(self.client.get("/agent/m1/history")))
            worker.start()
            worker.join(0.3)
            self.assertEqual(results, [])
        finally:
            session.lock.release()
        worker.join(5)
        self.assertEqual(results[0].status_code, 200)

    def test_idle_sessions_evicted(self) -> None:
        with patch.object(main, "MAX_SESSIONS", 2):
            for merchant_id in ("m1", "m2", "m3"):
                self.client.get(f"/agent/{merchant_id}/state")
            self.assertEqual(main.session_count(), 2)
            self.assertNotIn("m1", main._SESSIONS)
            self.assertIn("m3", main._SESSIONS)

    def test_busy_session_not_evicted(self) -> None:
        with patch.object(main, "MAX_SESSIONS", 1):
            busy = main._session("m1")
            with busy.lock:
                main._session("m2")
                self.assertIn("m1", main._SESSIONS)
                self.assertIn("m2", main._SESSIONS)
            main._session("m3")
            self.assertEqual(list(main._SESSIONS), ["m3"])


class TestRequestDbStats(unittest.TestCase):
    def setUp(self) -> None:
        self.store = QueryingStore()
        self.store.seed_merchant("m1", store_name="Glow")
        self._orig = (main.store, main.llm)
        main.store = self.store
        main.reset_sessions()
        self.client = TestClient(main.app)

    def tearDown(self) -> None:
        main.store, main.llm = self._orig
        main.reset_sessions()

    def test_queries_counted_per_request(self) -> None:
        first = self.client.get("/agent/m1/state")
        self.assertEqual(first.headers["X-Queries"], "1")
        second = self.client.get("/agent/m1/state")
        self.assertEqual(second.headers["X-Queries"], "0")
        self.assertIn("X-Req-MS", second.headers)


if __name__ == "__main__":
    unittest.main()
