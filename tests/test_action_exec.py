import copy
import json
import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from action_exec import execute_action, execute_actions
from app.stores import MemoryStoreBackend
from state_loader import create_empty_state, load_state
from store_backend import ExternalWriteError


STORAGE_URL = "https://abc.supabase.co/storage/v1/object/public/hero/m1/beach.jpg"


class FakeBackend(MemoryStoreBackend):
    def __init__(self) -> None:
        super().__init__()
        self.calls = []
        self.fail_writes = False
        self.fail_on = None
        self.fail_after = 0

    def _record(self, name, *args):
        if self.fail_writes:
            raise ExternalWriteError(f"{name} rejected")
        if name == self.fail_on:
            if self.fail_after == 0:
                self.fail_on = None
                raise ExternalWriteError(f"{name} rejected")
            self.fail_after -= 1
        self.calls.append((name,) + args)

    def update_merchant(self, merchant_id, changes):
        self._record("update_merchant", changes)
        super().update_merchant(merchant_id, changes)

    def insert_product(self, merchant_id, product):
        self._record("insert_product", product["id"])
        return super().insert_product(merchant_id, product)

    def update_product(self, merchant_id, product_id, changes):
        self._record("update_product", product_id, changes)
        super().update_product(merchant_id, product_id, changes)

    def delete_product(self, merchant_id, product_id):
        self._record("delete_product", product_id)
        super().delete_product(merchant_id, product_id)

    def insert_section(self, merchant_id, section):
        self._record("insert_section", section["id"], section["position"])
        return super().insert_section(merchant_id, section)

    def update_section(self, merchant_id, section_id, changes):
        self._record("update_section", section_id, changes)
        super().update_section(merchant_id, section_id, changes)

    def delete_section(self, merchant_id, section_id):
        self._record("delete_section", section_id)
        super().delete_section(merchant_id, section_id)


def _snapshot(state):
    return json.dumps(state, sort_keys=True)


def _seeded():
    backend = FakeBackend()
    backend.seed_merchant("m1", store_name="Glow", brand_tone="minimal")
    backend.seed_product("m1", id="p1", title="Serum", price=4999, description="old", images=["a.png", "b.png"])
    backend.seed_product("m1", id="p2", title="Cream", price=2999)
    backend.seed_section(
        "m1",
        id="s1",
        section_type="hero",
        position=0,
        settings={"title": "Welcome", "background_image": STORAGE_URL, "overlay_opacity": 40},
    )
    backend.seed_section("m1", id="s2", section_type="newsletter", position=1, settings={"title": "Join"})
    backend.seed_section("m1", id="s3", section_type="faq", position=2, settings={"title": "FAQ"})
    return backend, load_state(backend, "m1")


def _positions_ok(test, sections):
    positions = [s["position"] for s in sections]
    test.assertEqual(positions, sorted(positions))
    test.assertEqual(positions, list(range(len(sections))))


class TestExecutorScenarios(unittest.TestCase):
    def test_add_section_to_empty_state(self) -> None:
        backend = FakeBackend()
        state = create_empty_state("m1")
        out = execute_action(state, {"type": "AddSection", "payload": {"section_type": "newsletter"}}, backend)
        mutation = out["mutation"]
        self.assertTrue(mutation["success"])
        self.assertTrue(mutation["result"]["section_id"])
        sections = out["state"]["homepage"]["sections"]
        self.assertEqual(len(sections), 1)
        self.assertEqual(sections[0]["type"], "newsletter")
        self.assertEqual(sections[0]["position"], 0)
        self.assertTrue(sections[0]["visible"])
        self.assertEqual(sections[0]["settings"]["button_text"], "Sign Up")
        persisted = backend.get_section("m1", mutation["result"]["section_id"])
        self.assertIn("background_color", persisted["settings"])

    def test_update_missing_product(self) -> None:
        backend, state = _seeded()
        before = _snapshot(state)
        out = execute_action(state, {"type": "UpdateProduct", "payload": {"product_id": "does-not-exist", "title": "x"}}, backend)
        self.assertFalse(out["mutation"]["success"])
        self.assertIn("not found", out["mutation"]["error"])
        self.assertEqual(_snapshot(out["state"]), before)
        self.assertEqual(backend.calls, [])

    def test_reorder_drops_unknown_id(self) -> None:
        backend = FakeBackend()
        backend.seed_section("m1", id="s1", section_type="newsletter", position=0)
        backend.seed_section("m1", id="s2", section_type="faq", position=1)
        state = load_state(backend, "m1")
        out = execute_action(state, {"type": "ReorderSections", "payload": {"section_ids": ["s2", "unknown", "s1"]}}, backend)
        self.assertTrue(out["mutation"]["success"])
        self.assertIsNone(out["mutation"]["error"])
        sections = out["state"]["homepage"]["sections"]
        self.assertEqual([(s["id"], s["position"]) for s in sections], [("s2", 0), ("s1", 1)])
        self.assertEqual(out["mutation"]["result"]["dropped"], ["unknown"])
        self.assertEqual(backend.get_section("m1", "s2")["position"], 0)

    def test_fail_stop_batch(self) -> None:
        backend, state = _seeded()
        actions = [
            {"type": "SetHeroHeadline", "payload": {"headline": "A"}},
            {"type": "DeleteProduct", "payload": {"product_id": "missing"}},
            {"type": "SetHeroSubheadline", "payload": {"subheadline": "C"}},
        ]
        out = execute_actions(state, actions, backend)
        self.assertEqual(len(out["mutations"]), 2)
        self.assertTrue(out["mutations"][0]["success"])
        self.assertFalse(out["mutations"][1]["success"])
        self.assertEqual(out["state"]["homepage"]["hero"]["headline"], "A")
        self.assertNotEqual(out["state"]["homepage"]["hero"]["subheadline"], "C")

    def test_input_state_not_mutated(self) -> None:
        backend, state = _seeded()
        before = copy.deepcopy(state)
        actions = [
            {"type": "CreateProduct", "payload": {"title": "New", "price": 10}},
            {"type": "UpdateProduct", "payload": {"product_id": "p1", "title": "Renamed"}},
            {"type": "AddSection", "payload": {"section_type": "faq", "position": 0}},
            {"type": "RemoveSection", "payload": {"section_id": "s2"}},
            {"type": "SetHeroLayout", "payload": {"layout": "split"}},
            {"type": "SetBrandInfo", "payload": {"tone": "bold"}},
        ]
        for action in actions:
            execute_action(state, action, backend)
        self.assertEqual(state, before)

    def test_unknown_type_is_failed_mutation(self) -> None:
        backend, state = _seeded()
        out = execute_action(state, {"type": "LaunchRocket", "payload": {}}, backend)
        self.assertFalse(out["mutation"]["success"])
        self.assertIn("Unknown action type", out["mutation"]["error"])
        self.assertIs(out["state"], state)

    def test_external_write_failure_leaves_state(self) -> None:
        backend, state = _seeded()
        backend.fail_writes = True
        before = _snapshot(state)
        out = execute_action(state, {"type": "SetBrandInfo", "payload": {"name": "New"}}, backend)
        self.assertFalse(out["mutation"]["success"])
        self.assertIn("rejected", out["mutation"]["error"])
        self.assertEqual(_snapshot(out["state"]), before)

    def test_last_updated_refreshed_per_action(self) -> None:
        backend, state = _seeded()
        state["meta"]["last_updated"] = "2000-01-01T00:00:00Z"
        out = execute_action(state, {"type": "SetHeroLayout", "payload": {"layout": "left"}}, backend)
        self.assertNotEqual(out["state"]["meta"]["last_updated"], "2000-01-01T00:00:00Z")


class TestProductActions(unittest.TestCase):
    def test_create_defaults(self) -> None:
        backend, state = _seeded()
        out = execute_action(state, {"type": "CreateProduct", "payload": {"title": "Mask", "price": 1500}}, backend)
        product = out["state"]["products"][0]
        self.assertEqual(product["id"], out["mutation"]["result"]["product_id"])
        self.assertEqual(product["inventory"], 0)
        self.assertTrue(product["is_active"])
        self.assertEqual(backend.calls[0][0], "insert_product")

    def test_create_inactive(self) -> None:
        backend, state = _seeded()
        out = execute_action(state, {"type": "CreateProduct", "payload": {"title": "M", "price": 1, "is_active": False}}, backend)
        self.assertFalse(out["state"]["products"][0]["is_active"])

    def test_partial_update(self) -> None:
        backend, state = _seeded()
        out = execute_action(state, {"type": "UpdateProduct", "payload": {"product_id": "p1", "price": 5999}}, backend)
        product = next(p for p in out["state"]["products"] if p["id"] == "p1")
        self.assertEqual(product["price"], 5999)
        self.assertEqual(product["description"], "old")
        self.assertEqual(backend.calls, [("update_product", "p1", {"price": 5999})])

    def test_delete_requires_existing(self) -> None:
        backend, state = _seeded()
        out = execute_action(state, {"type": "DeleteProduct", "payload": {"product_id": "p2"}}, backend)
        self.assertTrue(out["mutation"]["success"])
        self.assertEqual([p["id"] for p in out["state"]["products"]], ["p1"])
        out = execute_action(out["state"], {"type": "DeleteProduct", "payload": {"product_id": "p2"}}, backend)
        self.assertFalse(out["mutation"]["success"])
        self.assertEqual([c for c in backend.calls if c[0] == "delete_product"], [("delete_product", "p2")])

    def test_assets_recomputed_after_delete(self) -> None:
        backend, state = _seeded()
        out = execute_action(state, {"type": "DeleteProduct", "payload": {"product_id": "p1"}}, backend)
        self.assertFalse(any(a["label"] == "a.png" for a in out["state"]["assets"]))

    def test_generate_descriptions(self) -> None:
        backend, state = _seeded()
        payload = {"descriptions": {"p1": " Fresh ", "ghost": "x", "p2": 5}}
        out = execute_action(state, {"type": "GenerateProductDescriptions", "payload": payload}, backend)
        self.assertTrue(out["mutation"]["success"])
        self.assertEqual(out["mutation"]["result"], {"updated": ["p1"], "skipped": ["ghost", "p2"]})
        product = next(p for p in out["state"]["products"] if p["id"] == "p1")
        self.assertEqual(product["description"], "Fresh")

    def test_generate_descriptions_filtered(self) -> None:
        backend, state = _seeded()
        payload = {"descriptions": {"p1": "One", "p2": "Two"}, "product_ids": ["p2"]}
        out = execute_action(state, {"type": "GenerateProductDescriptions", "payload": payload}, backend)
        self.assertEqual(out["mutation"]["result"]["updated"], ["p2"])


class TestWriteFailureRollback(unittest.TestCase):
    def _store_sections(self, backend):
        return {s["id"]: s["position"] for s in backend.list_sections("m1", "home")}

    def test_remove_keeps_section_when_position_write_fails(self) -> None:
        backend, state = _seeded()
        backend.fail_on, backend.fail_after = "update_section", 1
        before = _snapshot(state)
        out = execute_action(state, {"type": "RemoveSection", "payload": {"section_id": "s1"}}, backend)
        self.assertFalse(out["mutation"]["success"])
        self.assertEqual(_snapshot(out["state"]), before)
        self.assertEqual(self._store_sections(backend), {"s1": 0, "s2": 1, "s3": 2})
        self.assertNotIn("delete_section", [c[0] for c in backend.calls])

    def test_remove_restores_positions_when_delete_fails(self) -> None:
        backend, state = _seeded()
        backend.fail_on = "delete_section"
        out = execute_action(state, {"type": "RemoveSection", "payload": {"section_id": "s1"}}, backend)
        self.assertFalse(out["mutation"]["success"])
        self.assertEqual(self._store_sections(backend), {"s1": 0, "s2": 1, "s3": 2})

    def test_add_removes_inserted_section_when_position_write_fails(self) -> None:
        backend, state = _seeded()
        backend.fail_on, backend.fail_after = "update_section", 1
        out = execute_action(state, {"type": "AddSection", "payload": {"section_type": "faq", "position": 0}}, backend)
        self.assertFalse(out["mutation"]["success"])
        self.assertEqual(len(out["state"]["homepage"]["sections"]), 3)
        self.assertEqual(self._store_sections(backend), {"s1": 0, "s2": 1, "s3": 2})

    def test_descriptions_restored_when_later_write_fails(self) -> None:
        backend, state = _seeded()
        backend.fail_on, backend.fail_after = "update_product", 1
        payload = {"descriptions": {"p1": "New one", "p2": "New two"}}
        out = execute_action(state, {"type": "GenerateProductDescriptions", "payload": payload}, backend)
        self.assertFalse(out["mutation"]["success"])
        stored = {p["id"]: p.get("description") for p in backend.list_products("m1")}
        self.assertEqual(stored["p1"], "old")
        self.assertNotEqual(stored["p2"], "New two")

    def test_update_section_keeps_storage_url_for_echoed_label(self) -> None:
        backend, state = _seeded()
        backend.seed_section("m1", id="s4", section_type="image_banner", position=3, settings={"image_url": STORAGE_URL})
        state = load_state(backend, "m1")
        self.assertEqual(state["homepage"]["sections"][3]["settings"]["image_url"], "beach.jpg")
        out = execute_action(
            state,
            {"type": "UpdateSection", "payload": {"section_id": "s4", "settings": {"image_url": "beach.jpg", "title": "Sale"}}},
            backend,
        )
        self.assertTrue(out["mutation"]["success"])
        persisted = backend.get_section("m1", "s4")["settings"]
        self.assertEqual(persisted["image_url"], STORAGE_URL)
        self.assertEqual(persisted["title"], "Sale")
        self.assertNotIn("/storage/v1/", _snapshot(out["state"]))


class TestHeroActions(unittest.TestCase):
    def test_headline_repersists_whole_bundle(self) -> None:
        backend, state = _seeded()
        out = execute_action(state, {"type": "SetHeroHeadline", "payload": {"headline": "Hello"}}, backend)
        self.assertTrue(out["mutation"]["success"])
        persisted = backend.get_section("m1", "s1")["settings"]
        self.assertEqual(persisted["title"], "Hello")
        self.assertEqual(persisted["background_image"], STORAGE_URL)
        self.assertEqual(persisted["overlay_opacity"], 40)
        hero_section = out["state"]["homepage"]["sections"][0]
        self.assertEqual(hero_section["settings"]["headline"], "Hello")

    def test_cta_link_optional(self) -> None:
        backend, state = _seeded()
        out = execute_action(state, {"type": "SetHeroCTA", "payload": {"text": "Buy"}}, backend)
        hero = out["state"]["homepage"]["hero"]
        self.assertEqual(hero["cta_text"], "Buy")
        self.assertEqual(hero["cta_link"], "/products")

    def test_creates_hero_record_when_missing(self) -> None:
        backend = FakeBackend()
        backend.seed_section("m1", id="s9", section_type="faq", position=0)
        state = load_state(backend, "m1")
        out = execute_action(state, {"type": "SetHeroHeadline", "payload": {"headline": "Fresh"}}, backend)
        sections = out["state"]["homepage"]["sections"]
        self.assertEqual([s["type"] for s in sections], ["hero", "faq"])
        _positions_ok(self, sections)
        self.assertEqual(backend.get_section("m1", "s9")["position"], 1)
        hero_row = backend.find_section("m1", "home", "hero")
        self.assertEqual(hero_row["settings"]["title"], "Fresh")

    def test_image_resolves_asset_url(self) -> None:
        backend, state = _seeded()
        state["assets"].append({"id": "asset_ext", "label": "x.jpg", "url": "https://cdn.example.com/x.jpg", "description": ""})
        out = execute_action(state, {"type": "SetHeroImage", "payload": {"image_id": "asset_ext"}}, backend)
        self.assertEqual(out["state"]["homepage"]["hero"]["image"], "https://cdn.example.com/x.jpg")
        self.assertTrue(out["mutation"]["result"]["resolved"])

    def test_image_falls_back_to_raw_value(self) -> None:
        backend, state = _seeded()
        out = execute_action(state, {"type": "SetHeroImage", "payload": {"image_id": "asset_1"}}, backend)
        self.assertTrue(out["mutation"]["success"])
        self.assertEqual(out["state"]["homepage"]["hero"]["image"], "asset_1")
        self.assertFalse(out["mutation"]["result"]["resolved"])


class TestSectionActions(unittest.TestCase):
    def test_add_at_position_shifts_others(self) -> None:
        backend, state = _seeded()
        out = execute_action(
            state,
            {"type": "AddSection", "payload": {"section_type": "rich_text", "position": 1, "settings": {"content": "Hi", "alignment": "left"}}},
            backend,
        )
        sections = out["state"]["homepage"]["sections"]
        self.assertEqual([s["id"] for s in sections][0], "s1")
        self.assertEqual(sections[1]["type"], "rich_text")
        self.assertEqual(sections[1]["settings"], {"content": "Hi", "alignment": "left"})
        _positions_ok(self, sections)
        self.assertEqual(backend.get_section("m1", "s3")["position"], 3)
        persisted = backend.get_section("m1", out["mutation"]["result"]["section_id"])
        self.assertEqual(persisted["settings"]["text_alignment"], "left")

    def test_add_past_end_appends(self) -> None:
        backend, state = _seeded()
        out = execute_action(state, {"type": "AddSection", "payload": {"section_type": "faq", "position": 99}}, backend)
        self.assertEqual(out["state"]["homepage"]["sections"][-1]["position"], 3)

    def test_remove_renumbers(self) -> None:
        backend, state = _seeded()
        out = execute_action(state, {"type": "RemoveSection", "payload": {"section_id": "s2"}}, backend)
        sections = out["state"]["homepage"]["sections"]
        self.assertEqual([s["id"] for s in sections], ["s1", "s3"])
        _positions_ok(self, sections)
        self.assertIsNone(backend.get_section("m1", "s2"))
        self.assertEqual(backend.get_section("m1", "s3")["position"], 1)

    def test_remove_missing(self) -> None:
        backend, state = _seeded()
        out = execute_action(state, {"type": "RemoveSection", "payload": {"section_id": "nope"}}, backend)
        self.assertFalse(out["mutation"]["success"])
        self.assertIn("not found", out["mutation"]["error"])

    def test_update_translates_and_merges(self) -> None:
        backend, state = _seeded()
        out = execute_action(
            state,
            {"type": "UpdateSection", "payload": {"section_id": "s1", "settings": {"headline": "New", "cta_text": "Go"}}},
            backend,
        )
        self.assertTrue(out["mutation"]["success"])
        persisted = backend.get_section("m1", "s1")["settings"]
        self.assertEqual(persisted["title"], "New")
        self.assertEqual(persisted["button_text"], "Go")
        self.assertEqual(persisted["overlay_opacity"], 40)
        self.assertEqual(out["state"]["homepage"]["hero"]["headline"], "New")
        write = [c for c in backend.calls if c[0] == "update_section"][0]
        self.assertEqual(set(write[2]), {"settings"})

    def test_reorder_keeps_unlisted_after(self) -> None:
        backend, state = _seeded()
        out = execute_action(state, {"type": "ReorderSections", "payload": {"section_ids": ["s3"]}}, backend)
        sections = out["state"]["homepage"]["sections"]
        self.assertEqual([s["id"] for s in sections], ["s3", "s1", "s2"])
        _positions_ok(self, sections)


class TestBrandActions(unittest.TestCase):
    def test_partial_brand_update(self) -> None:
        backend, state = _seeded()
        out = execute_action(state, {"type": "SetBrandInfo", "payload": {"tone": "bold"}}, backend)
        self.assertEqual(out["state"]["brand"]["tone"], "bold")
        self.assertEqual(out["state"]["brand"]["name"], "Glow")
        self.assertEqual(backend.calls, [("update_merchant", {"brand_tone": "bold"})])

    def test_empty_brand_update_skips_write(self) -> None:
        backend, state = _seeded()
        out = execute_action(state, {"type": "SetBrandInfo", "payload": {}}, backend)
        self.assertTrue(out["mutation"]["success"])
        self.assertEqual(backend.calls, [])

    def test_select_template(self) -> None:
        backend, state = _seeded()
        out = execute_action(state, {"type": "SelectTemplate", "payload": {"template_id": "bold"}}, backend)
        self.assertEqual(out["state"]["homepage"]["template"], "bold")
        self.assertEqual(backend.get_merchant("m1")["storefront_template"], "bold")


if __name__ == "__main__":
    unittest.main()
