"""FastAPI service exposing the storefront agent per merchant."""

from __future__ import annotations

import logging
import os
import re
import sys
import threading
import time
from collections import OrderedDict
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

import anyio
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from action_validate import validate_actions
from app.db import get_db_stats, reset_db_stats
from app.llm import build_llm
from app.stores import MemoryStoreBackend
from store_agent import AgentConfig, StoreAgent, STATE_VERSION_CONFLICT
from store_backend import DataAccessError


app = FastAPI(title="Storefront Agent")
logger = logging.getLogger("storefront")
logging.basicConfig(level=logging.INFO)

_LOCAL_CORS_ORIGINS = {
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
}
_EXTRA_CORS_ORIGINS = {
    origin.strip().rstrip("/")
    for origin in os.getenv("STOREFRONT_CORS_ORIGINS", "").split(",")
    if origin.strip()
}
_CORS_ORIGINS = _LOCAL_CORS_ORIGINS | _EXTRA_CORS_ORIGINS
_MERCHANT_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
REQ_SLOW_MS = float(os.getenv("STOREFRONT_REQ_SLOW_MS", "1500"))
MAX_SESSIONS = max(int(os.getenv("STOREFRONT_MAX_SESSIONS", "500")), 1)

USE_DB = os.getenv("USE_DB", "").strip() == "1"

if USE_DB:
    from app.stores_db import DbStoreBackend

    store = DbStoreBackend()
else:
    store = MemoryStoreBackend()

llm = build_llm()


app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(_CORS_ORIGINS),
    allow_origin_regex=r"http://localhost:\d+|http://127\.0\.0\.1:\d+",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    reset_db_stats()
    start = time.perf_counter()
    response = await call_next(request)
    total_ms = (time.perf_counter() - start) * 1000
    db_stats = get_db_stats()
    route = request.scope.get("route")
    route_name = getattr(route, "name", None) or "unknown"
    logger.info(
        "%s %s %s route=%s total_ms=%.1f db_q=%s db_ms=%.1f db_acquire_ms=%.1f",
        request.method,
        request.url.path,
        response.status_code,
        route_name,
        total_ms,
        db_stats.get("queries", 0),
        db_stats.get("total_ms", 0.0),
        db_stats.get("acquire_ms", 0.0),
    )
    if total_ms >= REQ_SLOW_MS:
        logger.warning(
            "slow_request method=%s path=%s route=%s total_ms=%.1f status=%s",
            request.method,
            request.url.path,
            route_name,
            total_ms,
            response.status_code,
        )
    response.headers["X-Req-MS"] = f"{total_ms:.1f}"
    response.headers["X-DB-MS"] = f"{db_stats.get('total_ms', 0.0):.1f}"
    response.headers["X-Queries"] = str(db_stats.get("queries", 0))
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error path=%s", request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


class _Session:
    def __init__(self, agent: StoreAgent) -> None:
        self.agent = agent
        self.lock = threading.Lock()


_SESSIONS: OrderedDict[str, _Session] = OrderedDict()
_SESSIONS_LOCK = threading.Lock()


def _evict_idle_sessions(keep: str) -> None:
    # least recently used first; sessions mid-turn are skipped
    for merchant_id in list(_SESSIONS):
        if len(_SESSIONS) <= MAX_SESSIONS:
            return
        if merchant_id == keep or _SESSIONS[merchant_id].lock.locked():
            continue
        del _SESSIONS[merchant_id]
        logger.info("session_evicted merchant_id=%s", merchant_id)


def _session(merchant_id: str) -> _Session:
    with _SESSIONS_LOCK:
        session = _SESSIONS.get(merchant_id)
        if session is None:
            session = _Session(StoreAgent(merchant_id=merchant_id, store=store, llm=llm, config=AgentConfig()))
            _SESSIONS[merchant_id] = session
        _SESSIONS.move_to_end(merchant_id)
        _evict_idle_sessions(merchant_id)
        return session


def session_count() -> int:
    with _SESSIONS_LOCK:
        return len(_SESSIONS)


def reset_sessions() -> None:
    with _SESSIONS_LOCK:
        _SESSIONS.clear()


def _ensure_loaded(session: _Session) -> list:
    agent = session.agent
    if agent.is_initialized:
        return []
    try:
        agent.initialize()
    except DataAccessError as exc:
        logger.warning("state_load_failed merchant_id=%s error=%s", agent.merchant_id, exc)
        return [{"code": "STATE_LOAD_FAILED", "message": "Store state could not be loaded", "path": None, "detail": {"error": str(exc)}}]
    return []


def _state_payload(agent: StoreAgent) -> dict:
    return {"state": agent.get_state(), "version": agent.state_version()}


def _bad_merchant(merchant_id: str) -> JSONResponse | None:
    if not _MERCHANT_ID_RE.match(merchant_id or ""):
        return _error_response("MERCHANT_ID_INVALID", "merchant_id is invalid", "merchant_id", status=400)
    return None


async def _json_body(request: Request) -> tuple[dict | None, JSONResponse | None]:
    try:
        body = await request.json()
    except ValueError:
        return None, _error_response("BODY_INVALID", "Request body must be JSON", status=400)
    if not isinstance(body, dict):
        return None, _error_response("BODY_INVALID", "Request body must be an object", status=400)
    return body, None


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


@app.get("/agent/{merchant_id}/state")
async def get_agent_state(merchant_id: str):
    bad = _bad_merchant(merchant_id)
    if bad:
        return bad
    session = _session(merchant_id)

    def _run():
        with session.lock:
            warnings = _ensure_loaded(session)
            return _state_payload(session.agent), warnings

    payload, warnings = await anyio.to_thread.run_sync(_run)
    return _ok_response(payload, warnings=warnings)


@app.get("/agent/{merchant_id}/history")
async def get_agent_history(merchant_id: str):
    bad = _bad_merchant(merchant_id)
    if bad:
        return bad
    session = _session(merchant_id)

    def _run():
        with session.lock:
            return {"history": session.agent.get_history(), "actions": session.agent.get_action_history()}

    payload = await anyio.to_thread.run_sync(_run)
    return _ok_response(payload)


@app.post("/agent/{merchant_id}/process")
async def process_instruction(merchant_id: str, request: Request):
    bad = _bad_merchant(merchant_id)
    if bad:
        return bad
    body, error = await _json_body(request)
    if error:
        return error
    instruction = body.get("instruction")
    if not isinstance(instruction, str) or not instruction.strip():
        return _error_response("INSTRUCTION_REQUIRED", "instruction required", "instruction", status=400)
    context = body.get("context")
    if context is not None and not isinstance(context, dict):
        return _error_response("CONTEXT_INVALID", "context must be an object", "context", status=400)
    expected_version = body.get("expected_version")
    if expected_version is not None and not isinstance(expected_version, str):
        return _error_response("VERSION_INVALID", "expected_version must be a string", "expected_version", status=400)

    session = _session(merchant_id)

    def _run():
        with session.lock:
            warnings = _ensure_loaded(session)
            result = session.agent.process(instruction.strip(), context, expected_version=expected_version)
            return result, _state_payload(session.agent), warnings

    result, state_payload, warnings = await anyio.to_thread.run_sync(_run)
    if result.get("error") == STATE_VERSION_CONFLICT:
        return _error_response(
            STATE_VERSION_CONFLICT,
            "Store state changed since it was read",
            "expected_version",
            detail={"version": state_payload["version"]},
            status=409,
        )
    return _ok_response({"result": result, **state_payload}, warnings=warnings)


@app.post("/agent/{merchant_id}/reset")
async def reset_agent(merchant_id: str):
    bad = _bad_merchant(merchant_id)
    if bad:
        return bad
    session = _session(merchant_id)

    def _run():
        with session.lock:
            warnings: list = []
            try:
                session.agent.reset()
            except DataAccessError as exc:
                logger.warning("state_load_failed merchant_id=%s error=%s", merchant_id, exc)
                warnings.append(
                    {"code": "STATE_LOAD_FAILED", "message": "Store state could not be loaded", "path": None, "detail": {"error": str(exc)}}
                )
            return _state_payload(session.agent), warnings

    payload, warnings = await anyio.to_thread.run_sync(_run)
    return _ok_response(payload, warnings=warnings)


@app.post("/actions/validate")
async def validate_action_list(request: Request):
    body, error = await _json_body(request)
    if error:
        return error
    actions = body.get("actions")
    if not isinstance(actions, list):
        return _error_response("ACTIONS_REQUIRED", "actions must be an array", "actions", status=400)
    result = validate_actions(actions)
    return _ok_response(
        {
            "valid": result["valid"],
            "results": result["results"],
            "valid_actions": result["valid_actions"],
        }
    )
