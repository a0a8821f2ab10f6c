"""Storefront agent session: one merchant, one conversation, one StoreState.

A turn runs prompt -> model text -> parse -> validate -> execute. The session
state is replaced wholesale at the end of a turn and never touched mid-turn,
so a failed turn leaves the previous state in place.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

from action_exec import execute_actions
from action_validate import validate_action
from prompt_build import build_system_prompt, build_user_message
from response_parse import parse_llm_response
from state_loader import StoreState, create_empty_state, load_state
from store_backend import DataAccessError, StoreBackend
from storekit.state_hash import state_hash


logger = logging.getLogger("storefront.agent")

DEFAULT_MODEL = os.getenv("OPENAI_MODEL", "").strip() or "gpt-4o-mini"
DEFAULT_MAX_TOKENS = int(os.getenv("STOREFRONT_AGENT_MAX_TOKENS", "4096"))
DEFAULT_TEMPERATURE = float(os.getenv("STOREFRONT_AGENT_TEMPERATURE", "0.7"))

STATE_VERSION_CONFLICT = "STATE_VERSION_CONFLICT"
NO_ACTIONS_EXPLANATION = "No actions needed for this request."


@dataclass
class AgentConfig:
    model: str = DEFAULT_MODEL
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE


class LLMClient(Protocol):
    def complete(self, system_prompt: str, user_message: str, config: AgentConfig) -> str: ...


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _turn_report() -> Dict[str, Any]:
    return {
        "success": False,
        "thinking": "",
        "actions": [],
        "mutations": [],
        "explanation": "",
        "error": None,
        "execution_time_ms": 0,
    }


@dataclass
class StoreAgent:
    merchant_id: str
    store: StoreBackend
    llm: LLMClient
    config: AgentConfig = field(default_factory=AgentConfig)
    on_state_change: Optional[Callable[[StoreState], None]] = None
    on_action_executed: Optional[Callable[[dict], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None

    state: Optional[StoreState] = field(default=None, init=False)
    conversation_history: List[dict] = field(default_factory=list, init=False)
    action_history: List[dict] = field(default_factory=list, init=False)
    is_initialized: bool = field(default=False, init=False)

    def initialize(self) -> StoreState:
        """Load the StoreState from the backend.

        On a failed read the session still ends up initialized with an empty
        state, and the ``DataAccessError`` is re-raised to the caller.
        """
        try:
            self.state = load_state(self.store, self.merchant_id)
        except DataAccessError:
            self.state = create_empty_state(self.merchant_id)
            self.is_initialized = True
            raise
        self.is_initialized = True
        logger.info("agent_initialized merchant_id=%s", self.merchant_id)
        return self.state

    def _ensure_initialized(self) -> None:
        if self.is_initialized:
            return
        try:
            self.initialize()
        except DataAccessError as exc:
            logger.warning("agent_started_empty merchant_id=%s error=%s", self.merchant_id, exc)

    def state_version(self) -> str:
        self._ensure_initialized()
        return state_hash(self.state)

    def process(
        self,
        instruction: str,
        context: dict | None = None,
        expected_version: str | None = None,
    ) -> Dict[str, Any]:
        """Run one turn and return its report; never raises for turn failures."""
        self._ensure_initialized()
        started = time.monotonic()
        response = _turn_report()
        executed = False
        failure: Exception | None = None
        try:
            if expected_version is not None and expected_version != state_hash(self.state):
                response["error"] = STATE_VERSION_CONFLICT
                return response

            system_prompt = build_system_prompt(self.state)
            user_message = build_user_message(instruction, context)
            raw = self.llm.complete(system_prompt, user_message, self.config)

            parsed = parse_llm_response(raw)
            response["thinking"] = parsed["thinking"]
            response["explanation"] = parsed["explanation"]
            if not parsed["actions"]:
                response["success"] = True
                response["explanation"] = parsed["explanation"] or NO_ACTIONS_EXPLANATION
                return response

            validated: List[dict] = []
            validation_errors: List[str] = []
            for action in parsed["actions"]:
                result = validate_action(action)
                if result["valid"]:
                    validated.append(result["sanitized"])
                else:
                    validation_errors.extend(result["errors"])
            if validation_errors:
                logger.warning(
                    "validation_errors merchant_id=%s errors=%s", self.merchant_id, validation_errors
                )
            if not validated:
                response["error"] = f"All actions failed validation: {', '.join(validation_errors)}"
                return response

            response["actions"] = validated
            execution = execute_actions(self.state, validated, self.store)
            self.state = execution["state"]
            response["mutations"] = execution["mutations"]

            self.conversation_history.append({"role": "user", "content": instruction, "timestamp": _now()})
            self.conversation_history.append(
                {
                    "role": "assistant",
                    "content": response["explanation"],
                    "actions": validated,
                    "timestamp": _now(),
                }
            )
            self.action_history.extend(validated)
            executed = True

            response["success"] = all(m["success"] for m in response["mutations"])
        except Exception as exc:
            logger.exception("turn_failed merchant_id=%s", self.merchant_id)
            response["error"] = str(exc) or exc.__class__.__name__
            failure = exc
        finally:
            response["execution_time_ms"] = int((time.monotonic() - started) * 1000)
            logger.info(
                "turn_done merchant_id=%s success=%s actions=%s error=%s ms=%s",
                self.merchant_id,
                response["success"],
                len(response["actions"]),
                response["error"],
                response["execution_time_ms"],
            )

        # hooks run once the report is final
        if executed:
            self._notify(self.on_state_change, self.state)
            for mutation in response["mutations"]:
                self._notify(self.on_action_executed, mutation)
        if failure is not None:
            self._notify(self.on_error, failure)
        return response

    def _notify(self, hook: Optional[Callable[[Any], Any]], arg: Any) -> None:
        if hook is None:
            return
        try:
            hook(arg)
        except Exception:
            logger.exception("hook_failed merchant_id=%s hook=%s", self.merchant_id, getattr(hook, "__name__", hook))

    def get_state(self) -> Optional[StoreState]:
        return self.state

    def get_history(self) -> List[dict]:
        return self.conversation_history

    def get_action_history(self) -> List[dict]:
        return self.action_history

    def reset(self) -> StoreState:
        """Drop history and reload state from the backend."""
        self.conversation_history = []
        self.action_history = []
        return self.initialize()

    def serialize(self) -> Dict[str, Any]:
        return {
            "merchant_id": self.merchant_id,
            "state": self.state,
            "conversation_history": self.conversation_history,
            "action_history": self.action_history,
            "is_initialized": self.is_initialized,
            "state_version": state_hash(self.state) if self.state is not None else None,
        }


def create_agent(
    merchant_id: str,
    store: StoreBackend,
    llm: LLMClient,
    config: AgentConfig | None = None,
) -> StoreAgent:
    agent = StoreAgent(merchant_id=merchant_id, store=store, llm=llm, config=config or AgentConfig())
    agent.initialize()
    return agent
