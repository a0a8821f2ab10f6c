"""Best-effort extraction of agent responses from raw model text.

Each ``from_*`` strategy either returns decoded JSON or raises
``StructuralParseError``. ``parse_llm_response`` walks them in order and falls
back to treating the whole text as prose with no actions.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Dict, List, Tuple


ParsedResponse = Dict[str, Any]


class StructuralParseError(ValueError):
    """No recoverable JSON was found by a parse strategy."""


_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_ACTIONS_KEY = re.compile(r'"actions"\s*:\s*\[')


def _scan_balanced(text: str, start: int) -> str | None:
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return text[start : idx + 1]
    return None


def _loads(candidate: str) -> Any:
    try:
        return json.loads(candidate)
    except ValueError as exc:
        raise StructuralParseError(f"Failed to parse JSON: {exc}") from exc


def from_fenced_block(text: str) -> Any:
    match = _FENCED_JSON.search(text)
    if not match:
        raise StructuralParseError("json_fence_not_found")
    return _loads(match.group(1))


def from_whole_text(text: str) -> Any:
    stripped = text.strip()
    if not stripped.startswith(("{", "[")):
        raise StructuralParseError("json_not_found")
    return _loads(stripped)


def from_embedded_object(text: str) -> Any:
    start = text.find("{")
    if start == -1:
        raise StructuralParseError("json_not_found")
    candidate = _scan_balanced(text, start)
    if candidate is None:
        raise StructuralParseError("json_incomplete")
    return _loads(candidate)


def from_actions_fragment(text: str) -> Any:
    match = _ACTIONS_KEY.search(text)
    if not match:
        raise StructuralParseError("actions_key_not_found")
    candidate = _scan_balanced(text, match.end() - 1)
    if candidate is None:
        raise StructuralParseError("json_incomplete")
    return {"actions": _loads(candidate)}


def from_embedded_array(text: str) -> Any:
    start = text.find("[")
    if start == -1:
        raise StructuralParseError("json_not_found")
    candidate = _scan_balanced(text, start)
    if candidate is None:
        raise StructuralParseError("json_incomplete")
    return _loads(candidate)


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def normalize_response(parsed: Any) -> ParsedResponse:
    """Coerce decoded JSON into ``{thinking, actions, explanation}``."""
    if isinstance(parsed, list):
        return {"thinking": "", "actions": parsed, "explanation": ""}
    if isinstance(parsed, dict):
        if "actions" in parsed:
            actions = parsed.get("actions")
            if isinstance(actions, dict):
                actions = [actions]
            elif not isinstance(actions, list):
                actions = []
            return {
                "thinking": _text(parsed.get("thinking")),
                "actions": actions,
                "explanation": _text(parsed.get("explanation")),
            }
        if "type" in parsed:
            # bare single action without the response wrapper
            return {"thinking": "", "actions": [parsed], "explanation": ""}
    raise StructuralParseError("unrecognized_response_shape")


RESPONSE_STRATEGIES: Tuple[Callable[[str], Any], ...] = (
    from_fenced_block,
    from_whole_text,
    from_actions_fragment,
    from_embedded_object,
)

CANDIDATE_STRATEGIES: Tuple[Callable[[str], Any], ...] = RESPONSE_STRATEGIES + (from_embedded_array,)


def parse_llm_response(text: str) -> ParsedResponse:
    if not isinstance(text, str):
        return {"thinking": "", "actions": [], "explanation": ""}
    for strategy in RESPONSE_STRATEGIES:
        try:
            parsed = normalize_response(strategy(text))
        except StructuralParseError:
            continue
        if strategy is from_actions_fragment:
            parsed["explanation"] = text
        return parsed
    return {"thinking": "", "actions": [], "explanation": text}


def extract_action_candidates(text: str) -> List[Any]:
    """Return the raw action list found in ``text``.

    Raises ``StructuralParseError`` when no strategy recovers any JSON.
    """
    if not isinstance(text, str):
        raise StructuralParseError("No valid JSON found in response")
    decode_error: StructuralParseError | None = None
    for strategy in CANDIDATE_STRATEGIES:
        try:
            return normalize_response(strategy(text))["actions"]
        except StructuralParseError as exc:
            if str(exc).startswith("Failed to parse JSON"):
                decode_error = exc
    if decode_error is not None:
        raise decode_error
    raise StructuralParseError("No valid JSON found in response")
