"""Action validation and sanitization (no side effects)."""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List

from action_schema import ACTION_TYPE_VALUES, schema_for
from response_parse import StructuralParseError, extract_action_candidates


ValidationResult = Dict[str, Any]
Action = Dict[str, Any]

logger = logging.getLogger("storefront.validate")


def _json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _invalid(*errors: str) -> ValidationResult:
    return {"valid": False, "errors": list(errors), "sanitized": None}


def _validate_string(prefix: str, value: Any, spec: dict, errors: List[str]) -> None:
    if not isinstance(value, str):
        errors.append(f"{prefix}: Expected string, got {_json_type(value)}")
        return
    # bounds apply to what survives sanitization
    text = value.strip()
    min_len = spec.get("minLength")
    max_len = spec.get("maxLength")
    if min_len is not None and len(text) < min_len:
        errors.append(f"{prefix}: String too short (min: {min_len})")
    if max_len is not None and len(text) > max_len:
        errors.append(f"{prefix}: String too long (max: {max_len})")
    enum = spec.get("enum")
    if enum is not None and text not in enum:
        errors.append(f'{prefix}: Invalid value "{text}". Must be one of: {", ".join(enum)}')


def _validate_number(prefix: str, value: Any, spec: dict, errors: List[str]) -> None:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        errors.append(f"{prefix}: Expected number, got {_json_type(value)}")
        return
    if isinstance(value, float) and not math.isfinite(value):
        errors.append(f"{prefix}: Expected finite number")
        return
    if spec.get("integer") and not float(value).is_integer():
        errors.append(f"{prefix}: Expected integer, got {value}")
    if spec.get("min") is not None and value < spec["min"]:
        errors.append(f"{prefix}: Number too small (min: {spec['min']})")
    if spec.get("max") is not None and value > spec["max"]:
        errors.append(f"{prefix}: Number too large (max: {spec['max']})")


def _validate_array(prefix: str, value: Any, spec: dict, errors: List[str]) -> None:
    if not isinstance(value, list):
        errors.append(f"{prefix}: Expected array, got {_json_type(value)}")
        return
    items = spec.get("items")
    if not isinstance(items, dict):
        return
    expected = items.get("type")
    for idx, item in enumerate(value):
        if expected and _json_type(item) != expected:
            errors.append(f"{prefix}[{idx}]: Expected {expected} item")


def _validate_field(action_type: str, field: str, value: Any, spec: dict) -> List[str]:
    errors: List[str] = []
    prefix = f"{action_type}.{field}"
    expected = spec.get("type")
    if expected == "string":
        _validate_string(prefix, value, spec, errors)
    elif expected == "number":
        _validate_number(prefix, value, spec, errors)
    elif expected == "boolean":
        if not isinstance(value, bool):
            errors.append(f"{prefix}: Expected boolean, got {_json_type(value)}")
    elif expected == "array":
        _validate_array(prefix, value, spec, errors)
    elif expected == "object":
        if not isinstance(value, dict):
            errors.append(f"{prefix}: Expected object, got {_json_type(value)}")
    return errors


def _validate_payload(payload: dict, schema: dict, action_type: str) -> List[str]:
    errors: List[str] = []
    for field in schema.get("required") or []:
        if payload.get(field) is None:
            errors.append(f'{action_type}: Missing required field "{field}"')
    properties = schema.get("properties") or {}
    for field, value in payload.items():
        spec = properties.get(field)
        if spec is None:
            # stripped during sanitization
            continue
        if value is None and field not in (schema.get("required") or []):
            continue
        errors.extend(_validate_field(action_type, field, value, spec))
    return errors


def _sanitize_value(value: Any, spec: dict) -> Any:
    if spec.get("type") == "string" and isinstance(value, str):
        return value.strip()
    if spec.get("type") == "number" and spec.get("integer") and isinstance(value, float):
        return int(value)
    if spec.get("type") == "array" and isinstance(value, list):
        return [item.strip() if isinstance(item, str) else item for item in value]
    if isinstance(value, (dict, list)):
        return _copy_json(value)
    return value


def _copy_json(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _copy_json(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_copy_json(v) for v in value]
    return value


def sanitize_payload(payload: dict, schema: dict) -> dict:
    """Copy only schema-known, non-null fields; trim strings.

    Defaults are not applied here; the executor fills them per action kind.
    """
    properties = schema.get("properties")
    if not properties:
        return _copy_json(payload)
    sanitized: dict = {}
    for field, spec in properties.items():
        if payload.get(field) is None:
            continue
        sanitized[field] = _sanitize_value(payload[field], spec)
    return sanitized


def validate_action(action: Any) -> ValidationResult:
    if not isinstance(action, dict):
        return _invalid("Action must be an object")
    action_type = action.get("type")
    if not action_type:
        return _invalid('Action must have a "type" property')
    if not isinstance(action_type, str) or action_type not in ACTION_TYPE_VALUES:
        valid_types = ", ".join(sorted(ACTION_TYPE_VALUES))
        return _invalid(f'Invalid action type: "{action_type}". Valid types: {valid_types}')

    schema = schema_for(action_type)

    payload = action.get("payload")
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return _invalid(f"{action_type}: payload must be an object, got {_json_type(payload)}")

    errors = _validate_payload(payload, schema, action_type)
    if errors:
        return {"valid": False, "errors": errors, "sanitized": None}

    return {
        "valid": True,
        "errors": [],
        "sanitized": {"type": action_type, "payload": sanitize_payload(payload, schema)},
    }


def validate_actions(actions: Any) -> dict:
    if not isinstance(actions, list):
        return {
            "valid": False,
            "results": [_invalid("Expected array of actions")],
            "valid_actions": [],
        }
    results = [validate_action(action) for action in actions]
    return {
        "valid": all(r["valid"] for r in results),
        "results": results,
        "valid_actions": [r["sanitized"] for r in results if r["valid"]],
    }


def parse_and_validate_actions(llm_response: str) -> dict:
    """Pull candidate actions out of raw model text and validate them."""
    try:
        candidates = extract_action_candidates(llm_response)
    except StructuralParseError as exc:
        logger.info("action_parse_failed reason=%s", exc)
        return {"success": False, "actions": [], "errors": [str(exc)]}

    validation = validate_actions(candidates)
    errors = [err for r in validation["results"] if not r["valid"] for err in r["errors"]]
    return {
        "success": validation["valid"],
        "actions": validation["valid_actions"],
        "errors": errors,
    }
