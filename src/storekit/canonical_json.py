"""Deterministic canonical JSON for store documents."""

from __future__ import annotations

import json
import math
from typing import Any, Iterable


class CanonicalJsonError(TypeError):
    """Raised when a document cannot be serialized to canonical JSON."""


def _prune(obj: Any, omit: set[str], path: str) -> Any:
    if isinstance(obj, dict):
        out = {}
        for key, value in obj.items():
            if not isinstance(key, str):
                raise CanonicalJsonError(f"Unsupported key type at {path or '$'}: {type(key).__name__}")
            child = f"{path}.{key}" if path else key
            if child in omit:
                continue
            out[key] = _prune(value, omit, child)
        return out
    if isinstance(obj, (list, tuple)):
        return [_prune(item, omit, f"{path}[{idx}]") for idx, item in enumerate(obj)]
    if obj is None or isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise ValueError(f"Non-finite float at {path or '$'}: {obj!r}")
        return obj
    raise CanonicalJsonError(f"Unsupported type at {path or '$'}: {type(obj).__name__}")


def canonical_dumps(obj: Any, omit: Iterable[str] | None = None) -> str:
    """Serialize a document to deterministic canonical JSON.

    Keys are sorted recursively, list order is kept and no whitespace is
    emitted. ``omit`` takes dotted key paths (``"meta.last_updated"``) that are
    dropped before serialization.
    """
    pruned = _prune(obj, set(omit or ()), "")
    return json.dumps(
        pruned,
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    )
