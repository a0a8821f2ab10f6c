"""StoreState version tokens."""

from __future__ import annotations

import hashlib
from typing import Any

from .canonical_json import canonical_dumps


# Timestamps change on every applied action even when content does not.
VOLATILE_PATHS = ("meta.last_updated",)


def state_hash(state: Any) -> str:
    """Return the canonical SHA-256 version token for a StoreState."""
    data = canonical_dumps(state, omit=VOLATILE_PATHS).encode("utf-8")
    digest = hashlib.sha256(data).hexdigest()
    return f"sha256:{digest}"
