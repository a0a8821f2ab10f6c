"""Storefront kernel utilities."""

from .canonical_json import CanonicalJsonError, canonical_dumps
from .state_hash import state_hash

__all__ = [
    "CanonicalJsonError",
    "canonical_dumps",
    "state_hash",
]
