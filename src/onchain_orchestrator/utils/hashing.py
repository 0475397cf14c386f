"""
onchain-orchestrator — hashing utilities

File: src/onchain_orchestrator/utils/hashing.py

Purpose
- Provide deterministic SHA-256 helpers for bytes and text.
- Build canonical cache keys from JSON-like payloads so that two requests with
  the same content (regardless of mapping insertion order) share one key.

Functional requirements
- Canonical JSON sorts mapping keys, uses compact separators, and renders
  unsupported leaf values with ``repr`` so key derivation never raises.

Non-functional requirements
- Standard library only; behavior is cross-platform deterministic.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping, Set
from typing import Final

_MAX_CANONICAL_DEPTH: Final[int] = 32

__all__ = [
    "canonical_json",
    "content_key",
    "sha256_bytes",
    "sha256_text",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def canonical_json(value: object) -> str:
    """Serialize ``value`` to canonical JSON (sorted keys, compact separators)."""

    return json.dumps(
        _canonicalize(value, depth=0),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def content_key(*parts: object) -> str:
    """Return a stable SHA-256 key over the canonical JSON of ``parts``."""

    return sha256_text(canonical_json(list(parts)))


def _canonicalize(value: object, *, depth: int) -> object:
    if depth > _MAX_CANONICAL_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return repr(value)
        return value
    if isinstance(value, Mapping):
        return {str(key): _canonicalize(item, depth=depth + 1) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonicalize(item, depth=depth + 1) for item in value]
    if isinstance(value, Set):
        items = [_canonicalize(item, depth=depth + 1) for item in value]
        return sorted(items, key=lambda item: json.dumps(item, sort_keys=True, default=repr))
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return _canonicalize(to_dict(), depth=depth + 1)
    return repr(value)
