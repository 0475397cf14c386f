"""Utility exports for hashing, caching, and concurrency helpers."""

from onchain_orchestrator.utils.args import arg_number, arg_value
from onchain_orchestrator.utils.cache import CacheStats, TTLCache
from onchain_orchestrator.utils.concurrency import (
    BoundedSemaphore,
    CancellationToken,
    Settled,
    call_maybe_async,
    gather_settled,
    run_with_timeout,
)
from onchain_orchestrator.utils.hashing import (
    canonical_json,
    content_key,
    sha256_bytes,
    sha256_text,
)

__all__ = [
    "BoundedSemaphore",
    "CacheStats",
    "CancellationToken",
    "Settled",
    "TTLCache",
    "arg_number",
    "arg_value",
    "call_maybe_async",
    "canonical_json",
    "content_key",
    "gather_settled",
    "run_with_timeout",
    "sha256_bytes",
    "sha256_text",
]
