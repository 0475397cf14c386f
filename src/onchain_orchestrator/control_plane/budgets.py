"""
Budget ledger for admission decisions.

Tracks cumulative token and time usage reported by completed operations and
answers whether a new request's estimate still fits:
- token budget (``max_tokens``)
- time budget (``max_time_ms`` of reported work)
- memory headroom (available memory minus ``memory_margin_mb``)

Usage reports are atomic adds under one lock; readers get an immutable
``BudgetUsage`` snapshot.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

from onchain_orchestrator.constants import (
    DEFAULT_MAX_TIME_MS,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MEMORY_MARGIN_MB,
    DEFAULT_USAGE_HISTORY,
)
from onchain_orchestrator.domain.models import ResourceEstimate


@dataclass(frozen=True, slots=True)
class BudgetLimits:
    max_tokens: int = DEFAULT_MAX_TOKENS
    max_time_ms: int = DEFAULT_MAX_TIME_MS
    memory_margin_mb: float = DEFAULT_MEMORY_MARGIN_MB

    def __post_init__(self) -> None:
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        if self.max_time_ms <= 0:
            raise ValueError("max_time_ms must be > 0")
        if self.memory_margin_mb < 0:
            raise ValueError("memory_margin_mb must be >= 0")


@dataclass(frozen=True, slots=True)
class UsageRecord:
    tokens: int
    time_ms: int
    recorded_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True, slots=True)
class BudgetUsage:
    """Cumulative usage against the configured limits."""

    tokens_used: int
    time_used_ms: int
    operations: int
    limits: BudgetLimits

    @property
    def remaining_tokens(self) -> int:
        return max(0, self.limits.max_tokens - self.tokens_used)

    @property
    def remaining_time_ms(self) -> int:
        return max(0, self.limits.max_time_ms - self.time_used_ms)

    @property
    def token_usage_percent(self) -> float:
        return min(100.0, 100.0 * self.tokens_used / self.limits.max_tokens)

    def to_dict(self) -> dict[str, object]:
        return {
            "tokens_used": self.tokens_used,
            "time_used_ms": self.time_used_ms,
            "operations": self.operations,
            "remaining_tokens": self.remaining_tokens,
            "remaining_time_ms": self.remaining_time_ms,
        }


class ResourceBudget:
    """Thread-safe usage ledger with a rolling history of recent reports."""

    def __init__(
        self,
        *,
        limits: BudgetLimits | None = None,
        history_size: int = DEFAULT_USAGE_HISTORY,
        logger: Any | None = None,
    ) -> None:
        if history_size <= 0:
            raise ValueError("history_size must be > 0")
        self._limits = limits or BudgetLimits()
        self._lock = threading.Lock()
        self._history: deque[UsageRecord] = deque(maxlen=history_size)
        self._usage = BudgetUsage(tokens_used=0, time_used_ms=0, operations=0, limits=self._limits)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def limits(self) -> BudgetLimits:
        return self._limits

    def usage(self) -> BudgetUsage:
        return self._usage

    def record(self, tokens: int, time_ms: int) -> BudgetUsage:
        """Add one completed operation's usage. Negative values count as zero."""

        record = UsageRecord(tokens=max(0, int(tokens)), time_ms=max(0, int(time_ms)))
        with self._lock:
            current = self._usage
            self._usage = BudgetUsage(
                tokens_used=current.tokens_used + record.tokens,
                time_used_ms=current.time_used_ms + record.time_ms,
                operations=current.operations + 1,
                limits=self._limits,
            )
            self._history.append(record)
            return self._usage

    def set_tokens_used(self, tokens_used: int) -> BudgetUsage:
        """Overwrite the token counter with an externally measured value."""

        with self._lock:
            current = self._usage
            self._usage = BudgetUsage(
                tokens_used=max(0, int(tokens_used)),
                time_used_ms=current.time_used_ms,
                operations=current.operations,
                limits=self._limits,
            )
            return self._usage

    def check(self, estimate: ResourceEstimate, *, available_memory_mb: float | None) -> str | None:
        """Return a rejection reason when ``estimate`` does not fit, else ``None``.

        Unknown available memory is not a reason to reject.
        """

        usage = self._usage
        if estimate.tokens > usage.remaining_tokens:
            return (
                f"Token limit exceeded. Remaining: {usage.remaining_tokens}, "
                f"Required: {estimate.tokens}"
            )
        if estimate.time_ms > usage.remaining_time_ms:
            return (
                f"Time limit exceeded. Remaining: {usage.remaining_time_ms}ms, "
                f"Required: {estimate.time_ms}ms"
            )
        if available_memory_mb is not None:
            headroom = available_memory_mb - self._limits.memory_margin_mb
            if estimate.memory_mb > headroom:
                return f"Memory limit exceeded. Available: {max(0.0, headroom):.2f}MB"
        return None

    def history(self) -> tuple[UsageRecord, ...]:
        with self._lock:
            return tuple(self._history)

    def statistics(self) -> dict[str, object]:
        with self._lock:
            records = tuple(self._history)
            usage = self._usage
        count = len(records)
        return {
            "total_operations": usage.operations,
            "average_tokens": sum(r.tokens for r in records) / count if count else 0.0,
            "average_time_ms": sum(r.time_ms for r in records) / count if count else 0.0,
            "peak_tokens": max((r.tokens for r in records), default=0),
            "peak_time_ms": max((r.time_ms for r in records), default=0),
            **usage.to_dict(),
        }

    def reset(self) -> None:
        with self._lock:
            self._history.clear()
            self._usage = BudgetUsage(
                tokens_used=0, time_used_ms=0, operations=0, limits=self._limits
            )
        self._logger.info("budget_reset")


__all__ = ["BudgetLimits", "BudgetUsage", "ResourceBudget", "UsageRecord"]
