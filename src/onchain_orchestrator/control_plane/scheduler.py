"""Deterministic router: execution strategy, worker order, fallbacks, and priority."""

from __future__ import annotations

from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Final

from onchain_orchestrator import constants as c
from onchain_orchestrator.domain.models import (
    ComplexityLevel,
    Domain,
    Priority,
    RequestDescriptor,
    RouteDecision,
    RouteStrategy,
)

_LONG_RUNNING_MS: Final[int] = 30_000
_ELEVATED_DOMAINS: Final[frozenset[Domain]] = frozenset({Domain.SECURITY, Domain.BRIDGE})


@dataclass(frozen=True, slots=True)
class ToolRoute:
    """Per-tool routing defaults."""

    strategy: RouteStrategy
    priority: Priority
    cache_enabled: bool
    requires_validation: bool


TOOL_ROUTES: Final[Mapping[str, ToolRoute]] = MappingProxyType(
    {
        c.TOOL_ANALYZE: ToolRoute(RouteStrategy.PARALLEL, Priority.NORMAL, True, True),
        c.TOOL_SECURITY: ToolRoute(RouteStrategy.SIMPLE, Priority.HIGH, True, True),
        c.TOOL_HUNT: ToolRoute(RouteStrategy.PARALLEL, Priority.NORMAL, False, False),
        c.TOOL_TRACK: ToolRoute(RouteStrategy.SEQUENTIAL, Priority.NORMAL, False, False),
        c.TOOL_SENTIMENT: ToolRoute(RouteStrategy.SIMPLE, Priority.LOW, True, False),
        c.TOOL_RESEARCH: ToolRoute(RouteStrategy.HYBRID, Priority.NORMAL, True, True),
        c.TOOL_DEFI: ToolRoute(RouteStrategy.PARALLEL, Priority.NORMAL, True, True),
        c.TOOL_BRIDGE: ToolRoute(RouteStrategy.SIMPLE, Priority.HIGH, False, True),
        c.TOOL_PORTFOLIO: ToolRoute(RouteStrategy.PARALLEL, Priority.NORMAL, True, False),
        c.TOOL_MARKET: ToolRoute(RouteStrategy.HYBRID, Priority.NORMAL, True, False),
    }
)

# worker -> workers it must run after
WORKER_DEPENDENCIES: Final[Mapping[str, tuple[str, ...]]] = MappingProxyType(
    {
        c.WORKER_ALPHA_HUNTER: (c.WORKER_MARKET_ANALYZER, c.WORKER_SENTIMENT_ANALYZER),
        c.WORKER_TOKEN_RESEARCHER: (c.WORKER_RUG_DETECTOR, c.WORKER_MARKET_ANALYZER),
        c.WORKER_DEFI_ANALYZER: (c.WORKER_RUG_DETECTOR, c.WORKER_LIQUIDITY_ANALYZER),
        c.WORKER_PORTFOLIO_TRACKER: (c.WORKER_PRICE_ORACLE, c.WORKER_HISTORY_ANALYZER),
    }
)

WORKER_FALLBACKS: Final[Mapping[str, tuple[str, ...]]] = MappingProxyType(
    {
        c.WORKER_RUG_DETECTOR: (c.WORKER_BASIC_SECURITY_CHECK,),
        c.WORKER_ALPHA_HUNTER: (c.WORKER_TRENDING_TOKENS,),
        c.WORKER_WHALE_TRACKER: (c.WORKER_LARGE_TRANSACTIONS,),
        c.WORKER_SENTIMENT_ANALYZER: (c.WORKER_SOCIAL_MENTIONS,),
        c.WORKER_TOKEN_RESEARCHER: (c.WORKER_BASIC_INFO,),
    }
)


class Router:
    """Pure routing over static tables; safe to share across threads."""

    __slots__ = ("_dependencies", "_fallbacks", "_tool_routes")

    def __init__(
        self,
        *,
        tool_routes: Mapping[str, ToolRoute] | None = None,
        dependencies: Mapping[str, tuple[str, ...]] | None = None,
        fallbacks: Mapping[str, tuple[str, ...]] | None = None,
    ) -> None:
        self._tool_routes = tool_routes if tool_routes is not None else TOOL_ROUTES
        self._dependencies = dependencies if dependencies is not None else WORKER_DEPENDENCIES
        self._fallbacks = fallbacks if fallbacks is not None else WORKER_FALLBACKS

    def route(self, descriptor: RequestDescriptor) -> RouteDecision:
        workers = _unique(descriptor.suggested_workers)
        tool_route = self._tool_routes.get(descriptor.tool_id)
        strategy = self.strategy_for(descriptor, workers=workers)
        ordered = order_workers(workers, self._dependencies)
        parallel_allowed = strategy not in (
            RouteStrategy.SIMPLE,
            RouteStrategy.SEQUENTIAL,
        ) and not _has_internal_edge(ordered, self._dependencies)

        return RouteDecision(
            ordered_workers=ordered,
            strategy=strategy,
            priority=self.priority_for(descriptor),
            fallback_workers=self.fallbacks_for(ordered),
            parallel_allowed=parallel_allowed,
            cache_enabled=True if tool_route is None else tool_route.cache_enabled,
            requires_validation=False if tool_route is None else tool_route.requires_validation,
        )

    def strategy_for(
        self, descriptor: RequestDescriptor, *, workers: tuple[str, ...] | None = None
    ) -> RouteStrategy:
        selected = workers if workers is not None else _unique(descriptor.suggested_workers)
        if len(selected) <= 1:
            return RouteStrategy.SIMPLE
        tool_route = self._tool_routes.get(descriptor.tool_id)
        if tool_route is not None:
            return tool_route.strategy
        if descriptor.complexity_level is ComplexityLevel.SIMPLE:
            return RouteStrategy.PARALLEL
        if descriptor.complexity_level is ComplexityLevel.COMPLEX:
            return RouteStrategy.HYBRID
        return RouteStrategy.SEQUENTIAL

    def priority_for(self, descriptor: RequestDescriptor) -> Priority:
        tool_route = self._tool_routes.get(descriptor.tool_id)
        if tool_route is not None:
            return tool_route.priority
        tool_id = descriptor.tool_id.lower()
        if "security" in tool_id or "bridge" in tool_id or descriptor.domains & _ELEVATED_DOMAINS:
            return Priority.HIGH
        if descriptor.complexity_level is ComplexityLevel.COMPLEX:
            return Priority.NORMAL
        if descriptor.resource_estimate.time_ms > _LONG_RUNNING_MS:
            return Priority.LOW
        return Priority.NORMAL

    def fallbacks_for(self, workers: tuple[str, ...]) -> tuple[str, ...]:
        """Registered fallbacks for ``workers``, de-duplicated in first-seen order."""

        fallbacks: list[str] = []
        for worker in workers:
            for fallback in self._fallbacks.get(worker, ()):
                if fallback not in fallbacks:
                    fallbacks.append(fallback)
        return tuple(fallbacks)

    def fallback_for(self, worker: str) -> tuple[str, ...]:
        return tuple(self._fallbacks.get(worker, ()))


def order_workers(
    workers: tuple[str, ...], dependencies: Mapping[str, tuple[str, ...]]
) -> tuple[str, ...]:
    """Kahn ordering restricted to ``workers``.

    Ties keep input order. Workers stuck in a cycle are appended in input order.
    """

    if len(workers) <= 1:
        return workers

    members = set(workers)
    dependents: dict[str, list[str]] = {worker: [] for worker in workers}
    indegree = dict.fromkeys(workers, 0)
    for worker in workers:
        for dependency in dependencies.get(worker, ()):
            if dependency in members and dependency != worker:
                dependents[dependency].append(worker)
                indegree[worker] += 1

    ready = deque(worker for worker in workers if indegree[worker] == 0)
    ordered: list[str] = []
    while ready:
        worker = ready.popleft()
        ordered.append(worker)
        for dependent in dependents[worker]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                ready.append(dependent)

    placed = set(ordered)
    ordered.extend(worker for worker in workers if worker not in placed)
    return tuple(ordered)


def _has_internal_edge(
    workers: tuple[str, ...], dependencies: Mapping[str, tuple[str, ...]]
) -> bool:
    members = set(workers)
    return any(
        dependency in members and dependency != worker
        for worker in workers
        for dependency in dependencies.get(worker, ())
    )


def _unique(workers: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(workers))


__all__ = [
    "TOOL_ROUTES",
    "WORKER_DEPENDENCIES",
    "WORKER_FALLBACKS",
    "Router",
    "ToolRoute",
    "order_workers",
]
