"""Public observability primitives: structured logging and event streaming."""

from onchain_orchestrator.observability.events import (
    DispatchError,
    EventBus,
    Subscriber,
    build_event,
)
from onchain_orchestrator.observability.logging import (
    LoggingConfig,
    correlation_scope,
    get_correlation_context,
    get_logger,
    setup_logging,
)

__all__ = [
    "DispatchError",
    "EventBus",
    "LoggingConfig",
    "Subscriber",
    "build_event",
    "correlation_scope",
    "get_correlation_context",
    "get_logger",
    "setup_logging",
]
