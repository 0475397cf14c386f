"""In-process event bus used as the observer channel between control-plane components.

Publishers (governor monitor thread, wave engine, orchestrator) never see
subscriber failures: every callback error is captured as a ``DispatchError``,
logged, and kept in a bounded buffer for inspection.
"""

from __future__ import annotations

import asyncio
import inspect
import math
import threading
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Final

import structlog

from onchain_orchestrator.domain.events import EventType, JSONValue, OrchestratorEvent
from onchain_orchestrator.domain.ids import generate_event_id

Subscriber = Callable[[OrchestratorEvent], object]

_MAX_JSON_DEPTH: Final[int] = 16
_MAX_STRING: Final[int] = 8192
_DEFAULT_ERROR_BUFFER: Final[int] = 1024


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Subscriber failure captured without interrupting publishers."""

    event_id: str
    event_type: str
    target: str
    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class _Subscription:
    token: int
    event_type: str | None
    callback: Subscriber


class EventBus:
    """Thread-safe event bus with sync and async subscribers and bounded replay."""

    def __init__(self, *, buffer_size: int = 512, logger: Any | None = None) -> None:
        if not isinstance(buffer_size, int) or buffer_size <= 0:
            raise ValueError("buffer_size must be a positive integer")

        self._buffer = deque[OrchestratorEvent](maxlen=buffer_size)
        self._subscriptions: dict[int, _Subscription] = {}
        self._pending_async_tasks: set[asyncio.Task[None]] = set()
        self._dispatch_errors = deque[DispatchError](maxlen=_DEFAULT_ERROR_BUFFER)
        self._next_token = 1
        self._lock = threading.RLock()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def subscribe(self, event_type: str | EventType | None, callback: Subscriber) -> int:
        """Subscribe ``callback`` to one event type, or to all events when ``None``."""

        if not callable(callback):
            raise ValueError("callback must be callable")
        normalized = None if event_type is None else _as_event_type(event_type).value

        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscriptions[token] = _Subscription(
                token=token, event_type=normalized, callback=callback
            )
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subscriptions.pop(token, None) is not None

    def publish(self, event: OrchestratorEvent) -> tuple[DispatchError, ...]:
        """Publish from synchronous code.

        Async subscribers are scheduled on the running loop when there is one,
        otherwise they are run to completion before ``publish`` returns.
        """

        subscriptions = self._record(event)
        running_loop = _current_running_loop()
        errors: list[DispatchError] = []

        for subscription in subscriptions:
            if not _subscription_matches(subscription, event):
                continue
            error = self._invoke_callback(subscription.callback, event, running_loop)
            if error is not None:
                errors.append(error)

        self._store_errors(errors)
        return tuple(errors)

    async def publish_async(self, event: OrchestratorEvent) -> tuple[DispatchError, ...]:
        """Publish from async code and await async subscribers in order."""

        subscriptions = self._record(event)
        errors: list[DispatchError] = []

        for subscription in subscriptions:
            if not _subscription_matches(subscription, event):
                continue
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                errors.append(_dispatch_error(event, subscription.callback, exc))

        self._store_errors(errors)
        return tuple(errors)

    def emit(
        self,
        event_type: str | EventType,
        payload: Mapping[str, object],
        *,
        correlation_id: str | None = None,
    ) -> tuple[OrchestratorEvent, tuple[DispatchError, ...]]:
        """Create and publish an event from sync code."""

        event = build_event(event_type, payload, correlation_id=correlation_id)
        return event, self.publish(event)

    async def emit_async(
        self,
        event_type: str | EventType,
        payload: Mapping[str, object],
        *,
        correlation_id: str | None = None,
    ) -> tuple[OrchestratorEvent, tuple[DispatchError, ...]]:
        event = build_event(event_type, payload, correlation_id=correlation_id)
        return event, await self.publish_async(event)

    async def drain_async(self) -> None:
        """Await async subscriber tasks scheduled by synchronous ``publish``."""

        with self._lock:
            pending = tuple(self._pending_async_tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def replay(
        self,
        *,
        event_type: str | EventType | None = None,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> tuple[OrchestratorEvent, ...]:
        """Replay buffered events in publish order."""

        type_filter = None if event_type is None else _as_event_type(event_type)
        with self._lock:
            events = tuple(self._buffer)

        filtered = [
            event
            for event in events
            if (type_filter is None or event.event_type is type_filter)
            and (since is None or event.timestamp > since)
        ]
        if limit is not None:
            if limit <= 0:
                return ()
            filtered = filtered[-limit:]
        return tuple(filtered)

    def dispatch_errors(self, *, limit: int | None = None) -> tuple[DispatchError, ...]:
        with self._lock:
            errors = tuple(self._dispatch_errors)
        if limit is None:
            return errors
        return errors[-limit:] if limit > 0 else ()

    def _record(self, event: OrchestratorEvent) -> tuple[_Subscription, ...]:
        if not isinstance(event, OrchestratorEvent):
            raise ValueError(f"event must be OrchestratorEvent, got {type(event).__name__}")
        with self._lock:
            self._buffer.append(event)
            return tuple(self._subscriptions.values())

    def _store_errors(self, errors: list[DispatchError]) -> None:
        if not errors:
            return
        with self._lock:
            self._dispatch_errors.extend(errors)
        for error in errors:
            self._logger.warning(
                "event_subscriber_failed",
                event_id=error.event_id,
                event_type=error.event_type,
                target=error.target,
                error_type=error.error_type,
                error=error.message,
            )

    def _invoke_callback(
        self,
        callback: Subscriber,
        event: OrchestratorEvent,
        running_loop: asyncio.AbstractEventLoop | None,
    ) -> DispatchError | None:
        try:
            result = callback(event)
            if not inspect.isawaitable(result):
                return None
            if running_loop is None:
                asyncio.run(_await_value(result))
                return None
            task = running_loop.create_task(_await_value(result))
            with self._lock:
                self._pending_async_tasks.add(task)
            task.add_done_callback(lambda done: self._on_async_done(done, callback, event))
            return None
        except Exception as exc:  # noqa: BLE001
            return _dispatch_error(event, callback, exc)

    def _on_async_done(
        self, task: asyncio.Task[None], callback: Subscriber, event: OrchestratorEvent
    ) -> None:
        with self._lock:
            self._pending_async_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, Exception):
            self._store_errors([_dispatch_error(event, callback, exc)])


def build_event(
    event_type: str | EventType,
    payload: Mapping[str, object],
    *,
    correlation_id: str | None = None,
) -> OrchestratorEvent:
    """Build an event, coercing non-JSON payload leaves to strings."""

    return OrchestratorEvent(
        event_id=generate_event_id(),
        event_type=_as_event_type(event_type),
        timestamp=datetime.now(tz=UTC),
        correlation_id=correlation_id,
        payload={str(key): _to_json_value(value, depth=0) for key, value in payload.items()},
    )


def _as_event_type(value: str | EventType) -> EventType:
    if isinstance(value, EventType):
        return value
    try:
        return EventType(value)
    except ValueError as exc:
        raise ValueError(f"invalid event_type {value!r}") from exc


def _subscription_matches(subscription: _Subscription, event: OrchestratorEvent) -> bool:
    return subscription.event_type is None or subscription.event_type == event.event_type.value


def _callback_name(callback: object) -> str:
    name = getattr(callback, "__qualname__", None) or getattr(callback, "__name__", None)
    if isinstance(name, str) and name:
        return name
    return callback.__class__.__name__


def _current_running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


async def _await_value(awaitable: Awaitable[object]) -> None:
    await awaitable


def _dispatch_error(event: OrchestratorEvent, callback: object, exc: Exception) -> DispatchError:
    return DispatchError(
        event_id=event.event_id,
        event_type=event.event_type.value,
        target=_callback_name(callback),
        error_type=exc.__class__.__name__,
        message=str(exc),
    )


def _to_json_value(value: object, *, depth: int) -> JSONValue:
    if depth > _MAX_JSON_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else repr(value)
    if isinstance(value, str):
        return value[:_MAX_STRING]
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value, key=str) if isinstance(value, (set, frozenset)) else value
        return [_to_json_value(item, depth=depth + 1) for item in items]
    if isinstance(value, Mapping):
        return {str(key): _to_json_value(item, depth=depth + 1) for key, item in value.items()}
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return _to_json_value(to_dict(), depth=depth + 1)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


__all__ = ["DispatchError", "EventBus", "Subscriber", "build_event"]
