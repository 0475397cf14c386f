"""Structured logging setup built on structlog, with correlation scopes and redaction."""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Final

import structlog
from structlog.typing import Processor

_REDACTED_VALUE: Final[str] = "***REDACTED***"
_DEFAULT_LOGGER_NAME: Final[str] = "onchain_orchestrator"

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "private_key",
    "privatekey",
    "mnemonic",
    "seed_phrase",
)

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|password|secret|private[_-]?key|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")

# Correlation fields bound by ``correlation_scope``.
CORRELATION_KEYS: Final[tuple[str, ...]] = ("request_id", "plan_id", "wave_id", "tool_id")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Configuration for process-wide structured logging."""

    level: int | str = "INFO"
    json_output: bool = True
    redact_secrets: bool = True
    logger_name: str = _DEFAULT_LOGGER_NAME

    @classmethod
    def from_mapping(cls, observability_config: Mapping[str, object] | None) -> LoggingConfig:
        """Build from the ``[observability]`` section of ``orchestrator.toml``."""
        cfg = dict(observability_config or {})
        level = cfg.get("log_level", "INFO")
        return cls(
            level=level if isinstance(level, (int, str)) else "INFO",
            json_output=bool(cfg.get("json_logs", True)),
            redact_secrets=bool(cfg.get("redact_secrets", True)),
        )


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure structlog and the standard library root logger.

    Safe to call repeatedly; the last call wins.
    """

    cfg = config or LoggingConfig()
    level = _resolve_level(cfg.level)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if cfg.redact_secrets:
        shared_processors.append(redact_event_dict)

    if cfg.json_output:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer(colors=False)]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str | None = None, **initial_context: Any) -> Any:
    """Return a structlog logger, optionally bound to ``initial_context``."""

    logger = structlog.get_logger(name or _DEFAULT_LOGGER_NAME)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[dict[str, str]]:
    """Bind correlation fields to every log line emitted within the block.

    ``None`` values are ignored. Nested scopes layer on top of the outer scope and
    restore it on exit, including across ``await`` points in the same task.
    """

    bound = {key: value for key, value in fields.items() if isinstance(value, str) and value}
    with structlog.contextvars.bound_contextvars(**bound):
        yield dict(structlog.contextvars.get_contextvars())


def get_correlation_context() -> dict[str, str]:
    context = structlog.contextvars.get_contextvars()
    return {key: str(context[key]) for key in CORRELATION_KEYS if key in context}


def redact_event_dict(
    logger: object, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking secret-looking keys and inline credentials."""

    del logger, method_name
    for key in list(event_dict):
        event_dict[key] = _redact_value(event_dict[key], key_context=key)
    return event_dict


def redact_text(text: str) -> str:
    masked = _SENSITIVE_ASSIGNMENT_PATTERN.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED_VALUE}", text
    )
    return _BEARER_TOKEN_PATTERN.sub(f"Bearer {_REDACTED_VALUE}", masked)


def _redact_value(value: object, *, key_context: str | None) -> object:
    if key_context is not None and _is_sensitive_key(key_context):
        return _REDACTED_VALUE
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, Mapping):
        return {key: _redact_value(item, key_context=str(key)) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, key_context=None) for item in value]
    return value


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(term in lowered for term in _SENSITIVE_KEY_TERMS)


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unknown log level: {level!r}")
    return resolved


__all__ = [
    "CORRELATION_KEYS",
    "LoggingConfig",
    "correlation_scope",
    "get_correlation_context",
    "get_logger",
    "redact_event_dict",
    "redact_text",
    "setup_logging",
]
