"""Unit tests for structured logging setup, correlation scopes, and secret redaction."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest
import structlog

from onchain_orchestrator.observability.logging import (
    LoggingConfig,
    correlation_scope,
    get_correlation_context,
    redact_event_dict,
    redact_text,
    setup_logging,
)


@pytest.fixture(autouse=True)
def _clean_structlog() -> Iterator[None]:
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


def test_logging_config_from_observability_section() -> None:
    config = LoggingConfig.from_mapping(
        {"log_level": "DEBUG", "json_logs": False, "redact_secrets": False}
    )

    assert config == LoggingConfig(level="DEBUG", json_output=False, redact_secrets=False)
    assert LoggingConfig.from_mapping(None) == LoggingConfig()


def test_setup_logging_installs_redaction_processor(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict[str, object]] = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    setup_logging(LoggingConfig(level="warning"))

    assert redact_event_dict in structlog.get_config()["processors"]
    assert calls[0]["level"] == logging.WARNING


def test_setup_logging_rejects_unknown_level() -> None:
    with pytest.raises(ValueError, match="unknown log level"):
        setup_logging(LoggingConfig(level="chatty"))


def test_correlation_scope_binds_and_restores_fields() -> None:
    with correlation_scope(request_id="req-1", plan_id=None) as outer:
        assert outer == {"request_id": "req-1"}
        with correlation_scope(plan_id="plan-1", wave_id="wave_adaptive_1"):
            assert get_correlation_context() == {
                "request_id": "req-1",
                "plan_id": "plan-1",
                "wave_id": "wave_adaptive_1",
            }
        assert get_correlation_context() == {"request_id": "req-1"}

    assert get_correlation_context() == {}


def test_redact_event_dict_masks_sensitive_keys_recursively() -> None:
    event_dict = {
        "event": "worker_called",
        "api_key": "abc",
        "args": {"privateKey": "0x1", "network": "ethereum"},
        "notes": ["password=hunter2"],
    }

    redacted = redact_event_dict(None, "info", event_dict)

    assert redacted["api_key"] == "***REDACTED***"
    assert redacted["args"] == {"privateKey": "***REDACTED***", "network": "ethereum"}
    assert redacted["notes"] == ["password=***REDACTED***"]
    assert redacted["event"] == "worker_called"


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("api_key=abc123 next", "api_key=***REDACTED*** next"),
        ("sent Bearer abc.def-ghi", "sent Bearer ***REDACTED***"),
        ("nothing secret here", "nothing secret here"),
    ],
)
def test_redact_text_masks_inline_credentials(text: str, expected: str) -> None:
    assert redact_text(text) == expected
