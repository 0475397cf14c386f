"""Unit tests for worker response normalisation."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from onchain_orchestrator.execution_plane.contracts import (
    Worker,
    WorkerContext,
    WorkerResponse,
)


def test_coerce_passes_responses_through() -> None:
    response = WorkerResponse(success=True, agent="rug_detector")

    assert WorkerResponse.coerce(response, agent="other") is response


def test_coerce_merges_error_shapes_and_defaults_success() -> None:
    response = WorkerResponse.coerce(
        {"errors": ["rpc down"], "error": "retry later", "data": [1, 2]}, agent="whale_tracker"
    )

    assert response.errors == ("rpc down", "retry later")
    assert not response.success
    assert response.agent == "whale_tracker"
    assert dict(response.data) == {"value": [1, 2]}


def test_coerce_prefers_agent_from_payload_and_parses_timestamps() -> None:
    response = WorkerResponse.coerce(
        {"agent": "alpha_hunter", "data": None, "timestamp": "2024-01-02T03:04:05"},
        agent="fallback",
    )

    assert response.success
    assert response.agent == "alpha_hunter"
    assert dict(response.data) == {}
    assert response.timestamp == datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)


def test_coerce_rejects_unexpected_types() -> None:
    response = WorkerResponse.coerce(42, agent="defi_analyzer")

    assert not response.success
    assert response.errors == ("unexpected worker result type int",)


def test_failure_and_to_dict() -> None:
    response = WorkerResponse.failure("rug_detector", "boom")
    payload = response.to_dict()

    assert payload["success"] is False
    assert payload["errors"] == ["boom"]
    assert payload["data_keys"] == []


def test_agent_must_be_non_empty() -> None:
    with pytest.raises(ValueError):
        WorkerResponse(success=True, agent="")


def test_worker_context_is_read_only() -> None:
    context = WorkerContext(tool_id="oca_analyze", args={"target": "0x1"})

    with pytest.raises(TypeError):
        context.args["target"] = "0x2"  # type: ignore[index]


def test_worker_protocol_is_structural() -> None:
    class Scanner:
        name = "scanner"

        async def analyze(self, context: WorkerContext) -> WorkerResponse:
            return WorkerResponse(success=True, agent=self.name)

    assert isinstance(Scanner(), Worker)
    assert not isinstance(object(), Worker)
