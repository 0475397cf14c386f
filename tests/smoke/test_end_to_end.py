"""Smoke test: config file -> Orchestrator.from_config -> one request."""

from __future__ import annotations

from pathlib import Path

import pytest

from onchain_orchestrator.config.loader import load_config
from onchain_orchestrator.control_plane.controller import Orchestrator
from onchain_orchestrator.control_plane.resource_governor import SystemReading
from onchain_orchestrator.domain.events import EventType
from onchain_orchestrator.execution_plane.contracts import WorkerContext, WorkerResponse


class QuietMetrics:
    def read(self) -> SystemReading:
        return SystemReading(cpu_percent=1.0, memory_percent=1.0, available_memory_mb=4096.0)


class RugDetector:
    name = "rug_detector"

    async def analyze(self, context: WorkerContext) -> WorkerResponse:
        return WorkerResponse(
            success=True,
            agent=self.name,
            data={"risk": "low", "address": context.args["address"]},
        )


async def test_config_file_to_execution(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "orchestrator.toml").write_text(
        "[orchestrator]\nmax_concurrency = 2\n\n[observability]\nevent_buffer_size = 64\n",
        encoding="utf-8",
    )
    config = load_config(environ={"ONCHAIN_ORCHESTRATOR_WORKER_TIMEOUT_MS": "5000"})

    orchestrator = Orchestrator.from_config(
        config, workers=[RugDetector()], metrics_provider=QuietMetrics()
    )
    address = "0x" + "12" * 20
    result = await orchestrator.execute(
        "oca_security", {"address": address, "network": "ethereum"}
    )

    assert orchestrator.settings.max_concurrency == 2
    assert orchestrator.settings.worker_timeout_ms == 5000
    assert result.success, result.error
    assert result.data["rug_detector"]["address"] == address
    assert result.to_dict()["mode"] == "direct"

    bus = orchestrator.event_bus
    assert bus is not None
    types = {event.event_type for event in bus.replay()}
    assert {
        EventType.REQUEST_CLASSIFIED,
        EventType.ADMISSION_GRANTED,
        EventType.VALIDATION_COMPLETED,
        EventType.OPERATION_COMPLETED,
    } <= types
