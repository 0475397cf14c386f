"""
onchain-orchestrator — unit tests for config loader

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Typed env var coercion and error reporting.
- Profile selection by argument, CLI override, and environment.
- Redacted effective config dumping.

Functional requirements
- Works offline without any orchestrator.toml in the working directory.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from onchain_orchestrator.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    env_name_for_path,
    load_config,
)
from onchain_orchestrator.config.schema import ConfigValidationError
from onchain_orchestrator.errors import OrchestratorError


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "orchestrator.toml"
    default_path = tmp_path / "empty.toml"
    _write_config(default_path, "")
    _write_config(
        config_path,
        """
[orchestrator]
max_concurrency = 3
""".strip(),
    )

    default_loaded = load_config(default_path, environ={})
    file_loaded = load_config(config_path, environ={})
    env_loaded = load_config(config_path, environ={"ONCHAIN_ORCHESTRATOR_MAX_CONCURRENCY": "7"})
    cli_loaded = load_config(
        config_path,
        environ={"ONCHAIN_ORCHESTRATOR_MAX_CONCURRENCY": "7"},
        cli_overrides={"orchestrator.max_concurrency": 9},
    )

    assert default_loaded["orchestrator"]["max_concurrency"] == 5
    assert file_loaded["orchestrator"]["max_concurrency"] == 3
    assert env_loaded["orchestrator"]["max_concurrency"] == 7
    assert cli_loaded["orchestrator"]["max_concurrency"] == 9


def test_env_overrides_are_coerced_by_default_value_type() -> None:
    loaded = load_config(
        environ={
            "ONCHAIN_WAVES_ROLLBACK_ENABLED": "off",
            "ONCHAIN_WAVES_MIN_CONFIDENCE": "0.6",
            "ONCHAIN_QUALITY_GATE_CACHE_TTL_SECONDS": "30",
            "ONCHAIN_OBSERVABILITY_LOG_LEVEL": "debug",
        },
    )

    assert loaded["waves"]["rollback_enabled"] is False
    assert loaded["waves"]["min_confidence"] == pytest.approx(0.6)
    assert loaded["quality_gate"]["cache_ttl_seconds"] == pytest.approx(30.0)
    assert loaded["observability"]["log_level"] == "DEBUG"


@pytest.mark.parametrize(
    ("env_name", "raw", "message"),
    [
        ("ONCHAIN_ORCHESTRATOR_MAX_CONCURRENCY", "many", "must be an integer"),
        ("ONCHAIN_GOVERNOR_PREDICTION_CONFIDENCE", "high", "must be a number"),
        ("ONCHAIN_ORCHESTRATOR_CACHE_ENABLED", "maybe", "must be a boolean"),
    ],
)
def test_invalid_env_values_raise_config_load_error(env_name: str, raw: str, message: str) -> None:
    with pytest.raises(ConfigLoadError, match=message):
        load_config(environ={env_name: raw})


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="not found"):
        load_config(tmp_path / "nope.toml", environ={})


def test_invalid_toml_is_reported(tmp_path: Path) -> None:
    config_path = tmp_path / "orchestrator.toml"
    _write_config(config_path, "[orchestrator\nmax_concurrency = 1")

    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(config_path, environ={})


def test_unknown_file_fields_fail_validation(tmp_path: Path) -> None:
    config_path = tmp_path / "orchestrator.toml"
    _write_config(config_path, "[orchestrator]\nturbo = true\n")

    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(config_path, environ={})

    assert [issue.path for issue in excinfo.value.issues] == ["orchestrator.turbo"]
    assert isinstance(excinfo.value, OrchestratorError)


@pytest.mark.parametrize(
    ("kwargs", "environ"),
    [
        ({"profile": "permissive"}, {}),
        ({"cli_overrides": {"profile": "permissive"}}, {}),
        ({}, {"ONCHAIN_PROFILE": "permissive"}),
    ],
)
def test_profile_selection_sources(kwargs: dict[str, object], environ: dict[str, str]) -> None:
    loaded = load_config(environ=environ, **kwargs)

    assert loaded["orchestrator"]["enforce_validation"] is False
    assert loaded["waves"]["min_confidence"] == pytest.approx(0.5)


def test_env_overrides_apply_on_top_of_profile() -> None:
    loaded = load_config(
        profile="realtime",
        environ={"ONCHAIN_ORCHESTRATOR_WORKER_TIMEOUT_MS": "2500"},
    )

    assert loaded["governor"]["monitor_interval_ms"] == 1000
    assert loaded["orchestrator"]["worker_timeout_ms"] == 2500


def test_unknown_profile_is_rejected() -> None:
    with pytest.raises(ConfigValidationError, match="not defined"):
        load_config(profile="turbo", environ={})


def test_dump_effective_config_is_deterministic_json() -> None:
    first = dump_effective_config(load_config(environ={}))
    second = dump_effective_config(load_config(environ={}))

    assert first == second
    assert json.loads(first)["waves"]["max_waves"] == 5


def test_env_name_for_path() -> None:
    assert env_name_for_path(("waves", "max_waves")) == "ONCHAIN_WAVES_MAX_WAVES"
