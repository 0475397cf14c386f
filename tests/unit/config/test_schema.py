"""Unit tests for config schema validation, merging, profiles, and redaction."""

from __future__ import annotations

import pytest

from onchain_orchestrator.config.schema import (
    BUILTIN_PROFILE_NAMES,
    ConfigValidationError,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)


def test_default_config_is_valid_and_defines_builtin_profiles() -> None:
    config = assert_valid_config(default_config())

    assert sorted(config["profiles"]) == sorted(BUILTIN_PROFILE_NAMES)
    assert config["governor"]["max_tokens"] == 100_000
    assert config["waves"]["max_waves"] == 5


def test_default_config_returns_independent_copies() -> None:
    first = default_config()
    first["waves"]["max_waves"] = 1

    assert default_config()["waves"]["max_waves"] == 5


def test_validation_reports_every_issue_with_paths() -> None:
    config = merge_config(
        default_config(),
        {
            "governor": {"prediction_confidence": 1.5},
            "orchestrator": {"max_concurrency": 0, "cache_enabled": "yes"},
        },
    )

    result = validate_config(config)

    assert not result.is_valid
    assert sorted(issue.path for issue in result.issues) == [
        "governor.prediction_confidence",
        "orchestrator.cache_enabled",
        "orchestrator.max_concurrency",
    ]


def test_poll_ceiling_must_not_be_below_poll_interval() -> None:
    config = merge_config(
        default_config(), {"waves": {"admission_poll_ms": 10_000, "admission_poll_max_ms": 5000}}
    )

    with pytest.raises(ConfigValidationError, match="admission_poll_max_ms"):
        assert_valid_config(config)


def test_missing_section_is_reported() -> None:
    config = default_config()
    del config["quality_gate"]

    result = validate_config(config)

    assert [issue.path for issue in result.issues] == ["quality_gate"]


def test_secret_looking_keys_are_forbidden() -> None:
    config = merge_config(default_config(), {"orchestrator": {"api_key": "abc"}})

    result = validate_config(config)

    assert result.issues[0].message == "embedded secret values are forbidden in config files"


def test_schema_version_mismatch_explains_migration() -> None:
    config = merge_config(default_config(), {"meta": {"schema_version": 2}})

    result = validate_config(config)

    assert "newer than supported" in result.issues[0].message
    assert migration_guidance(1) == "schema version is current"


def test_profile_overlay_is_merged_and_revalidated() -> None:
    config = assert_valid_config(default_config())

    strict = apply_profile_overlay(config, "strict")

    assert strict["orchestrator"]["fallbacks_enabled"] is False
    assert strict["waves"]["min_confidence"] == pytest.approx(0.8)
    assert apply_profile_overlay(config, "  ") == config


def test_profile_overlay_sections_are_validated() -> None:
    config = merge_config(
        default_config(), {"profiles": {"fast": {"waves": {"max_waves": 0}}}}
    )

    result = validate_config(config)

    assert [issue.path for issue in result.issues] == ["profiles.fast.waves.max_waves"]


def test_merge_config_is_deep_and_does_not_mutate_inputs() -> None:
    base = {"a": {"x": 1, "y": 2}}
    merged = merge_config(base, {"a": {"y": 3}})

    assert merged == {"a": {"x": 1, "y": 3}}
    assert base == {"a": {"x": 1, "y": 2}}


def test_redact_config_masks_sensitive_keys() -> None:
    redacted = redact_config({"outer": {"private_key": "0xabc", "network": "ethereum"}})

    assert redacted == {"outer": {"network": "ethereum", "private_key": "<redacted>"}}
