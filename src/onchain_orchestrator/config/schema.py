"""
onchain-orchestrator — configuration schema and validation.

File: src/onchain_orchestrator/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules for
  every control-plane component (classifier, governor, waves, quality gate,
  orchestrator facade, observability).

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject unknown keys; embedded secret-looking keys are called out explicitly.
- Support profile overlays (strict / permissive / realtime) and deterministic
  deep merging.

Non-functional requirements
- Keep rules deterministic and easy to audit: each section is a declarative
  field table validated by one routine.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from onchain_orchestrator.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_MAX_TIME_MS,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MEMORY_MARGIN_MB,
)
from onchain_orchestrator.errors import OrchestratorError

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("strict", "permissive", "realtime")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "password", "apikey", "private", "credential", "credentials", "mnemonic"}
)


class MetaConfig(TypedDict):
    schema_version: int


class ClassifierConfig(TypedDict):
    cache_size: int


class GovernorSection(TypedDict):
    monitor_interval_ms: int
    history_size: int
    look_ahead_ms: int
    prediction_confidence: float
    max_tokens: int
    max_time_ms: int
    memory_margin_mb: float
    unmeasurable_usage_percent: float
    default_rate_limit_percent: float
    default_congestion_percent: float


class WavesSection(TypedDict):
    max_waves: int
    min_confidence: float
    validation_required: bool
    checkpoint_enabled: bool
    rollback_enabled: bool
    wave_timeout_ms: int
    admission_poll_ms: int
    admission_poll_max_ms: int
    admission_backoff: float


class QualityGateSection(TypedDict):
    cache_ttl_seconds: float
    min_context_retention: float
    latest_block: int


class OrchestratorSection(TypedDict):
    max_concurrency: int
    cache_enabled: bool
    cache_ttl_seconds: float
    worker_timeout_ms: int
    enforce_validation: bool
    fallbacks_enabled: bool


class ObservabilitySection(TypedDict):
    log_level: str
    json_logs: bool
    redact_secrets: bool
    event_buffer_size: int


class RootConfig(TypedDict):
    meta: MetaConfig
    classifier: ClassifierConfig
    governor: GovernorSection
    waves: WavesSection
    quality_gate: QualityGateSection
    orchestrator: OrchestratorSection
    observability: ObservabilitySection
    profiles: dict[str, dict[str, Any]]


DEFAULT_CONFIG: Final[RootConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "classifier": {"cache_size": 1024},
    "governor": {
        "monitor_interval_ms": 5000,
        "history_size": 100,
        "look_ahead_ms": 30_000,
        "prediction_confidence": 0.75,
        "max_tokens": DEFAULT_MAX_TOKENS,
        "max_time_ms": DEFAULT_MAX_TIME_MS,
        "memory_margin_mb": DEFAULT_MEMORY_MARGIN_MB,
        "unmeasurable_usage_percent": 0.0,
        "default_rate_limit_percent": 0.0,
        "default_congestion_percent": 20.0,
    },
    "waves": {
        "max_waves": 5,
        "min_confidence": 0.7,
        "validation_required": True,
        "checkpoint_enabled": True,
        "rollback_enabled": True,
        "wave_timeout_ms": 300_000,
        "admission_poll_ms": 5000,
        "admission_poll_max_ms": 30_000,
        "admission_backoff": 1.5,
    },
    "quality_gate": {
        "cache_ttl_seconds": 60.0,
        "min_context_retention": 90.0,
        "latest_block": 18_000_000,
    },
    "orchestrator": {
        "max_concurrency": 5,
        "cache_enabled": True,
        "cache_ttl_seconds": 3600.0,
        "worker_timeout_ms": 60_000,
        "enforce_validation": True,
        "fallbacks_enabled": True,
    },
    "observability": {
        "log_level": "INFO",
        "json_logs": True,
        "redact_secrets": True,
        "event_buffer_size": 512,
    },
    "profiles": {
        "strict": {
            "waves": {"min_confidence": 0.8},
            "orchestrator": {"enforce_validation": True, "fallbacks_enabled": False},
            "governor": {"memory_margin_mb": 128.0},
        },
        "permissive": {
            "waves": {"min_confidence": 0.5},
            "orchestrator": {"enforce_validation": False},
        },
        "realtime": {
            "governor": {"monitor_interval_ms": 1000},
            "orchestrator": {"cache_ttl_seconds": 60.0, "worker_timeout_ms": 10_000},
            "quality_gate": {"cache_ttl_seconds": 10.0},
        },
    },
}


_Kind = Literal["int", "float", "bool", "enum"]


@dataclass(frozen=True, slots=True)
class _FieldSpec:
    kind: _Kind
    minimum: float | None = None
    maximum: float | None = None
    allowed: tuple[str, ...] = ()


_SECTION_FIELDS: Final[dict[str, dict[str, _FieldSpec]]] = {
    "meta": {"schema_version": _FieldSpec("int", minimum=1)},
    "classifier": {"cache_size": _FieldSpec("int", minimum=1)},
    "governor": {
        "monitor_interval_ms": _FieldSpec("int", minimum=10),
        "history_size": _FieldSpec("int", minimum=10),
        "look_ahead_ms": _FieldSpec("int", minimum=0),
        "prediction_confidence": _FieldSpec("float", minimum=0.0, maximum=1.0),
        "max_tokens": _FieldSpec("int", minimum=1),
        "max_time_ms": _FieldSpec("int", minimum=1),
        "memory_margin_mb": _FieldSpec("float", minimum=0.0),
        "unmeasurable_usage_percent": _FieldSpec("float", minimum=0.0, maximum=100.0),
        "default_rate_limit_percent": _FieldSpec("float", minimum=0.0, maximum=100.0),
        "default_congestion_percent": _FieldSpec("float", minimum=0.0, maximum=100.0),
    },
    "waves": {
        "max_waves": _FieldSpec("int", minimum=1),
        "min_confidence": _FieldSpec("float", minimum=0.0, maximum=1.0),
        "validation_required": _FieldSpec("bool"),
        "checkpoint_enabled": _FieldSpec("bool"),
        "rollback_enabled": _FieldSpec("bool"),
        "wave_timeout_ms": _FieldSpec("int", minimum=1),
        "admission_poll_ms": _FieldSpec("int", minimum=1),
        "admission_poll_max_ms": _FieldSpec("int", minimum=1),
        "admission_backoff": _FieldSpec("float", minimum=1.0),
    },
    "quality_gate": {
        "cache_ttl_seconds": _FieldSpec("float", minimum=0.001),
        "min_context_retention": _FieldSpec("float", minimum=0.0, maximum=100.0),
        "latest_block": _FieldSpec("int", minimum=0),
    },
    "orchestrator": {
        "max_concurrency": _FieldSpec("int", minimum=1),
        "cache_enabled": _FieldSpec("bool"),
        "cache_ttl_seconds": _FieldSpec("float", minimum=0.001),
        "worker_timeout_ms": _FieldSpec("int", minimum=1),
        "enforce_validation": _FieldSpec("bool"),
        "fallbacks_enabled": _FieldSpec("bool"),
    },
    "observability": {
        "log_level": _FieldSpec("enum", allowed=LOG_LEVELS),
        "json_logs": _FieldSpec("bool"),
        "redact_secrets": _FieldSpec("bool"),
        "event_buffer_size": _FieldSpec("int", minimum=1),
    },
}

_OVERLAY_SECTIONS: Final[frozenset[str]] = frozenset(_SECTION_FIELDS) - {"meta"}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(OrchestratorError, ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> dict[str, Any]:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(dict(DEFAULT_CONFIG))


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade orchestrator.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the onchain-orchestrator runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the resulting config."""

    materialized = _deep_copy_mapping(config)
    selected = (profile or "").strip()
    if not selected:
        return materialized

    profiles = materialized.get("profiles")
    overlay = profiles.get(selected) if isinstance(profiles, Mapping) else None
    if overlay is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )
    return assert_valid_config(merge_config(materialized, overlay))


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)
    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object]) -> dict[str, Any]:
    """Return a redacted copy suitable for logs."""

    return {
        key: "<redacted>" if _looks_sensitive_key(key) else (
            redact_config(value) if isinstance(value, Mapping) else copy.deepcopy(value)
        )
        for key, value in sorted(config.items())
    }


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    allowed = {*_SECTION_FIELDS, "profiles"}
    _reject_unknown_keys(payload, allowed, "", issues)
    _require_keys(payload, set(_SECTION_FIELDS), "", issues)

    out: dict[str, Any] = {}
    for section in sorted(_SECTION_FIELDS):
        raw = payload.get(section)
        if raw is None:
            continue
        section_obj = _as_object(raw, section, issues)
        if section_obj is None:
            continue
        out[section] = _validate_section(section_obj, section, issues, partial=False)

    schema_version = out.get("meta", {}).get("schema_version")
    if isinstance(schema_version, int) and schema_version != ConfigSchemaVersion:
        issues.add("meta.schema_version", migration_guidance(schema_version))

    raw_profiles = payload.get("profiles")
    if raw_profiles is not None:
        profiles_obj = _as_object(raw_profiles, "profiles", issues)
        if profiles_obj is not None:
            out["profiles"] = _validate_profiles(profiles_obj, issues)
    else:
        out["profiles"] = {}
    return out


def _validate_section(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    fields = _SECTION_FIELDS[path.rsplit(".", 1)[-1]]
    _reject_unknown_keys(payload, set(fields), path, issues)
    if not partial:
        _require_keys(payload, set(fields), path, issues)

    out: dict[str, Any] = {}
    for key in sorted(fields):
        if key not in payload:
            continue
        parsed = _coerce_field(payload[key], _join(path, key), fields[key], issues)
        if parsed is not None:
            out[key] = parsed

    waves_min = out.get("admission_poll_ms")
    waves_max = out.get("admission_poll_max_ms")
    if isinstance(waves_min, int) and isinstance(waves_max, int) and waves_max < waves_min:
        issues.add(_join(path, "admission_poll_max_ms"), "must be >= admission_poll_ms")
    return out


def _validate_profiles(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for profile_name in sorted(payload):
        profile_path = _join("profiles", profile_name)
        if not _PROFILE_NAME_PATTERN.fullmatch(profile_name):
            issues.add(profile_path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        overlay = _as_object(payload[profile_name], profile_path, issues)
        if overlay is None:
            continue
        _reject_unknown_keys(overlay, set(_OVERLAY_SECTIONS), profile_path, issues)
        validated: dict[str, Any] = {}
        for section in sorted(_OVERLAY_SECTIONS):
            if section not in overlay:
                continue
            section_path = _join(profile_path, section)
            section_obj = _as_object(overlay[section], section_path, issues)
            if section_obj is not None:
                validated[section] = _validate_section(
                    section_obj, section_path, issues, partial=True
                )
        out[profile_name] = validated
    return out


def _coerce_field(
    value: object, path: str, spec: _FieldSpec, issues: _IssueCollector
) -> object | None:
    if spec.kind == "bool":
        return _as_bool(value, path, issues)
    if spec.kind == "enum":
        return _as_enum(value, path, issues, allowed_values=spec.allowed)
    if spec.kind == "int":
        parsed_int = _as_int(value, path, issues, minimum=spec.minimum)
        if parsed_int is not None and spec.maximum is not None and parsed_int > spec.maximum:
            issues.add(path, f"must be <= {spec.maximum}")
            return None
        return parsed_int
    parsed = _as_float(value, path, issues, minimum=spec.minimum)
    if parsed is not None and spec.maximum is not None and parsed > spec.maximum:
        issues.add(path, f"must be <= {spec.maximum}")
        return None
    return parsed


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum:g}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum:g}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    if not isinstance(value, str) or not value.strip():
        issues.add(path, f"expected non-empty string, got {type(value).__name__}")
        return None
    parsed = value.strip().upper()
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {value!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        if _looks_sensitive_key(key):
            issues.add(_join(path, key), "embedded secret values are forbidden in config files")
        else:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    tokens = tuple(token for token in re.split(r"[^a-z0-9]+", key.lower()) if token)
    if "api" in tokens and "key" in tokens:
        return True
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            nested = _deep_copy_mapping(existing) if isinstance(existing, Mapping) else {}
            _merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {
        key: _deep_copy_mapping(item) if isinstance(item, Mapping) else copy.deepcopy(item)
        for key, item in sorted(value.items())
    }


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "RootConfig",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
