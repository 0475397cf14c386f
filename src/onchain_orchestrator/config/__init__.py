"""Configuration loading and validation for the orchestrator."""

from onchain_orchestrator.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    load_config,
)
from onchain_orchestrator.config.schema import (
    BUILTIN_PROFILE_NAMES,
    DEFAULT_CONFIG,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    validate_config,
)

__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "DEFAULT_CONFIG",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "load_config",
    "merge_config",
    "validate_config",
]
