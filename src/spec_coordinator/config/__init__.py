"""Configuration schema and loader."""

from spec_coordinator.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    load_config,
)
from spec_coordinator.config.schema import (
    ConfigValidationError,
    ConfigValidationIssue,
    CoordinatorConfig,
    assert_valid_config,
    default_config,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "CoordinatorConfig",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "load_config",
    "validate_config",
]
