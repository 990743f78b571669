"""
bepoz-toolkit config package public API.

Purpose
- Export config loading/validation entrypoints, typed settings, and public error types.

Functional requirements
- Support loading from ``toolkit.toml`` + ``BEPOZ_TOOLKIT_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from bepoz_toolkit.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    load_config,
)
from bepoz_toolkit.config.schema import (
    ConfigValidationError,
    ConfigValidationIssue,
    default_config,
    redact_config,
)
from bepoz_toolkit.config.settings import (
    SettingsError,
    ToolkitSettings,
    get_bool,
    get_duration,
    get_int,
    get_json,
    get_str,
)

__all__ = [
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "SettingsError",
    "ToolkitSettings",
    "default_config",
    "dump_effective_config",
    "get_bool",
    "get_duration",
    "get_int",
    "get_json",
    "get_str",
    "load_config",
    "redact_config",
]
