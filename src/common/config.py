"""Runtime configuration overrides for resolution tunables.

Settings come from an optional YAML file (``nodepack.yml`` in the working
directory, or the path in ``NODEPACK_CONFIG``) and from environment
variables, which take precedence. Values are applied onto ``Constants`` so
every component reads one source of truth.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import yaml
from jsonschema import Draft7Validator

from constants import Constants

logger = logging.getLogger(__name__)

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "log_level": {
            "type": "string",
            "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        },
        "resolution": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "extensions": {
                    "type": "array",
                    "items": {"type": "string", "pattern": "^\\."},
                },
                "conditions": {"type": "array", "items": {"type": "string", "minLength": 1}},
                "fallback_conditions": {
                    "type": "array",
                    "items": {"type": "string", "minLength": 1},
                },
            },
        },
        "transform": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "unlikely_javascript_suffixes": {
                    "type": "array",
                    "items": {"type": "string", "minLength": 1},
                },
            },
        },
    },
}


class ConfigError(ValueError):
    """Raised when a configuration file is unreadable or invalid."""


def validate_config(data: Dict[str, Any]) -> None:
    """Validate a parsed config mapping and raise on the first error."""
    validator = Draft7Validator(CONFIG_SCHEMA)
    errs = sorted(validator.iter_errors(data), key=lambda e: list(e.path))
    if errs:
        first = errs[0]
        path = "/".join([str(p) for p in first.path])
        raise ConfigError(f"Invalid configuration at '{path}': {first.message}")


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load and validate the YAML configuration.

    An explicit ``path`` (or ``NODEPACK_CONFIG``) must exist; the default
    ``nodepack.yml`` is optional and yields an empty mapping when absent.

    Raises:
        ConfigError: If the file cannot be read, is not YAML, or fails
            schema validation.
    """
    explicit = path or os.environ.get(Constants.ENV_CONFIG)
    target = explicit or Constants.CONFIG_FILE

    if not os.path.isfile(target):
        if explicit:
            raise ConfigError(f"Configuration file not found: {target}")
        return {}

    try:
        with open(target, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot load configuration {target}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration {target} must be a mapping")

    validate_config(data)
    logger.debug("Loaded configuration from %s", target)
    return data


def _split_env_list(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def apply_config_overrides(config: Dict[str, Any]) -> None:
    """Apply a validated configuration mapping, then environment overrides."""
    resolution = config.get("resolution") or {}
    if "extensions" in resolution:
        Constants.DEFAULT_EXTENSIONS = list(resolution["extensions"])
    if "conditions" in resolution:
        Constants.DEFAULT_CONDITIONS = list(resolution["conditions"])
    if "fallback_conditions" in resolution:
        Constants.FALLBACK_CONDITIONS = list(resolution["fallback_conditions"])

    transform = config.get("transform") or {}
    if "unlikely_javascript_suffixes" in transform:
        Constants.UNLIKELY_JAVASCRIPT_SUFFIXES = list(transform["unlikely_javascript_suffixes"])

    env_conditions = os.environ.get(Constants.ENV_CONDITIONS)
    if env_conditions:
        Constants.DEFAULT_CONDITIONS = _split_env_list(env_conditions)

    env_extensions = os.environ.get(Constants.ENV_EXTENSIONS)
    if env_extensions:
        extensions = _split_env_list(env_extensions)
        invalid = [ext for ext in extensions if not ext.startswith(".")]
        if invalid:
            logger.warning(
                "Ignoring %s: extensions must start with '.' (got %s)",
                Constants.ENV_EXTENSIONS,
                ", ".join(invalid),
            )
        else:
            Constants.DEFAULT_EXTENSIONS = extensions
