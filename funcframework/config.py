"""Configuration loading for the functions framework.

Settings come from an optional YAML file overlaid with environment variables.
The environment always wins, so a deployment can override a checked-in file.
"""

import logging
import os
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "FUNCTION_CONFIG"

# Environment variable -> FrameworkConfig field
ENV_OVERRIDES = {
    "FUNCTION_TARGET": "function_target",
    "PORT": "port",
    "CLOUD_RUN_TIMEOUT_SECONDS": "timeout_seconds",
    "LOG_LEVEL": "log_level",
}


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


class FrameworkConfig(BaseModel):
    """Process-wide settings read once at server start."""

    function_target: str = Field(
        "", description="Name of the single function to serve at '/'"
    )
    port: int = Field(8080, description="Port the HTTP server listens on")
    timeout_seconds: str = Field(
        "", description="Per-request deadline in seconds, unparsed"
    )
    log_level: str = Field("INFO", description="Root log level")
    pretty_logs: bool = Field(False, description="Indented JSON logs for local use")


def _read_config_file(config_path: str) -> Dict[str, Any]:
    """Read a YAML configuration file.

    Args:
        config_path: Path to the YAML file

    Returns:
        Parsed configuration mapping

    Raises:
        ConfigurationError: If the file is not valid YAML or not a mapping
        FileNotFoundError: If the file doesn't exist
    """
    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")

    if config is None:
        return {}

    if not isinstance(config, dict):
        raise ConfigurationError(
            f"Configuration in {config_path} must be a YAML dictionary"
        )

    return config


def load_config(
    config_path: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
) -> FrameworkConfig:
    """Load framework configuration from YAML and the environment.

    Args:
        config_path: Optional YAML file; defaults to ``$FUNCTION_CONFIG``
        environ: Environment mapping, ``os.environ`` when omitted

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: If any setting is invalid
    """
    environ = os.environ if environ is None else environ
    config_path = config_path or environ.get(CONFIG_PATH_ENV)

    values: Dict[str, Any] = {}
    if config_path:
        values.update(_read_config_file(config_path))
        logger.info(f"Loaded configuration from {config_path}")

    for env_name, field_name in ENV_OVERRIDES.items():
        if environ.get(env_name):
            values[field_name] = environ[env_name]

    try:
        return FrameworkConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def parse_timeout(raw: str) -> Optional[float]:
    """Parse a per-request timeout given in seconds.

    A missing value means no deadline. An unparsable or non-positive value is
    logged and also means no deadline; it never stops the server.

    Args:
        raw: Timeout as configured, e.g. ``"300"``

    Returns:
        Timeout in seconds, or None
    """
    if not raw:
        return None

    try:
        seconds = float(raw)
    except ValueError:
        logger.warning(f"Could not parse request timeout {raw!r}, serving without one")
        return None

    if seconds <= 0:
        logger.warning(f"Ignoring non-positive request timeout {raw!r}")
        return None

    return seconds
