"""Gateway configuration: YAML file plus optional .env substitution."""

import logging
import os
import re
from pathlib import Path
from typing import Any, Mapping

import yaml
from dotenv import dotenv_values

from .core.exceptions import ConfigurationError
from .core.settings import GatewaySettings
from .logging.setup import setup_logging

logger = logging.getLogger("codexgate")

DEFAULT_CONFIG_PATH = "configs/config.yaml"

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def default_config_path() -> str:
    return os.getenv("CODEXGATE_CONFIG") or DEFAULT_CONFIG_PATH


def resolve_config_path(path: str) -> Path:
    """Resolve a relative path against the project root."""
    if Path(path).is_absolute():
        return Path(path)
    project_root = Path(__file__).parent.parent
    return project_root / path


def resolve_env_path(config_path: Path, env_path: str | None = None) -> Path:
    """The .env file paired with a config file (``config_x.yaml`` -> ``.env_x``)."""
    if env_path:
        return resolve_config_path(env_path)
    stem = config_path.stem
    if stem.startswith("config_"):
        return config_path.with_name(f".env_{stem[len('config_'):]}")
    return config_path.with_name(".env")


def load_env_values(env_path: Path) -> dict[str, str]:
    """Read a .env file without touching os.environ."""
    if not env_path.exists():
        return {}
    return {key: value for key, value in dotenv_values(env_path).items() if value is not None}


def load_config(
    path: str | None = None,
    env_path: str | None = None,
    substitute_env: bool = True,
) -> dict:
    """Load the YAML config.

    Args:
        path: Config file. Defaults to ``$CODEXGATE_CONFIG`` or
              ``configs/config.yaml`` under the project root.
        env_path: Optional .env override used for ``${VAR}`` substitution.
        substitute_env: Replace ``${VAR}`` / ``$VAR`` placeholders.

    Raises:
        ConfigurationError: the file is missing or is not a YAML mapping.
    """
    config_path = resolve_config_path(path or default_config_path())
    logger.info(f"Loading configuration from {config_path}")

    if not config_path.exists():
        logger.error(f"Config file not found: {config_path}")
        raise ConfigurationError(f"Config file not found: {config_path}")

    env_values: dict[str, str] = {}
    if substitute_env:
        env_file = resolve_env_path(config_path, env_path)
        if env_file.exists():
            logger.info(f"Loading environment variables from {env_file}")
            env_values = load_env_values(env_file)

    with config_path.open("r", encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config root must be a mapping: {config_path}")

    if substitute_env:
        data = _substitute_env_vars(data, env_values)

    logger.info(f"Configuration loaded successfully from {config_path}")
    return data


def load_settings(path: str | None = None, env_path: str | None = None) -> GatewaySettings:
    """Load the config file, build typed settings and apply the log level."""
    settings = GatewaySettings.from_mapping(load_config(path, env_path))
    setup_logging(settings.logging.level)
    return settings


def _substitute_env_vars(obj: Any, env_values: Mapping[str, str] | None = None) -> Any:
    """Recursively replace ``${VAR}`` and ``$VAR`` in string values.

    Unset variables keep their literal placeholder and log a warning.
    """
    env_values = env_values or {}

    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v, env_values) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item, env_values) for item in obj]
    if isinstance(obj, str):

        def replace_var(match):
            var_name = match.group(1) or match.group(2)
            value = env_values.get(var_name)
            if value is None:
                value = os.getenv(var_name)
            if value is None:
                logger.warning(
                    f"CONFIG ERROR: Environment variable '${var_name}' is not set! "
                    f"The literal placeholder will be used."
                )
                return match.group(0)
            return value

        return _ENV_PATTERN.sub(replace_var, obj)
    return obj
