import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel

from teledispatch.config.schema import AppConfig
from teledispatch.utils import expand_env_vars

logger = logging.getLogger(__name__)

# Environment variable -> config path, applied after the YAML file
ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "APP_NAME": ("app_name",),
    "APP_HOST": ("app_host",),
    "APP_PORT": ("app_port",),
    "REDIS_HOST": ("redis", "host"),
    "REDIS_PORT": ("redis", "port"),
    "REDIS_PASSWORD": ("redis", "password"),
    "LOGGER_DIR_PATH": ("logging", "dir_path"),
    "TELEDISPATCH_LOG_LEVEL": ("logging", "level"),
    "TELEGRAM_BOT_TOKEN": ("telegram", "bot_token"),
    "TELEGRAM_USE_WEBHOOK": ("telegram", "use_webhook"),
    "TELEGRAM_POLLING_INTERVAL": ("telegram", "polling_interval_ms"),
}


def _deep_merge(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    """Deep merge override dict into base dict.

    Args:
        base: Base dictionary
        override: Dictionary with overrides

    Returns:
        Merged dictionary
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)  # type: ignore[arg-type]
        else:
            result[key] = value
    return result


def _env_overrides() -> dict[str, object]:
    overrides: dict[str, object] = {}
    for env_name, path in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value is None or value == "":
            continue
        node = overrides
        for part in path[:-1]:
            node = node.setdefault(part, {})  # type: ignore[assignment]
        node[path[-1]] = value
    return overrides


def _warn_unknown_keys(model: BaseModel, path: str, config_path: Optional[Path]) -> None:
    """Recursively warn about unknown keys in a model and its nested models."""
    if model.model_extra:
        logger.warning("Unknown keys in %s at %s: %s", path, config_path, list(model.model_extra.keys()))

    for field_name, field_value in model.__dict__.items():
        if isinstance(field_value, BaseModel):
            _warn_unknown_keys(field_value, f"{path}.{field_name}", config_path)


def _read_yaml(path: Path) -> dict[str, object]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except Exception as e:
        logger.warning("Failed to read config file %s: %s", path, e)
        return {}
    if not isinstance(raw, dict):
        logger.warning("Ignoring config file %s: top level must be a mapping", path)
        return {}
    return raw


def load_config(path: Optional[Path] = None, env_path: Optional[Path] = None) -> AppConfig:
    """Load and validate configuration.

    Sources, lowest precedence first: built-in defaults, the YAML file
    (`path` or `TELEDISPATCH_CONFIG_PATH`, optional), environment variables
    (after `.env` is loaded).

    Args:
        path: Optional path to a YAML config file.
        env_path: Optional path to a .env file (default: ./.env).

    Returns:
        The validated configuration model.
    """
    load_dotenv(env_path or Path.cwd() / ".env")

    if path is None:
        env_config = os.getenv("TELEDISPATCH_CONFIG_PATH")
        path = Path(env_config).expanduser() if env_config else None

    raw: dict[str, object] = {}
    if path is not None:
        if path.exists():
            raw = _read_yaml(path)
        else:
            logger.warning("Config file not found: %s, using defaults", path)

    expanded = expand_env_vars(raw)
    merged = _deep_merge(expanded, _env_overrides())  # type: ignore[arg-type]
    model = AppConfig.model_validate(merged)
    _warn_unknown_keys(model, "root", path)
    return model
