"""Configuration management.

Config is loaded explicitly at process start:
    from teledispatch.config import load_config
    config = load_config()
"""

from teledispatch.config.loader import load_config
from teledispatch.config.schema import (
    AppConfig,
    EngineConfig,
    LimiterConfig,
    LoggingConfig,
    RedisConfig,
    TelegramConfig,
)

__all__ = [
    "AppConfig",
    "EngineConfig",
    "LimiterConfig",
    "LoggingConfig",
    "RedisConfig",
    "TelegramConfig",
    "load_config",
]
