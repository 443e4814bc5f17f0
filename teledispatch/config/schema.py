from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from teledispatch.constants import (
    ARG_TIMEOUT_S,
    CALLBACK_PARAMS_TTL_S,
    DISPATCH_LOCK_TTL_S,
    SETUP_RETRY_ATTEMPTS,
    SETUP_RETRY_BACKOFF_S,
    TELEGRAM_LIMITER_ID,
    TELEGRAM_MAX_CONCURRENT,
    TELEGRAM_MIN_TIME_MS,
    TELEGRAM_RETRY_DELAY_MS,
    TELEGRAM_RETRY_LIMIT,
)


class RedisConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    host: str = "127.0.0.1"
    port: int = 6379
    password: Optional[str] = None
    db: int = 0
    socket_timeout: int = 60


class LimiterConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    id: str = TELEGRAM_LIMITER_ID
    min_time_ms: int = Field(default=TELEGRAM_MIN_TIME_MS, ge=0)
    max_concurrent: int = Field(default=TELEGRAM_MAX_CONCURRENT, ge=1)
    retry_limit: int = Field(default=TELEGRAM_RETRY_LIMIT, ge=0)
    retry_delay_ms: int = Field(default=TELEGRAM_RETRY_DELAY_MS, ge=0)


class TelegramConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    bot_token: str = ""
    use_webhook: bool = False
    polling_interval_ms: int = Field(default=5000, ge=0)
    limiter: LimiterConfig = LimiterConfig()


class EngineConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    lock_ttl_s: int = Field(default=DISPATCH_LOCK_TTL_S, ge=1)
    params_ttl_s: int = Field(default=CALLBACK_PARAMS_TTL_S, ge=1)
    # None disables the wait timeout
    arg_timeout_s: Optional[float] = ARG_TIMEOUT_S
    strict_callback_params: bool = False
    docs_dir: str = "docs"
    temp_dir: str = "temp"
    setup_retry_attempts: int = Field(default=SETUP_RETRY_ATTEMPTS, ge=1)
    setup_retry_backoff_s: float = Field(default=SETUP_RETRY_BACKOFF_S, ge=0)

    @field_validator("arg_timeout_s")
    @classmethod
    def validate_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            return None
        return v


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    level: str = "INFO"
    dir_path: Optional[str] = None


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    app_name: str = "teledispatch"
    app_host: str = "http://127.0.0.1"
    app_port: int = 10001
    debug: bool = False
    redis: RedisConfig = RedisConfig()
    telegram: TelegramConfig = TelegramConfig()
    engine: EngineConfig = EngineConfig()
    logging: LoggingConfig = LoggingConfig()

    @field_validator("app_host")
    @classmethod
    def ensure_scheme(cls, v: str) -> str:
        if not v.startswith("http"):
            return f"https://{v}"
        return v

    @property
    def webhook_url(self) -> str:
        return f"{self.app_host.rstrip('/')}/bot/{self.telegram.bot_token}"
