"""Unit tests for configuration loading."""

from __future__ import annotations

import logging

import pytest

from teledispatch.config import AppConfig, EngineConfig, load_config
from teledispatch.config.loader import ENV_OVERRIDES


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in [*ENV_OVERRIDES, "TELEDISPATCH_CONFIG_PATH"]:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def no_dotenv(tmp_path):
    return tmp_path / "missing.env"


def test_defaults_without_any_source(no_dotenv):
    config = load_config(env_path=no_dotenv)

    assert config.app_name == "teledispatch"
    assert config.app_port == 10001
    assert config.telegram.limiter.id == "TelegramTGClient"
    assert config.telegram.limiter.min_time_ms == 500
    assert config.telegram.limiter.max_concurrent == 2
    assert config.engine.lock_ttl_s == 2
    assert config.engine.params_ttl_s == 86400
    assert config.engine.arg_timeout_s == 600
    assert config.engine.strict_callback_params is False


def test_yaml_file_with_env_expansion(tmp_path, monkeypatch, no_dotenv):
    config_file = tmp_path / "config.yml"
    config_file.write_text(
        "app_name: Shop Bot\n"
        "telegram:\n"
        "  bot_token: ${MY_TOKEN}\n"
        "engine:\n"
        "  strict_callback_params: true\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("MY_TOKEN", "1:xyz")

    config = load_config(config_file, env_path=no_dotenv)

    assert config.app_name == "Shop Bot"
    assert config.telegram.bot_token == "1:xyz"
    assert config.engine.strict_callback_params is True


def test_env_overrides_win_over_yaml(tmp_path, monkeypatch, no_dotenv):
    config_file = tmp_path / "config.yml"
    config_file.write_text("redis:\n  port: 6000\ntelegram:\n  use_webhook: false\n", encoding="utf-8")
    monkeypatch.setenv("REDIS_PORT", "6380")
    monkeypatch.setenv("TELEGRAM_USE_WEBHOOK", "true")
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "9:tok")

    config = load_config(config_file, env_path=no_dotenv)

    assert config.redis.port == 6380
    assert config.telegram.use_webhook is True
    assert config.telegram.bot_token == "9:tok"


def test_config_path_from_environment(tmp_path, monkeypatch, no_dotenv):
    config_file = tmp_path / "other.yml"
    config_file.write_text("app_port: 9999\n", encoding="utf-8")
    monkeypatch.setenv("TELEDISPATCH_CONFIG_PATH", str(config_file))

    assert load_config(env_path=no_dotenv).app_port == 9999


def test_dotenv_file_is_loaded(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("APP_NAME=from-dotenv\n", encoding="utf-8")
    # load_dotenv sets the variable; monkeypatch restores it afterwards
    monkeypatch.setenv("APP_NAME", "")
    monkeypatch.delenv("APP_NAME")

    assert load_config(env_path=env_file).app_name == "from-dotenv"


def test_missing_config_file_falls_back_to_defaults(tmp_path, caplog, no_dotenv):
    with caplog.at_level(logging.WARNING):
        config = load_config(tmp_path / "nope.yml", env_path=no_dotenv)

    assert config.app_name == "teledispatch"
    assert "Config file not found" in caplog.text


def test_unknown_keys_are_warned(tmp_path, caplog, no_dotenv):
    config_file = tmp_path / "config.yml"
    config_file.write_text("engine:\n  lock_ttl: 5\n", encoding="utf-8")

    with caplog.at_level(logging.WARNING):
        load_config(config_file, env_path=no_dotenv)

    assert "Unknown keys" in caplog.text
    assert "lock_ttl" in caplog.text


def test_app_host_gets_https_scheme():
    config = AppConfig(app_host="bot.example.com", telegram={"bot_token": "1:abc"})

    assert config.app_host == "https://bot.example.com"
    assert config.webhook_url == "https://bot.example.com/bot/1:abc"


def test_non_positive_arg_timeout_disables_it():
    assert EngineConfig(arg_timeout_s=0).arg_timeout_s is None
    assert EngineConfig(arg_timeout_s=None).arg_timeout_s is None
    assert EngineConfig(arg_timeout_s=30).arg_timeout_s == 30
