"""Pytest configuration for teledispatch tests."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram import Chat, Document, Message, User

from teledispatch.config import AppConfig, EngineConfig, LimiterConfig, TelegramConfig
from teledispatch.core.rate_limiter import reset_rate_limiters

TEST_CHAT_ID = 42
TEST_BOT_TOKEN = "123456:ABC-DEF"

# Bot API methods the engine awaits
BOT_METHODS = (
    "answer_callback_query",
    "answer_pre_checkout_query",
    "create_invoice_link",
    "delete_message",
    "edit_message_text",
    "get_file",
    "get_me",
    "get_webhook_info",
    "send_document",
    "send_invoice",
    "send_message",
    "set_my_commands",
    "set_webhook",
)


def pytest_collection_modifyitems(config, items):
    """Set per-marker timeouts: unit=1s, integration=5s."""
    for item in items:
        if "unit" in item.keywords:
            item.add_marker(pytest.mark.timeout(1))
        elif "integration" in item.keywords:
            item.add_marker(pytest.mark.timeout(5))


class FakeRedis:
    """In-memory async Redis double supporting get/set(ex, nx)/delete/ping."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.expires_at: dict[str, float] = {}
        self.closed = False

    def _alive(self, key: str) -> bool:
        deadline = self.expires_at.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            self.data.pop(key, None)
            self.expires_at.pop(key, None)
        return key in self.data

    def ttl(self, key: str) -> Optional[float]:
        deadline = self.expires_at.get(key)
        return None if deadline is None else deadline - time.monotonic()

    def expire_now(self, key: str) -> None:
        self.expires_at[key] = time.monotonic()

    async def get(self, key: str) -> Any:
        return self.data.get(key) if self._alive(key) else None

    async def set(self, key: str, value: Any, ex: Optional[float] = None, nx: bool = False) -> Optional[bool]:
        if nx and self._alive(key):
            return None
        self.data[key] = value
        if ex:
            self.expires_at[key] = time.monotonic() + ex
        else:
            self.expires_at.pop(key, None)
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self.data.pop(key, None)
            self.expires_at.pop(key, None)
        return removed

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _fresh_rate_limiters():
    """Limiters are process-wide; isolate them per test."""
    reset_rate_limiters()
    yield
    reset_rate_limiters()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    """Config with an unpaced limiter and temp dirs under tmp_path."""
    return AppConfig(
        app_name="Test Bot",
        telegram=TelegramConfig(
            bot_token=TEST_BOT_TOKEN,
            limiter=LimiterConfig(id="TestLimiter", min_time_ms=0, max_concurrent=2, retry_limit=2, retry_delay_ms=0),
        ),
        engine=EngineConfig(
            docs_dir=str(tmp_path / "docs"),
            temp_dir=str(tmp_path / "temp"),
            arg_timeout_s=0.5,
            setup_retry_attempts=2,
            setup_retry_backoff_s=0,
        ),
    )


@pytest.fixture
def mock_application() -> MagicMock:
    """PTB Application double whose bot methods are AsyncMocks."""
    application = MagicMock()
    bot = MagicMock()
    for name in BOT_METHODS:
        setattr(bot, name, AsyncMock())
    application.bot = bot
    return application


@pytest.fixture
def make_message():
    """Factory for real PTB messages in the test chat."""

    def _make(
        text: Optional[str] = None,
        message_id: int = 1,
        chat_id: int = TEST_CHAT_ID,
        document: Optional[Document] = None,
        chat_type: str = Chat.PRIVATE,
    ) -> Message:
        return Message(
            message_id=message_id,
            date=datetime.now(timezone.utc),
            chat=Chat(id=chat_id, type=chat_type),
            from_user=User(id=7, first_name="Ann", is_bot=False, username="ann"),
            text=text,
            document=document,
        )

    return _make
