"""Unit tests for inline-button callbacks."""

from __future__ import annotations

import logging
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram import CallbackQuery, InlineKeyboardButton, Update, User
from telegram.ext import CallbackQueryHandler

from teledispatch.config import EngineConfig
from teledispatch.core.callbacks import ButtonBuilder, CallbackRegistry, render_button_text
from teledispatch.core.client import TelegramClient
from teledispatch.core.errors import ArgumentError, DefinitionError
from teledispatch.core.models import ArgType, ArgumentSpec, CallbackDefinition
from teledispatch.core.param_store import ParamStore


@pytest.fixture
def store(fake_redis, app_config) -> ParamStore:
    return ParamStore(fake_redis, app_config.app_name, params_ttl_s=60)


@pytest.fixture
def registry(app_config, mock_application, store) -> CallbackRegistry:
    client = TelegramClient(app_config, application=mock_application)
    return CallbackRegistry(client, store, app_config.engine)


@pytest.fixture
def make_query(make_message):
    def _make(data: Optional[str], query_id: str = "cbq-1") -> CallbackQuery:
        return CallbackQuery(
            id=query_id,
            from_user=User(id=7, first_name="Ann", is_bot=False, username="ann"),
            chat_instance="instance",
            data=data,
            message=make_message("Pick one", message_id=10),
        )

    return _make


def alerts(mock_application) -> list[str]:
    return [
        c.kwargs["text"]
        for c in mock_application.bot.answer_callback_query.await_args_list
        if c.kwargs.get("show_alert")
    ]


BUY_ARGS = {
    "item": ArgumentSpec(required=True),
    "count": ArgumentSpec(type=ArgType.NUMBER),
}


class TestDefinition:
    """Tests for define_callback validation and return values."""

    def test_static_button_for_callback_without_args(self, registry):
        button = registry.define_callback(CallbackDefinition(query="close", text="Close"))

        assert isinstance(button, InlineKeyboardButton)
        assert button.text == "Close"
        assert button.callback_data == "close"

    def test_builder_for_callback_with_args(self, registry):
        builder = registry.define_callback(CallbackDefinition(query="buy", text="Buy {item}", args=BUY_ARGS))

        assert isinstance(builder, ButtonBuilder)
        assert builder.query == "buy"

    @pytest.mark.asyncio
    async def test_builder_for_empty_args(self, registry):
        builder = registry.define_callback(CallbackDefinition(query="refresh", text="Refresh", args={}))

        assert isinstance(builder, ButtonBuilder)
        button = await builder()
        assert button.callback_data.startswith("refresh:")

    def test_query_with_separator_is_rejected(self, registry):
        with pytest.raises(DefinitionError):
            registry.define_callback(CallbackDefinition(query="a:b", text="x"))

    def test_query_length_limit_with_args(self, registry):
        registry.define_callback(CallbackDefinition(query="q" * 55, text="ok", args=BUY_ARGS))

        with pytest.raises(DefinitionError, match="55"):
            registry.define_callback(CallbackDefinition(query="q" * 56, text="too long", args=BUY_ARGS))

    def test_query_length_limit_without_args(self, registry):
        registry.define_callback(CallbackDefinition(query="q" * 64, text="ok"))

        with pytest.raises(DefinitionError, match="64"):
            registry.define_callback(CallbackDefinition(query="q" * 65, text="too long"))

    def test_length_is_counted_in_bytes(self, registry):
        # 28 two-byte characters = 56 bytes
        with pytest.raises(DefinitionError):
            registry.define_callback(CallbackDefinition(query="é" * 28, text="x", args=BUY_ARGS))

    def test_file_args_are_rejected(self, registry):
        args = {"sheet": ArgumentSpec(type=ArgType.FILE, template_filepath="t.xlsx")}

        with pytest.raises(DefinitionError, match="File arguments"):
            registry.define_callback(CallbackDefinition(query="upload", text="x", args=args))


def test_render_button_text():
    assert render_button_text("Buy {item} x{count}", {"item": "tea", "count": 2}) == "Buy tea x2"
    assert render_button_text("Buy {item}{missing}", {"item": "tea"}) == "Buy tea"


class TestButtons:
    """Tests for building buttons with stored arguments."""

    @pytest.mark.asyncio
    async def test_button_payload_points_at_stored_args(self, registry, store):
        builder = registry.define_callback(CallbackDefinition(query="buy", text="Buy {item}", args=BUY_ARGS))

        button = await builder(item="tea", count=2, ignored="x")

        assert button.text == "Buy tea"
        query, key = button.callback_data.split(":")
        assert query == "buy"
        assert len(key) == 8
        assert len(button.callback_data.encode()) <= 64
        assert await store.load_callback_params("buy", key) == {"item": "tea", "count": 2}

    @pytest.mark.asyncio
    async def test_every_button_gets_its_own_key(self, registry):
        builder = registry.define_callback(CallbackDefinition(query="buy", text="Buy", args=BUY_ARGS))

        first = await builder(item="tea")
        second = await builder(item="tea")

        assert first.callback_data != second.callback_data

    @pytest.mark.asyncio
    async def test_missing_required_arg_fails(self, registry):
        builder = registry.define_callback(CallbackDefinition(query="buy", text="Buy", args=BUY_ARGS))

        with pytest.raises(ArgumentError, match="item"):
            await builder(count=1)


class TestDispatch:
    """Tests for resolving and running clicks."""

    @pytest.mark.asyncio
    async def test_click_runs_callback_with_stored_args(self, registry, make_query, mock_application):
        callback = AsyncMock()
        cleanup = AsyncMock()
        builder = registry.define_callback(
            CallbackDefinition(query="buy", text="Buy", args=BUY_ARGS, callback=callback, cleanup=cleanup)
        )
        button = await builder(item="tea", count=3)

        await registry.dispatch(make_query(button.callback_data))

        ctx = callback.await_args.args[0]
        assert ctx.query == "buy"
        assert ctx.args == {"item": "tea", "count": 3}
        assert ctx.message.message_id == 10
        assert ctx.callback_query.id == "cbq-1"
        cleanup.assert_awaited_once_with(ctx)
        mock_application.bot.answer_callback_query.assert_awaited_once_with("cbq-1")

    @pytest.mark.asyncio
    async def test_static_button_click(self, registry, make_query):
        callback = MagicMock(return_value=None)
        button = registry.define_callback(CallbackDefinition(query="close", text="Close", callback=callback))

        await registry.dispatch(make_query(button.callback_data))

        assert callback.call_args.args[0].args == {}

    @pytest.mark.parametrize(
        ("data", "reason"),
        [(None, "No data"), (":abcdefgh", "No query"), ("unknown", "Query not found")],
    )
    @pytest.mark.asyncio
    async def test_invalid_clicks_are_rejected_with_alert(self, registry, make_query, mock_application, data, reason):
        await registry.dispatch(make_query(data))

        assert alerts(mock_application) == [reason]

    @pytest.mark.asyncio
    async def test_expired_params_fall_back_to_no_args(self, registry, make_query, fake_redis, store):
        callback = AsyncMock()
        builder = registry.define_callback(
            CallbackDefinition(query="buy", text="Buy", args={"item": ArgumentSpec()}, callback=callback)
        )
        button = await builder(item="tea")
        key = button.callback_data.split(":")[1]
        fake_redis.expire_now(store.callback_params_key("buy", key))

        await registry.dispatch(make_query(button.callback_data))

        assert callback.await_args.args[0].args == {}

    @pytest.mark.asyncio
    async def test_expired_required_params_are_rejected(self, registry, make_query, fake_redis, store, mock_application):
        callback = AsyncMock()
        builder = registry.define_callback(CallbackDefinition(query="buy", text="Buy", args=BUY_ARGS, callback=callback))
        button = await builder(item="tea")
        fake_redis.expire_now(store.callback_params_key("buy", button.callback_data.split(":")[1]))

        await registry.dispatch(make_query(button.callback_data))

        callback.assert_not_awaited()
        assert alerts(mock_application) == ["Missing required argument: item"]

    @pytest.mark.asyncio
    async def test_strict_mode_rejects_expired_params(self, registry, make_query, fake_redis, store, mock_application):
        registry.settings = EngineConfig(strict_callback_params=True)
        callback = AsyncMock()
        builder = registry.define_callback(
            CallbackDefinition(query="buy", text="Buy", args={"item": ArgumentSpec()}, callback=callback)
        )
        button = await builder(item="tea")
        fake_redis.expire_now(store.callback_params_key("buy", button.callback_data.split(":")[1]))

        await registry.dispatch(make_query(button.callback_data))

        callback.assert_not_awaited()
        assert alerts(mock_application) == ["Parameters expired"]

    @pytest.mark.asyncio
    async def test_callback_error_is_logged(self, registry, make_query, mock_application, caplog):
        cleanup = AsyncMock()
        button = registry.define_callback(
            CallbackDefinition(
                query="close",
                text="Close",
                callback=AsyncMock(side_effect=RuntimeError("gone")),
                cleanup=cleanup,
            )
        )

        with caplog.at_level(logging.ERROR):
            await registry.dispatch(make_query(button.callback_data))

        # acknowledged before the callback ran
        mock_application.bot.answer_callback_query.assert_awaited_once_with("cbq-1")
        cleanup.assert_not_awaited()
        assert "Error executing query callback close: gone" in caplog.text

    @pytest.mark.asyncio
    async def test_failed_acknowledgement_still_runs_callback(self, registry, make_query, mock_application):
        mock_application.bot.answer_callback_query = AsyncMock(side_effect=ConnectionError("offline"))
        callback = AsyncMock()
        button = registry.define_callback(CallbackDefinition(query="close", text="Close", callback=callback))

        await registry.dispatch(make_query(button.callback_data))

        callback.assert_awaited_once()


class TestHandler:
    """Tests for the PTB handler wiring."""

    def test_dispatch_loop_attaches_handler_once(self, registry, mock_application):
        registry.run_callback_dispatch_loop()
        registry.run_callback_dispatch_loop()

        mock_application.add_handler.assert_called_once()
        assert isinstance(mock_application.add_handler.call_args.args[0], CallbackQueryHandler)

    @pytest.mark.asyncio
    async def test_handler_swallows_store_errors(self, registry, make_query, caplog):
        registry.store = MagicMock()
        registry.store.load_callback_params = AsyncMock(side_effect=ConnectionError("redis down"))
        registry.define_callback(CallbackDefinition(query="buy", text="Buy", args=BUY_ARGS))

        with caplog.at_level(logging.ERROR):
            await registry.handle_callback_query(Update(1, callback_query=make_query("buy:abcdefgh")), None)

        assert "redis down" in caplog.text
