"""Built-in commands and buttons every bot gets."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from teledispatch.core.models import CallbackContext, CallbackDefinition, CommandContext, CommandDefinition

if TYPE_CHECKING:
    from teledispatch.engine import Engine

logger = logging.getLogger(__name__)

WELCOME_TEXT = "Hello, I am a bot. Use /help to see what I can do."
CLOSED_TEXT = "This message is closed!"


def register_builtin(engine: "Engine") -> dict[str, InlineKeyboardButton]:
    """Define /start, /help and the close/delete buttons.

    Returns:
        The static buttons by query id, for reuse in other keyboards
    """

    async def delete_message(ctx: CallbackContext) -> None:
        if ctx.message is None:
            return
        await ctx.client.bot.delete_message(chat_id=ctx.message.chat_id, message_id=ctx.message.message_id)

    delete_button = engine.define_callback(CallbackDefinition(query="delete", text="🗑 delete", callback=delete_message))
    assert isinstance(delete_button, InlineKeyboardButton)

    async def close_message(ctx: CallbackContext) -> None:
        if ctx.message is None:
            return
        await ctx.client.edit_md_message(
            ctx.message.chat_id,
            ctx.message.message_id,
            CLOSED_TEXT,
            reply_markup=InlineKeyboardMarkup([[delete_button]]),
        )

    close_button = engine.define_callback(CallbackDefinition(query="close", text="❌ close", callback=close_message))
    assert isinstance(close_button, InlineKeyboardButton)

    async def start(ctx: CommandContext) -> None:
        await ctx.client.send_md_message(
            ctx.chat_id,
            WELCOME_TEXT,
            reply_markup=InlineKeyboardMarkup([[close_button], [delete_button]]),
        )

    engine.define_command(CommandDefinition(command="start", description="Start the bot", callback=start))
    # No callback: sends the "help" template from the docs directory
    engine.define_command(CommandDefinition(command="help", description="Show help"))
    logger.debug("Registered built-in commands")
    return {"close": close_button, "delete": delete_button}
