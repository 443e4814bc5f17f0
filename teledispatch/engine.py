"""Engine: wires the Telegram client, shared store and registries together."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Union

from redis.asyncio import Redis
from telegram import InlineKeyboardButton, Update
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from teledispatch.constants import CONVERSATION_HANDLER_GROUP, MESSAGE_LOG_HANDLER_GROUP
from teledispatch.core.authenticator import TelegramAuthenticator
from teledispatch.core.callbacks import ButtonBuilder, CallbackRegistry
from teledispatch.core.client import TelegramClient
from teledispatch.core.commands import CommandRegistry
from teledispatch.core.conversation import ConversationHub
from teledispatch.core.param_store import ParamStore
from teledispatch.core.payment import TelegramPayment

if TYPE_CHECKING:
    from teledispatch.config import AppConfig
    from teledispatch.core.models import CallbackDefinition, CommandDefinition, UserLookup

logger = logging.getLogger(__name__)


def create_redis(config: "AppConfig") -> Redis:
    """Async Redis client for the shared store."""
    return Redis(
        host=config.redis.host,
        port=config.redis.port,
        db=config.redis.db,
        password=config.redis.password,
        socket_timeout=config.redis.socket_timeout,
        decode_responses=True,
    )


class Engine:
    """One bot: client, store, conversation hub, commands, callbacks and payments."""

    def __init__(
        self,
        config: "AppConfig",
        redis: Optional[Redis] = None,
        application: Optional[Application] = None,  # type: ignore[type-arg]
        users: Optional["UserLookup"] = None,
    ) -> None:
        self.config = config
        self.redis = redis if redis is not None else create_redis(config)
        self.store = ParamStore(self.redis, config.app_name, config.engine.params_ttl_s)
        self.hub = ConversationHub()
        self.client = TelegramClient(config, application=application, users=users)
        self.commands = CommandRegistry(self.client, self.store, self.hub, config.engine)
        self.callbacks = CallbackRegistry(self.client, self.store, config.engine)
        self.payments = TelegramPayment(self.client)
        self.authenticator = TelegramAuthenticator(config.telegram.bot_token)
        self._wired = False

    def define_command(self, definition: "CommandDefinition") -> Callable[[], Awaitable[bool]]:
        return self.commands.define_command(definition)

    def define_callback(self, definition: "CallbackDefinition") -> Union[ButtonBuilder, InlineKeyboardButton]:
        return self.callbacks.define_callback(definition)

    def wire_handlers(self) -> None:
        """Attach the conversation feed, click and pre-checkout dispatchers, logging and error handlers."""
        if self._wired:
            return
        app = self.client.application
        # Runs before command triggers so a pending argument sees every reply
        app.add_handler(
            MessageHandler(filters.UpdateType.MESSAGE, self.hub.handle_update),  # type: ignore[arg-type]
            group=CONVERSATION_HANDLER_GROUP,
        )
        self.callbacks.run_callback_dispatch_loop()
        self.payments.run_pre_checkout_loop()
        app.add_handler(MessageHandler(filters.ALL, self._log_message), group=MESSAGE_LOG_HANDLER_GROUP)  # type: ignore[arg-type]
        app.add_error_handler(self._handle_error)
        self._wired = True

    async def start(self) -> None:
        """Connect to Redis, start the bot and publish the command list."""
        self.wire_handlers()
        await self.redis.ping()
        await self.client.start()
        if not await self.commands.setup_commands():
            logger.error("Telegram command list was not published")
        logger.info("Telegram bot client setup completed")

    async def stop(self) -> None:
        try:
            await self.client.stop()
        finally:
            await self.redis.aclose()
        logger.info("Telegram bot client stopped")

    async def _log_message(self, update: Update, _context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if message is None or not logger.isEnabledFor(logging.DEBUG):
            return
        sender = message.from_user
        tag = f"@{sender.username if sender else None}_{message.chat_id}"
        if message.document:
            logger.debug("[TGM] %s: [Document] %s", tag, message.document.file_name)
        elif message.photo:
            logger.debug("[TGM] %s: [Photo] %s", tag, message.photo[-1].file_id)
        elif message.contact:
            logger.debug("[TGM] %s: [Contact] %s", tag, message.contact.phone_number)
        else:
            logger.debug("[TGM] %s: %s", tag, message.text)

    async def _handle_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle errors raised outside the dispatch boundaries."""
        logger.error("Exception while handling update %s:", update, exc_info=context.error)
