"""Telegram client facade.

Owns the python-telegram-bot Application and exposes the bot through a shared
rate limiter, plus the MarkdownV2/template/file helpers used by commands and
callbacks.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path
from string import Template
from typing import TYPE_CHECKING, Any, Optional

from telegram import Bot, InputFile, Message
from telegram.constants import ParseMode
from telegram.ext import Application

from teledispatch.core.rate_limiter import (
    RateLimitedProxy,
    RateLimiter,
    RateLimiterPolicy,
    TelegramRateLimiter,
    get_rate_limiter,
)
from teledispatch.utils.markdown import format_markdown_v2

if TYPE_CHECKING:
    from teledispatch.config import AppConfig
    from teledispatch.core.models import UserLookup

logger = logging.getLogger(__name__)


@lru_cache(maxsize=128)
def _cached_template(source: str) -> Template:
    return Template(source)


class TelegramClient:  # pylint: disable=too-many-instance-attributes
    """Rate-limited Telegram Bot API client."""

    def __init__(
        self,
        config: "AppConfig",
        application: Optional[Application] = None,  # type: ignore[type-arg]
        users: Optional["UserLookup"] = None,
    ) -> None:
        """Initialize client.

        Args:
            config: Application configuration
            application: Prebuilt PTB application (built from the bot token when omitted)
            users: Optional user lookup made available to middlewares
        """
        self.config = config
        telegram_config = config.telegram
        if application is None:
            if not telegram_config.bot_token:
                raise ValueError("TELEGRAM_BOT_TOKEN is not set")
            builder = Application.builder()  # type: ignore[misc]
            builder.token(telegram_config.bot_token)
            builder.concurrent_updates(True)
            if telegram_config.use_webhook:
                # Updates arrive through the webhook route instead of getUpdates
                builder.updater(None)
            application = builder.build()
        self.application = application

        limiter_config = telegram_config.limiter
        policy = RateLimiterPolicy(
            min_time_ms=limiter_config.min_time_ms,
            max_concurrent=limiter_config.max_concurrent,
            retry_limit=limiter_config.retry_limit,
            retry_delay_ms=limiter_config.retry_delay_ms,
        )
        self.limiter: RateLimiter = get_rate_limiter(limiter_config.id, policy, limiter_cls=TelegramRateLimiter)
        self.bot: Any = RateLimitedProxy(application.bot, self.limiter)
        self.users = users
        self.docs_dir = Path(config.engine.docs_dir)

    @property
    def raw_bot(self) -> Bot:
        """The bot without rate limiting (for deserializing updates)."""
        return self.application.bot

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Initialize the application and start receiving updates."""
        await self.application.initialize()
        await self.application.start()
        if self.config.telegram.use_webhook:
            await self.ensure_webhook()
        elif self.application.updater is not None:
            await self.application.updater.start_polling(
                poll_interval=self.config.telegram.polling_interval_ms / 1000.0
            )
        bot_info = await self.bot.get_me()
        logger.info("Telegram client started. Bot: @%s (ID: %s)", bot_info.username, bot_info.id)

    async def stop(self) -> None:
        """Stop receiving updates and shut the application down."""
        updater = self.application.updater
        if updater is not None and updater.running:
            await updater.stop()
        if self.application.running:
            await self.application.stop()
        await self.application.shutdown()

    async def ensure_webhook(self) -> None:
        """Point the bot's webhook at this service unless it already is."""
        url = self.config.webhook_url
        info = await self.bot.get_webhook_info()
        if info.url == url:
            logger.debug("WebHook already set")
            return
        logger.info("Update WebHook")
        state = await self.bot.set_webhook(url)
        logger.info("Set WebHook State: %s", state)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_md_message(self, chat_id: int, text: str, *, autoformat: bool = True, **kwargs: Any) -> Message:
        """Send text as MarkdownV2, normalizing it first unless autoformat is off."""
        kwargs.setdefault("parse_mode", ParseMode.MARKDOWN_V2)
        return await self.bot.send_message(
            chat_id=chat_id,
            text=format_markdown_v2(text) if autoformat else text,
            **kwargs,
        )

    async def edit_md_message(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        *,
        autoformat: bool = True,
        **kwargs: Any,
    ) -> Message | bool:
        kwargs.setdefault("parse_mode", ParseMode.MARKDOWN_V2)
        return await self.bot.edit_message_text(
            text=format_markdown_v2(text) if autoformat else text,
            chat_id=chat_id,
            message_id=message_id,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def render_template(self, template_name: str, data: Optional[Mapping[str, Any]] = None) -> str:
        """Render <docs_dir>/<template_name>.md with $placeholders from data.

        Placeholders without a value in data are left as they are.

        Raises:
            OSError: template file cannot be read
        """
        source = (self.docs_dir / f"{template_name}.md").read_text(encoding="utf-8")
        if not data:
            return source
        # Templates are re-read and re-compiled on every call in debug mode
        template = Template(source) if self.config.debug else _cached_template(source)
        return template.safe_substitute(data)

    async def send_template_document(
        self,
        chat_id: int,
        template_name: str,
        data: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> Optional[Message]:
        """Render a template and send it; failures are logged, never raised.

        Returns:
            The sent message, or None on failure
        """
        try:
            doc = self.render_template(template_name, data)
            return await self.send_md_message(chat_id, doc, **kwargs)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Error sending template for %s: %s", template_name, e or "parse error")
            return None

    async def edit_message_text_use_template(
        self,
        chat_id: int,
        message_id: int,
        template_name: str,
        data: Optional[Mapping[str, Any]] = None,
        **kwargs: Any,
    ) -> Message | bool | None:
        try:
            doc = self.render_template(template_name, data)
            return await self.edit_md_message(chat_id, message_id, doc, **kwargs)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Error editing template for %s: %s", template_name, e or "parse error")
            return None

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def send_file_document(
        self,
        chat_id: int,
        file_path: str | Path,
        *,
        caption: Optional[str] = None,
        content_type: Optional[str] = None,
        **kwargs: Any,
    ) -> Message:
        path = Path(file_path)
        # Bytes, not a file handle, so retries can resend the same payload
        document = InputFile(path.read_bytes(), filename=path.name)
        if content_type:
            document.mimetype = content_type
        return await self.bot.send_document(chat_id=chat_id, document=document, caption=caption, **kwargs)

    async def download_document(self, message: Message, destination: str | Path) -> str:
        """Download the document attached to message.

        Returns:
            The local path written

        Raises:
            ValueError: message carries no document
        """
        if message.document is None:
            raise ValueError("Message is not a document")
        telegram_file = await self.bot.get_file(message.document.file_id)
        await self.limiter.schedule(telegram_file.download_to_drive, destination)
        logger.debug("Downloaded %s to %s", message.document.file_name, destination)
        return str(destination)
