"""Inline-button callbacks.

A button's payload is ``<query>`` or, for buttons with arguments,
``<query>:<key>`` where key points at the arguments in the shared store.
Telegram limits payloads to 64 bytes, which bounds the query id.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Optional, Union

from telegram import CallbackQuery, InlineKeyboardButton, Update
from telegram.ext import CallbackQueryHandler, ContextTypes

from teledispatch.config.schema import EngineConfig
from teledispatch.constants import CALLBACK_DATA_MAX_BYTES, CALLBACK_QUERY_MAX_BYTES, CALLBACK_SEPARATOR
from teledispatch.core.errors import ArgumentError, DefinitionError
from teledispatch.core.models import ArgType, CallbackContext, CallbackDefinition
from teledispatch.utils import maybe_await, safe_stringify

if TYPE_CHECKING:
    from teledispatch.core.client import TelegramClient
    from teledispatch.core.param_store import ParamStore

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")


def render_button_text(text: str, params: dict[str, Any]) -> str:
    """Replace {name} placeholders with argument values; unknown names become empty."""

    def substitute(match: re.Match[str]) -> str:
        value = params.get(match.group(1))
        return "" if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(substitute, text)


class ButtonBuilder:
    """Builds buttons for a callback that takes arguments.

    Each call stores its arguments under a fresh key, so every built button is
    independent of the others.
    """

    def __init__(self, registry: "CallbackRegistry", definition: CallbackDefinition) -> None:
        self.registry = registry
        self.definition = definition

    @property
    def query(self) -> str:
        return self.definition.query

    async def __call__(self, **args: Any) -> InlineKeyboardButton:
        return await self.registry.build_button(self.definition, args)


class CallbackRegistry:
    """Registered callbacks and the click dispatcher."""

    def __init__(
        self,
        client: "TelegramClient",
        store: "ParamStore",
        settings: Optional[EngineConfig] = None,
    ) -> None:
        self.client = client
        self.store = store
        self.settings = settings or EngineConfig()
        self._callbacks: dict[str, CallbackDefinition] = {}
        self._handler: Optional[CallbackQueryHandler] = None  # type: ignore[type-arg]

    def __contains__(self, query: str) -> bool:
        return query in self._callbacks

    def get(self, query: str) -> Optional[CallbackDefinition]:
        return self._callbacks.get(query)

    def define_callback(self, definition: CallbackDefinition) -> Union[ButtonBuilder, InlineKeyboardButton]:
        """Register a callback.

        Returns:
            A ButtonBuilder when the callback declares arguments, otherwise the
            static button

        Raises:
            DefinitionError: query id is empty, contains the separator, is too
                long, or a file argument is declared
        """
        self._validate(definition)
        if definition.query in self._callbacks:
            logger.warning("Callback %s already exists, overwriting", definition.query)
        self._callbacks[definition.query] = definition
        if definition.args is not None:
            return ButtonBuilder(self, definition)
        return InlineKeyboardButton(definition.text, callback_data=definition.query)

    @staticmethod
    def _validate(definition: CallbackDefinition) -> None:
        query = definition.query
        if not query:
            raise DefinitionError("Callback query must not be empty")
        if CALLBACK_SEPARATOR in query:
            raise DefinitionError(f"Callback query must not contain {CALLBACK_SEPARATOR!r}: {query}")
        size = len(query.encode("utf-8"))
        if definition.args is not None:
            if size > CALLBACK_QUERY_MAX_BYTES:
                raise DefinitionError(
                    f"Query length must be at most {CALLBACK_QUERY_MAX_BYTES} bytes "
                    f"({CALLBACK_DATA_MAX_BYTES - CALLBACK_QUERY_MAX_BYTES} are reserved for the key): {query}"
                )
            for name, spec in definition.args.items():
                if spec.type is ArgType.FILE:
                    raise DefinitionError(f"File arguments are not supported in callbacks: {query}.{name}")
        elif size > CALLBACK_DATA_MAX_BYTES:
            raise DefinitionError(f"Query length must be at most {CALLBACK_DATA_MAX_BYTES} bytes: {query}")

    async def build_button(self, definition: CallbackDefinition, args: dict[str, Any]) -> InlineKeyboardButton:
        """Store args and return a button pointing at them.

        Raises:
            ArgumentError: a required argument is missing
        """
        params: dict[str, Any] = {}
        for name, spec in (definition.args or {}).items():
            value = args.get(name)
            if value is None:
                if spec.required:
                    raise ArgumentError(f"Missing required argument: {name}")
                continue
            params[name] = value
        key = await self.store.store_callback_params(definition.query, params)
        return InlineKeyboardButton(
            render_button_text(definition.text, params),
            callback_data=f"{definition.query}{CALLBACK_SEPARATOR}{key}",
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def run_callback_dispatch_loop(self) -> None:
        """Attach the click handler to the application (once)."""
        if self._handler is not None:
            return
        self._handler = CallbackQueryHandler(self.handle_callback_query)
        self.client.application.add_handler(self._handler)  # type: ignore[arg-type]

    async def handle_callback_query(self, update: Update, _context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        if query is None:
            return
        try:
            await self.dispatch(query)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Error handling callback query %s: %s", query.data, e, exc_info=True)

    async def dispatch(self, query: CallbackQuery) -> None:
        """Resolve a click to its callback, acknowledge it and run the callback."""
        user_tag = f"@{query.from_user.username}_{query.from_user.id}"
        if not query.data:
            await self._reject(query, user_tag, "No data")
            return
        name, _, param_key = query.data.partition(CALLBACK_SEPARATOR)
        if not name:
            await self._reject(query, user_tag, "No query")
            return
        definition = self._callbacks.get(name)
        if definition is None:
            await self._reject(query, user_tag, "Query not found")
            return

        args: dict[str, Any] = {}
        if param_key:
            stored = await self.store.load_callback_params(name, param_key)
            if stored is not None:
                args.update(stored)
            elif self.settings.strict_callback_params:
                await self._reject(query, user_tag, "Parameters expired")
                return
            else:
                logger.debug("[TGCallbackQuery] %s: params %s for %s not found", user_tag, param_key, name)
        logger.debug("[TGCallbackQuery] %s: %s %s", user_tag, name, safe_stringify(args))

        for arg_name, spec in (definition.args or {}).items():
            if spec.required and args.get(arg_name) is None:
                await self._reject(query, user_tag, f"Missing required argument: {arg_name}")
                return

        try:
            await self.client.bot.answer_callback_query(query.id)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.warning("Failed to answer callback query %s: %s", name, e)

        ctx = CallbackContext(
            query=name,
            client=self.client,
            message=query.message,  # type: ignore[arg-type]
            args=args,
            callback_query=query,
        )
        try:
            if definition.callback is not None:
                await maybe_await(definition.callback(ctx))
            if definition.cleanup is not None:
                await maybe_await(definition.cleanup(ctx))
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Error executing query callback %s: %s", name, e, exc_info=True)

    async def _reject(self, query: CallbackQuery, user_tag: str, reason: str) -> None:
        logger.error("[TGCallbackQuery] %s: %s", user_tag, reason)
        await self.client.bot.answer_callback_query(query.id, text=reason, show_alert=True)
