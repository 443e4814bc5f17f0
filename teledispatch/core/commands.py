"""Command registry and dispatch.

A command invocation runs, in order:

1. debounce: the (command, chat) lock in the shared store; a held lock drops the trigger
2. inline args parsed from ``/cmd?name=value`` (file args excluded)
3. middlewares, any of which may abort with an optional message
4. prompts for every argument still missing, one reply per argument
5. the execution callback (default: send the command's template)
6. cleanup: the cleanup hook, then every file downloaded for the invocation

Errors end the invocation and are logged; nothing propagates to PTB.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional
from urllib.parse import parse_qs

from telegram import BotCommand, Message, Update
from telegram.ext import ContextTypes, MessageHandler, filters

from teledispatch.config.schema import EngineConfig
from teledispatch.constants import (
    COMMAND_HANDLER_GROUP,
    DEFAULT_FILE_CONTENT_TYPE,
    FILE_ARG_MAX_SIZE_HINT,
    NO_REPLY,
    SKIP_REPLY,
    YES_REPLY,
)
from teledispatch.core.errors import (
    ArgumentError,
    ConversationAborted,
    DefinitionError,
    DispatchError,
    MiddlewareAborted,
)
from teledispatch.core.models import (
    ArgType,
    ArgumentSpec,
    ArgValue,
    CommandContext,
    CommandDefinition,
    CommandSetupContext,
    coerce_arg_value,
)
from teledispatch.utils import bounded_retry, maybe_await

if TYPE_CHECKING:
    from teledispatch.core.client import TelegramClient
    from teledispatch.core.conversation import ConversationHub
    from teledispatch.core.param_store import ParamStore

logger = logging.getLogger(__name__)

# Telegram accepts 1-32 characters of lowercase letters, digits and underscores
COMMAND_NAME_PATTERN = re.compile(r"^[a-z0-9_]{1,32}$")
# "/yes", "/no", also with an @botname suffix or trailing text
YES_NO_PATTERN = re.compile(rf"^({re.escape(YES_REPLY)}|{re.escape(NO_REPLY)})\b")
# "/skip", optionally addressed to the bot
SKIP_PATTERN = re.compile(rf"^{re.escape(SKIP_REPLY)}(@\w+)?$")

_SKIPPED = object()


def trigger_pattern(command: str) -> re.Pattern[str]:
    """Regex matching "/<command>" optionally followed by "?<query string>"."""
    return re.compile(rf"^/{re.escape(command)}(\?.*)?$")


def parse_inline_args(
    arg_specs: dict[str, ArgumentSpec], match: Optional[re.Match[str]]
) -> dict[str, ArgValue]:
    """Extract declared, non-file arguments from the trigger's query string.

    Raises:
        ArgumentError: a number argument is not an integer
    """
    if not arg_specs or match is None or not match.group(1):
        return {}
    params = parse_qs(match.group(1).lstrip("?"), keep_blank_values=True)
    args: dict[str, ArgValue] = {}
    for name, spec in arg_specs.items():
        if spec.type is ArgType.FILE:
            continue
        values = params.get(name)
        if not values:
            continue
        try:
            args[name] = coerce_arg_value(spec.type, values[0])
        except ValueError as e:
            raise ArgumentError(f"Invalid number for {name}: {values[0]!r}") from e
    return args


def build_arg_prompt(spec: ArgumentSpec) -> str:
    """Prompt text sent to the user when an argument is missing."""
    if spec.type is ArgType.BOOLEAN:
        prompt = f"{spec.description} Please choose yes (/yes) or no (/no)".strip()
    elif spec.type is ArgType.FILE:
        description = spec.description or "Please fill in the attached file following its format and send it back"
        prompt = f"{description}, no larger than {FILE_ARG_MAX_SIZE_HINT}"
    else:
        prompt = f"Please enter {spec.description}".strip()
    if not spec.required:
        prompt += " or skip (/skip)"
    return prompt


class _AbortSignal:
    """abort() handed to middlewares; records the first call."""

    def __init__(self) -> None:
        self.aborted = False
        self.message: Optional[str] = None

    def __call__(self, message: Optional[str] = None) -> None:
        if not self.aborted:
            self.aborted = True
            self.message = message


class CommandRegistry:
    """Registered commands and their dispatch pipeline."""

    def __init__(
        self,
        client: "TelegramClient",
        store: "ParamStore",
        hub: "ConversationHub",
        settings: Optional[EngineConfig] = None,
    ) -> None:
        self.client = client
        self.store = store
        self.hub = hub
        self.settings = settings or EngineConfig()
        self._commands: dict[str, CommandDefinition] = {}
        self._handlers: dict[str, MessageHandler] = {}  # type: ignore[type-arg]

    def __contains__(self, command: str) -> bool:
        return command in self._commands

    def get(self, command: str) -> Optional[CommandDefinition]:
        return self._commands.get(command)

    @property
    def commands(self) -> list[CommandDefinition]:
        return list(self._commands.values())

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def define_command(self, definition: CommandDefinition) -> Callable[[], Awaitable[bool]]:
        """Register a command and attach its trigger handler.

        A command registered under an existing name replaces it.

        Returns:
            setup_commands, to publish the command list once all are defined

        Raises:
            DefinitionError: invalid name, or a file argument without a template
        """
        self._validate(definition)
        name = definition.command
        if name in self._commands:
            logger.warning("Command %s already exists, overwriting", name)
            old_handler = self._handlers.pop(name, None)
            if old_handler is not None:
                self.client.application.remove_handler(old_handler, group=COMMAND_HANDLER_GROUP)

        # Runs as a task so waiting conversations do not hold PTB update slots
        handler = MessageHandler(
            filters.UpdateType.MESSAGE & filters.Regex(trigger_pattern(name)),
            self._make_trigger(name),
            block=False,
        )
        self.client.application.add_handler(handler, group=COMMAND_HANDLER_GROUP)  # type: ignore[arg-type]
        self._commands[name] = definition
        self._handlers[name] = handler
        logger.debug("Defined command /%s (%d args)", name, len(definition.args))
        return self.setup_commands

    @staticmethod
    def _validate(definition: CommandDefinition) -> None:
        if not COMMAND_NAME_PATTERN.match(definition.command):
            raise DefinitionError(f"Invalid command name: {definition.command!r}")
        for name, spec in definition.args.items():
            if spec.type is ArgType.FILE and not spec.template_filepath:
                raise DefinitionError(f"File argument {name} of /{definition.command} requires template_filepath")

    async def setup_commands(self) -> bool:
        """Run setup hooks and publish the command list to Telegram.

        Returns:
            True if the command list was published
        """
        Path(self.settings.temp_dir).mkdir(parents=True, exist_ok=True)
        for name, definition in self._commands.items():
            if definition.setup is None:
                continue
            try:
                await maybe_await(definition.setup(CommandSetupContext(name, self.client, definition.data)))
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.error("Error setting up command %s: %s", name, e)

        bot_commands = [BotCommand(d.command, d.description) for d in self._commands.values()]

        @bounded_retry(max_attempts=self.settings.setup_retry_attempts, backoff_s=self.settings.setup_retry_backoff_s)
        async def publish() -> None:
            await self.client.bot.set_my_commands(bot_commands)

        try:
            await publish()
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Error setting up Telegram commands: %s", e)
            return False
        logger.info("Registered %d bot commands with Telegram", len(bot_commands))
        return True

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _make_trigger(self, command: str) -> Callable[[Update, ContextTypes.DEFAULT_TYPE], Awaitable[None]]:
        async def on_trigger(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
            message = update.message
            if message is None:
                return
            match = context.matches[0] if context.matches else None
            await self.handle_trigger(command, message, match)

        return on_trigger

    async def handle_trigger(self, command: str, message: Message, match: Optional[re.Match[str]] = None) -> bool:
        """Debounce, then dispatch.

        Returns:
            False when the trigger was dropped
        """
        try:
            acquired = await self.store.acquire_dispatch_lock(command, message.chat_id, self.settings.lock_ttl_s)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Error executing command %s: %s", command, e)
            return False
        if not acquired:
            logger.debug("Command %s already triggered in chat %s, ignoring", command, message.chat_id)
            return False
        await self.dispatch(command, message, match)
        return True

    async def dispatch(self, command: str, message: Message, match: Optional[re.Match[str]] = None) -> None:
        """Run one invocation of command for message. Never raises."""
        definition = self._commands.get(command)
        if definition is None:
            logger.warning("Unknown command %s", command)
            return

        ctx = CommandContext(
            command=command,
            client=self.client,
            message=message,
            chat_id=message.chat_id,
            match=match,
            data=dict(definition.data) if definition.data is not None else None,
        )
        try:
            ctx.args.update(parse_inline_args(definition.args, match))
            await self._run_middlewares(definition, ctx)
            await self._collect_args(definition, ctx)
            callback = definition.callback or self._send_command_template(definition)
            await maybe_await(callback(ctx))
        except Exception as e:  # pylint: disable=broad-exception-caught
            # Expected outcomes log without a traceback
            logger.error("Error executing command %s: %s", command, e, exc_info=not isinstance(e, DispatchError))
        finally:
            await self._cleanup(definition, ctx)

    @staticmethod
    def _send_command_template(definition: CommandDefinition) -> Callable[[CommandContext], Awaitable[Any]]:
        async def send_template(ctx: CommandContext) -> None:
            await ctx.client.send_template_document(ctx.chat_id, definition.template_path or definition.command, ctx.data)

        return send_template

    async def _run_middlewares(self, definition: CommandDefinition, ctx: CommandContext) -> None:
        abort = _AbortSignal()
        for middleware in definition.middlewares:
            await maybe_await(middleware(ctx, abort))
            if abort.aborted:
                if abort.message:
                    await self.client.send_md_message(ctx.chat_id, abort.message)
                raise MiddlewareAborted(abort.message or "aborted by middleware")

    async def _collect_args(self, definition: CommandDefinition, ctx: CommandContext) -> None:
        for name, spec in definition.args.items():
            if name in ctx.args:
                continue
            value = await self._ask(ctx, name, spec)
            if value is not _SKIPPED:
                ctx.args[name] = value

    async def _ask(self, ctx: CommandContext, name: str, spec: ArgumentSpec) -> Any:
        """Prompt for one argument and interpret the next message in the chat."""
        async with self.hub.subscribe(ctx.chat_id) as pending:
            await self._send_prompt(ctx, spec)
            reply = await pending.wait(self.settings.arg_timeout_s)
        return await self._interpret_reply(ctx, name, spec, reply)

    async def _send_prompt(self, ctx: CommandContext, spec: ArgumentSpec) -> None:
        prompt = build_arg_prompt(spec)
        if spec.type is not ArgType.FILE:
            await self.client.send_md_message(ctx.chat_id, prompt)
            return
        try:
            await self.client.send_file_document(
                ctx.chat_id,
                spec.template_filepath or "",
                caption=prompt,
                content_type=spec.content_type or DEFAULT_FILE_CONTENT_TYPE,
            )
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Error sending template for %s: %s", spec.template_filepath, e)

    async def _interpret_reply(self, ctx: CommandContext, name: str, spec: ArgumentSpec, reply: Message) -> Any:
        """Classify a reply.

        Raises:
            ArgumentError: wrong kind of reply for the argument
            ConversationAborted: reply is some other command
        """
        text = reply.text
        if text and SKIP_PATTERN.match(text) and not spec.required:
            return _SKIPPED
        yes_no = YES_NO_PATTERN.match(text) if text else None
        if yes_no:
            if spec.type is not ArgType.BOOLEAN:
                raise ArgumentError(f"Boolean type required for {name}")
            return yes_no.group(1) == YES_REPLY
        if text and text.startswith("/"):
            raise ConversationAborted(f"New command detected while waiting for {name}")

        if spec.type is ArgType.FILE:
            if reply.document is None:
                raise ArgumentError(f"File is required for {name}")
            destination = self._download_path(reply)
            await self.client.download_document(reply, destination)
            await self.store.record_arg_file(ctx.chat_id, ctx.message.message_id, str(destination))
            return str(destination)

        if not text:
            raise ArgumentError(f"Text is required for {name}")
        try:
            return coerce_arg_value(spec.type, text)
        except ValueError as e:
            raise ArgumentError(f"Invalid number for {name}: {text!r}") from e

    def _download_path(self, reply: Message) -> Path:
        document = reply.document
        assert document is not None
        temp_dir = Path(self.settings.temp_dir).resolve()
        temp_dir.mkdir(parents=True, exist_ok=True)
        filename = Path(document.file_name or "document").name
        return temp_dir / f"{document.file_unique_id}-{filename}"

    async def _cleanup(self, definition: CommandDefinition, ctx: CommandContext) -> None:
        if definition.cleanup is not None:
            try:
                await maybe_await(definition.cleanup(ctx))
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.error("Error cleaning up command %s: %s", definition.command, e)

        try:
            paths = await self.store.pop_arg_files(ctx.chat_id, ctx.message.message_id)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Error reading files of command %s: %s", definition.command, e)
            return
        for path in paths:
            try:
                Path(path).unlink(missing_ok=True)
                logger.debug("Removed %s", path)
            except OSError as e:
                logger.warning("Failed to remove %s: %s", path, e)
