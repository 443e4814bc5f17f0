"""Command and callback definitions and their invocation contexts."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Protocol, Union

if TYPE_CHECKING:
    from telegram import CallbackQuery, Message

    from teledispatch.core.client import TelegramClient


class ArgType(str, Enum):
    """Supported argument types."""

    STRING = "string"
    BOOLEAN = "boolean"
    NUMBER = "number"
    FILE = "file"


ArgValue = Union[str, int, bool]


@dataclass(frozen=True)
class ArgumentSpec:
    """One declared argument of a command or button."""

    type: ArgType = ArgType.STRING
    required: bool = False
    description: str = ""
    # file arguments only
    template_filepath: Optional[str] = None
    content_type: Optional[str] = None


def coerce_arg_value(arg_type: ArgType, value: str) -> ArgValue:
    """Convert raw reply or query-string text to the declared type.

    Raises:
        ValueError: number arguments that are not integers
    """
    if arg_type is ArgType.BOOLEAN:
        return value == "true"
    if arg_type is ArgType.NUMBER:
        return int(value.strip())
    return value


class UserLookup(Protocol):
    """Async lookup of the application user behind a chat."""

    async def get(self, chat_id: int) -> Any: ...


@dataclass
class CommandContext:
    """State of one command invocation, passed to middlewares and hooks."""

    command: str
    client: "TelegramClient"
    message: "Message"
    chat_id: int
    match: Optional[re.Match[str]] = None
    data: Optional[dict[str, Any]] = None
    args: dict[str, ArgValue] = field(default_factory=dict)
    # filled by middlewares
    user: Any = None


@dataclass
class CommandSetupContext:
    """Context for setup hooks, which run once per command sync (no message yet)."""

    command: str
    client: "TelegramClient"
    data: Optional[dict[str, Any]] = None


Hook = Callable[..., Union[Awaitable[Any], Any]]
AbortFn = Callable[..., None]
Middleware = Callable[[CommandContext, AbortFn], Union[Awaitable[Any], Any]]


@dataclass
class CommandDefinition:
    """A user-invocable /command with ordered, typed arguments."""

    command: str
    description: str
    args: dict[str, ArgumentSpec] = field(default_factory=dict)
    setup: Optional[Hook] = None
    callback: Optional[Hook] = None
    cleanup: Optional[Hook] = None
    middlewares: list[Middleware] = field(default_factory=list)
    data: Optional[dict[str, Any]] = None
    # Template for the default callback (defaults to the command name)
    template_path: Optional[str] = None


@dataclass
class CallbackContext:
    """State of one button click."""

    query: str
    client: "TelegramClient"
    message: Optional["Message"]
    args: dict[str, Any] = field(default_factory=dict)
    callback_query: Optional["CallbackQuery"] = None


@dataclass
class CallbackDefinition:
    """An inline button and the handler run when it is clicked."""

    query: str
    text: str
    callback: Optional[Hook] = None
    args: Optional[dict[str, ArgumentSpec]] = None
    cleanup: Optional[Hook] = None
