"""Dispatch engine core: registries, client facade, limiter, shared store, payments and auth checks."""

from teledispatch.core.authenticator import TelegramAuthenticator
from teledispatch.core.callbacks import ButtonBuilder, CallbackRegistry
from teledispatch.core.client import TelegramClient
from teledispatch.core.commands import CommandRegistry
from teledispatch.core.conversation import ConversationHub
from teledispatch.core.errors import (
    ArgumentError,
    ArgumentTimeout,
    ConversationAborted,
    DefinitionError,
    DispatchError,
    MiddlewareAborted,
)
from teledispatch.core.models import (
    ArgType,
    ArgumentSpec,
    CallbackContext,
    CallbackDefinition,
    CommandContext,
    CommandDefinition,
    CommandSetupContext,
)
from teledispatch.core.param_store import ParamStore
from teledispatch.core.payment import TelegramPayment
from teledispatch.core.rate_limiter import RateLimitedProxy, RateLimiter, RateLimiterPolicy, get_rate_limiter

__all__ = [
    "ArgType",
    "ArgumentError",
    "ArgumentSpec",
    "ArgumentTimeout",
    "ButtonBuilder",
    "CallbackContext",
    "CallbackDefinition",
    "CallbackRegistry",
    "CommandContext",
    "CommandDefinition",
    "CommandRegistry",
    "CommandSetupContext",
    "ConversationAborted",
    "ConversationHub",
    "DefinitionError",
    "DispatchError",
    "MiddlewareAborted",
    "ParamStore",
    "RateLimitedProxy",
    "RateLimiter",
    "RateLimiterPolicy",
    "TelegramAuthenticator",
    "TelegramClient",
    "TelegramPayment",
    "get_rate_limiter",
]
