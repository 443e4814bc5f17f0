"""Error types raised by the dispatch engine."""


class DefinitionError(ValueError):
    """Raised at registration time when a command or callback definition is invalid."""


class DispatchError(Exception):
    """Base class for errors that end a single command invocation or button click."""


class MiddlewareAborted(DispatchError):
    """A middleware called abort()."""


class ArgumentError(DispatchError):
    """An argument reply or button argument failed validation."""


class ConversationAborted(DispatchError):
    """The user started another command while an argument was pending."""


class ArgumentTimeout(DispatchError):
    """No reply arrived for a pending argument within the configured timeout."""
