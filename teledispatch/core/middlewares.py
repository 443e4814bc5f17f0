"""Reusable command middlewares."""

from __future__ import annotations

import logging
from typing import Optional

from teledispatch.core.models import AbortFn, CommandContext, Middleware

logger = logging.getLogger(__name__)


def attach_user(required: bool = False, abort_message: Optional[str] = "Please register first") -> Middleware:
    """Middleware filling ctx.user from the client's user lookup.

    Args:
        required: Abort the command when no user is found
        abort_message: Message sent on abort (None aborts silently)
    """

    async def middleware(ctx: CommandContext, abort: AbortFn) -> None:
        users = ctx.client.users
        if users is None:
            logger.warning("attach_user used on /%s without a user lookup", ctx.command)
            user = None
        else:
            user = await users.get(ctx.chat_id)
        ctx.user = user
        if user is None and required:
            abort(abort_message)

    return middleware


def only_private_chats(abort_message: Optional[str] = "This command is only available in private chats") -> Middleware:
    """Middleware rejecting invocations from groups and channels."""

    def middleware(ctx: CommandContext, abort: AbortFn) -> None:
        if ctx.message.chat.type != "private":
            abort(abort_message)

    return middleware
