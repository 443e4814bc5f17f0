"""Per-chat one-shot waits on the inbound message stream.

A command collecting arguments subscribes to its chat, sends a prompt and
waits for the next message in that chat. The subscription is a future that
the inbound message handler resolves; leaving the `subscribe()` block always
removes it, whether the wait succeeded, timed out or was cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Optional

from teledispatch.core.errors import ArgumentTimeout

if TYPE_CHECKING:
    from telegram import Message, Update
    from telegram.ext import ContextTypes

logger = logging.getLogger(__name__)


class PendingReply:
    """Handle for one subscription; resolved by the next message in the chat."""

    def __init__(self, chat_id: int, future: "asyncio.Future[Message]") -> None:
        self.chat_id = chat_id
        self._future = future

    @property
    def done(self) -> bool:
        return self._future.done()

    async def wait(self, timeout: Optional[float] = None) -> "Message":
        """Wait for the reply.

        Args:
            timeout: Seconds to wait, None waits forever

        Raises:
            ArgumentTimeout: no message arrived in time
        """
        try:
            return await asyncio.wait_for(self._future, timeout)
        except asyncio.TimeoutError as e:
            raise ArgumentTimeout(f"No reply in chat {self.chat_id} within {timeout}s") from e


class ConversationHub:
    """Routes inbound messages to pending per-chat waits."""

    def __init__(self) -> None:
        self._waiters: dict[int, list["asyncio.Future[Message]"]] = {}

    def pending_count(self, chat_id: Optional[int] = None) -> int:
        """Number of waits not yet resolved, in one chat or overall."""
        if chat_id is not None:
            groups = [self._waiters.get(chat_id, [])]
        else:
            groups = list(self._waiters.values())
        return sum(1 for waiters in groups for future in waiters if not future.done())

    @asynccontextmanager
    async def subscribe(self, chat_id: int) -> AsyncIterator[PendingReply]:
        """Register a wait for the next message in chat_id for the duration of the block."""
        future: "asyncio.Future[Message]" = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(chat_id, []).append(future)
        try:
            yield PendingReply(chat_id, future)
        finally:
            waiters = self._waiters.get(chat_id)
            if waiters is not None:
                if future in waiters:
                    waiters.remove(future)
                if not waiters:
                    del self._waiters[chat_id]
            if not future.done():
                future.cancel()

    def publish(self, message: "Message") -> int:
        """Hand message to every wait pending in its chat.

        Returns:
            Number of waits resolved
        """
        waiters = self._waiters.get(message.chat_id)
        if not waiters:
            return 0
        resolved = 0
        for future in list(waiters):
            if not future.done():
                future.set_result(message)
                resolved += 1
        if resolved:
            logger.debug("Delivered message %s to %d pending wait(s) in chat %s", message.message_id, resolved, message.chat_id)
        return resolved

    async def handle_update(self, update: "Update", _context: "ContextTypes.DEFAULT_TYPE") -> None:
        """PTB handler feeding new messages into the hub."""
        message = update.message
        if message is None:
            return
        self.publish(message)
