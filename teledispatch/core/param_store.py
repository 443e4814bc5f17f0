"""Ephemeral parameter store backed by Redis.

Holds short-lived records shared by every process instance:
- dispatch locks:        <prefix>:command:<command>:lock:<chat_id>
- button arguments:      <prefix>:cb:<query>:params:<key>
- file cleanup pointers: <prefix>:msg:<chat_id>:<message_id>:file

All records carry a TTL; expiry is the only release mechanism for locks.
"""

from __future__ import annotations

import json
import logging
import secrets
from typing import TYPE_CHECKING, Any, Optional

from teledispatch.constants import CALLBACK_PARAM_KEY_LENGTH, CALLBACK_PARAMS_TTL_S, DISPATCH_LOCK_TTL_S
from teledispatch.utils import safe_stringify, snake_case

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)


def generate_param_key() -> str:
    """Random url-safe id of CALLBACK_PARAM_KEY_LENGTH characters."""
    # 3 random bytes encode to 4 base64 characters
    return secrets.token_urlsafe(CALLBACK_PARAM_KEY_LENGTH * 3 // 4)


def _decode(raw: bytes | str | None) -> Optional[str]:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        return raw.decode("utf-8")
    return raw


class ParamStore:
    """TTL-keyed records in the shared Redis store."""

    def __init__(self, redis: "Redis", app_name: str, params_ttl_s: int = CALLBACK_PARAMS_TTL_S) -> None:
        """Initialize store.

        Args:
            redis: Async Redis client (decode_responses may be on or off)
            app_name: Application name; its snake_case form prefixes every key
            params_ttl_s: Default TTL for button arguments and file pointers
        """
        self.redis = redis
        self.prefix = snake_case(app_name)
        self.params_ttl_s = params_ttl_s

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def arg_file_key(self, chat_id: int | str, message_id: int | str) -> str:
        # Message ids are only unique within a chat
        return f"{self.prefix}:msg:{chat_id}:{message_id}:file"

    def callback_params_key(self, query: str, key: str) -> str:
        return f"{self.prefix}:cb:{query}:params:{key}"

    def command_lock_key(self, command: str, chat_id: int | str) -> str:
        return f"{self.prefix}:command:{command}:lock:{chat_id}"

    # ------------------------------------------------------------------
    # Dispatch lock
    # ------------------------------------------------------------------

    async def acquire_dispatch_lock(self, command: str, chat_id: int | str, ttl_s: int = DISPATCH_LOCK_TTL_S) -> bool:
        """Set the (command, chat) lock unless it is already present.

        Returns:
            True if this caller now holds the lock, False if it was held
        """
        acquired = await self.redis.set(self.command_lock_key(command, chat_id), "1", ex=ttl_s, nx=True)
        return bool(acquired)

    # ------------------------------------------------------------------
    # Button arguments
    # ------------------------------------------------------------------

    async def store_callback_params(self, query: str, params: dict[str, Any], ttl_s: Optional[int] = None) -> str:
        """Store button arguments under a fresh key.

        Returns:
            The generated key (goes into the button payload after "<query>:")
        """
        key = generate_param_key()
        await self.redis.set(
            self.callback_params_key(query, key),
            safe_stringify(params),
            ex=ttl_s or self.params_ttl_s,
        )
        return key

    async def load_callback_params(self, query: str, key: str) -> Optional[dict[str, Any]]:
        """Fetch button arguments.

        Returns:
            The decoded argument object, or None when expired, never stored,
            or not a JSON object
        """
        raw = _decode(await self.redis.get(self.callback_params_key(query, key)))
        if raw is None:
            return None
        try:
            params = json.loads(raw)
        except ValueError:
            logger.warning("Undecodable params for %s:%s", query, key)
            return None
        if not isinstance(params, dict):
            logger.warning("Params for %s:%s are not an object", query, key)
            return None
        return params

    # ------------------------------------------------------------------
    # File cleanup pointers
    # ------------------------------------------------------------------

    async def record_arg_file(self, chat_id: int | str, message_id: int | str, path: str) -> None:
        """Remember a downloaded file so the invocation's cleanup can delete it."""
        paths = await self._read_paths(chat_id, message_id)
        paths.append(path)
        await self.redis.set(self.arg_file_key(chat_id, message_id), json.dumps(paths), ex=self.params_ttl_s)

    async def pop_arg_files(self, chat_id: int | str, message_id: int | str) -> list[str]:
        """Return and forget every file recorded for the (chat, message) invocation."""
        paths = await self._read_paths(chat_id, message_id)
        if paths:
            await self.redis.delete(self.arg_file_key(chat_id, message_id))
        return paths

    async def _read_paths(self, chat_id: int | str, message_id: int | str) -> list[str]:
        raw = _decode(await self.redis.get(self.arg_file_key(chat_id, message_id)))
        if not raw:
            return []
        try:
            paths = json.loads(raw)
        except ValueError:
            # Plain single path
            return [raw]
        if isinstance(paths, list):
            return [str(p) for p in paths]
        return [str(paths)]
