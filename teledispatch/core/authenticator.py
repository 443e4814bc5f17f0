"""Signature checks for data Telegram hands to web clients.

Two flavours share one algorithm: sort the fields, join them as
"key=value" lines, HMAC-SHA256 with a secret derived from the bot token and
compare with the "hash" field.
- Mini App init data: secret = HMAC_SHA256(key="WebAppData", msg=token)
- Login widget data:  secret = SHA256(token)
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import Any, Mapping, Optional
from urllib.parse import parse_qsl

from teledispatch.constants import WEB_APP_DATA_KEY

logger = logging.getLogger(__name__)


def build_data_check_string(fields: Mapping[str, Any]) -> str:
    return "\n".join(f"{key}={fields[key]}" for key in sorted(fields))


class TelegramAuthenticator:
    """Verifies Mini App init data and login widget payloads for one bot token."""

    def __init__(self, token: str) -> None:
        self.token = token

    def verify_mini_app(self, init_data: str, max_age_s: Optional[int] = None) -> bool:
        """Check Mini App init data (the raw query string from Telegram.WebApp.initData).

        Args:
            init_data: URL-encoded init data
            max_age_s: Reject data whose auth_date is older than this

        Returns:
            True if the hash matches (and the data is fresh enough)
        """
        fields = dict(parse_qsl(init_data, keep_blank_values=True))
        secret = hmac.new(WEB_APP_DATA_KEY, self.token.encode("utf-8"), hashlib.sha256).digest()
        return self._verify(fields, secret, max_age_s)

    def verify_login(self, data: Mapping[str, Any], max_age_s: Optional[int] = None) -> bool:
        """Check data returned by the Telegram login widget."""
        secret = hashlib.sha256(self.token.encode("utf-8")).digest()
        return self._verify(dict(data), secret, max_age_s)

    def _verify(self, fields: dict[str, Any], secret: bytes, max_age_s: Optional[int]) -> bool:
        received = fields.pop("hash", None)
        if not received or not isinstance(received, str):
            return False
        expected = hmac.new(secret, build_data_check_string(fields).encode("utf-8"), hashlib.sha256).hexdigest()
        if not hmac.compare_digest(received, expected):
            logger.debug("Telegram auth hash mismatch")
            return False
        if max_age_s is not None:
            try:
                auth_date = int(fields.get("auth_date", 0))
            except (TypeError, ValueError):
                return False
            if time.time() - auth_date > max_age_s:
                logger.debug("Telegram auth data expired (auth_date=%s)", auth_date)
                return False
        return True
