"""Constants used across teledispatch.

This module defines shared constants to ensure consistency.
"""

# Telegram inline button payload limit (bytes)
CALLBACK_DATA_MAX_BYTES = 64
CALLBACK_PARAM_KEY_LENGTH = 8
CALLBACK_SEPARATOR = ":"
# Room left for the query id once ":<key>" is appended
CALLBACK_QUERY_MAX_BYTES = CALLBACK_DATA_MAX_BYTES - CALLBACK_PARAM_KEY_LENGTH - len(CALLBACK_SEPARATOR)

# Conversation control replies
SKIP_REPLY = "/skip"
YES_REPLY = "/yes"
NO_REPLY = "/no"

# PTB handler groups: the conversation feed must see every message before command triggers
CONVERSATION_HANDLER_GROUP = -1
COMMAND_HANDLER_GROUP = 0
MESSAGE_LOG_HANDLER_GROUP = 999

# Engine defaults (overridable in config)
DISPATCH_LOCK_TTL_S = 2
CALLBACK_PARAMS_TTL_S = 86400
ARG_TIMEOUT_S = 600.0
SETUP_RETRY_ATTEMPTS = 5
SETUP_RETRY_BACKOFF_S = 2.0

# Outbound rate limiter (Telegram client)
TELEGRAM_LIMITER_ID = "TelegramTGClient"
TELEGRAM_MIN_TIME_MS = 500
TELEGRAM_MAX_CONCURRENT = 2
TELEGRAM_RETRY_LIMIT = 10
TELEGRAM_RETRY_DELAY_MS = 1000

# Generic limiter defaults (30 requests per second)
DEFAULT_LIMITER_ID = "RateLimiterControl"
DEFAULT_MIN_TIME_MS = 34
DEFAULT_MAX_CONCURRENT = 30

# File arguments
DEFAULT_FILE_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
FILE_ARG_MAX_SIZE_HINT = "50 MB"

MARKDOWN_V2 = "MarkdownV2"

# Telegram Stars payments
STARS_CURRENCY = "XTR"
PAYMENT_PAYLOAD_LENGTH = 10
PAYMENT_CACHE_SIZE = 1000
INVOICE_PRICE_LABEL = "Buy"
INVOICE_PAYLOAD_PLACEHOLDER = "{{payload}}"

# Key for the Web App init data secret
WEB_APP_DATA_KEY = b"WebAppData"
