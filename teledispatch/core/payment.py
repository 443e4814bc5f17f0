"""Telegram Stars invoices and their pre-checkout confirmation."""

from __future__ import annotations

import logging
import math
import secrets
from collections import OrderedDict
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

from telegram import LabeledPrice, Update
from telegram.ext import ContextTypes, PreCheckoutQueryHandler

from teledispatch.constants import (
    INVOICE_PAYLOAD_PLACEHOLDER,
    INVOICE_PRICE_LABEL,
    PAYMENT_CACHE_SIZE,
    PAYMENT_PAYLOAD_LENGTH,
    STARS_CURRENCY,
)
from teledispatch.utils import maybe_await

if TYPE_CHECKING:
    from telegram import Message

    from teledispatch.core.client import TelegramClient

logger = logging.getLogger(__name__)

PaymentListener = Callable[[int], Union[Awaitable[Any], Any]]


class PayloadCache:
    """Bounded payload -> chat id map; the least recently used entry is evicted first."""

    def __init__(self, maxsize: int = PAYMENT_CACHE_SIZE) -> None:
        self.maxsize = maxsize
        self._items: OrderedDict[str, int] = OrderedDict()

    def get(self, key: str) -> Optional[int]:
        if key not in self._items:
            return None
        self._items.move_to_end(key)
        return self._items[key]

    def put(self, key: str, value: int) -> None:
        self._items[key] = value
        self._items.move_to_end(key)
        while len(self._items) > self.maxsize:
            self._items.popitem(last=False)

    def delete(self, key: str) -> bool:
        return self._items.pop(key, None) is not None

    def __len__(self) -> int:
        return len(self._items)


def stars_amount(price: Optional[float] = None, stars: Optional[int] = None) -> int:
    """Invoice amount in Stars: price * 100 when a price is given, else stars.

    Raises:
        ValueError: neither price nor stars is given
    """
    if not price and not stars:
        raise ValueError("Price or Stars is required")
    if price:
        # round first: 1.15 * 100 == 114.99999999999999
        return math.ceil(round(price * 100, 6))
    return math.ceil(stars)  # type: ignore[arg-type]


class TelegramPayment:
    """Creates Stars invoices and notifies listeners when one is paid.

    Every invoice carries a random payload remembered with its chat id. The
    pre-checkout query for a known payload is approved and the payload's
    listeners are called with the chat id; unknown payloads are ignored.
    """

    def __init__(self, client: "TelegramClient", cache_size: int = PAYMENT_CACHE_SIZE) -> None:
        self.client = client
        self._payloads = PayloadCache(cache_size)
        self._listeners: dict[str, list[PaymentListener]] = {}
        self._handler: Optional[PreCheckoutQueryHandler] = None  # type: ignore[type-arg]

    def run_pre_checkout_loop(self) -> None:
        """Attach the pre-checkout handler (once)."""
        if self._handler is not None:
            return
        self._handler = PreCheckoutQueryHandler(self.handle_pre_checkout_query)
        self.client.application.add_handler(self._handler)  # type: ignore[arg-type]

    def _new_payload(self, chat_id: int) -> str:
        payload = secrets.token_urlsafe(PAYMENT_PAYLOAD_LENGTH)[:PAYMENT_PAYLOAD_LENGTH]
        self._payloads.put(payload, chat_id)
        return payload

    async def create_star_invoice_link(
        self,
        chat_id: int,
        title: str,
        description: str,
        *,
        price: Optional[float] = None,
        stars: Optional[int] = None,
    ) -> tuple[str, str]:
        """Create a shareable invoice link.

        Args:
            chat_id: Chat notified when the invoice is paid
            title: Product name, 1-32 characters
            description: Product description, 1-255 characters
            price: USD price
            stars: Price in Stars, used when price is not given

        Returns:
            (link, payload)
        """
        amount = stars_amount(price, stars)
        payload = self._new_payload(chat_id)
        link = await self.client.bot.create_invoice_link(
            title=title,
            description=description,
            payload=payload,
            provider_token="",
            currency=STARS_CURRENCY,
            prices=[LabeledPrice(INVOICE_PRICE_LABEL, amount)],
        )
        return link, payload

    async def send_star_invoice_message(
        self,
        chat_id: int,
        title: str,
        description: str,
        *,
        price: Optional[float] = None,
        stars: Optional[int] = None,
    ) -> tuple["Message", str]:
        """Send an invoice to chat_id. "{{payload}}" in the description is replaced by the payload.

        Returns:
            (sent message, payload)
        """
        amount = stars_amount(price, stars)
        payload = self._new_payload(chat_id)
        message = await self.client.bot.send_invoice(
            chat_id=chat_id,
            title=title,
            description=description.replace(INVOICE_PAYLOAD_PLACEHOLDER, payload),
            payload=payload,
            provider_token="",
            currency=STARS_CURRENCY,
            prices=[LabeledPrice(INVOICE_PRICE_LABEL, amount)],
        )
        return message, payload

    def on_star_payment(self, payload: str, listener: PaymentListener) -> Callable[[], None]:
        """Call listener(chat_id) when the invoice with payload is confirmed.

        Returns:
            A function removing the listener
        """
        self._listeners.setdefault(payload, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(payload, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(payload, None)

        return unsubscribe

    async def handle_pre_checkout_query(self, update: Update, _context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.pre_checkout_query
        if query is None:
            return
        payload = query.invoice_payload
        chat_id = self._payloads.get(payload)
        if chat_id is None:
            logger.debug("Ignoring pre-checkout query for unknown payload %s", payload)
            return
        self._payloads.delete(payload)

        await self.client.bot.answer_pre_checkout_query(query.id, ok=True)
        logger.info("Stars payment %s confirmed for chat %s", payload, chat_id)
        for listener in list(self._listeners.get(payload, [])):
            try:
                await maybe_await(listener(chat_id))
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.error("Error in payment listener for %s: %s", payload, e)
