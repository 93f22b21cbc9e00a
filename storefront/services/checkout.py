from __future__ import annotations

import logging
import re
import webbrowser
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional, Sequence, Tuple
from urllib.parse import quote

from storefront.config import settings
from storefront.models import CartLineItem, CompanyInfo
from storefront.services.cart import CartService
from storefront.services.shop import ShopService
from storefront.utils.formatters import money

logger = logging.getLogger(__name__)

SAVE_FAILED_MESSAGE = (
    "There was an error saving your order. Please contact the store directly to place it."
)


def format_order_message(items: Iterable[CartLineItem], total: Decimal, company_info: CompanyInfo) -> str:
    lines = [f"Hello {company_info.name}! 👋", "", "I would like to place the following order:", ""]
    for it in items:
        lines.append(f"*{it.name}* ({it.variant_name})")
        lines.append(f"   - Quantity: {it.quantity}")
        lines.append(f"   - Unit price: {money(it.price)}")
        lines.append(f"   - Line total: {money(it.line_total)}")
    lines.append(f"*Order total: {money(total)}*")
    lines.append("")
    lines.append("Looking forward to your confirmation. Thank you!")
    return "\n".join(lines)


def build_handoff_url(phone: str, message: str, host: Optional[str] = None) -> str:
    digits = re.sub(r"\D", "", phone or "")
    return f"https://{host or settings.messaging_host}/{digits}?text={quote(message, safe='')}"


class CheckoutDispatcher:
    """
    Sends the order to the seller and records it.

    The messaging handoff is best effort; the order is saved even when it
    fails. The cart is cleared only after the order was saved.
    """

    def __init__(
        self,
        shop: ShopService,
        cart: CartService,
        opener: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.shop = shop
        self.cart = cart
        self.opener = opener if opener is not None else _open_in_browser

    async def send_order(
        self,
        items: Sequence[CartLineItem],
        total: Decimal,
        company_info: Optional[CompanyInfo],
    ) -> Tuple[bool, Any]:
        if company_info is None:
            logger.error("company info is not available to send the order")
            return False, "Could not get the store contact information."

        handoff_url = None
        try:
            handoff_url = build_handoff_url(company_info.phone, format_order_message(items, total, company_info))
            self.opener(handoff_url)
        except Exception:
            # continue to save the order even if the handoff could not be prepared
            logger.exception("failed to prepare the messaging handoff")

        ok, payload = await self.shop.add_order(items, total)
        if not ok:
            logger.error("failed to save order: %s", payload)
            return False, SAVE_FAILED_MESSAGE

        self.cart.clear()
        return True, {"order_id": payload.id, "handoff_url": handoff_url}


def _open_in_browser(url: str) -> None:
    webbrowser.open_new_tab(url)
