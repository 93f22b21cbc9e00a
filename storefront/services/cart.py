from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal
from typing import Callable, List

from storefront.constants import CART_KEY
from storefront.models import CartLineItem
from storefront.storage.local_store import LocalStore, StoredValue

logger = logging.getLogger(__name__)


class CartService:
    """
    The buyer's cart, persisted through the local store.

    Lines are unique by (product_id, variant_id) and never hold a quantity
    below 1. Every mutation writes the whole list back in one call.
    """

    def __init__(self, store: LocalStore, key: str = CART_KEY) -> None:
        self._stored = StoredValue(store, key, default=list)

    @property
    def items(self) -> List[CartLineItem]:
        items: List[CartLineItem] = []
        raw = self._stored.value
        if not isinstance(raw, list):
            logger.warning("stored cart is not a list, ignoring it")
            return items
        for d in raw:
            try:
                items.append(CartLineItem.from_dict(d))
            except (KeyError, TypeError, ValueError, ArithmeticError) as e:
                logger.warning("dropping malformed cart line %r: %s", d, e)
        return items

    def _save(self, items: List[CartLineItem]) -> None:
        self._stored.set([it.to_dict() for it in items])

    def add_item(self, item: CartLineItem, quantity: int = 1) -> None:
        if quantity < 1:
            logger.debug("ignoring add of %s x%s", item.key, quantity)
            return

        items = self.items
        for i, it in enumerate(items):
            if it.key == item.key:
                items[i] = replace(it, quantity=it.quantity + quantity)
                break
        else:
            items.append(replace(item, quantity=quantity))
        self._save(items)

    def update_quantity(self, product_id: str, variant_id: str, quantity: int) -> None:
        quantity = max(0, int(quantity))
        items: List[CartLineItem] = []
        for it in self.items:
            if it.key == (product_id, variant_id):
                if quantity == 0:
                    continue
                it = replace(it, quantity=quantity)
            items.append(it)
        self._save(items)

    def remove_item(self, product_id: str, variant_id: str) -> None:
        self._save([it for it in self.items if it.key != (product_id, variant_id)])

    def clear(self) -> None:
        self._save([])

    def total(self) -> Decimal:
        return sum((it.line_total for it in self.items), Decimal("0"))

    def count(self) -> int:
        return sum(it.quantity for it in self.items)

    def is_empty(self) -> bool:
        return not self.items

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        return self._stored.store.subscribe(self._stored.key, listener)

    def close(self) -> None:
        self._stored.close()
