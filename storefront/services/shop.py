"""
Shop state mirrored from the database: catalog, seller info and orders.

Every mutating call returns ``(ok, payload)``: the new data on success, a
readable message on failure. Failures are also kept in ``error`` so views can
show them; the cached collections are only replaced by a successful reload.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Tuple

from storefront.constants import ORDER_CONFIRMED
from storefront.db.store import RemoteStore
from storefront.models import CartLineItem, CompanyInfo, Order, Product, ProductVariant
from storefront.utils.validators import validate_product_data

logger = logging.getLogger(__name__)


class ShopService:
    def __init__(self, store: RemoteStore) -> None:
        self.store = store
        self.products: List[Product] = []
        self.company_info: Optional[CompanyInfo] = None
        self.orders: List[Order] = []
        self.loading = False
        self.error: Optional[str] = None
        self.initialization_error: Optional[str] = None
        self._generation = 0

    def _fail(self, what: str, e: Exception) -> Tuple[bool, str]:
        logger.error("%s: %s", what, e)
        self.error = f"{what}: {e}"
        return False, self.error

    def _blocked(self) -> Tuple[bool, str]:
        self.error = self.initialization_error
        return False, self.initialization_error or "store unavailable"

    async def initialize(self) -> bool:
        try:
            await self.store.init_db()
        except Exception as e:
            logger.exception("database initialization failed")
            self.initialization_error = (
                f"Could not connect to the shop database. Check DB_PATH in .env. (Detail: {e})"
            )
            self.error = self.initialization_error
            return False
        return await self.load()

    async def load(self) -> bool:
        """Fetch products, company info and orders concurrently."""
        if self.initialization_error:
            self._blocked()
            return False

        self._generation += 1
        generation = self._generation
        self.loading = True
        self.error = None
        try:
            products, company_info, orders = await asyncio.gather(
                self.store.fetch_products(),
                self.store.fetch_company_info(),
                self.store.fetch_orders(),
            )
        except Exception as e:
            if generation == self._generation:
                self.loading = False
                self._fail("Failed to load store data", e)
            return False

        if generation != self._generation:
            # a newer load started while this one was in flight
            logger.debug("discarding results of superseded load #%s", generation)
            return False

        self.products = products
        self.company_info = company_info
        self.orders = orders
        self.loading = False
        return True

    # ---------------- catalog ----------------

    def find_variant(self, product_id: str, variant_id: str) -> Optional[Tuple[Product, ProductVariant]]:
        for p in self.products:
            if p.id != product_id:
                continue
            for v in p.variants:
                if v.id == variant_id:
                    return p, v
        return None

    def line_item_for(self, product_id: str, variant_id: str) -> Optional[CartLineItem]:
        found = self.find_variant(product_id, variant_id)
        if not found:
            return None
        p, v = found
        return CartLineItem(
            product_id=p.id,
            variant_id=v.id,
            name=p.name,
            variant_name=v.name,
            price=v.price,
            quantity=1,
            image_url=p.image_url,
            description=p.description,
        )

    def search_products(self, query: str) -> List[Product]:
        q = (query or "").strip().lower()
        if not q:
            return list(self.products)
        return [
            p for p in self.products
            if q in p.name.lower()
            or q in (p.description or "").lower()
            or any(q in v.name.lower() for v in p.variants)
        ]

    async def save_product(self, product: Product) -> Tuple[bool, Any]:
        """Validate and store a product. On invalid data the payload is the ProductValidation."""
        if self.initialization_error:
            return self._blocked()

        validation = validate_product_data(product)
        if not validation.valid:
            return False, validation

        try:
            product_id = await self.store.upsert_product(product)
        except Exception as e:
            return self._fail("Error saving the product", e)

        await self.load()
        return True, product_id

    async def delete_product(self, product_id: str) -> Tuple[bool, Any]:
        if self.initialization_error:
            return self._blocked()
        try:
            await self.store.delete_product(product_id)
        except Exception as e:
            return self._fail("Error deleting the product", e)
        await self.load()
        return True, product_id

    async def update_company_info(self, info: CompanyInfo) -> Tuple[bool, Any]:
        if self.initialization_error:
            return self._blocked()
        try:
            saved = await self.store.update_company_info(info)
        except Exception as e:
            return self._fail("Error updating company info", e)
        self.company_info = saved
        return True, saved

    # ---------------- orders ----------------

    def find_order(self, order_id: str) -> Optional[Order]:
        for o in self.orders:
            if o.id == order_id:
                return o
        return None

    async def add_order(self, items: Iterable[CartLineItem], total: Decimal) -> Tuple[bool, Any]:
        """Persist a pending order with names and prices copied from the cart lines."""
        if self.initialization_error:
            return self._blocked()

        rows = [
            {
                "product_id": it.product_id,
                "variant_id": it.variant_id,
                "product_name": it.name,
                "variant_name": it.variant_name,
                "quantity": it.quantity,
                "price": it.price,
            }
            for it in items
        ]
        if not rows:
            return False, "Cannot place an empty order"

        try:
            order = await self.store.create_order(total, rows)
        except Exception as e:
            return self._fail("Error adding the order", e)

        logger.info("order %s saved (%s lines, total %s)", order.id, len(rows), total)
        await self.load()
        return True, order

    async def confirm_order(self, order_id: str) -> Tuple[bool, Any]:
        """
        Move a pending order to confirmed, taking its quantities off stock.

        Decrements run one after another; the first failure stops the rest
        and the status is left untouched. Each decrement is keyed by its order
        item, so running this again after a failure does not take stock twice.
        """
        if self.initialization_error:
            return self._blocked()

        order = self.find_order(order_id)
        if not order:
            return self._fail("Error confirming the order", LookupError(f"order not found: {order_id}"))
        if order.status == ORDER_CONFIRMED:
            return self._fail("Error confirming the order", ValueError("order is already confirmed"))

        try:
            for item in order.items:
                applied = await self.store.decrease_stock(item.variant_id, item.quantity, order_item_id=item.id)
                if not applied:
                    logger.info("stock for order item %s was already taken, skipping", item.id)
            await self.store.update_order_status(order.id, ORDER_CONFIRMED)
        except Exception as e:
            return self._fail("Error confirming the order", e)

        logger.info("order %s confirmed", order.id)
        await self.load()
        return True, self.find_order(order.id) or replace(order, status=ORDER_CONFIRMED)
