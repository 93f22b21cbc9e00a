"""
Async access to the shop database: catalog, company info, orders and the
``decrease_stock`` procedure used when an order is confirmed.
"""
from __future__ import annotations

import asyncio
import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from sqlite3 import Row
from typing import Any, AsyncIterator, Dict, List, Optional

import aiosqlite

from storefront.constants import ORDER_PENDING, ORDER_STATUSES
from storefront.models import (
    CompanyInfo,
    Order,
    OrderItem,
    Product,
    ProductVariant,
    to_decimal,
)

logger = logging.getLogger(__name__)

SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schema.sql")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _oid() -> str:
    return uuid.uuid4().hex


def _is_new_id(value: Optional[str], prefix: str) -> bool:
    return not value or value.startswith(prefix)


class RemoteStore:
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection with FK enabled, creating the schema on first use."""
        folder = os.path.dirname(self.db_path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        conn = await aiosqlite.connect(self.db_path)
        conn.row_factory = Row
        await conn.execute("PRAGMA foreign_keys = ON;")

        if not self._initialized:
            async with self._init_lock:
                if not self._initialized:
                    with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
                        await conn.executescript(f.read())
                    await conn.commit()
                    self._initialized = True
        try:
            yield conn
        finally:
            await conn.close()

    async def init_db(self) -> None:
        async with self.connect():
            logger.info("database ready at %s", self.db_path)

    # ---------------- company info ----------------

    async def fetch_company_info(self) -> Optional[CompanyInfo]:
        async with self.connect() as conn:
            cur = await conn.execute(
                "SELECT name, address, phone, email FROM company_info WHERE id = 1"
            )
            row = await cur.fetchone()
            await cur.close()
        if not row:
            return None
        return CompanyInfo(name=row["name"], address=row["address"], phone=row["phone"], email=row["email"])

    async def update_company_info(self, info: CompanyInfo) -> CompanyInfo:
        async with self.connect() as conn:
            await conn.execute(
                """
                INSERT INTO company_info(id, name, address, phone, email) VALUES(1,?,?,?,?)
                ON CONFLICT(id) DO UPDATE SET
                    name=excluded.name, address=excluded.address,
                    phone=excluded.phone, email=excluded.email
                """,
                (info.name, info.address, info.phone, info.email),
            )
            await conn.commit()
        return info

    # ---------------- products ----------------

    async def fetch_products(self) -> List[Product]:
        async with self.connect() as conn:
            cur = await conn.execute(
                """
                SELECT id, name, description, image_url, created_at
                FROM products
                ORDER BY created_at DESC, rowid DESC
                """
            )
            product_rows = await cur.fetchall()
            await cur.close()
            cur = await conn.execute(
                "SELECT id, product_id, name, price, stock FROM product_variants ORDER BY rowid"
            )
            variant_rows = await cur.fetchall()
            await cur.close()

        variants: Dict[str, List[ProductVariant]] = {}
        for r in variant_rows:
            variants.setdefault(r["product_id"], []).append(
                ProductVariant(
                    id=r["id"],
                    product_id=r["product_id"],
                    name=r["name"],
                    price=to_decimal(r["price"]),
                    stock=int(r["stock"]),
                )
            )
        return [
            Product(
                id=r["id"],
                name=r["name"],
                description=r["description"],
                image_url=r["image_url"],
                created_at=r["created_at"],
                variants=variants.get(r["id"], []),
            )
            for r in product_rows
        ]

    async def upsert_product(self, product: Product) -> str:
        """
        Insert or update a product and its variants; returns the product id.

        Ids starting with ``new_`` (products) or ``var_`` (variants) are
        placeholders from the admin form and are replaced by real ids.
        Variants no longer present on the product are deleted.
        """
        product_id = _oid() if _is_new_id(product.id, "new_") else product.id
        async with self.connect() as conn:
            try:
                await conn.execute("BEGIN")
                await conn.execute(
                    """
                    INSERT INTO products(id, name, description, image_url, created_at)
                    VALUES(?,?,?,?,?)
                    ON CONFLICT(id) DO UPDATE SET
                        name=excluded.name, description=excluded.description,
                        image_url=excluded.image_url
                    """,
                    (product_id, product.name.strip(), product.description or "",
                     product.image_url or "", product.created_at or _now()),
                )
                keep: List[str] = []
                for v in product.variants:
                    variant_id = _oid() if _is_new_id(v.id, "var_") else v.id
                    keep.append(variant_id)
                    await conn.execute(
                        """
                        INSERT INTO product_variants(id, product_id, name, price, stock)
                        VALUES(?,?,?,?,?)
                        ON CONFLICT(id) DO UPDATE SET
                            name=excluded.name, price=excluded.price, stock=excluded.stock
                        """,
                        (variant_id, product_id, str(v.name).strip(), str(to_decimal(v.price)), int(v.stock)),
                    )
                if keep:
                    placeholders = ",".join("?" for _ in keep)
                    await conn.execute(
                        f"DELETE FROM product_variants WHERE product_id = ? AND id NOT IN ({placeholders})",
                        (product_id, *keep),
                    )
                else:
                    await conn.execute("DELETE FROM product_variants WHERE product_id = ?", (product_id,))
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise
        return product_id

    async def delete_product(self, product_id: str) -> None:
        async with self.connect() as conn:
            await conn.execute("DELETE FROM products WHERE id = ?", (product_id,))
            await conn.commit()

    # ---------------- orders ----------------

    async def fetch_orders(self) -> List[Order]:
        async with self.connect() as conn:
            cur = await conn.execute(
                "SELECT id, created_at, total, status FROM orders ORDER BY created_at DESC, rowid DESC"
            )
            order_rows = await cur.fetchall()
            await cur.close()
            cur = await conn.execute(
                """
                SELECT id, order_id, product_id, variant_id, product_name, variant_name, quantity, price
                FROM order_items
                ORDER BY id
                """
            )
            item_rows = await cur.fetchall()
            await cur.close()

        items: Dict[str, List[OrderItem]] = {}
        for r in item_rows:
            items.setdefault(r["order_id"], []).append(_row_to_order_item(r))
        return [
            Order(
                id=r["id"],
                created_at=r["created_at"],
                total=to_decimal(r["total"]),
                status=r["status"],
                items=tuple(items.get(r["id"], [])),
            )
            for r in order_rows
        ]

    async def create_order(self, total: Decimal, items: List[Dict[str, Any]]) -> Order:
        """Insert a pending order and its line items in one transaction."""
        order_id = _oid()
        created_at = _now()
        async with self.connect() as conn:
            try:
                await conn.execute("BEGIN")
                await conn.execute(
                    "INSERT INTO orders(id, created_at, total, status) VALUES(?,?,?,?)",
                    (order_id, created_at, str(total), ORDER_PENDING),
                )
                for it in items:
                    await conn.execute(
                        """
                        INSERT INTO order_items(order_id, product_id, variant_id, product_name,
                                                variant_name, quantity, price)
                        VALUES(?,?,?,?,?,?,?)
                        """,
                        (order_id, it["product_id"], it["variant_id"], it["product_name"],
                         it["variant_name"], int(it["quantity"]), str(it["price"])),
                    )
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

            cur = await conn.execute(
                """
                SELECT id, order_id, product_id, variant_id, product_name, variant_name, quantity, price
                FROM order_items WHERE order_id = ? ORDER BY id
                """,
                (order_id,),
            )
            rows = await cur.fetchall()
            await cur.close()

        return Order(
            id=order_id,
            created_at=created_at,
            total=to_decimal(total),
            status=ORDER_PENDING,
            items=tuple(_row_to_order_item(r) for r in rows),
        )

    async def update_order_status(self, order_id: str, status: str) -> None:
        if status not in ORDER_STATUSES:
            raise ValueError(f"unknown order status: {status}")
        async with self.connect() as conn:
            cur = await conn.execute("UPDATE orders SET status = ? WHERE id = ?", (status, order_id))
            updated = cur.rowcount
            await cur.close()
            await conn.commit()
        if not updated:
            raise LookupError(f"order not found: {order_id}")

    async def decrease_stock(self, variant_id: str, quantity: int, order_item_id: Optional[int] = None) -> bool:
        """
        Take ``quantity`` units off a variant.

        With ``order_item_id`` the decrement is recorded and applied at most
        once per order item; a repeated call returns False and changes nothing.
        """
        if quantity <= 0:
            raise ValueError("quantity must be > 0")

        async with self.connect() as conn:
            try:
                await conn.execute("BEGIN IMMEDIATE")
                if order_item_id is not None:
                    cur = await conn.execute(
                        "SELECT 1 FROM stock_decrements WHERE order_item_id = ?", (order_item_id,)
                    )
                    done = await cur.fetchone()
                    await cur.close()
                    if done:
                        await conn.rollback()
                        return False

                cur = await conn.execute("SELECT stock FROM product_variants WHERE id = ?", (variant_id,))
                row = await cur.fetchone()
                await cur.close()
                if not row:
                    raise LookupError(f"variant not found: {variant_id}")
                stock = int(row["stock"])
                if stock < quantity:
                    raise ValueError(f"insufficient stock for {variant_id}: have {stock}, need {quantity}")

                await conn.execute(
                    "UPDATE product_variants SET stock = stock - ? WHERE id = ?", (quantity, variant_id)
                )
                if order_item_id is not None:
                    await conn.execute(
                        "INSERT INTO stock_decrements(order_item_id, variant_id, quantity, created_at) VALUES(?,?,?,?)",
                        (order_item_id, variant_id, quantity, _now()),
                    )
                await conn.commit()
                return True
            except Exception:
                await conn.rollback()
                raise


def _row_to_order_item(r: Row) -> OrderItem:
    return OrderItem(
        id=int(r["id"]),
        order_id=r["order_id"],
        product_id=r["product_id"],
        variant_id=r["variant_id"],
        product_name=r["product_name"],
        variant_name=r["variant_name"],
        quantity=int(r["quantity"]),
        price=to_decimal(r["price"]),
    )
