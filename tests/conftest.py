"""Shared fixtures: temp databases, an in-memory shop store and a web client."""
from __future__ import annotations

import asyncio
import os
from dataclasses import replace
from decimal import Decimal

# Set env vars BEFORE any storefront imports
os.environ["ADMIN_ID"] = "42"
os.environ["ADMIN_EMAIL"] = "owner@example.com"
os.environ["ADMIN_PASSWORD"] = "s3cret"
os.environ["CURRENCY_SYMBOL"] = "$"
os.environ["DECIMALS"] = "2"
os.environ["MESSAGING_HOST"] = "wa.me"
os.environ["STORE_NAMESPACE"] = "test"

import pytest

from storefront.container import build_services
from storefront.db.store import RemoteStore
from storefront.models import (
    CartLineItem,
    CompanyInfo,
    Order,
    OrderItem,
    Product,
    ProductVariant,
)
from storefront.storage.local_store import LocalStore, SqliteBackend

COMPANY = CompanyInfo(name="Tienda Luz", address="Av. Bolivar 12", phone="+593 99-123-4567", email="hola@luz.ec")


def make_item(product_id="p1", variant_id="v1", price="10.00", quantity=1, name="Lamp", variant_name="Large"):
    return CartLineItem(
        product_id=product_id,
        variant_id=variant_id,
        name=name,
        variant_name=variant_name,
        price=Decimal(price),
        quantity=quantity,
    )


def make_order(order_id="o1", items=(), status="pending"):
    lines = tuple(
        OrderItem(
            id=i + 1,
            order_id=order_id,
            product_id="p1",
            variant_id=variant_id,
            product_name="Lamp",
            variant_name=variant_id,
            quantity=qty,
            price=Decimal("10.00"),
        )
        for i, (variant_id, qty) in enumerate(items)
    )
    total = sum((it.line_total for it in lines), Decimal("0"))
    return Order(id=order_id, created_at="2024-05-01T10:00:00+00:00", total=total, status=status, items=lines)


# ---------- Fake shop database ----------

class FakeRemoteStore:
    """In-memory stand-in for RemoteStore that records what was asked of it."""

    def __init__(self, products=None, company_info=COMPANY, orders=None):
        self.products = list(products or [])
        self.company_info = company_info
        self.orders = list(orders or [])
        self.decrements = []
        self.status_updates = []
        self.fail_variant = None
        self.fail_create = False
        self.fail_fetch = False

    async def init_db(self):
        return None

    async def fetch_products(self):
        if self.fail_fetch:
            raise RuntimeError("database is locked")
        return list(self.products)

    async def fetch_company_info(self):
        return self.company_info

    async def fetch_orders(self):
        return list(self.orders)

    async def update_company_info(self, info):
        self.company_info = info
        return info

    async def upsert_product(self, product):
        product_id = "p-saved" if product.id.startswith("new_") else product.id
        self.products = [p for p in self.products if p.id != product_id]
        self.products.append(replace(product, id=product_id))
        return product_id

    async def delete_product(self, product_id):
        self.products = [p for p in self.products if p.id != product_id]

    async def create_order(self, total, items):
        if self.fail_create:
            raise RuntimeError("database is locked")
        order_id = f"o{len(self.orders) + 1}"
        lines = tuple(
            OrderItem(id=i + 1, order_id=order_id, **{**it, "quantity": int(it["quantity"])})
            for i, it in enumerate(items)
        )
        order = Order(id=order_id, created_at="2024-05-01T10:00:00+00:00", total=total, items=lines)
        self.orders.append(order)
        return order

    async def update_order_status(self, order_id, status):
        self.status_updates.append((order_id, status))
        self.orders = [replace(o, status=status) if o.id == order_id else o for o in self.orders]

    async def decrease_stock(self, variant_id, quantity, order_item_id=None):
        self.decrements.append((variant_id, quantity, order_item_id))
        if variant_id == self.fail_variant:
            raise ValueError(f"insufficient stock for {variant_id}")
        return True


async def seed_store(store: RemoteStore, company=COMPANY):
    if company is not None:
        await store.update_company_info(company)
    return await store.upsert_product(
        Product(
            id="new_",
            name="Lamp",
            description="Brass desk lamp",
            variants=[
                ProductVariant(id="var_1", name="Large", price=Decimal("10.00"), stock=5),
                ProductVariant(id="var_2", name="Small", price=Decimal("5.00"), stock=1),
            ],
        )
    )


# ---------- Fixtures ----------

@pytest.fixture()
def local_backend(tmp_path):
    return SqliteBackend(str(tmp_path / "local_store.db"))


@pytest.fixture()
def local_store(local_backend):
    return LocalStore(local_backend, namespace="test:visitor")


@pytest.fixture()
def remote_store(tmp_path):
    return RemoteStore(str(tmp_path / "shop.db"))


@pytest.fixture()
def fake_store():
    return FakeRemoteStore()


@pytest.fixture()
def services(tmp_path):
    return build_services(
        db_path=str(tmp_path / "shop.db"),
        local_store_path=str(tmp_path / "local_store.db"),
        export_dir=str(tmp_path / "exports"),
    )


@pytest.fixture()
def seeded_services(services):
    asyncio.run(seed_store(services.store))
    return services


def _client_for(services):
    from fastapi.testclient import TestClient
    from storefront.web.main import app

    app.state.services = services
    return TestClient(app)


@pytest.fixture()
def client(seeded_services):
    """FastAPI TestClient (sync) over a seeded shop database."""
    from storefront.web.main import app

    with _client_for(seeded_services) as c:
        yield c
    app.state.services = None


@pytest.fixture()
def make_client():
    """Build a TestClient for a given Services object."""
    from storefront.web.main import app

    opened = []

    def _make(services):
        c = _client_for(services)
        c.__enter__()
        opened.append(c)
        return c

    yield _make
    for c in opened:
        c.__exit__(None, None, None)
    app.state.services = None
