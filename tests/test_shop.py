"""Tests for ShopService: loading, catalog edits and order confirmation."""
from __future__ import annotations

import asyncio
from decimal import Decimal

from conftest import FakeRemoteStore, make_item, make_order, seed_store

from storefront.db.store import RemoteStore
from storefront.models import Product, ProductVariant
from storefront.services.shop import ShopService
from storefront.utils.validators import ProductValidation


def _loaded(store):
    shop = ShopService(store)
    assert asyncio.run(shop.load()) is True
    return shop


# ---------- Confirmation ----------

def test_confirm_stops_at_first_failed_decrement():
    store = FakeRemoteStore(orders=[make_order(items=[("va", 1), ("vb", 2), ("vc", 3)])])
    store.fail_variant = "vb"
    shop = _loaded(store)

    ok, message = asyncio.run(shop.confirm_order("o1"))

    assert ok is False
    assert "insufficient stock" in message
    assert shop.error == message
    assert store.decrements == [("va", 1, 1), ("vb", 2, 2)]
    assert store.status_updates == []
    assert shop.find_order("o1").status == "pending"


def test_confirm_decrements_every_line_then_updates_status():
    store = FakeRemoteStore(orders=[make_order(items=[("va", 1), ("vb", 2)])])
    shop = _loaded(store)

    ok, order = asyncio.run(shop.confirm_order("o1"))

    assert ok is True
    assert order.status == "confirmed"
    assert store.decrements == [("va", 1, 1), ("vb", 2, 2)]
    assert store.status_updates == [("o1", "confirmed")]
    assert shop.find_order("o1").status == "confirmed"


def test_confirm_unknown_order_fails():
    store = FakeRemoteStore()
    shop = _loaded(store)

    ok, message = asyncio.run(shop.confirm_order("missing"))

    assert ok is False
    assert "order not found" in message
    assert store.decrements == []


def test_confirm_twice_does_not_decrement_again():
    store = FakeRemoteStore(orders=[make_order(items=[("va", 1)], status="confirmed")])
    shop = _loaded(store)

    ok, message = asyncio.run(shop.confirm_order("o1"))

    assert ok is False
    assert "already confirmed" in message
    assert store.decrements == []


def test_retry_after_failure_does_not_take_stock_twice(remote_store):
    async def scenario():
        product_id = await seed_store(remote_store)
        shop = ShopService(remote_store)
        await shop.initialize()
        large, small = shop.products[0].variants

        ok, order = await shop.add_order(
            [
                make_item(product_id=product_id, variant_id=large.id, price="10.00", quantity=2),
                make_item(product_id=product_id, variant_id=small.id, variant_name="Small", price="5.00", quantity=3),
            ],
            Decimal("35.00"),
        )
        assert ok is True

        first = await shop.confirm_order(order.id)
        await shop.load()
        after_failure = {v.name: v.stock for v in shop.products[0].variants}

        restocked = Product(
            id=product_id,
            name="Lamp",
            variants=[
                ProductVariant(id=large.id, name="Large", price=Decimal("10.00"), stock=after_failure["Large"]),
                ProductVariant(id=small.id, name="Small", price=Decimal("5.00"), stock=10),
            ],
        )
        saved, _ = await shop.save_product(restocked)
        assert saved is True

        second = await shop.confirm_order(order.id)
        return first, after_failure, second, {v.name: v.stock for v in shop.products[0].variants}

    first, after_failure, second, final = asyncio.run(scenario())

    assert first[0] is False
    assert after_failure == {"Large": 3, "Small": 1}
    assert second[0] is True
    assert second[1].status == "confirmed"
    assert final == {"Large": 3, "Small": 7}


# ---------- Loading ----------

def test_superseded_load_is_discarded():
    async def scenario():
        gate = asyncio.Event()
        store = FakeRemoteStore()
        calls = []

        async def fetch_products():
            calls.append(len(calls))
            if len(calls) == 1:
                await gate.wait()
                return [Product(id="stale", name="Old")]
            return [Product(id="fresh", name="New")]

        store.fetch_products = fetch_products
        shop = ShopService(store)

        first = asyncio.create_task(shop.load())
        for _ in range(5):
            await asyncio.sleep(0)
        second = await shop.load()
        gate.set()
        return shop, await first, second

    shop, first, second = asyncio.run(scenario())

    assert first is False
    assert second is True
    assert [p.id for p in shop.products] == ["fresh"]
    assert shop.loading is False


def test_failed_load_keeps_cached_data():
    store = FakeRemoteStore(products=[Product(id="p1", name="Lamp")])
    shop = _loaded(store)
    store.fail_fetch = True

    assert asyncio.run(shop.load()) is False
    assert [p.id for p in shop.products] == ["p1"]
    assert "database is locked" in shop.error


def test_initialization_error_blocks_every_call(tmp_path):
    folder = tmp_path / "not-a-file"
    folder.mkdir()
    shop = ShopService(RemoteStore(str(folder)))

    assert asyncio.run(shop.initialize()) is False
    assert "Could not connect to the shop database" in shop.initialization_error

    ok, message = asyncio.run(shop.add_order([], Decimal("0")))
    assert ok is False
    assert message == shop.initialization_error


# ---------- Catalog ----------

def test_invalid_product_is_not_sent_to_the_store():
    store = FakeRemoteStore()
    shop = _loaded(store)

    ok, validation = asyncio.run(
        shop.save_product(Product(id="new_", name=" ", variants=[ProductVariant(id="var_", name="", price=-1, stock=1.5)]))
    )

    assert ok is False
    assert isinstance(validation, ProductValidation)
    assert validation.name == "Product name is required."
    assert set(validation.variants[0]) == {"name", "price", "stock"}
    assert store.products == []


def test_save_and_delete_product_refresh_the_catalog():
    store = FakeRemoteStore()
    shop = _loaded(store)

    ok, product_id = asyncio.run(
        shop.save_product(Product(id="new_", name="Lamp", variants=[ProductVariant(id="var_", name="Large", price=10, stock=2)]))
    )
    assert ok is True
    assert [p.id for p in shop.products] == [product_id]

    ok, _ = asyncio.run(shop.delete_product(product_id))
    assert ok is True
    assert shop.products == []


def test_search_matches_name_description_and_variant():
    store = FakeRemoteStore(
        products=[
            Product(id="1", name="Desk Lamp", description="brass"),
            Product(id="2", name="Chair", variants=[ProductVariant(id="v", name="Oak", price=1, stock=1)]),
        ]
    )
    shop = _loaded(store)

    assert [p.id for p in shop.search_products("lamp")] == ["1"]
    assert [p.id for p in shop.search_products("BRASS")] == ["1"]
    assert [p.id for p in shop.search_products("oak")] == ["2"]
    assert len(shop.search_products("  ")) == 2


def test_empty_order_is_rejected():
    shop = _loaded(FakeRemoteStore())
    ok, message = asyncio.run(shop.add_order([], Decimal("0")))

    assert ok is False
    assert message == "Cannot place an empty order"
