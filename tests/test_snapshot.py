from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import pytest

from conftest import COMPANY, make_item

from storefront.models import OrderSnapshot
from storefront.services.cart import CartService
from storefront.services.snapshot import build_snapshot


def test_snapshot_totals_and_keeps_seller():
    when = datetime(2024, 5, 1, 10, 30)
    snap = build_snapshot([make_item(price="10.00", quantity=2), make_item(variant_id="v2", price="5.00")], COMPANY, now=when)

    assert snap.total == Decimal("25.00")
    assert snap.company_info == COMPANY
    assert snap.timestamp == when
    assert len(snap.items) == 2


def test_snapshot_does_not_follow_later_cart_changes(local_store):
    cart = CartService(local_store)
    cart.add_item(make_item())
    snap = build_snapshot(cart.items, COMPANY)

    cart.add_item(make_item(), quantity=5)
    cart.add_item(make_item(variant_id="v2"))

    assert [it.quantity for it in snap.items] == [1]
    assert snap.total == Decimal("10.00")


def test_snapshot_needs_company_info():
    with pytest.raises(ValueError):
        build_snapshot([make_item()], None)


def test_snapshot_dict_round_trip_keeps_decimal_prices():
    snap = build_snapshot([make_item(price="0.10", quantity=3)], COMPANY, now=datetime(2024, 1, 2, 3, 4, 5))
    again = OrderSnapshot.from_dict(snap.to_dict())

    assert again == snap
    assert again.total == Decimal("0.30")
