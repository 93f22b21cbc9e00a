"""Tests for the persistent key-value store: envelopes, expiry, fan-out and sync."""
from __future__ import annotations

import json

from storefront.services.cart import CartService
from storefront.storage.local_store import LocalStore, SqliteBackend, StoredValue


class Clock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


# ---------- Envelope ----------

def test_set_wraps_value_in_envelope(local_store, local_backend):
    assert local_store.set("cart", [{"a": 1}]) is True

    raw = json.loads(local_backend.get_item("test:visitor:cart"))
    assert raw == {"meta": {"version": 1, "expiresAt": None}, "value": [{"a": 1}]}
    assert local_store.get("cart") == [{"a": 1}]


def test_missing_key_returns_default(local_store):
    assert local_store.get("nothing", default="fallback") == "fallback"


def test_plain_json_without_envelope_is_still_read(local_store, local_backend):
    local_backend.set_item("test:visitor:legacy", json.dumps([1, 2, 3]))
    assert local_store.get("legacy") == [1, 2, 3]


def test_corrupt_payload_is_dropped(local_store, local_backend):
    local_backend.set_item("test:visitor:cart", "{not json")

    assert local_store.get("cart", default=[]) == []
    assert local_backend.get_item("test:visitor:cart") is None


# ---------- Expiry ----------

def test_expired_value_is_removed_on_read(local_backend):
    clock = Clock()
    store = LocalStore(local_backend, namespace="ns", clock=clock)
    store.set("city", "Ibarra", ttl=10)

    clock.now += 9
    assert store.get("city") == "Ibarra"

    clock.now += 2
    assert store.get("city", default="none") == "none"
    assert local_backend.get_item("ns:city") is None


def test_ttl_is_stored_in_milliseconds(local_backend):
    store = LocalStore(local_backend, namespace="ns", clock=Clock(1_000.0))
    store.set("city", "Ibarra", ttl=30)

    meta = json.loads(local_backend.get_item("ns:city"))["meta"]
    assert meta["expiresAt"] == 1_030_000


# ---------- Fan-out ----------

def test_write_reaches_other_values_bound_to_the_same_key(local_store):
    a = StoredValue(local_store, "counter", 0)
    b = StoredValue(local_store, "counter", 0)

    a.set(5)
    assert b.value == 5

    b.set(lambda v: v + 1)
    assert a.value == 6


def test_namespaces_are_isolated(local_backend):
    one = StoredValue(LocalStore(local_backend, namespace="a"), "cart", list)
    two = StoredValue(LocalStore(local_backend, namespace="b"), "cart", list)

    one.set(["x"])
    assert two.value == []


def test_failed_write_keeps_memory_value_and_does_not_notify(local_store):
    a = StoredValue(local_store, "thing", "start")
    b = StoredValue(local_store, "thing", "start")

    value = object()
    a.set(value)

    assert a.value is value
    assert b.value == "start"
    assert local_store.get("thing", default="missing") == "missing"


def test_closed_value_stops_listening(local_store):
    a = StoredValue(local_store, "k", 0)
    b = StoredValue(local_store, "k", 0)
    b.close()

    a.set(3)
    assert b.value == 0


def test_closing_the_last_value_forgets_the_key(local_store, local_backend):
    a = StoredValue(local_store, "k", 0)
    b = StoredValue(local_store, "k", 0)
    cart = CartService(local_store)

    a.close()
    assert "test:visitor:k" in local_backend._listeners

    b.close()
    cart.close()
    assert local_backend._listeners == {}


def test_failing_listener_does_not_break_writes(local_store):
    def boom():
        raise RuntimeError("listener failed")

    local_store.subscribe("k", boom)
    other = StoredValue(local_store, "k", 0)

    assert local_store.set("k", 7) is True
    assert other.value == 7


def test_remove_resets_listeners_to_default(local_store):
    a = StoredValue(local_store, "k", list)
    a.set([1])

    local_store.remove("k")
    assert a.value == []


# ---------- Cross-process sync ----------

def test_sync_picks_up_writes_from_another_connection(tmp_path):
    path = str(tmp_path / "shared.db")
    here = LocalStore(SqliteBackend(path), namespace="v")
    elsewhere = LocalStore(SqliteBackend(path), namespace="v")

    seen = StoredValue(here, "cart", list)
    elsewhere.set("cart", [{"sku": "lamp"}])
    assert seen.value == []

    assert here.sync() == ["v:cart"]
    assert seen.value == [{"sku": "lamp"}]
    assert here.sync() == []
