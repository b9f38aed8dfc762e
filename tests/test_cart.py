"""Tests for the cart state machine and its persistence."""

import json

from cafe_storefront.models import Product
from cafe_storefront.state.bridge import CART_KEY, PersistentBridge, encode_items
from cafe_storefront.state.cart import CartStore, migrate_legacy_cart
from cafe_storefront.state.notifier import Notifier
from cafe_storefront.state.storage import FileStorage


def _assert_invariants(cart):
    assert cart.total_items == sum(item.quantity for item in cart.items)
    assert cart.total_price == round(sum(item.product.price * item.quantity for item in cart.items), 2)
    ids = [item.product_id for item in cart.items]
    assert len(ids) == len(set(ids))
    assert all(item.quantity >= 1 for item in cart.items)


class TestAddToCart:
    def test_add_new_product(self, cart, espresso):
        snapshot = cart.add_to_cart(espresso)
        assert snapshot.total_items == 1
        assert snapshot.total_price == 4.99
        assert cart.get(espresso.id).quantity == 1
        _assert_invariants(cart)

    def test_add_merges_with_existing_line(self, cart, espresso):
        cart.add_to_cart(espresso, 2)
        cart.add_to_cart(espresso, 3)
        assert len(cart.items) == 1
        assert cart.get(espresso.id).quantity == 5
        assert cart.total_items == 5
        _assert_invariants(cart)

    def test_insertion_order_preserved(self, cart, espresso, latte):
        cart.add_to_cart(latte)
        cart.add_to_cart(espresso)
        cart.add_to_cart(latte)
        assert [item.product_id for item in cart.items] == [latte.id, espresso.id]

    def test_totals_across_products(self, cart, espresso, latte):
        cart.add_to_cart(espresso, 3)
        cart.add_to_cart(latte)
        assert cart.total_items == 4
        assert cart.total_price == 20.46
        _assert_invariants(cart)

    def test_totals_hold_after_every_step(self, cart, espresso, latte):
        muffin = Product(id="muffin", name="Blueberry Muffin", price=3.33)
        steps = [
            lambda: cart.add_to_cart(espresso),
            lambda: cart.add_to_cart(latte, 2),
            lambda: cart.add_to_cart(espresso, 3),
            lambda: cart.add_to_cart(muffin, 7),
            lambda: cart.update_quantity(latte.id, 5),
            lambda: cart.update_quantity(espresso.id, 0),
            lambda: cart.add_to_cart(espresso, 2),
            lambda: cart.update_quantity(muffin.id, -1),
            lambda: cart.remove_from_cart("missing"),
            lambda: cart.update_quantity(latte.id, 1),
            lambda: cart.remove_from_cart(latte.id),
        ]
        for step in steps:
            snapshot = step()
            _assert_invariants(cart)
            assert snapshot.total_items == cart.total_items
            assert snapshot.total_price == cart.total_price

        assert [item.product_id for item in cart.items] == [espresso.id]
        assert cart.total_items == 2
        assert cart.total_price == 9.98

    def test_non_positive_quantity_removes(self, cart, espresso):
        cart.add_to_cart(espresso, 2)
        snapshot = cart.add_to_cart(espresso, 0)
        assert snapshot.items == []
        assert snapshot.total_items == 0

    def test_add_persists_to_bridge(self, cart, bridge, espresso):
        cart.add_to_cart(espresso, 2)
        payload = json.loads(bridge.raw(CART_KEY))
        assert payload["version"] == 1
        assert payload["items"][0]["product"]["id"] == espresso.id
        assert payload["items"][0]["quantity"] == 2


class TestUpdateAndRemove:
    def test_update_quantity(self, cart, espresso):
        cart.add_to_cart(espresso)
        cart.update_quantity(espresso.id, 4)
        assert cart.get(espresso.id).quantity == 4
        assert cart.total_price == 19.96
        _assert_invariants(cart)

    def test_update_to_zero_removes(self, cart, espresso, latte):
        cart.add_to_cart(espresso)
        cart.add_to_cart(latte)
        cart.update_quantity(espresso.id, 0)
        assert [item.product_id for item in cart.items] == [latte.id]

    def test_update_negative_removes(self, cart, espresso):
        cart.add_to_cart(espresso)
        cart.update_quantity(espresso.id, -3)
        assert cart.is_empty

    def test_update_absent_product_is_noop(self, cart, bridge):
        snapshot = cart.update_quantity("missing", 3)
        assert snapshot.items == []
        assert bridge.raw(CART_KEY) is None

    def test_remove_absent_product_is_noop(self, cart, bridge):
        cart.remove_from_cart("missing")
        assert bridge.raw(CART_KEY) is None

    def test_remove_from_cart(self, cart, espresso, latte):
        cart.add_to_cart(espresso)
        cart.add_to_cart(latte, 2)
        cart.remove_from_cart(latte.id)
        assert cart.total_items == 1
        assert cart.get(latte.id) is None

    def test_clear_cart(self, cart, bridge, espresso, latte):
        cart.add_to_cart(espresso)
        cart.add_to_cart(latte)
        snapshot = cart.clear_cart()
        assert snapshot.items == []
        assert snapshot.total_items == 0
        assert snapshot.total_price == 0
        assert bridge.raw(CART_KEY) is None


class TestPersistence:
    def test_round_trip_is_byte_identical(self, cart, bridge, notifier, espresso, latte):
        cart.add_to_cart(espresso, 2)
        cart.add_to_cart(latte)
        stored = bridge.raw(CART_KEY)

        reopened = CartStore(bridge, notifier)
        assert reopened.items == cart.items
        assert encode_items(reopened.items) == stored
        reopened.close()

    def test_corrupted_entry_resets_to_empty(self, storage, bridge, notifier):
        storage.set_item(CART_KEY, "{not json")
        store = CartStore(bridge, notifier)
        assert store.is_empty
        assert storage.get_item(CART_KEY) is None
        store.close()

    def test_invalid_line_item_resets_to_empty(self, storage, bridge, notifier, espresso):
        bad = {"version": 1, "items": [{"product": espresso.model_dump(mode="json"), "quantity": 0}]}
        storage.set_item(CART_KEY, json.dumps(bad))
        store = CartStore(bridge, notifier)
        assert store.is_empty
        assert storage.get_item(CART_KEY) is None
        store.close()

    def test_unknown_version_resets_to_empty(self, storage, bridge, notifier):
        storage.set_item(CART_KEY, json.dumps({"version": 99, "items": []}))
        store = CartStore(bridge, notifier)
        assert store.is_empty
        assert storage.get_item(CART_KEY) is None
        store.close()

    def test_deeply_nested_payload_resets_to_empty(self, storage, bridge, notifier):
        storage.set_item(CART_KEY, "[" * 200000)
        store = CartStore(bridge, notifier)
        assert store.is_empty
        assert storage.get_item(CART_KEY) is None
        store.close()

    def test_undecodable_file_resets_to_empty(self, tmp_path, espresso):
        (tmp_path / f"{CART_KEY}.json").write_bytes(b"\xff\xfe[garbage")
        file_storage = FileStorage(tmp_path)

        store = CartStore(PersistentBridge(file_storage), Notifier())
        assert store.is_empty
        assert not (tmp_path / f"{CART_KEY}.json").exists()

        store.add_to_cart(espresso)
        assert store.total_items == 1
        store.close()

    def test_legacy_flat_entries_are_migrated(self, storage, bridge, notifier):
        legacy = [{"id": 7, "name": "Espresso", "price": 3.5, "image": "/e.png", "quantity": 2}]
        storage.set_item(CART_KEY, json.dumps(legacy))

        store = CartStore(bridge, notifier)
        assert store.total_items == 2
        line = store.get("7")
        assert line.product.images == ["/e.png"]
        assert json.loads(storage.get_item(CART_KEY))["version"] == 1
        store.close()

    def test_migrate_legacy_cart_keeps_wrapped_entries(self):
        entries = [{"product": {"id": "a"}, "quantity": 1}, {"id": "b", "quantity": 3}]
        assert migrate_legacy_cart(entries) == [
            {"product": {"id": "a"}, "quantity": 1},
            {"product": {"id": "b"}, "quantity": 3},
        ]

    def test_file_storage_survives_restart(self, tmp_path, espresso):
        first = CartStore(PersistentBridge(FileStorage(tmp_path)), Notifier())
        first.add_to_cart(espresso, 2)
        first.close()

        second = CartStore(PersistentBridge(FileStorage(tmp_path)), Notifier())
        assert second.get(espresso.id).quantity == 2
        second.close()


class TestSynchronisation:
    def test_other_instance_sees_changes(self, cart, bridge, notifier, espresso):
        other = CartStore(bridge, notifier)
        cart.add_to_cart(espresso, 2)
        assert other.total_items == 2

        other.update_quantity(espresso.id, 5)
        assert cart.get(espresso.id).quantity == 5
        other.close()

    def test_clear_propagates(self, cart, bridge, notifier, espresso):
        other = CartStore(bridge, notifier)
        cart.add_to_cart(espresso)
        other.clear_cart()
        assert cart.is_empty
        other.close()

    def test_last_write_wins(self, cart, bridge, notifier, espresso, latte):
        other = CartStore(bridge, notifier)
        cart.add_to_cart(espresso)
        other.add_to_cart(latte)
        assert [item.product_id for item in cart.items] == [espresso.id, latte.id]
        assert cart.items == other.items
        other.close()

    def test_closed_instance_stops_listening(self, cart, bridge, notifier, espresso):
        other = CartStore(bridge, notifier)
        other.close()
        cart.add_to_cart(espresso)
        assert other.is_empty

    def test_product_with_placeholder_image(self, cart):
        product = Product(id="x", name="Mystery", price=1.0, images=None)
        cart.add_to_cart(product)
        assert cart.items[0].product.image == "/placeholder.svg"
