"""Tests for the favorites state machine."""

from cafe_storefront.state.bridge import FAVORITES_KEY, PersistentBridge
from cafe_storefront.state.favorites import FavoritesStore
from cafe_storefront.state.notifier import Notifier
from cafe_storefront.state.storage import FileStorage


class TestFavorites:
    def test_add_and_check(self, favorites, espresso):
        snapshot = favorites.add(espresso)
        assert snapshot.total == 1
        assert favorites.is_favorite(espresso.id)
        assert not favorites.is_favorite("other")

    def test_add_is_idempotent(self, favorites, espresso):
        favorites.add(espresso)
        favorites.add(espresso)
        assert favorites.snapshot().total == 1

    def test_toggle_twice_restores_original(self, favorites, espresso, latte):
        favorites.add(latte)
        before = favorites.items

        assert favorites.toggle(espresso) is True
        assert favorites.is_favorite(espresso.id)
        assert favorites.toggle(espresso) is False

        assert favorites.items == before

    def test_remove_absent_is_noop(self, favorites, bridge):
        favorites.remove("missing")
        assert bridge.raw(FAVORITES_KEY) is None

    def test_clear(self, favorites, bridge, espresso, latte):
        favorites.add(espresso)
        favorites.add(latte)
        assert favorites.clear().total == 0
        assert bridge.raw(FAVORITES_KEY) is None

    def test_persisted_and_rehydrated(self, favorites, bridge, notifier, espresso, latte):
        favorites.add(latte)
        favorites.add(espresso)
        reopened = FavoritesStore(bridge, notifier)
        assert [p.id for p in reopened.items] == [latte.id, espresso.id]
        reopened.close()

    def test_other_instance_sees_toggle(self, favorites, bridge, notifier, espresso):
        other = FavoritesStore(bridge, notifier)
        favorites.toggle(espresso)
        assert other.is_favorite(espresso.id)
        other.toggle(espresso)
        assert not favorites.is_favorite(espresso.id)
        other.close()

    def test_cart_writes_do_not_disturb_favorites(self, favorites, cart, espresso, latte):
        favorites.add(latte)
        cart.add_to_cart(espresso)
        assert [p.id for p in favorites.items] == [latte.id]

    def test_undecodable_file_resets_to_empty(self, tmp_path, espresso):
        path = tmp_path / f"{FAVORITES_KEY}.json"
        path.write_bytes(b"\x80\x81 not utf-8")

        store = FavoritesStore(PersistentBridge(FileStorage(tmp_path)), Notifier())
        assert store.items == []
        assert not path.exists()
        assert store.toggle(espresso) is True
        store.close()
