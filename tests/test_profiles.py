"""Tests for per-profile state containers."""

import pytest

from cafe_storefront.profiles import InvalidProfileError, ProfileRegistry


@pytest.fixture
def registry(backend_client):
    reg = ProfileRegistry(backend_client)
    yield reg
    reg.close_all()


class TestProfileRegistry:
    def test_profiles_are_reused(self, registry):
        assert registry.get("alice") is registry.get("alice")
        assert registry.get("alice") is not registry.get("bob")

    def test_rejects_unsafe_ids(self, registry):
        with pytest.raises(InvalidProfileError):
            registry.get("../etc")

    def test_second_tab_stays_in_sync(self, registry, espresso):
        profile = registry.get("alice")
        tab = profile.open_cart()

        tab.add_to_cart(espresso, 2)
        assert profile.cart.total_items == 2

        profile.cart.clear_cart()
        assert tab.is_empty
        tab.close()

    def test_durable_profiles(self, backend_client, tmp_path, espresso):
        first = ProfileRegistry(backend_client, storage_dir=str(tmp_path))
        first.get("alice").favorites.add(espresso)
        first.close_all()

        assert (tmp_path / "alice" / "favorites.json").exists()

        second = ProfileRegistry(backend_client, storage_dir=str(tmp_path))
        assert second.get("alice").favorites.is_favorite(espresso.id)
        second.close_all()

    def test_corrupt_profile_files_do_not_block_the_profile(self, backend_client, tmp_path):
        profile_dir = tmp_path / "alice"
        profile_dir.mkdir()
        (profile_dir / "cartItems.json").write_bytes(b"\xff\xfe[garbage")
        (profile_dir / "favorites.json").write_text("[" * 200000, encoding="utf-8")

        registry = ProfileRegistry(backend_client, storage_dir=str(tmp_path))
        profile = registry.get("alice")
        assert profile.cart.is_empty
        assert profile.favorites.items == []
        registry.close_all()
