"""
test_favorites.py - Unit tests for the Favorites Registry
"""

from decimal import Decimal

import pytest

from tradeledger import InvalidArgument, NotFound, USD


class TestAdd:

    def test_add_and_list(self, favorites, alice):
        favorites.add(alice, "bitcoin", "BTC", "Bitcoin")
        (fav,) = favorites.list(alice)
        assert (fav.user_id, fav.asset_id, fav.symbol, fav.name) == (alice, "bitcoin", "BTC", "Bitcoin")
        assert fav.created_at.tzinfo is not None

    def test_repeated_add_keeps_one(self, favorites, alice):
        for _ in range(3):
            favorites.add(alice, "bitcoin", "BTC", "Bitcoin")
        assert len(favorites.list(alice)) == 1

    def test_first_insert_wins(self, favorites, alice):
        favorites.add(alice, "bitcoin", "BTC", "Bitcoin")
        favorites.add(alice, "bitcoin", "XBT", "Renamed")
        (fav,) = favorites.list(alice)
        assert fav.symbol == "BTC"
        assert fav.name == "Bitcoin"

    def test_insertion_order(self, favorites, alice):
        for asset_id in ["solana", "bitcoin", "ether"]:
            favorites.add(alice, asset_id, asset_id[:3].upper(), asset_id.title())
        assert [f.asset_id for f in favorites.list(alice)] == ["solana", "bitcoin", "ether"]

    @pytest.mark.parametrize("asset_id, symbol, name", [
        ("", "BTC", "Bitcoin"),
        ("bitcoin", "", "Bitcoin"),
        ("bitcoin", "BTC", "  "),
    ])
    def test_empty_fields_rejected(self, favorites, alice, asset_id, symbol, name):
        with pytest.raises(InvalidArgument):
            favorites.add(alice, asset_id, symbol, name)
        assert favorites.list(alice) == []

    def test_unknown_user(self, favorites):
        with pytest.raises(NotFound):
            favorites.add("ghost", "bitcoin", "BTC", "Bitcoin")


class TestRemove:

    def test_remove(self, favorites, alice):
        favorites.add(alice, "bitcoin", "BTC", "Bitcoin")
        favorites.remove(alice, "bitcoin")
        assert favorites.list(alice) == []
        assert not favorites.contains(alice, "bitcoin")

    def test_remove_absent_is_noop(self, favorites, alice):
        favorites.add(alice, "ether", "ETH", "Ether")
        favorites.remove(alice, "bitcoin")
        favorites.remove(alice, "bitcoin")
        assert [f.asset_id for f in favorites.list(alice)] == ["ether"]

    def test_readd_after_remove_takes_new_fields(self, favorites, alice):
        favorites.add(alice, "bitcoin", "BTC", "Bitcoin")
        favorites.remove(alice, "bitcoin")
        favorites.add(alice, "bitcoin", "XBT", "Renamed")
        (fav,) = favorites.list(alice)
        assert fav.symbol == "XBT"

    def test_unknown_user(self, favorites):
        with pytest.raises(NotFound):
            favorites.remove("ghost", "bitcoin")


class TestIsolation:

    def test_favorites_are_per_user(self, favorites, alice, bob):
        favorites.add(alice, "bitcoin", "BTC", "Bitcoin")
        assert favorites.list(bob) == []
        assert favorites.contains(alice, "bitcoin")
        assert not favorites.contains(bob, "bitcoin")

    def test_favorites_never_touch_balances(self, favorites, store, alice):
        favorites.add(alice, "bitcoin", "BTC", "Bitcoin")
        favorites.remove(alice, "bitcoin")
        assert store.get_balances(alice) == {USD: Decimal("10000.00")}
        assert store.list_transactions(alice) == []
