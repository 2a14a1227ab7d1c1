"""
favorites.py - Per-user watch list of assets

Favorites carry display fields only and never affect balances. Both add and
remove are idempotent: the first insert of an asset wins and later inserts
leave its symbol and name alone.
"""

from typing import List
import logging

from .core import Favorite, InvalidArgument
from .store import RecordStore

logger = logging.getLogger(__name__)


def _require(value: str, field_name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument(f"{field_name} cannot be empty")


class FavoritesRegistry:
    """
    Watch-list operations over a Record Store.

    Example:
        favorites = FavoritesRegistry(store)
        favorites.add("alice", "bitcoin", "BTC", "Bitcoin")
        favorites.add("alice", "bitcoin", "XBT", "Renamed")   # no-op
        [f.symbol for f in favorites.list("alice")]           # ['BTC']
    """

    def __init__(self, store: RecordStore):
        self.store = store

    def add(self, user_id: str, asset_id: str, symbol: str, name: str) -> None:
        """
        Add an asset to the user's favorites unless already present.

        Raises:
            InvalidArgument: Empty asset_id, symbol or name
            NotFound: Unknown user
        """
        _require(asset_id, "asset_id")
        _require(symbol, "symbol")
        _require(name, "name")
        if self.store.add_favorite(user_id, asset_id, symbol, name):
            logger.debug("favorite added: %s -> %s", user_id, asset_id)

    def remove(self, user_id: str, asset_id: str) -> None:
        """Remove an asset from the user's favorites. Removing an absent entry is a no-op."""
        _require(asset_id, "asset_id")
        if self.store.remove_favorite(user_id, asset_id):
            logger.debug("favorite removed: %s -> %s", user_id, asset_id)

    def list(self, user_id: str) -> List[Favorite]:
        """The user's favorites in insertion order."""
        return self.store.list_favorites(user_id)

    def contains(self, user_id: str, asset_id: str) -> bool:
        return any(f.asset_id == asset_id for f in self.store.list_favorites(user_id))
