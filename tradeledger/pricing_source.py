"""
pricing_source.py - Price collaborator boundary for portfolio valuation

The ledger never fetches prices itself. Valuation asks a pricing source for
the current usd price of each held asset and tolerates the source having
nothing to say.

Classes:
- PricingSource: Protocol defining the pricing interface
- StaticPricingSource: In-memory price map, updated by the caller
- CallablePricingSource: Adapts a plain function asset_id -> price | None

All prices are quoted in usd. Prices are "as of the last successful fetch";
no freshness guarantee is implied.
"""

from decimal import Decimal
from typing import Callable, Dict, Mapping, Optional, Protocol, Set, Union, runtime_checkable

from .core import USD, to_decimal


@runtime_checkable
class PricingSource(Protocol):
    """
    Protocol for pricing sources.

    get_price() returns None when the asset has no quote. A source that is
    down altogether may raise PriceUnavailable instead.
    """

    def get_price(self, asset_id: str) -> Optional[Decimal]:
        """Get the current usd price of a single asset."""
        ...

    def get_prices(self, asset_ids: Set[str]) -> Dict[str, Decimal]:
        """Get prices for several assets. Unquoted assets are omitted."""
        ...


class StaticPricingSource:
    """
    Pricing source with a fixed price map.

    The numéraire always prices at 1.
    """

    def __init__(self, prices: Optional[Mapping[str, Union[Decimal, int, float, str]]] = None):
        """
        Args:
            prices: Mapping of asset ids to usd prices
        """
        self.prices: Dict[str, Decimal] = {
            asset_id: to_decimal(price, asset_id) for asset_id, price in (prices or {}).items()
        }
        self.prices[USD] = Decimal("1")

    def get_price(self, asset_id: str) -> Optional[Decimal]:
        return self.prices.get(asset_id)

    def get_prices(self, asset_ids: Set[str]) -> Dict[str, Decimal]:
        return {a: self.prices[a] for a in asset_ids if a in self.prices}

    def update_price(self, asset_id: str, price) -> None:
        """Update the price of an asset."""
        self.prices[asset_id] = to_decimal(price, asset_id)

    def update_prices(self, prices: Mapping[str, Union[Decimal, int, float, str]]) -> None:
        """Update multiple prices at once."""
        for asset_id, price in prices.items():
            self.update_price(asset_id, price)

    def __repr__(self):
        return f"StaticPricingSource({len(self.prices)} prices)"


class CallablePricingSource:
    """
    Wrap a lookup function as a PricingSource.

    Example:
        quotes = {"bitcoin": Decimal("64000")}
        source = CallablePricingSource(quotes.get)
    """

    def __init__(self, lookup: Callable[[str], Optional[Union[Decimal, int, float, str]]]):
        self.lookup = lookup

    def get_price(self, asset_id: str) -> Optional[Decimal]:
        if asset_id == USD:
            return Decimal("1")
        price = self.lookup(asset_id)
        return None if price is None else to_decimal(price, asset_id)

    def get_prices(self, asset_ids: Set[str]) -> Dict[str, Decimal]:
        prices = {}
        for asset_id in asset_ids:
            price = self.get_price(asset_id)
            if price is not None:
                prices[asset_id] = price
        return prices

    def __repr__(self):
        return f"CallablePricingSource({getattr(self.lookup, '__name__', 'lookup')})"


def as_pricing_source(prices) -> PricingSource:
    """
    Coerce what callers commonly have into a PricingSource.

    Accepts a PricingSource, a mapping of asset ids to prices, or a callable.
    Mapping values are converted one at a time on lookup, so a bad quote for
    one asset surfaces only when that asset is priced.

    Raises:
        TypeError: For anything else
    """
    if isinstance(prices, PricingSource):
        return prices
    if isinstance(prices, Mapping):
        return CallablePricingSource(prices.get)
    if callable(prices):
        return CallablePricingSource(prices)
    raise TypeError(f"cannot use {type(prices).__name__} as a pricing source")

