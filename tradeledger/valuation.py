"""
valuation.py - Read-only usd valuation of a user's balances

value_portfolio() joins a balance snapshot with prices from a pricing
source. It never mutates anything and never fails because of pricing:
an asset without a usable price is valued at zero and flagged unpriced.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import List, Optional
import logging

from .core import LEDGER_CONTEXT, LedgerError, USD, ZERO, to_decimal
from .pricing_source import PricingSource, as_pricing_source
from .store import RecordStore

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


@dataclass(frozen=True, slots=True)
class Holding:
    """One balance row with its usd valuation."""
    asset_id: str
    balance: Decimal
    unit_price: Decimal
    value_usd: Decimal
    percent_of_portfolio: Decimal
    priced: bool


@dataclass(frozen=True, slots=True)
class Portfolio:
    """
    Valuation of every balance row of one user.

    Holdings list usd first, then the other assets sorted by id.
    """
    user_id: str
    holdings: List[Holding]
    total_value_usd: Decimal

    def holding(self, asset_id: str) -> Optional[Holding]:
        for h in self.holdings:
            if h.asset_id == asset_id:
                return h
        return None

    @property
    def unpriced(self) -> List[str]:
        """Assets valued at zero for lack of a price."""
        return [h.asset_id for h in self.holdings if not h.priced]


def _lookup_price(source: PricingSource, asset_id: str) -> Optional[Decimal]:
    # The source is an external collaborator; any failure means "no price".
    try:
        price = source.get_price(asset_id)
    except Exception as exc:
        logger.warning("no price for %s: %s", asset_id, exc, exc_info=True)
        return None
    if price is None:
        return None
    try:
        price = to_decimal(price, asset_id)
    except LedgerError as exc:
        logger.warning("unusable price for %s: %s", asset_id, exc)
        return None
    if price < ZERO:
        logger.warning("negative price %s for %s ignored", price, asset_id)
        return None
    return price


def value_portfolio(store: RecordStore, user_id: str, prices) -> Portfolio:
    """
    Value every balance row of a user in usd.

    Args:
        store: Record Store to snapshot balances from
        user_id: User to value
        prices: PricingSource, mapping asset_id -> price, or callable
                asset_id -> price | None

    Returns:
        Portfolio with one Holding per balance row. usd is priced at 1;
        an asset whose price is absent or unavailable gets unit_price 0,
        value_usd 0 and priced False.

    Raises:
        NotFound: Unknown user
    """
    source = as_pricing_source(prices)
    balances = store.get_balances(user_id)

    rows = []
    with localcontext(LEDGER_CONTEXT):
        for asset_id in sorted(balances, key=lambda a: (a != USD, a)):
            balance = balances[asset_id]
            if asset_id == USD:
                price = Decimal("1")
            else:
                price = _lookup_price(source, asset_id)
            priced = price is not None
            unit_price = price if priced else ZERO
            rows.append((asset_id, balance, unit_price, balance * unit_price, priced))

        total = sum((row[3] for row in rows), ZERO)
        holdings = [
            Holding(
                asset_id=asset_id,
                balance=balance,
                unit_price=unit_price,
                value_usd=value,
                percent_of_portfolio=value / total * HUNDRED if total else ZERO,
                priced=priced,
            )
            for asset_id, balance, unit_price, value, priced in rows
        ]
    return Portfolio(user_id=user_id, holdings=holdings, total_value_usd=total)
