"""
Conservation Conformance Tests

INVARIANT: For every user u and asset a, at all times:
    balance(u, a) = grant(u, a) + Σ_{committed trades T of u} leg(T, a)

Balances never go negative, a rejected trade changes nothing, and no
rounding ever creeps in: every leg is the exact product amount * unit_price.
"""

from decimal import Decimal
from typing import Dict

import pytest
from hypothesis import given, note, settings
from hypothesis import strategies as st

from tradeledger import ErrorKind, Ledger, TradeKind, USD, provision_account

from tests.fakes import STORE_KINDS, make_store


# =============================================================================
# STRATEGIES FOR PROPERTY-BASED TESTING
# =============================================================================

ASSETS = ["bitcoin", "ether", "solana"]


@st.composite
def trade_request(draw):
    """Generate a well-formed trade request; it may still be unaffordable."""
    return (
        draw(st.sampled_from(list(TradeKind))),
        draw(st.sampled_from(ASSETS)),
        draw(st.decimals(min_value=Decimal("0.001"), max_value=Decimal("50"), places=3)),
        draw(st.decimals(min_value=Decimal("0.01"), max_value=Decimal("5000"), places=2)),
    )


def apply_to_model(model: Dict[str, Decimal], kind: TradeKind, asset: str,
                   amount: Decimal, price: Decimal) -> bool:
    """Apply a trade to the expected-state model. Returns False if it must be rejected."""
    cost = amount * price
    held = model.get(asset, Decimal("0"))
    if kind is TradeKind.BUY:
        if model[USD] < cost:
            return False
        model[USD] -= cost
        model[asset] = held + amount
    else:
        if held < amount:
            return False
        model[asset] = held - amount
        model[USD] += cost
    return True


class TestConservationProperties:

    @pytest.mark.parametrize("kind", STORE_KINDS)
    @given(trades=st.lists(trade_request(), min_size=1, max_size=25))
    @settings(max_examples=30, deadline=None)
    def test_balances_follow_exact_legs(self, kind, trades):
        """
        PROPERTY: After any trade sequence, balances equal the model that
        applies exactly the accepted trades, and nothing is negative.
        """
        store = make_store(kind)
        provision_account(store, "alice", initial_grant="10000.00")
        ledger = Ledger(store)
        model = {USD: Decimal("10000.00")}

        for trade_kind, asset, amount, price in trades:
            note(f"{trade_kind.value} {amount} {asset} @ {price}")
            expected_ok = apply_to_model(model, trade_kind, asset, amount, price)
            result = ledger.trade("alice", asset, trade_kind, amount, price)
            assert result.ok == expected_ok
            if not result.ok:
                assert result.error_kind in (
                    ErrorKind.INSUFFICIENT_FUNDS, ErrorKind.INSUFFICIENT_HOLDINGS
                )

        balances = ledger.get_balances("alice")
        assert {a: b for a, b in balances.items() if b} == {a: b for a, b in model.items() if b}
        assert all(b >= 0 for b in balances.values())

    @pytest.mark.parametrize("kind", STORE_KINDS)
    @given(amount=st.decimals(min_value=Decimal("0.0001"), max_value=Decimal("1000"), places=4),
           price=st.decimals(min_value=Decimal("0.0001"), max_value=Decimal("100"), places=4))
    @settings(max_examples=30, deadline=None)
    def test_round_trip_at_same_price_restores_usd(self, kind, amount, price):
        """
        PROPERTY: Buying and selling the same amount at the same price
        restores usd exactly.
        """
        store = make_store(kind)
        provision_account(store, "alice", initial_grant="100000")
        ledger = Ledger(store)
        assert ledger.buy("alice", "tok", amount, price).ok
        assert ledger.sell("alice", "tok", amount, price).ok
        assert ledger.get_balance("alice", USD) == Decimal("100000")
        assert ledger.get_balance("alice", "tok") == Decimal("0")


class TestConservationExamples:

    def test_exact_cost_buy_empties_usd(self, ledger, alice):
        assert ledger.buy(alice, "tok", "8", "1250").ok
        assert ledger.get_balance(alice, USD) == Decimal("0")

    def test_overdraw_changes_nothing(self, ledger, alice):
        ledger.buy(alice, "tok", "1", "100")
        before = ledger.get_balances(alice)
        assert ledger.buy(alice, "tok", "100", "100").error_kind is ErrorKind.INSUFFICIENT_FUNDS
        assert ledger.sell(alice, "tok", "2", "100").error_kind is ErrorKind.INSUFFICIENT_HOLDINGS
        assert ledger.get_balances(alice) == before
        assert len(ledger.history(alice)) == 1

    def test_users_are_independent(self, ledger, alice, bob):
        ledger.buy(alice, "tok", "10", "100")
        assert ledger.get_balances(bob) == {USD: Decimal("10000.00")}
