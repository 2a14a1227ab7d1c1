"""
test_trading_scenario.py - End-to-end wallet scenario

Provision, buy, sell, oversell, watch-list and valuation in one flow, run
against both stores.
"""

from decimal import Decimal

from tradeledger import (
    ErrorKind, FavoritesRegistry, Ledger, TradeKind, USD, provision_account,
    value_portfolio,
)


class TestTradingScenario:

    def test_buy_sell_oversell(self, store):
        provision_account(store, "alice", username="Alice")
        ledger = Ledger(store)
        assert ledger.get_balances("alice") == {USD: Decimal("10000")}

        bought = ledger.buy("alice", "tok", "2", "100")
        assert bought.ok
        assert ledger.get_balance("alice", USD) == Decimal("9800")
        assert ledger.get_balance("alice", "tok") == Decimal("2")

        sold = ledger.sell("alice", "tok", "1", "150")
        assert sold.ok
        assert ledger.get_balance("alice", USD) == Decimal("9950")
        assert ledger.get_balance("alice", "tok") == Decimal("1")

        oversold = ledger.sell("alice", "tok", "5", "150")
        assert oversold.error_kind is ErrorKind.INSUFFICIENT_HOLDINGS
        assert ledger.get_balance("alice", USD) == Decimal("9950")
        assert ledger.get_balance("alice", "tok") == Decimal("1")

        history = ledger.history("alice")
        assert [(r.kind, r.amount, r.unit_price) for r in history] == [
            (TradeKind.SELL, Decimal("1"), Decimal("150")),
            (TradeKind.BUY, Decimal("2"), Decimal("100")),
        ]
        assert ledger.verify("alice")['valid']

    def test_wallet_page(self, store):
        """What a wallet page shows after a few trades."""
        provision_account(store, "bob")
        ledger = Ledger(store)
        favorites = FavoritesRegistry(store)

        ledger.buy("bob", "bitcoin", "0.05", "60000")
        ledger.buy("bob", "ether", "1.5", "3000")
        favorites.add("bob", "bitcoin", "BTC", "Bitcoin")
        favorites.add("bob", "solana", "SOL", "Solana")

        portfolio = value_portfolio(store, "bob", {"bitcoin": "64000"})
        assert [h.asset_id for h in portfolio.holdings] == [USD, "bitcoin", "ether"]
        assert portfolio.holding(USD).value_usd == Decimal("2500")
        assert portfolio.holding("bitcoin").value_usd == Decimal("3200")
        assert portfolio.unpriced == ["ether"]
        assert portfolio.total_value_usd == Decimal("5700")
        assert [f.symbol for f in favorites.list("bob")] == ["BTC", "SOL"]
