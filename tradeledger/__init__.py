"""
tradeledger - Simulated Wallet Ledger

Per-user balances in usd and tokens, atomic buy/sell against usd, an
append-only transaction log, a favorites watch list and usd valuation.

Usage:
    from tradeledger import Ledger, MemoryStore, provision_account, value_portfolio

    store = MemoryStore()
    provision_account(store, "alice")            # 10000.00 usd

    ledger = Ledger(store)
    ledger.buy("alice", "bitcoin", "0.1", "64000")
    result = ledger.sell("alice", "bitcoin", "5", "64000")
    result.error_kind                           # ErrorKind.INSUFFICIENT_HOLDINGS

    portfolio = value_portfolio(store, "alice", {"bitcoin": "65000"})
    portfolio.total_value_usd                   # Decimal('10100.00')
"""

# Core types
from .core import (
    TradeKind,
    ExecuteResult,
    ErrorKind,
    Identity,
    TransactionRecord,
    Favorite,
    TradeResult,
    LedgerError,
    InvalidArgument,
    InsufficientFunds,
    InsufficientHoldings,
    StorageFault,
    NotFound,
    AlreadyExists,
    PriceUnavailable,
    to_decimal,
    validate_trade_request,
    LEDGER_CONTEXT,
    INITIAL_GRANT,
    USD,
)

# Configuration
from .config import LedgerConfig, open_store

# Record Store
from .store import RecordStore, StoreSession, MemoryStore, UserLocks
from .sql_store import SqlStore, create_sqlite_engine

# Ledger
from .ledger import Ledger, apply_trade, replay_balances

# Favorites, provisioning, valuation
from .favorites import FavoritesRegistry
from .provisioning import provision_account
from .pricing_source import (
    PricingSource,
    StaticPricingSource,
    CallablePricingSource,
    as_pricing_source,
)
from .valuation import Holding, Portfolio, value_portfolio

__all__ = [
    # Core
    'TradeKind', 'ExecuteResult', 'ErrorKind',
    'Identity', 'TransactionRecord', 'Favorite', 'TradeResult',
    'LedgerError', 'InvalidArgument', 'InsufficientFunds', 'InsufficientHoldings',
    'StorageFault', 'NotFound', 'AlreadyExists', 'PriceUnavailable',
    'to_decimal', 'validate_trade_request',
    'LEDGER_CONTEXT', 'INITIAL_GRANT', 'USD',
    # Configuration
    'LedgerConfig', 'open_store',
    # Stores
    'RecordStore', 'StoreSession', 'MemoryStore', 'UserLocks',
    'SqlStore', 'create_sqlite_engine',
    # Ledger
    'Ledger', 'apply_trade', 'replay_balances',
    # Favorites
    'FavoritesRegistry',
    # Provisioning
    'provision_account',
    # Pricing
    'PricingSource', 'StaticPricingSource', 'CallablePricingSource', 'as_pricing_source',
    # Valuation
    'Holding', 'Portfolio', 'value_portfolio',
]

__version__ = '1.0.0'
