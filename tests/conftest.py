"""
conftest.py - Shared pytest fixtures for tradeledger tests

Provides common fixtures used across unit, conformance and functional tests:
- A deterministic clock
- Both Record Store implementations, alone and parametrized
- Ledgers and provisioned users over those stores
"""

from decimal import Decimal

import pytest

from tradeledger import (
    FavoritesRegistry, Ledger, MemoryStore, SqlStore, provision_account,
)

from tests.fakes import FakeClock, STORE_KINDS


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def fund(store, user_id: str, grant: Decimal = Decimal("10000.00")) -> str:
    """Provision a user and return its id."""
    provision_account(store, user_id, username=user_id.title(), initial_grant=grant)
    return user_id


# =============================================================================
# STORE FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    """Clock advancing one second per reading, starting 2025-01-01 UTC."""
    return FakeClock()


@pytest.fixture
def memory_store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def sql_store(tmp_path, clock):
    """SqlStore over a fresh database file."""
    store = SqlStore(f"sqlite:///{tmp_path / 'ledger.sqlite'}", clock=clock)
    yield store
    store.close()


@pytest.fixture(params=STORE_KINDS)
def store(request):
    """Every Record Store implementation, one test run each."""
    return request.getfixturevalue(f"{request.param}_store")


# =============================================================================
# LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def ledger(store):
    """Ledger over the parametrized store."""
    return Ledger(store)


@pytest.fixture
def alice(store):
    """alice provisioned with the default 10000.00 usd grant."""
    return fund(store, "alice")


@pytest.fixture
def bob(store):
    return fund(store, "bob")


@pytest.fixture
def favorites(store):
    return FavoritesRegistry(store)
