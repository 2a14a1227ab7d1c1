"""
test_config.py - Unit tests for LedgerConfig and open_store
"""

from decimal import Decimal

import pytest

from tradeledger import (
    INITIAL_GRANT, InvalidArgument, Ledger, LedgerConfig, MemoryStore, SqlStore,
    open_store, provision_account,
)


class TestLedgerConfig:

    def test_defaults(self):
        config = LedgerConfig()
        assert config.initial_grant == INITIAL_GRANT
        assert config.lock_timeout == 5.0
        assert config.database_url is None
        assert config.verbose is False
        assert config.validate() == []

    @pytest.mark.parametrize("kwargs", [
        {"initial_grant": Decimal("-1")},
        {"initial_grant": Decimal("NaN")},
        {"initial_grant": 100},
        {"lock_timeout": 0},
        {"lock_timeout": -2.5},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(InvalidArgument):
            LedgerConfig(**kwargs)

    def test_from_env(self):
        config = LedgerConfig.from_env({
            "TRADELEDGER_INITIAL_GRANT": "500.25",
            "TRADELEDGER_LOCK_TIMEOUT": "1.5",
            "TRADELEDGER_DATABASE_URL": "sqlite:///ledger.sqlite",
            "TRADELEDGER_VERBOSE": "Yes",
        })
        assert config.initial_grant == Decimal("500.25")
        assert config.lock_timeout == 1.5
        assert config.database_url == "sqlite:///ledger.sqlite"
        assert config.verbose is True

    def test_from_env_unset_keeps_defaults(self):
        assert LedgerConfig.from_env({}) == LedgerConfig()

    def test_from_env_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("TRADELEDGER_INITIAL_GRANT", "42")
        monkeypatch.delenv("TRADELEDGER_DATABASE_URL", raising=False)
        assert LedgerConfig.from_env().initial_grant == Decimal("42")

    @pytest.mark.parametrize("value", ["0", "false", "off"])
    def test_verbose_false_values(self, value):
        assert LedgerConfig.from_env({"TRADELEDGER_VERBOSE": value}).verbose is False

    @pytest.mark.parametrize("env", [
        {"TRADELEDGER_INITIAL_GRANT": "lots"},
        {"TRADELEDGER_LOCK_TIMEOUT": "soon"},
    ])
    def test_from_env_invalid(self, env):
        with pytest.raises(InvalidArgument):
            LedgerConfig.from_env(env)


class TestOpenStore:

    def test_memory_by_default(self):
        assert isinstance(open_store(), MemoryStore)

    def test_sql_for_database_url(self, tmp_path):
        config = LedgerConfig(database_url=f"sqlite:///{tmp_path / 'ledger.sqlite'}", lock_timeout=2.0)
        store = open_store(config)
        try:
            assert isinstance(store, SqlStore)
            provision_account(store, "alice", initial_grant=config.initial_grant)
            assert Ledger(store, config).buy("alice", "tok", "1", "1").ok
        finally:
            store.close()

    def test_verbose_follows_config(self):
        ledger = Ledger(MemoryStore(), LedgerConfig(verbose=True))
        assert ledger.verbose is True
        assert Ledger(MemoryStore(), LedgerConfig(verbose=True), verbose=False).verbose is False
