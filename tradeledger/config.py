"""
Configuration for the trading ledger.

Settings are plain constructor arguments; from_env() reads the same
settings from environment variables for deployed services.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Mapping, Optional
import os

from .core import INITIAL_GRANT, InvalidArgument, ZERO, to_decimal

ENV_PREFIX = "TRADELEDGER_"

_TRUE = {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class LedgerConfig:
    """
    Attributes:
        initial_grant: usd credited to every newly provisioned identity
        lock_timeout: Seconds a unit of work may wait for a user's records
        database_url: SQLAlchemy URL; None keeps everything in memory
        verbose: Log a boxed receipt for every applied trade
    """
    initial_grant: Decimal = INITIAL_GRANT
    lock_timeout: float = 5.0
    database_url: Optional[str] = None
    verbose: bool = False

    def __post_init__(self):
        errors = self.validate()
        if errors:
            raise InvalidArgument("; ".join(errors))

    def validate(self) -> List[str]:
        """Return a list of error messages (empty if valid)."""
        errors = []
        if not isinstance(self.initial_grant, Decimal) or not self.initial_grant.is_finite():
            errors.append(f"initial_grant must be a finite Decimal, got {self.initial_grant!r}")
        elif self.initial_grant < ZERO:
            errors.append(f"initial_grant cannot be negative, got {self.initial_grant}")
        if self.lock_timeout <= 0:
            errors.append(f"lock_timeout must be positive, got {self.lock_timeout}")
        return errors

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> LedgerConfig:
        """
        Build a config from TRADELEDGER_* variables; unset ones keep their defaults.

        Recognized: TRADELEDGER_INITIAL_GRANT, TRADELEDGER_LOCK_TIMEOUT,
        TRADELEDGER_DATABASE_URL, TRADELEDGER_VERBOSE.
        """
        env = os.environ if environ is None else environ
        kwargs = {}
        grant = env.get(ENV_PREFIX + "INITIAL_GRANT")
        if grant:
            kwargs["initial_grant"] = to_decimal(grant, "initial_grant")
        timeout = env.get(ENV_PREFIX + "LOCK_TIMEOUT")
        if timeout:
            try:
                kwargs["lock_timeout"] = float(timeout)
            except ValueError:
                raise InvalidArgument(f"lock_timeout must be a number, got {timeout!r}") from None
        url = env.get(ENV_PREFIX + "DATABASE_URL")
        if url:
            kwargs["database_url"] = url
        verbose = env.get(ENV_PREFIX + "VERBOSE")
        if verbose:
            kwargs["verbose"] = verbose.strip().lower() in _TRUE
        return cls(**kwargs)


def open_store(config: Optional[LedgerConfig] = None, clock=None):
    """
    Open the Record Store a config describes.

    Returns a SqlStore when database_url is set, a MemoryStore otherwise.
    """
    config = config or LedgerConfig()
    if config.database_url:
        from .sql_store import SqlStore
        return SqlStore(config.database_url, clock=clock, lock_timeout=config.lock_timeout)
    from .store import MemoryStore
    return MemoryStore(clock=clock, lock_timeout=config.lock_timeout)
