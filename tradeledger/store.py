"""
store.py - Record Store protocol and the in-memory store

The Record Store keeps three keyed collections per identity:
    - Balances: (user_id, asset_id) -> amount
    - Transactions: append-only log ordered by assigned id
    - Favorites: (user_id, asset_id) -> display fields

Mutations go through a unit of work opened with RecordStore.transaction().
A unit of work holds the user's lock for its whole life, stages every write,
and publishes them together on exit. Leaving the block with an exception
discards the staged writes, so a partial debit/credit pair is never visible.
"""

from __future__ import annotations
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import (
    Callable, ContextManager, Dict, Iterator, List, Optional, Protocol,
    Tuple, runtime_checkable,
)
import logging
import threading

from .core import (
    AlreadyExists, BalanceMap, Favorite, Identity, InvalidArgument, NotFound,
    StorageFault, TradeKind, TransactionRecord, ZERO, utc_now,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

DEFAULT_LOCK_TIMEOUT = 5.0


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class StoreSession(Protocol):
    """
    Read/write view of one user's records inside a unit of work.

    Reads see the session's own staged writes. Nothing is visible to other
    sessions until the unit of work commits.
    """

    user_id: str

    # Records appended by this session, populated once the commit succeeds.
    records: List[TransactionRecord]

    def get_balance(self, asset_id: str) -> Decimal:
        """Return the balance, Decimal("0") when no row exists."""
        ...

    def set_balance(self, asset_id: str, amount: Decimal) -> None:
        """Stage a new balance, creating the row if absent."""
        ...

    def append_transaction(
        self, asset_id: str, kind: TradeKind, amount: Decimal, unit_price: Decimal
    ) -> None:
        """Stage a transaction row; id and timestamp are assigned at commit."""
        ...

    def create_identity(self, username: Optional[str] = None) -> Identity:
        """Stage the identity row. Only valid in a transaction opened with create=True."""
        ...


@runtime_checkable
class RecordStore(Protocol):
    """Storage contract consumed by the Ledger, the Favorites Registry, Valuation and Provisioning."""

    def transaction(self, user_id: str, create: bool = False) -> ContextManager[StoreSession]:
        """
        Open a unit of work over one user's records.

        Raises:
            NotFound: create is False and the user does not exist
            AlreadyExists: create is True and the user already exists
            StorageFault: the lock could not be acquired in time, or the commit failed
        """
        ...

    def has_identity(self, user_id: str) -> bool: ...

    def get_identity(self, user_id: str) -> Identity: ...

    def get_balances(self, user_id: str) -> BalanceMap:
        """Consistent snapshot of every balance row of the user."""
        ...

    def list_transactions(self, user_id: str) -> List[TransactionRecord]:
        """The user's transaction records in id order."""
        ...

    def snapshot(self, user_id: str) -> Tuple[BalanceMap, List[TransactionRecord]]:
        """
        Balances and transaction records read from the same committed state.

        Takes no user lock and commits nothing.
        """
        ...

    def add_favorite(self, user_id: str, asset_id: str, symbol: str, name: str) -> bool:
        """Insert unless present. Returns True if a row was inserted."""
        ...

    def remove_favorite(self, user_id: str, asset_id: str) -> bool:
        """Delete if present. Returns True if a row was deleted."""
        ...

    def list_favorites(self, user_id: str) -> List[Favorite]:
        """The user's favorites in insertion order."""
        ...


# ============================================================================
# PER-USER LOCKS
# ============================================================================

class UserLocks:
    """
    Lazily created lock per user id.

    Every trade touches the user's usd balance, so one lock per user
    serializes all read-modify-write sequences of that user while leaving
    other users independent.
    """

    def __init__(self, timeout: float = DEFAULT_LOCK_TIMEOUT):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        """
        Hold the user's lock for the duration of the block.

        Raises:
            StorageFault: If the lock is not acquired within the timeout
        """
        lock = self._lock_for(user_id)
        if not lock.acquire(timeout=self.timeout):
            raise StorageFault(
                f"timed out after {self.timeout}s waiting for records of {user_id}"
            )
        try:
            yield
        finally:
            lock.release()


def _require_user_id(user_id: str) -> None:
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidArgument("user_id cannot be empty")


# ============================================================================
# IN-MEMORY STORE
# ============================================================================

class _MemorySession:
    """Unit of work over a MemoryStore. Created by MemoryStore.transaction()."""

    def __init__(self, store: MemoryStore, user_id: str, create: bool):
        self.user_id = user_id
        self.records: List[TransactionRecord] = []
        self._store = store
        self._create = create
        self._identity: Optional[Identity] = None
        self._staged_balances: BalanceMap = {}
        self._staged_transactions: List[Tuple[str, TradeKind, Decimal, Decimal]] = []

    def get_balance(self, asset_id: str) -> Decimal:
        if asset_id in self._staged_balances:
            return self._staged_balances[asset_id]
        return self._store._committed_balance(self.user_id, asset_id)

    def set_balance(self, asset_id: str, amount: Decimal) -> None:
        self._staged_balances[asset_id] = amount

    def append_transaction(
        self, asset_id: str, kind: TradeKind, amount: Decimal, unit_price: Decimal
    ) -> None:
        self._staged_transactions.append((asset_id, kind, amount, unit_price))

    def create_identity(self, username: Optional[str] = None) -> Identity:
        if not self._create:
            raise AlreadyExists(f"user {self.user_id} already exists")
        if self._identity is not None:
            raise AlreadyExists(f"user {self.user_id} already staged")
        self._identity = Identity(self.user_id, self._store._clock(), username)
        return self._identity


class MemoryStore:
    """
    Thread-safe in-memory Record Store.

    Committed state lives in plain dicts. A unit of work stages its writes
    privately and publishes them under a short commit lock, so readers always
    observe either the pre- or post-state of a commit. Transaction ids and
    timestamps are assigned under the same commit lock, which keeps id order
    and timestamp order in agreement.

    Example:
        store = MemoryStore()
        with store.transaction("alice", create=True) as session:
            session.create_identity("alice")
            session.set_balance("usd", Decimal("10000.00"))
    """

    def __init__(self, clock: Optional[Clock] = None, lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        self._clock: Clock = clock or utc_now
        self._locks = UserLocks(lock_timeout)
        self._commit_lock = threading.RLock()
        self._identities: Dict[str, Identity] = {}
        self._balances: Dict[str, BalanceMap] = {}
        self._transactions: List[TransactionRecord] = []
        self._transactions_by_user: Dict[str, List[TransactionRecord]] = {}
        # dicts keep insertion order, which is the listing order
        self._favorites: Dict[str, Dict[str, Favorite]] = {}
        self._next_id: int = 1
        self._last_timestamp: Optional[datetime] = None

    def __repr__(self) -> str:
        return f"MemoryStore({len(self._identities)} users, {len(self._transactions)} transactions)"

    # ------------------------------------------------------------------------
    # Units of work
    # ------------------------------------------------------------------------

    @contextmanager
    def transaction(self, user_id: str, create: bool = False) -> Iterator[_MemorySession]:
        _require_user_id(user_id)
        with self._locks.hold(user_id):
            exists = self.has_identity(user_id)
            if create and exists:
                raise AlreadyExists(f"user {user_id} already exists")
            if not create and not exists:
                raise NotFound(f"user {user_id} not found")
            session = _MemorySession(self, user_id, create)
            yield session
            # Reached only when the block exited cleanly; an exception skips
            # the publish and the staged writes are dropped with the session.
            self._publish(session)

    def _publish(self, session: _MemorySession) -> None:
        with self._commit_lock:
            if session._create and session._identity is None:
                raise StorageFault(f"identity for {session.user_id} was never staged")
            self._check_balances(session)
            records = []
            for asset_id, kind, amount, unit_price in session._staged_transactions:
                records.append(TransactionRecord(
                    id=self._next_id + len(records),
                    user_id=session.user_id,
                    asset_id=asset_id,
                    kind=kind,
                    amount=amount,
                    unit_price=unit_price,
                    timestamp=self._next_timestamp(),
                ))
            # All checks passed; from here on nothing can fail.
            if session._identity is not None:
                self._identities[session.user_id] = session._identity
                self._balances[session.user_id] = {}
                self._favorites[session.user_id] = {}
                self._transactions_by_user[session.user_id] = []
            self._balances[session.user_id].update(session._staged_balances)
            self._transactions.extend(records)
            self._transactions_by_user[session.user_id].extend(records)
            self._next_id += len(records)
            session.records = records

    def _check_balances(self, session: _MemorySession) -> None:
        for asset_id, amount in session._staged_balances.items():
            if amount < ZERO:
                raise StorageFault(
                    f"refusing to commit negative balance {amount} {asset_id} for {session.user_id}"
                )

    def _next_timestamp(self) -> datetime:
        ts = self._clock()
        if self._last_timestamp is not None and ts < self._last_timestamp:
            ts = self._last_timestamp
        self._last_timestamp = ts
        return ts

    def _committed_balance(self, user_id: str, asset_id: str) -> Decimal:
        with self._commit_lock:
            return self._balances.get(user_id, {}).get(asset_id, ZERO)

    # ------------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------------

    def has_identity(self, user_id: str) -> bool:
        with self._commit_lock:
            return user_id in self._identities

    def get_identity(self, user_id: str) -> Identity:
        with self._commit_lock:
            if user_id not in self._identities:
                raise NotFound(f"user {user_id} not found")
            return self._identities[user_id]

    def get_balances(self, user_id: str) -> BalanceMap:
        with self._commit_lock:
            if user_id not in self._identities:
                raise NotFound(f"user {user_id} not found")
            return dict(self._balances[user_id])

    def list_transactions(self, user_id: str) -> List[TransactionRecord]:
        with self._commit_lock:
            if user_id not in self._identities:
                raise NotFound(f"user {user_id} not found")
            return list(self._transactions_by_user[user_id])

    def snapshot(self, user_id: str) -> Tuple[BalanceMap, List[TransactionRecord]]:
        with self._commit_lock:
            if user_id not in self._identities:
                raise NotFound(f"user {user_id} not found")
            return dict(self._balances[user_id]), list(self._transactions_by_user[user_id])

    # ------------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------------

    def add_favorite(self, user_id: str, asset_id: str, symbol: str, name: str) -> bool:
        with self._commit_lock:
            if user_id not in self._identities:
                raise NotFound(f"user {user_id} not found")
            favorites = self._favorites[user_id]
            if asset_id in favorites:
                return False
            favorites[asset_id] = Favorite(user_id, asset_id, symbol, name, self._clock())
            return True

    def remove_favorite(self, user_id: str, asset_id: str) -> bool:
        with self._commit_lock:
            if user_id not in self._identities:
                raise NotFound(f"user {user_id} not found")
            return self._favorites[user_id].pop(asset_id, None) is not None

    def list_favorites(self, user_id: str) -> List[Favorite]:
        with self._commit_lock:
            if user_id not in self._identities:
                raise NotFound(f"user {user_id} not found")
            return list(self._favorites[user_id].values())
