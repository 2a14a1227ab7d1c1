"""
sql_store.py - Durable Record Store on SQLAlchemy

Persists identities, balances, transactions and favorites in four tables.
Amounts are stored as exact decimal text so that a balance read back equals,
digit for digit, the Decimal that was written.

SQLite is the target engine. Writing transactions are opened with
BEGIN IMMEDIATE, which takes the database write lock up front; together
with the in-process per-user locks this serializes read-modify-write
sequences, and the busy timeout bounds how long a writer waits. Reads run
in deferred transactions that never commit, so they see the last committed
state without queueing behind a writer.
"""

from __future__ import annotations
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterator, List, Optional, Tuple
import logging
import threading

from sqlalchemy import (
    DateTime, ForeignKey, Integer, String, UniqueConstraint, create_engine,
    event, func, select, delete,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from .core import (
    AlreadyExists, BalanceMap, Favorite, Identity, NotFound,
    StorageFault, TradeKind, TransactionRecord, ZERO, utc_now,
)
from .store import Clock, DEFAULT_LOCK_TIMEOUT, UserLocks, _require_user_id

logger = logging.getLogger(__name__)


# ============================================================================
# COLUMN TYPES
# ============================================================================

class DecimalText(TypeDecorator):
    """Exact Decimal stored as its string form."""

    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            raise TypeError(f"expected Decimal, got {type(value).__name__}")
        return str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else Decimal(value)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetime on engines that store naive values."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        return None if value is None else value.replace(tzinfo=timezone.utc)


# ============================================================================
# TABLES
# ============================================================================

class Base(DeclarativeBase):
    pass


class IdentityRow(Base):
    __tablename__ = "identities"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    username: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class BalanceRow(Base):
    __tablename__ = "balances"
    __table_args__ = (
        UniqueConstraint("user_id", "asset_id", name="uq_balances_user_asset"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String, ForeignKey("identities.user_id", ondelete="CASCADE"), nullable=False, index=True
    )
    asset_id: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)


class TransactionRow(Base):
    __tablename__ = "transactions"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String, ForeignKey("identities.user_id"), nullable=False, index=True
    )
    asset_id: Mapped[str] = mapped_column(String, nullable=False)
    kind: Mapped[str] = mapped_column(String(4), nullable=False)
    amount: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    def to_record(self) -> TransactionRecord:
        return TransactionRecord(
            id=self.id,
            user_id=self.user_id,
            asset_id=self.asset_id,
            kind=TradeKind(self.kind),
            amount=self.amount,
            unit_price=self.unit_price,
            timestamp=self.timestamp,
        )


class FavoriteRow(Base):
    __tablename__ = "favorites"
    __table_args__ = (
        UniqueConstraint("user_id", "asset_id", name="uq_favorites_user_asset"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String, ForeignKey("identities.user_id", ondelete="CASCADE"), nullable=False, index=True
    )
    asset_id: Mapped[str] = mapped_column(String, nullable=False)
    symbol: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    def to_favorite(self) -> Favorite:
        return Favorite(self.user_id, self.asset_id, self.symbol, self.name, self.created_at)


# ============================================================================
# ENGINE
# ============================================================================

def _is_memory_url(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


def create_sqlite_engine(url: str, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> Engine:
    """
    Create an engine that emits BEGIN itself.

    pysqlite's own transaction handling is switched off so that SQLAlchemy's
    "begin" event controls exactly when the write lock is taken. Connections
    carrying the execution option sqlite_immediate=True start with
    BEGIN IMMEDIATE, all others with a deferred BEGIN.
    """
    connect_args = {"timeout": lock_timeout, "check_same_thread": False}
    if _is_memory_url(url):
        # One shared connection, otherwise every checkout sees a fresh empty database.
        engine = create_engine(url, connect_args=connect_args, poolclass=StaticPool)
    else:
        engine = create_engine(url, connect_args=connect_args)

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin(conn):
        if conn.get_execution_options().get("sqlite_immediate"):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")

    return engine


# ============================================================================
# SESSION
# ============================================================================

class _SqlSession:
    """Unit of work over a SqlStore. Created by SqlStore.transaction()."""

    def __init__(self, store: SqlStore, session: Session, user_id: str, create: bool):
        self.user_id = user_id
        self.records: List[TransactionRecord] = []
        self._store = store
        self._session = session
        self._create = create
        self._staged_identity: Optional[Identity] = None
        self._pending: List[TransactionRow] = []

    def _row(self, asset_id: str) -> Optional[BalanceRow]:
        return self._session.execute(
            select(BalanceRow).where(
                BalanceRow.user_id == self.user_id, BalanceRow.asset_id == asset_id
            )
        ).scalar_one_or_none()

    def get_balance(self, asset_id: str) -> Decimal:
        row = self._row(asset_id)
        return row.amount if row is not None else ZERO

    def set_balance(self, asset_id: str, amount: Decimal) -> None:
        if amount < ZERO:
            raise StorageFault(
                f"refusing to write negative balance {amount} {asset_id} for {self.user_id}"
            )
        row = self._row(asset_id)
        if row is None:
            self._session.add(BalanceRow(user_id=self.user_id, asset_id=asset_id, amount=amount))
        else:
            row.amount = amount
        self._session.flush()

    def append_transaction(
        self, asset_id: str, kind: TradeKind, amount: Decimal, unit_price: Decimal
    ) -> None:
        row = TransactionRow(
            user_id=self.user_id,
            asset_id=asset_id,
            kind=kind.value,
            amount=amount,
            unit_price=unit_price,
            timestamp=self._store._next_timestamp(self._session),
        )
        self._session.add(row)
        self._session.flush()
        self._pending.append(row)

    def create_identity(self, username: Optional[str] = None) -> Identity:
        if not self._create or self._staged_identity is not None:
            raise AlreadyExists(f"user {self.user_id} already exists")
        row = IdentityRow(user_id=self.user_id, username=username, created_at=self._store._clock())
        self._session.add(row)
        self._session.flush()
        self._staged_identity = Identity(row.user_id, row.created_at, row.username)
        return self._staged_identity


# ============================================================================
# STORE
# ============================================================================

class SqlStore:
    """
    Record Store backed by a relational database through SQLAlchemy.

    Args:
        url: SQLAlchemy database URL, e.g. "sqlite:///ledger.sqlite"
        clock: Source of commit timestamps (default: UTC wall clock)
        lock_timeout: Seconds to wait for a user lock or the database write lock
        engine: Pre-built engine; overrides url when given

    Example:
        store = SqlStore("sqlite:///ledger.sqlite")
        ledger = Ledger(store)
    """

    def __init__(
        self,
        url: str = "sqlite://",
        clock: Optional[Clock] = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        engine: Optional[Engine] = None,
    ):
        self.url = url
        self.engine = engine or create_sqlite_engine(url, lock_timeout)
        self._clock: Clock = clock or utc_now
        self._locks = UserLocks(lock_timeout)
        self._writer = sessionmaker(
            bind=self.engine.execution_options(sqlite_immediate=True), expire_on_commit=False
        )
        self._reader = sessionmaker(bind=self.engine, expire_on_commit=False)
        # A shared in-memory connection cannot run two transactions at once.
        self._serial = threading.RLock() if _is_memory_url(url) and engine is None else None
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StorageFault(f"cannot initialize schema at {url}") from exc

    def __repr__(self) -> str:
        return f"SqlStore({self.url!r})"

    def close(self) -> None:
        self.engine.dispose()

    def _guard(self):
        return self._serial if self._serial is not None else nullcontext()

    @contextmanager
    def _begin(self) -> Iterator[Session]:
        """Writing transaction, committed on clean exit; SQL errors become StorageFault."""
        with self._guard():
            try:
                with self._writer.begin() as session:
                    yield session
            except SQLAlchemyError as exc:
                logger.error("storage failure at %s: %s", self.url, exc)
                raise StorageFault(str(exc)) from exc

    @contextmanager
    def _read(self) -> Iterator[Session]:
        """Deferred read transaction, rolled back on exit."""
        with self._guard():
            try:
                with self._reader() as session:
                    yield session
            except SQLAlchemyError as exc:
                logger.error("storage failure at %s: %s", self.url, exc)
                raise StorageFault(str(exc)) from exc

    def _next_timestamp(self, session: Session) -> datetime:
        ts = self._clock()
        last = session.execute(select(func.max(TransactionRow.timestamp))).scalar_one_or_none()
        if last is not None and ts < last:
            ts = last
        return ts

    @staticmethod
    def _exists(session: Session, user_id: str) -> bool:
        return session.get(IdentityRow, user_id) is not None

    def _require(self, session: Session, user_id: str) -> None:
        if not self._exists(session, user_id):
            raise NotFound(f"user {user_id} not found")

    # ------------------------------------------------------------------------
    # Units of work
    # ------------------------------------------------------------------------

    @contextmanager
    def transaction(self, user_id: str, create: bool = False) -> Iterator[_SqlSession]:
        _require_user_id(user_id)
        with self._locks.hold(user_id), self._begin() as session:
            exists = self._exists(session, user_id)
            if create and exists:
                raise AlreadyExists(f"user {user_id} already exists")
            if not create and not exists:
                raise NotFound(f"user {user_id} not found")
            unit = _SqlSession(self, session, user_id, create)
            yield unit
            if create and unit._staged_identity is None:
                raise StorageFault(f"identity for {user_id} was never staged")
        # sessionmaker.begin() has committed at this point.
        unit.records = [row.to_record() for row in unit._pending]

    # ------------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------------

    def has_identity(self, user_id: str) -> bool:
        with self._read() as session:
            return self._exists(session, user_id)

    def get_identity(self, user_id: str) -> Identity:
        with self._read() as session:
            row = session.get(IdentityRow, user_id)
            if row is None:
                raise NotFound(f"user {user_id} not found")
            return Identity(row.user_id, row.created_at, row.username)

    def get_balances(self, user_id: str) -> BalanceMap:
        with self._read() as session:
            self._require(session, user_id)
            return self._balances(session, user_id)

    def list_transactions(self, user_id: str) -> List[TransactionRecord]:
        with self._read() as session:
            self._require(session, user_id)
            return self._transactions(session, user_id)

    def snapshot(self, user_id: str) -> Tuple[BalanceMap, List[TransactionRecord]]:
        # One read transaction, so both selects see the same commit.
        with self._read() as session:
            self._require(session, user_id)
            return self._balances(session, user_id), self._transactions(session, user_id)

    @staticmethod
    def _balances(session: Session, user_id: str) -> BalanceMap:
        rows = session.execute(
            select(BalanceRow).where(BalanceRow.user_id == user_id).order_by(BalanceRow.id)
        ).scalars()
        return {row.asset_id: row.amount for row in rows}

    @staticmethod
    def _transactions(session: Session, user_id: str) -> List[TransactionRecord]:
        rows = session.execute(
            select(TransactionRow)
            .where(TransactionRow.user_id == user_id)
            .order_by(TransactionRow.id)
        ).scalars()
        return [row.to_record() for row in rows]

    # ------------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------------

    def add_favorite(self, user_id: str, asset_id: str, symbol: str, name: str) -> bool:
        with self._begin() as session:
            self._require(session, user_id)
            stmt = sqlite_insert(FavoriteRow.__table__).values(
                user_id=user_id,
                asset_id=asset_id,
                symbol=symbol,
                name=name,
                created_at=self._clock(),
            ).on_conflict_do_nothing(index_elements=["user_id", "asset_id"])
            return session.execute(stmt).rowcount == 1

    def remove_favorite(self, user_id: str, asset_id: str) -> bool:
        with self._begin() as session:
            self._require(session, user_id)
            result = session.execute(
                delete(FavoriteRow).where(
                    FavoriteRow.user_id == user_id, FavoriteRow.asset_id == asset_id
                )
            )
            return result.rowcount == 1

    def list_favorites(self, user_id: str) -> List[Favorite]:
        with self._read() as session:
            self._require(session, user_id)
            rows = session.execute(
                select(FavoriteRow).where(FavoriteRow.user_id == user_id).order_by(FavoriteRow.id)
            ).scalars()
            return [row.to_favorite() for row in rows]
