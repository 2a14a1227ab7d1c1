"""
Core types and pure functions for the trading ledger.

This module provides the foundational data structures for the wallet ledger:
1. Decimal context shared by every balance computation
2. Enums: TradeKind, ExecuteResult, ErrorKind
3. Exceptions: LedgerError and the error taxonomy
4. Immutable records: Identity, TransactionRecord, Favorite, TradeResult
5. Request validation: pure checks applied before any storage is touched

Nothing in this module touches storage. The Ledger is the only component
that mutates balances.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, Context, ROUND_HALF_EVEN, InvalidOperation, localcontext
from enum import Enum
from typing import Dict, Optional, Tuple, Union, Any


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Balances are exact Decimals and are never quantized: a buy must debit
# exactly amount * unit_price. Decimal contexts are thread-local, so the
# ledger enters this context explicitly (decimal.localcontext) around every
# computation instead of mutating the global context of the importing thread.
#
#   - prec=50: products of two 25-digit operands stay exact
#   - rounding=ROUND_HALF_EVEN: only reached past 50 significant digits
#
LEDGER_CONTEXT = Context(prec=50, rounding=ROUND_HALF_EVEN)


# ============================================================================
# CONSTANTS
# ============================================================================

# The numéraire. Every other asset id is an opaque token identifier.
USD = "usd"

# Cash granted to every identity when it is provisioned.
INITIAL_GRANT = Decimal("10000.00")

ZERO = Decimal("0")


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from asset id to the quantity held by one user.
BalanceMap = Dict[str, Decimal]

# Anything the public API accepts as a quantity or a price.
Numeric = Union[Decimal, int, float, str]


def utc_now() -> datetime:
    """Default store clock."""
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================

class TradeKind(Enum):
    """Direction of a trade, seen from the user's token balance."""
    BUY = "buy"
    SELL = "sell"

    @classmethod
    def parse(cls, value: Union[TradeKind, str]) -> TradeKind:
        """
        Accept a TradeKind or its case-insensitive string value.

        Raises:
            InvalidArgument: If the value names no known kind
        """
        if isinstance(value, TradeKind):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise InvalidArgument(f"unknown trade kind: {value!r}")


class ExecuteResult(Enum):
    """
    Outcome of a trade attempt.

    APPLIED: Both legs and the transaction record were committed.
    REJECTED: Nothing was committed. The attached error says why.
    """
    APPLIED = "applied"
    REJECTED = "rejected"


class ErrorKind(Enum):
    """Classification carried by every LedgerError and every rejected TradeResult."""
    INVALID_ARGUMENT = "invalid_argument"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INSUFFICIENT_HOLDINGS = "insufficient_holdings"
    STORAGE_FAULT = "storage_fault"
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    PRICE_UNAVAILABLE = "price_unavailable"

    @property
    def retryable(self) -> bool:
        """True for transient failures a caller may retry unchanged."""
        return self in (ErrorKind.STORAGE_FAULT, ErrorKind.PRICE_UNAVAILABLE)


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    kind: ErrorKind = ErrorKind.STORAGE_FAULT

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class InvalidArgument(LedgerError):
    """Raised for a malformed request: non-positive amount or price, unknown kind, empty id."""
    kind = ErrorKind.INVALID_ARGUMENT


class InsufficientFunds(LedgerError):
    """Raised when a buy costs more than the user's usd balance."""
    kind = ErrorKind.INSUFFICIENT_FUNDS


class InsufficientHoldings(LedgerError):
    """Raised when a sell exceeds the user's balance of the asset."""
    kind = ErrorKind.INSUFFICIENT_HOLDINGS


class StorageFault(LedgerError):
    """Raised when a read, write, lock or commit fails. The operation was rolled back."""
    kind = ErrorKind.STORAGE_FAULT


class NotFound(LedgerError):
    """Raised when operating on a user that has never been provisioned."""
    kind = ErrorKind.NOT_FOUND


class AlreadyExists(LedgerError):
    """Raised when provisioning an identity that already exists."""
    kind = ErrorKind.ALREADY_EXISTS


class PriceUnavailable(LedgerError):
    """Raised by a pricing source that cannot currently quote."""
    kind = ErrorKind.PRICE_UNAVAILABLE


# ============================================================================
# NUMERIC COERCION
# ============================================================================

def to_decimal(value: Any, field_name: str = "value") -> Decimal:
    """
    Convert a caller-supplied number to a finite Decimal.

    Floats go through str() so that 0.1 becomes Decimal("0.1") rather than
    its binary expansion. Booleans are rejected even though they are ints.

    Raises:
        InvalidArgument: If the value is not numeric or not finite
    """
    if isinstance(value, bool):
        raise InvalidArgument(f"{field_name} must be numeric, got {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise InvalidArgument(f"{field_name} must be numeric, got {value!r}") from None
    else:
        raise InvalidArgument(f"{field_name} must be numeric, got {type(value).__name__}")
    if not result.is_finite():
        raise InvalidArgument(f"{field_name} must be finite, got {value!r}")
    return result


def validate_trade_request(
    asset_id: str,
    kind: Union[TradeKind, str],
    amount: Numeric,
    unit_price: Numeric,
) -> Tuple[TradeKind, Decimal, Decimal]:
    """
    Check a trade request before any storage is touched.

    Args:
        asset_id: Token identifier (non-empty, not the numéraire)
        kind: buy or sell
        amount: Token quantity, must be > 0
        unit_price: Price of one token in usd, must be > 0

    Returns:
        (kind, amount, unit_price) normalized to TradeKind and Decimal

    Raises:
        InvalidArgument: On any violated precondition
    """
    if not isinstance(asset_id, str) or not asset_id.strip():
        raise InvalidArgument("asset_id cannot be empty")
    if asset_id == USD:
        raise InvalidArgument("cannot trade usd against itself")
    trade_kind = TradeKind.parse(kind)
    qty = to_decimal(amount, "amount")
    price = to_decimal(unit_price, "unit_price")
    if qty <= ZERO:
        raise InvalidArgument(f"amount must be positive, got {qty}")
    if price <= ZERO:
        raise InvalidArgument(f"unit_price must be positive, got {price}")
    return trade_kind, qty, price


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Identity:
    """A provisioned user. The id comes from the authentication collaborator."""
    user_id: str
    created_at: datetime
    username: Optional[str] = None


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    """
    An executed, immutable trade - represents FACT.

    Created by the store when a trade commits. Records are never updated or
    deleted, and ordering by id agrees with ordering by timestamp.

    Attributes:
        id: Monotonic id assigned at append time
        user_id: Owner of both legs
        asset_id: Token traded against usd
        kind: BUY or SELL
        amount: Token quantity (> 0)
        unit_price: usd per token (> 0)
        timestamp: Commit time, non-decreasing within a store
    """
    id: int
    user_id: str
    asset_id: str
    kind: TradeKind
    amount: Decimal
    unit_price: Decimal
    timestamp: datetime

    @property
    def notional(self) -> Decimal:
        """usd value of the trade: amount * unit_price."""
        with localcontext(LEDGER_CONTEXT):
            return self.amount * self.unit_price

    @property
    def usd_delta(self) -> Decimal:
        """Signed effect on the usd balance."""
        return -self.notional if self.kind is TradeKind.BUY else self.notional

    @property
    def asset_delta(self) -> Decimal:
        """Signed effect on the asset balance."""
        return self.amount if self.kind is TradeKind.BUY else -self.amount

    def describe(self) -> str:
        """Boxed multi-line receipt, used by the ledger in verbose mode."""
        w = 72
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            f"┌{bar}┐",
            f"│{pad(' Transaction #' + str(self.id))}│",
            f"├{bar}┤",
            f"│{pad('   user       : ' + self.user_id)}│",
            f"│{pad('   timestamp  : ' + self.timestamp.isoformat())}│",
            f"│{pad('   kind       : ' + self.kind.value)}│",
            f"│{pad('   amount     : ' + str(self.amount) + ' ' + self.asset_id)}│",
            f"│{pad('   unit_price : ' + str(self.unit_price) + ' ' + USD)}│",
            f"├{bar}┤",
            f"│{pad('   ' + USD + ' : ' + _signed(self.usd_delta))}│",
            f"│{pad('   ' + self.asset_id + ' : ' + _signed(self.asset_delta))}│",
            f"└{bar}┘",
        ]
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (f"TransactionRecord(#{self.id} {self.kind.value} {self.amount} "
                f"{self.asset_id} @ {self.unit_price}, user={self.user_id})")


def _signed(value: Decimal) -> str:
    return f"+{value}" if value >= ZERO else str(value)


@dataclass(frozen=True, slots=True)
class Favorite:
    """
    A watched asset. Symbol and name are captured at first insertion and
    never overwritten by later inserts.
    """
    user_id: str
    asset_id: str
    symbol: str
    name: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class TradeResult:
    """
    Result value returned by Ledger.trade().

    Exactly one of record/error is set. Rejections are values, not
    exceptions; unwrap() converts back to the exception style.
    """
    status: ExecuteResult
    record: Optional[TransactionRecord] = None
    error: Optional[LedgerError] = None

    def __post_init__(self):
        if self.status is ExecuteResult.APPLIED and self.record is None:
            raise ValueError("APPLIED result requires a record")
        if self.status is ExecuteResult.REJECTED and self.error is None:
            raise ValueError("REJECTED result requires an error")

    @classmethod
    def applied(cls, record: TransactionRecord) -> TradeResult:
        return cls(ExecuteResult.APPLIED, record=record)

    @classmethod
    def rejected(cls, error: LedgerError) -> TradeResult:
        return cls(ExecuteResult.REJECTED, error=error)

    @property
    def ok(self) -> bool:
        return self.status is ExecuteResult.APPLIED

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error is not None else None

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable

    def unwrap(self) -> TransactionRecord:
        """Return the record, or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.record
