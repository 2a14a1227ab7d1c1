"""
ledger.py - Buy/sell state transition over a Record Store

The Ledger is the only component that mutates balances after provisioning.

Key responsibilities:
    - Validates every trade request before touching storage
    - Applies both legs and appends the transaction record as one unit of work
    - Returns rejections as TradeResult values, never as half-applied state
    - Replays a user's transaction log to verify stored balances
"""

from __future__ import annotations
from collections import defaultdict
from decimal import Decimal, DecimalException, Inexact, Underflow, localcontext
from typing import Any, Dict, Iterable, List, Optional, Union
import logging

from .config import LedgerConfig
from .core import (
    # Types
    BalanceMap, TradeKind, TradeResult, TransactionRecord, Numeric,
    # Constants
    LEDGER_CONTEXT, USD, ZERO,
    # Exceptions
    LedgerError, InvalidArgument, InsufficientFunds, InsufficientHoldings, StorageFault,
    # Helper functions
    validate_trade_request,
)
from .store import RecordStore, StoreSession

logger = logging.getLogger(__name__)


def apply_trade(
    session: StoreSession,
    asset_id: str,
    kind: TradeKind,
    amount: Decimal,
    unit_price: Decimal,
) -> None:
    """
    Stage both legs of a validated trade and its transaction row.

    Absent balance rows read as zero. Raises before staging anything when the
    user cannot cover the trade, so a rejection leaves the session untouched.
    Every leg must be exact: a product or sum that would round, overflow or
    underflow the ledger context is refused.

    Raises:
        InvalidArgument: a leg cannot be represented exactly
        InsufficientFunds: buy costs more than the usd balance
        InsufficientHoldings: sell exceeds the asset balance
    """
    with localcontext(LEDGER_CONTEXT) as ctx:
        ctx.traps[Inexact] = True
        ctx.traps[Underflow] = True

        usd = session.get_balance(USD)
        holding = session.get_balance(asset_id)
        try:
            notional = amount * unit_price
            if kind is TradeKind.BUY:
                new_usd, new_holding = usd - notional, holding + amount
            else:
                new_usd, new_holding = usd + notional, holding - amount
        except DecimalException as exc:
            raise InvalidArgument(
                f"{session.user_id}: {amount} {asset_id} at {unit_price} usd "
                f"cannot be represented exactly"
            ) from exc

        if kind is TradeKind.BUY:
            if usd < notional:
                raise InsufficientFunds(
                    f"{session.user_id}: buying {amount} {asset_id} costs {notional} usd, "
                    f"balance is {usd}"
                )
            session.set_balance(USD, new_usd)
            session.set_balance(asset_id, new_holding)
        else:
            if holding < amount:
                raise InsufficientHoldings(
                    f"{session.user_id}: selling {amount} {asset_id}, balance is {holding}"
                )
            session.set_balance(asset_id, new_holding)
            session.set_balance(USD, new_usd)

    session.append_transaction(asset_id, kind, amount, unit_price)


def replay_balances(
    records: Iterable[TransactionRecord],
    initial: Optional[BalanceMap] = None,
) -> BalanceMap:
    """
    Rebuild balances by replaying transaction records in id order.

    Args:
        records: Transaction records of one user
        initial: Balances before the first record (default: empty)

    Returns:
        Balance map after every record has been applied
    """
    balances: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    balances.update(initial or {})
    with localcontext(LEDGER_CONTEXT):
        for record in sorted(records, key=lambda r: r.id):
            balances[USD] += record.usd_delta
            balances[record.asset_id] += record.asset_delta
    return dict(balances)


class Ledger:
    """
    Trading ledger over a Record Store.

    Every trade runs inside one unit of work: read balances, check
    sufficiency, write both legs, append the record, commit. A failure at
    any step rolls the whole unit back.

    Thread Safety:
        Safe to share between threads. Trades of one user are serialized by
        the store; trades of different users proceed independently.

    Example:
        store = MemoryStore()
        provision_account(store, "alice")
        ledger = Ledger(store)

        result = ledger.trade("alice", "bitcoin", "buy", "0.5", "64000")
        if result.ok:
            print(result.record)
        else:
            print(result.error_kind, result.error)
    """

    def __init__(
        self,
        store: RecordStore,
        config: Optional[LedgerConfig] = None,
        verbose: Optional[bool] = None,
    ):
        """
        Create a ledger.

        Args:
            store: Record Store holding balances and the transaction log
            config: Ledger configuration (default: LedgerConfig())
            verbose: Log a boxed receipt per applied trade (default: config.verbose)
        """
        self.store = store
        self.config = config or LedgerConfig()
        self.verbose = self.config.verbose if verbose is None else verbose

    def __repr__(self) -> str:
        return f"Ledger({self.store!r})"

    # ========================================================================
    # TRADING (Mutating)
    # ========================================================================

    def trade(
        self,
        user_id: str,
        asset_id: str,
        kind: Union[TradeKind, str],
        amount: Numeric,
        unit_price: Numeric,
    ) -> TradeResult:
        """
        Execute a buy or sell atomically.

        Args:
            user_id: Verified user id from the authentication collaborator
            asset_id: Token traded against usd
            kind: TradeKind or "buy"/"sell"
            amount: Token quantity, > 0
            unit_price: usd per token, > 0

        Returns:
            TradeResult with status APPLIED and the committed record, or
            status REJECTED and one of InvalidArgument, NotFound,
            InsufficientFunds, InsufficientHoldings, StorageFault.
            A rejected trade changed nothing.
        """
        try:
            trade_kind, qty, price = validate_trade_request(asset_id, kind, amount, unit_price)
        except LedgerError as exc:
            return self._reject(user_id, asset_id, exc)

        try:
            with self.store.transaction(user_id) as session:
                apply_trade(session, asset_id, trade_kind, qty, price)
        except StorageFault as exc:
            logger.error("trade rolled back for %s on %s: %s", user_id, asset_id, exc)
            return TradeResult.rejected(exc)
        except LedgerError as exc:
            return self._reject(user_id, asset_id, exc)

        record = session.records[0]
        logger.info("applied %r", record)
        if self.verbose:
            logger.info("\n%s", record.describe())
        return TradeResult.applied(record)

    def buy(self, user_id: str, asset_id: str, amount: Numeric, unit_price: Numeric) -> TradeResult:
        return self.trade(user_id, asset_id, TradeKind.BUY, amount, unit_price)

    def sell(self, user_id: str, asset_id: str, amount: Numeric, unit_price: Numeric) -> TradeResult:
        return self.trade(user_id, asset_id, TradeKind.SELL, amount, unit_price)

    @staticmethod
    def _reject(user_id: str, asset_id: str, error: LedgerError) -> TradeResult:
        logger.info("rejected trade for %s on %s [%s]: %s",
                    user_id, asset_id, error.kind.value, error)
        return TradeResult.rejected(error)

    # ========================================================================
    # READS
    # ========================================================================

    def get_balance(self, user_id: str, asset_id: str) -> Decimal:
        """Balance of one asset, Decimal("0") when the user never held it."""
        return self.store.get_balances(user_id).get(asset_id, ZERO)

    def get_balances(self, user_id: str) -> BalanceMap:
        """Consistent snapshot of all the user's balance rows."""
        return self.store.get_balances(user_id)

    def history(self, user_id: str, newest_first: bool = True) -> List[TransactionRecord]:
        """
        The user's transaction records.

        Args:
            user_id: User whose history to read
            newest_first: Most recent first (default) or id order
        """
        records = self.store.list_transactions(user_id)
        if newest_first:
            records.reverse()
        return records

    # ========================================================================
    # VERIFICATION
    # ========================================================================

    def verify(self, user_id: str, initial: Optional[BalanceMap] = None) -> Dict[str, Any]:
        """
        Check that the stored balances equal a replay of the transaction log.

        The comparison is exact: Decimal arithmetic leaves no tolerance to
        hide drift behind.

        Args:
            user_id: User to verify
            initial: Balances at provisioning (default: the configured usd grant)

        Returns:
            Dict with keys:
            - 'valid': bool - True if every asset matches
            - 'balances': BalanceMap - stored balances
            - 'replayed': BalanceMap - balances rebuilt from the log
            - 'discrepancies': List[Dict] - asset, stored, replayed, difference

        Example:
            result = ledger.verify("alice")
            assert result['valid'], result['discrepancies']
        """
        if initial is None:
            initial = {USD: self.config.initial_grant}
        balances, records = self.store.snapshot(user_id)
        replayed = replay_balances(records, initial)

        discrepancies = []
        for asset_id in sorted(set(balances) | set(replayed)):
            stored = balances.get(asset_id, ZERO)
            expected = replayed.get(asset_id, ZERO)
            if stored != expected:
                discrepancies.append({
                    'asset': asset_id,
                    'stored': stored,
                    'replayed': expected,
                    'difference': stored - expected,
                })

        return {
            'valid': not discrepancies,
            'balances': balances,
            'replayed': replayed,
            'discrepancies': discrepancies,
        }
