"""
Bankroll ledger: named bankrolls per user and an append-only transaction log.

The cached ``current_amount`` on a bankroll always equals its
``starting_amount`` plus the signed sum of its transactions. Every posting
(transaction insert + balance move) is a single atomic store operation.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional
import logging

from bettracker.betting.odds import profit, validate_stake
from bettracker.config import LedgerSettings
from bettracker.core.protocols import RecordStore
from bettracker.exceptions import (
    BankrollNotFoundError,
    ForbiddenError,
    InvalidInputError,
    InvalidResultError,
    InvalidTransactionTypeError,
    NoActiveBankrollError,
)
from bettracker.schema import (
    Bankroll,
    Bet,
    BetResult,
    Transaction,
    TransactionType,
    utcnow,
)
from bettracker.utils.money import money
from bettracker.utils.observability import MetricsRegistry, get_metrics

logger = logging.getLogger(__name__)


@dataclass
class BalancePoint:
    """Balance after one transaction during a replay."""
    transaction_id: int
    type: TransactionType
    signed_amount: Decimal
    balance: Decimal
    created_at: Optional[datetime]


@dataclass
class LedgerCheck:
    """Replayed vs cached balance for one bankroll."""
    bankroll_id: int
    cached_balance: Decimal
    replayed_balance: Decimal
    transactions: int

    @property
    def consistent(self) -> bool:
        return self.cached_balance == self.replayed_balance


@dataclass
class LedgerAudit:
    """Result of checking every bankroll in a tenant."""
    tenant_id: str
    checked: int = 0
    mismatches: List[LedgerCheck] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatches


def settlement_reference(bet_id: int) -> str:
    """Unique ledger reference for a bet's settlement posting."""
    return f"bet:{bet_id}"


class BankrollLedger:
    """
    Bankroll ledger over a record store.

    Tracks:
    - Named bankrolls per user (optionally sport/sportsbook specific)
    - Deposits, withdrawals and manual entries
    - Win/loss postings from bet settlement (once per bet)
    - Replay and audit of cached balances
    """

    def __init__(
        self,
        store: RecordStore,
        config: Optional[LedgerSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.store = store
        self.config = config or LedgerSettings()
        self.clock = clock or utcnow
        self.metrics = metrics or get_metrics()

    # ------------------------------------------------------------------
    # Bankrolls
    # ------------------------------------------------------------------
    def open_bankroll(
        self,
        user_id: int,
        tenant_id: str,
        starting_amount,
        name: Optional[str] = None,
        currency: Optional[str] = None,
        sport: Optional[str] = None,
        sportsbook: Optional[str] = None,
        max_bet_percentage=None,
        stop_loss_threshold=None,
        target_profit=None,
    ) -> Bankroll:
        """
        Open a bankroll. The starting amount is the replay origin, so no
        opening transaction is written.
        """
        starting = validate_stake(starting_amount, "starting_amount")
        max_pct = (
            money(max_bet_percentage) if max_bet_percentage is not None
            else money(self.config.default_max_bet_percentage)
        )
        if not 0 < max_pct <= 100:
            raise InvalidInputError(f"max_bet_percentage must be in (0, 100]: {max_bet_percentage!r}")

        now = self.clock()
        bankroll = self.store.insert_bankroll({
            "user_id": user_id,
            "tenant_id": tenant_id,
            "name": name or self.config.default_bankroll_name,
            "currency": currency or self.config.default_currency,
            "sport": sport,
            "sportsbook": sportsbook,
            "starting_amount": starting,
            "current_amount": starting,
            "total_deposited": money(0),
            "total_withdrawn": money(0),
            "max_bet_percentage": max_pct,
            "stop_loss_threshold": (
                validate_stake(stop_loss_threshold, "stop_loss_threshold")
                if stop_loss_threshold is not None else None
            ),
            "target_profit": (
                validate_stake(target_profit, "target_profit")
                if target_profit is not None else None
            ),
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        })
        logger.info(
            f"Opened bankroll #{bankroll.id} '{bankroll.name}' for user {user_id} "
            f"with {starting} {bankroll.currency}"
        )
        return bankroll

    def get_bankroll(self, bankroll_id: int, tenant_id: str, user_id: Optional[int] = None) -> Bankroll:
        bankroll = self.store.get_bankroll(bankroll_id, tenant_id)
        if bankroll is None:
            raise BankrollNotFoundError(bankroll_id, tenant_id)
        if user_id is not None and bankroll.user_id != user_id:
            raise ForbiddenError(f"Bankroll {bankroll_id} does not belong to user {user_id}")
        return bankroll

    def list_bankrolls(self, user_id: int, tenant_id: str, active_only: bool = True) -> List[Bankroll]:
        return self.store.list_bankrolls(tenant_id, user_id=user_id, active_only=active_only)

    def deactivate_bankroll(self, bankroll_id: int, tenant_id: str, user_id: Optional[int] = None) -> Bankroll:
        """Soft-deactivate; bankrolls with history are never deleted."""
        self.get_bankroll(bankroll_id, tenant_id, user_id)
        self.store.set_bankroll_active(bankroll_id, tenant_id, False, self.clock())
        logger.info(f"Deactivated bankroll #{bankroll_id}")
        return self.get_bankroll(bankroll_id, tenant_id)

    def select_bankroll(self, user_id: int, tenant_id: str, sport: Optional[str] = None) -> Bankroll:
        """
        Pick the bankroll a settlement posts to: the active bankroll dedicated
        to ``sport`` if any, else the first active one opened, which is the
        oldest.
        """
        active = self.store.list_bankrolls(tenant_id, user_id=user_id, active_only=True)
        if not active:
            raise NoActiveBankrollError(user_id, tenant_id)
        if sport:
            for bankroll in active:
                if bankroll.sport and bankroll.sport.lower() == sport.lower():
                    return bankroll
        # Listed newest first
        return active[-1]

    # ------------------------------------------------------------------
    # Postings
    # ------------------------------------------------------------------
    def record_transaction(
        self,
        bankroll_id: int,
        tenant_id: str,
        type,
        amount,
        description: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> Transaction:
        """
        Append a manual ledger entry and move the balance.

        Raises:
            InvalidTransactionTypeError: Unknown type
            InvalidAmountError: amount <= 0
            BankrollNotFoundError / ForbiddenError: Bankroll not visible to caller
            InsufficientBankrollError: Withdrawal exceeds the balance
        """
        try:
            txn_type = TransactionType(type)
        except ValueError:
            raise InvalidTransactionTypeError(
                f"Invalid transaction type {type!r}. "
                f"Must be one of: {', '.join(t.value for t in TransactionType)}"
            )
        value = validate_stake(amount, "amount")
        if user_id is not None:
            self.get_bankroll(bankroll_id, tenant_id, user_id)

        txn = self.store.post_transaction(
            bankroll_id, tenant_id, txn_type, value, self.clock(), description=description
        )
        self.metrics.ledger_transactions.labels(type=txn_type.value).inc()
        return txn

    def deposit(self, bankroll_id: int, tenant_id: str, amount, description: Optional[str] = None) -> Transaction:
        return self.record_transaction(
            bankroll_id, tenant_id, TransactionType.DEPOSIT, amount, description
        )

    def withdraw(self, bankroll_id: int, tenant_id: str, amount, description: Optional[str] = None) -> Transaction:
        return self.record_transaction(
            bankroll_id, tenant_id, TransactionType.WITHDRAWAL, amount, description
        )

    def apply_settlement(self, bet: Bet, bankroll_id: Optional[int] = None) -> Optional[Transaction]:
        """
        Post a settled bet's outcome to the owner's bankroll.

        Won posts a ``win`` of the profit, lost posts a ``loss`` of the stake,
        push posts nothing. The posting is keyed by the bet id, so applying
        the same settlement twice leaves the ledger unchanged.

        Returns:
            The new transaction, or None when nothing was posted
        """
        if not bet.result.is_terminal:
            raise InvalidResultError(bet.result.value)
        if bet.result is BetResult.PUSH:
            return None

        if bankroll_id is not None:
            bankroll = self.get_bankroll(bankroll_id, bet.tenant_id, bet.user_id)
        else:
            bankroll = self.select_bankroll(bet.user_id, bet.tenant_id, bet.sport)

        net = profit(bet.result, bet.stake, bet.actual_return)
        if bet.result is BetResult.WON:
            txn_type, amount = TransactionType.WIN, net
        else:
            txn_type, amount = TransactionType.LOSS, -net
        if amount <= 0:
            return None

        txn = self.store.post_transaction(
            bankroll.id,
            bet.tenant_id,
            txn_type,
            amount,
            self.clock(),
            description=f"{bet.result.value.capitalize()}: {bet.description}",
            reference=settlement_reference(bet.id),
        )
        if txn is not None:
            self.metrics.ledger_transactions.labels(type=txn_type.value).inc()
        return txn

    # ------------------------------------------------------------------
    # History & audit
    # ------------------------------------------------------------------
    def list_transactions(
        self,
        bankroll_id: int,
        tenant_id: str,
        limit: Optional[int] = 50,
        user_id: Optional[int] = None,
    ) -> List[Transaction]:
        """Newest first."""
        self.get_bankroll(bankroll_id, tenant_id, user_id)
        return self.store.list_transactions(bankroll_id, tenant_id, limit=limit)

    def replay(self, bankroll_id: int, tenant_id: str) -> List[BalancePoint]:
        """Running balance after each transaction, oldest first."""
        bankroll = self.get_bankroll(bankroll_id, tenant_id)
        balance = bankroll.starting_amount
        points = []
        for txn in self.store.list_transactions(bankroll_id, tenant_id, ascending=True):
            balance += txn.signed_amount
            points.append(BalancePoint(
                transaction_id=txn.id,
                type=txn.type,
                signed_amount=txn.signed_amount,
                balance=balance,
                created_at=txn.created_at,
            ))
        return points

    def verify(self, bankroll_id: int, tenant_id: str) -> LedgerCheck:
        """Compare the cached balance with a replay of the log."""
        bankroll = self.get_bankroll(bankroll_id, tenant_id)
        points = self.replay(bankroll_id, tenant_id)
        replayed = points[-1].balance if points else bankroll.starting_amount
        check = LedgerCheck(
            bankroll_id=bankroll_id,
            cached_balance=bankroll.current_amount,
            replayed_balance=replayed,
            transactions=len(points),
        )
        if not check.consistent:
            logger.error(
                f"Ledger mismatch on bankroll #{bankroll_id}: "
                f"cached {check.cached_balance} != replayed {check.replayed_balance}"
            )
        return check

    def audit(self, tenant_id: str) -> LedgerAudit:
        """Verify every bankroll (active or not) in a tenant."""
        result = LedgerAudit(tenant_id=tenant_id)
        for bankroll in self.store.list_bankrolls(tenant_id, active_only=False):
            check = self.verify(bankroll.id, tenant_id)
            result.checked += 1
            if not check.consistent:
                result.mismatches.append(check)
        logger.info(
            f"Ledger audit for {tenant_id}: {result.checked} bankrolls, "
            f"{len(result.mismatches)} mismatches"
        )
        return result
