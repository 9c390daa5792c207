"""
Protocol definitions for the record store.

These protocols define the interfaces that concrete implementations must follow.
Using Protocol allows duck typing while still providing type checking support.
Every read and write takes a tenant id; a record outside the caller's tenant
is indistinguishable from a missing one.
"""
from datetime import datetime
from decimal import Decimal
from typing import Protocol, Optional, List, Tuple, Dict, Any, Callable, runtime_checkable

from bettracker.schema import (
    Bankroll,
    Bet,
    BetResult,
    LeaderboardSnapshot,
    Pick,
    PickFollow,
    Timeframe,
    Transaction,
    TransactionType,
    User,
    UserStats,
)


@runtime_checkable
class RecordStore(Protocol):
    """
    Storage abstraction for the ledger and statistics engine.

    Implementations:
    - SQLiteRecordStore (default): single SQLite file, WAL journal
    - Future: PostgresRecordStore

    Required primitives: atomic insert, update-if-current-state,
    upsert-by-unique-key and select with filter/order/limit. The ledger
    posting is the one multi-statement operation and must be atomic.
    """

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def get_or_create_user(
        self,
        tenant_id: str,
        external_user_id: str,
        username: str,
        display_name: str,
        now: datetime,
    ) -> Tuple[User, bool]:
        """
        Fetch the member for an external identity, creating them if absent.

        Returns:
            (user, created)
        """
        ...

    def get_user(self, user_id: int, tenant_id: str) -> Optional[User]:
        ...

    def get_user_by_external_id(self, external_user_id: str, tenant_id: str) -> Optional[User]:
        ...

    def update_user_flags(self, user_id: int, tenant_id: str, **flags: bool) -> Optional[User]:
        """Set any of is_capper / is_verified / is_active."""
        ...

    # ------------------------------------------------------------------
    # Bets
    # ------------------------------------------------------------------
    def insert_bet(self, fields: Dict[str, Any]) -> Bet:
        ...

    def get_bet(self, bet_id: int, tenant_id: str) -> Optional[Bet]:
        ...

    def list_bets(
        self,
        tenant_id: str,
        user_id: Optional[int] = None,
        results: Optional[List[BetResult]] = None,
        sport: Optional[str] = None,
        bet_type: Optional[str] = None,
        chronological: bool = False,
        limit: Optional[int] = None,
    ) -> List[Bet]:
        """
        Select bets. ``chronological`` orders by settlement time (then
        creation, then id) ascending; otherwise newest first by creation.
        """
        ...

    def settle_bet_if_pending(
        self,
        bet_id: int,
        tenant_id: str,
        result: BetResult,
        actual_return: Decimal,
        settled_at: datetime,
    ) -> bool:
        """
        Write terminal fields only while the bet is still pending.

        Returns:
            True if this call performed the transition
        """
        ...

    # ------------------------------------------------------------------
    # Picks
    # ------------------------------------------------------------------
    def insert_pick(self, fields: Dict[str, Any]) -> Pick:
        ...

    def get_pick(self, pick_id: int, tenant_id: str) -> Optional[Pick]:
        ...

    def list_picks(
        self,
        tenant_id: str,
        access_tiers: Optional[List[str]] = None,
        capper_ids: Optional[List[int]] = None,
        sport: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Pick]:
        """Newest first by posting time."""
        ...

    def settle_pick_if_pending(
        self,
        pick_id: int,
        tenant_id: str,
        result: BetResult,
        actual_odds_american: Optional[int],
        roi: Decimal,
        settled_at: datetime,
    ) -> bool:
        ...

    def increment_pick_views(self, pick_id: int, tenant_id: str) -> bool:
        ...

    def insert_follow(self, fields: Dict[str, Any]) -> Optional[PickFollow]:
        """
        Insert a follow and bump the pick's follow counter atomically.

        Returns:
            None if the user already follows the pick

        Raises:
            PickNotFoundError: pick absent in this tenant
            AlreadySettledError: pick no longer pending when the write lands
        """
        ...

    def delete_follow(self, pick_id: int, user_id: int, tenant_id: str) -> bool:
        """Remove a follow and decrement the counter (floor 0) atomically."""
        ...

    def list_follows(self, pick_id: int, tenant_id: str) -> List[PickFollow]:
        ...

    def settle_follows(
        self,
        pick_id: int,
        tenant_id: str,
        result: BetResult,
        outcome: Callable[[PickFollow], Tuple[Optional[int], Decimal]],
    ) -> int:
        """
        Settle every pending follow of a pick in one transaction.
        ``outcome(follow)`` gives the (odds, profit_loss) to record.

        Returns:
            Number of follow rows updated
        """
        ...

    # ------------------------------------------------------------------
    # Bankrolls & ledger
    # ------------------------------------------------------------------
    def insert_bankroll(self, fields: Dict[str, Any]) -> Bankroll:
        ...

    def get_bankroll(self, bankroll_id: int, tenant_id: str) -> Optional[Bankroll]:
        ...

    def list_bankrolls(
        self,
        tenant_id: str,
        user_id: Optional[int] = None,
        active_only: bool = True,
    ) -> List[Bankroll]:
        """Newest first."""
        ...

    def set_bankroll_active(
        self, bankroll_id: int, tenant_id: str, active: bool, now: datetime
    ) -> bool:
        ...

    def post_transaction(
        self,
        bankroll_id: int,
        tenant_id: str,
        type: TransactionType,
        amount: Decimal,
        now: datetime,
        description: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> Optional[Transaction]:
        """
        Append a ledger entry and move the balance in one transaction.

        Returns:
            None when ``reference`` was already posted (idempotent replay)

        Raises:
            BankrollNotFoundError: Bankroll absent in this tenant
            InsufficientBankrollError: Withdrawal exceeds the balance
        """
        ...

    def list_transactions(
        self,
        bankroll_id: int,
        tenant_id: str,
        limit: Optional[int] = None,
        ascending: bool = False,
    ) -> List[Transaction]:
        ...

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------
    def recompute_user_stats(
        self,
        user_id: int,
        tenant_id: str,
        build: Callable[[List[Bet], int], UserStats],
    ) -> UserStats:
        """
        Load settled bets (chronological) and the pending count, then upsert
        ``build(settled, pending)`` in the same transaction.
        """
        ...

    def get_user_stats(self, user_id: int, tenant_id: str) -> Optional[UserStats]:
        ...

    def list_user_stats(
        self,
        tenant_id: str,
        updated_since: Optional[datetime] = None,
        min_total_bets: int = 0,
        cappers_only: bool = False,
    ) -> List[Tuple[UserStats, User]]:
        """Stats joined with their users, ordered by ROI descending."""
        ...

    # ------------------------------------------------------------------
    # Leaderboard cache
    # ------------------------------------------------------------------
    def get_leaderboard_snapshot(
        self,
        tenant_id: str,
        timeframe: Timeframe,
        sport: Optional[str],
        bet_type: Optional[str],
    ) -> Optional[LeaderboardSnapshot]:
        ...

    def put_leaderboard_snapshot(self, snapshot: LeaderboardSnapshot) -> None:
        """Upsert by key; last writer wins."""
        ...

    def delete_leaderboard_snapshots(self, tenant_id: str) -> int:
        ...
