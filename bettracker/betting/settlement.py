"""
Settlement coordinator: moves bets and picks from pending to a terminal result.

The terminal write is the primary fact and is guarded by the store's
update-only-if-pending primitive. Stats recompute, ledger posting and the
pick-follow cascade run afterwards as independent best-effort actions; each
is idempotent, so a failed one is repaired by running it again.
"""
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Tuple

from bettracker.betting.odds import (
    actual_return,
    coerce_result,
    settle_stake,
    unit_roi,
    validate_american_odds,
)
from bettracker.betting.ledger import BankrollLedger
from bettracker.betting.stats import StatsAggregator
from bettracker.core.protocols import RecordStore
from bettracker.exceptions import (
    AlreadySettledError,
    BetNotFoundError,
    ForbiddenError,
    NoActiveBankrollError,
    PickNotFoundError,
    StorageConflictError,
)
from bettracker.schema import Bet, BetResult, Pick, PickFollow, utcnow
from bettracker.utils.money import ZERO, money
from bettracker.utils.observability import Logger, MetricsRegistry, get_metrics

logger = Logger(__name__)


def follow_outcome(
    follow: PickFollow, result: BetResult, pick_odds: Optional[int]
) -> Tuple[Optional[int], Decimal]:
    """
    Outcome of a pick for one follower: (odds used, profit/loss).

    A follower's own odds win over the pick's. With a recorded stake the
    profit/loss is money; without one it is in units.
    """
    odds = follow.actual_odds_american if follow.actual_odds_american is not None else pick_odds
    if follow.bet_amount is None:
        return odds, unit_roi(result, odds)
    if result is BetResult.WON and odds is None:
        return odds, money(ZERO)
    return odds, settle_stake(result, follow.bet_amount, odds).profit


class SettlementCoordinator:
    """Settles bets and picks and fans the outcome out to stats and ledger."""

    def __init__(
        self,
        store: RecordStore,
        stats: StatsAggregator,
        ledger: BankrollLedger,
        clock: Optional[Callable[[], datetime]] = None,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.store = store
        self.stats = stats
        self.ledger = ledger
        self.clock = clock or utcnow
        self.metrics = metrics or get_metrics()

    # ------------------------------------------------------------------
    # Bets
    # ------------------------------------------------------------------
    def settle_bet(self, bet_id: int, result, user_id: int, tenant_id: str) -> Bet:
        """
        Settle a bet owned by ``user_id``.

        Raises:
            InvalidResultError: result not won/lost/push
            BetNotFoundError: bet absent in this tenant
            ForbiddenError: caller does not own the bet
            AlreadySettledError: bet already terminal (including a lost race)
            StorageConflictError: conditional write failed without a winner
        """
        result = coerce_result(result)
        bet = self.store.get_bet(bet_id, tenant_id)
        if bet is None:
            raise BetNotFoundError(bet_id, tenant_id)
        if bet.user_id != user_id:
            raise ForbiddenError(f"Bet {bet_id} does not belong to user {user_id}")
        if bet.is_settled:
            raise AlreadySettledError("bet", bet_id, bet.result.value)

        returned = actual_return(result, bet.stake, bet.potential_return)
        if not self.store.settle_bet_if_pending(bet_id, tenant_id, result, returned, self.clock()):
            current = self.store.get_bet(bet_id, tenant_id)
            if current is not None and current.is_settled:
                raise AlreadySettledError("bet", bet_id, current.result.value)
            raise StorageConflictError(f"Bet {bet_id} could not be settled; retry")

        settled = self.store.get_bet(bet_id, tenant_id)
        self.metrics.settlements.labels(kind="bet", result=result.value).inc()
        logger.log_event(
            "bet_settled",
            bet_id=bet_id,
            tenant_id=tenant_id,
            user_id=user_id,
            result=result.value,
            actual_return=str(returned),
        )

        self._best_effort("stats", bet_id, self.stats.recompute, user_id, tenant_id)
        self._best_effort("ledger", bet_id, self.ledger.apply_settlement, settled)
        return settled

    # ------------------------------------------------------------------
    # Picks
    # ------------------------------------------------------------------
    def settle_pick(
        self,
        pick_id: int,
        result,
        user_id: int,
        tenant_id: str,
        actual_odds: Optional[int] = None,
    ) -> Pick:
        """
        Settle a pick authored by ``user_id`` and cascade to its followers.

        ROI is per unit at ``actual_odds`` when given, otherwise at the
        recommended odds.
        """
        result = coerce_result(result)
        if actual_odds is not None:
            actual_odds = validate_american_odds(actual_odds)

        pick = self.store.get_pick(pick_id, tenant_id)
        if pick is None:
            raise PickNotFoundError(pick_id, tenant_id)
        if pick.capper_id != user_id:
            raise ForbiddenError(f"Pick {pick_id} was not posted by user {user_id}")
        if pick.is_settled:
            raise AlreadySettledError("pick", pick_id, pick.result.value)

        odds = actual_odds if actual_odds is not None else pick.recommended_odds_american
        roi = unit_roi(result, odds)
        if not self.store.settle_pick_if_pending(
            pick_id, tenant_id, result, actual_odds, roi, self.clock()
        ):
            current = self.store.get_pick(pick_id, tenant_id)
            if current is not None and current.is_settled:
                raise AlreadySettledError("pick", pick_id, current.result.value)
            raise StorageConflictError(f"Pick {pick_id} could not be settled; retry")

        settled = self.store.get_pick(pick_id, tenant_id)
        self.metrics.settlements.labels(kind="pick", result=result.value).inc()
        logger.log_event(
            "pick_settled",
            pick_id=pick_id,
            tenant_id=tenant_id,
            capper_id=user_id,
            result=result.value,
            roi=str(roi),
        )

        self._best_effort("follows", pick_id, self._cascade_follows, settled, result, odds)
        return settled

    def _cascade_follows(self, pick: Pick, result: BetResult, odds: Optional[int]) -> int:
        updated = self.store.settle_follows(
            pick.id,
            pick.tenant_id,
            result,
            lambda follow: follow_outcome(follow, result, odds),
        )
        logger.log_event("pick_follows_settled", pick_id=pick.id, follows=updated)
        return updated

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------
    def _best_effort(self, effect: str, record_id: int, fn: Callable, *args):
        """Run a post-commit action; failures are logged and counted, never raised."""
        try:
            return fn(*args)
        except NoActiveBankrollError as e:
            logger.log_warning(
                "settlement_ledger_skipped",
                record_id=record_id,
                user_id=e.user_id,
                reason="no_active_bankroll",
            )
        except Exception as e:
            # Terminal write is committed; later effects still run
            self.metrics.settlement_side_effect_failures.labels(effect=effect).inc()
            logger.log_error(
                "settlement_side_effect_failed",
                exc_info=e,
                effect=effect,
                record_id=record_id,
                error=str(e),
                error_type=type(e).__name__,
            )
        return None
