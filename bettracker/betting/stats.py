"""
Per-user statistics derived from settled bets.

UserStats rows are a cache: ``recompute`` rebuilds one from the bets table
and is safe to call any number of times.
"""
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, List, Optional
import logging

from bettracker.betting.odds import profit, roi_on_settled_bet
from bettracker.core.protocols import RecordStore
from bettracker.schema import Bet, BetResult, TERMINAL_RESULTS, UserStats, utcnow
from bettracker.utils.money import ZERO, money, percent, ratio
from bettracker.utils.observability import MetricsRegistry, get_metrics

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def settlement_order(bet: Bet):
    """Sort key: settlement time, then creation time, then id."""
    return (bet.settled_at or bet.created_at or _EPOCH, bet.created_at or _EPOCH, bet.id)


def current_streak(settled: List[Bet]) -> int:
    """
    Walk back from the most recent settled bet.

    Consecutive wins count up and the first loss ends the scan. A loss that
    is the most recent result gives -1, never lower. Pushes are skipped.
    """
    streak = 0
    for bet in reversed(settled):
        if bet.result is BetResult.WON:
            streak += 1
        elif bet.result is BetResult.LOST:
            if streak == 0:
                streak = -1
            break
    return streak


def aggregate(user_id: int, tenant_id: str, bets: Iterable[Bet], pending: int = 0,
              updated_at: Optional[datetime] = None) -> UserStats:
    """
    Build a UserStats record from a user's bets.

    Non-terminal bets in ``bets`` are ignored; ``pending`` is passed in
    separately since callers usually only load settled rows.
    """
    settled = sorted((b for b in bets if b.result in TERMINAL_RESULTS), key=settlement_order)

    wins = sum(1 for b in settled if b.result is BetResult.WON)
    losses = sum(1 for b in settled if b.result is BetResult.LOST)
    pushes = sum(1 for b in settled if b.result is BetResult.PUSH)
    total = len(settled)

    net_profit = money(sum((profit(b.result, b.stake, b.actual_return) for b in settled), ZERO))
    staked = sum((b.stake for b in settled), ZERO)
    units = ratio(sum((roi_on_settled_bet(b.result, b.stake, b.actual_return) for b in settled), ZERO))

    return UserStats(
        user_id=user_id,
        tenant_id=tenant_id,
        total_bets=total,
        wins=wins,
        losses=losses,
        pushes=pushes,
        pending=pending,
        win_rate=percent(Decimal(wins), Decimal(total)),
        roi=percent(net_profit, staked),
        net_profit=net_profit,
        current_streak=current_streak(settled),
        units_won=units,
        updated_at=updated_at,
    )


class StatsAggregator:
    """Recomputes and serves the cached UserStats rows."""

    def __init__(
        self,
        store: RecordStore,
        clock: Optional[Callable[[], datetime]] = None,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.store = store
        self.clock = clock or utcnow
        self.metrics = metrics or get_metrics()

    def recompute(self, user_id: int, tenant_id: str) -> UserStats:
        """
        Rebuild and upsert the stats row for (user, tenant).

        Read and write share one store transaction, so a recompute that read
        fewer settled bets can never land after one that read more.
        """
        start = time.perf_counter()
        updated_at = self.clock()
        stats = self.store.recompute_user_stats(
            user_id,
            tenant_id,
            lambda settled, pending: aggregate(
                user_id, tenant_id, settled, pending=pending, updated_at=updated_at
            ),
        )
        self.metrics.stats_recompute_latency.observe(time.perf_counter() - start)

        logger.debug(
            f"Recomputed stats for user {user_id}: {stats.total_bets} settled, "
            f"roi {stats.roi}%, streak {stats.current_streak}"
        )
        return stats

    def get_user_stats(self, user_id: int, tenant_id: str) -> UserStats:
        """Stored stats, or an all-zero record for a user who has none yet."""
        stats = self.store.get_user_stats(user_id, tenant_id)
        if stats is None:
            return UserStats(user_id=user_id, tenant_id=tenant_id)
        return stats
