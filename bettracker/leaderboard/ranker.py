"""
Leaderboard ranking.

Ranks a tenant's users by ROI over a time window. Unfiltered boards read the
cached UserStats rows; sport/bet-type boards aggregate the matching settled
bets on the fly with the same arithmetic. Either way the result goes through
LeaderboardCache.
"""
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple, Union

from dateutil.relativedelta import relativedelta

from bettracker.betting.stats import aggregate
from bettracker.config import LeaderboardSettings
from bettracker.core.protocols import RecordStore
from bettracker.exceptions import InvalidInputError
from bettracker.leaderboard.cache import LeaderboardCache
from bettracker.schema import (
    Bet,
    CapperSummary,
    Leaderboard,
    RankedEntry,
    TERMINAL_RESULTS,
    Timeframe,
    User,
    UserStats,
    utcnow,
)
from bettracker.utils.observability import Logger, MetricsRegistry, get_metrics

logger = Logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_WINDOWS = {
    Timeframe.DAILY: relativedelta(days=1),
    Timeframe.WEEKLY: relativedelta(weeks=1),
    Timeframe.MONTHLY: relativedelta(months=1),
}


def parse_timeframe(value: Union[str, Timeframe, None]) -> Timeframe:
    """Unknown or missing timeframes fall back to monthly."""
    if value is None:
        return Timeframe.MONTHLY
    try:
        return Timeframe(value)
    except ValueError:
        logger.log_warning("unknown_timeframe", timeframe=str(value), fallback="monthly")
        return Timeframe.MONTHLY


def timeframe_cutoff(timeframe: Timeframe, now: datetime) -> datetime:
    if timeframe is Timeframe.ALL_TIME:
        return EPOCH
    return now - _WINDOWS[timeframe]


def rank_entries(rows: List[Tuple[UserStats, User]]) -> List[RankedEntry]:
    """Order by ROI descending (stable) and number 1..N."""
    ordered = sorted(rows, key=lambda row: row[0].roi, reverse=True)
    return [
        RankedEntry(
            rank=position,
            user_id=user.id,
            external_user_id=user.external_user_id,
            username=user.username,
            display_name=user.display_name,
            is_verified=user.is_verified,
            is_capper=user.is_capper,
            total_bets=stats.total_bets,
            win_rate=stats.win_rate,
            roi=stats.roi,
            net_profit=stats.net_profit,
            current_streak=stats.current_streak,
            units_won=stats.units_won,
        )
        for position, (stats, user) in enumerate(ordered, start=1)
    ]


class LeaderboardRanker:
    """Computes tenant leaderboards and capper summaries."""

    def __init__(
        self,
        store: RecordStore,
        cache: LeaderboardCache,
        config: Optional[LeaderboardSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.store = store
        self.cache = cache
        self.config = config or LeaderboardSettings()
        self.clock = clock or utcnow
        self.metrics = metrics or get_metrics()

    def get_leaderboard(
        self,
        tenant_id: str,
        timeframe: Union[str, Timeframe, None] = None,
        sport: Optional[str] = None,
        bet_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Leaderboard:
        """
        Ranked users for a tenant.

        A fresh cached snapshot is returned as-is with ``cached=True`` and its
        original generation time. On a miss the ranking is computed, stored
        for the cache TTL, and returned with ``cached=False``.
        """
        frame = parse_timeframe(timeframe or self.config.default_timeframe)
        limit = self.config.default_limit if limit is None else limit
        if not 1 <= limit <= self.config.max_limit:
            raise InvalidInputError(f"limit must be between 1 and {self.config.max_limit}: {limit}")
        sport = sport or None
        bet_type = bet_type or None

        snapshot = self.cache.get(tenant_id, frame, sport, bet_type)
        if snapshot is not None:
            return Leaderboard(
                tenant_id=tenant_id,
                timeframe=frame,
                entries=snapshot.entries[:limit],
                cached=True,
                generated_at=snapshot.generated_at,
                sport=sport,
                bet_type=bet_type,
            )

        start = time.perf_counter()
        entries = self.compute(tenant_id, frame, sport, bet_type)
        duration = time.perf_counter() - start
        self.metrics.leaderboard_compute_latency.observe(duration)
        logger.log_event(
            "leaderboard_computed",
            tenant_id=tenant_id,
            timeframe=frame.value,
            sport=sport,
            bet_type=bet_type,
            entries=len(entries),
            duration_ms=round(duration * 1000, 2),
        )

        snapshot = self.cache.put(tenant_id, frame, sport, bet_type, entries)
        return Leaderboard(
            tenant_id=tenant_id,
            timeframe=frame,
            entries=entries[:limit],
            cached=False,
            generated_at=snapshot.generated_at,
            sport=sport,
            bet_type=bet_type,
        )

    def compute(
        self,
        tenant_id: str,
        timeframe: Timeframe,
        sport: Optional[str] = None,
        bet_type: Optional[str] = None,
    ) -> List[RankedEntry]:
        """Full ranking without touching the cache."""
        cutoff = timeframe_cutoff(timeframe, self.clock())
        if sport or bet_type:
            rows = self._filtered_rows(tenant_id, cutoff, sport, bet_type)
        else:
            rows = self.store.list_user_stats(
                tenant_id, updated_since=cutoff, min_total_bets=self.config.min_bets
            )
        return rank_entries([(stats, user) for stats, user in rows if user.is_active])

    def _filtered_rows(
        self,
        tenant_id: str,
        cutoff: datetime,
        sport: Optional[str],
        bet_type: Optional[str],
    ) -> List[Tuple[UserStats, User]]:
        bets = self.store.list_bets(
            tenant_id,
            results=list(TERMINAL_RESULTS),
            sport=sport,
            bet_type=bet_type,
            chronological=True,
        )
        by_user: Dict[int, List[Bet]] = defaultdict(list)
        for bet in bets:
            by_user[bet.user_id].append(bet)

        rows = []
        for user_id in sorted(by_user):
            user_bets = by_user[user_id]
            last_settled = max(b.settled_at or b.created_at or EPOCH for b in user_bets)
            if last_settled < cutoff or len(user_bets) < self.config.min_bets:
                continue
            user = self.store.get_user(user_id, tenant_id)
            if user is None:
                continue
            rows.append((aggregate(user_id, tenant_id, user_bets, updated_at=last_settled), user))
        return rows

    def top_cappers(self, tenant_id: str, limit: int = 10, recent_picks: int = 5) -> List[CapperSummary]:
        """Cappers by ROI, each with their most recent picks."""
        summaries = []
        for stats, user in self.store.list_user_stats(tenant_id, cappers_only=True):
            if not user.is_active:
                continue
            picks = self.store.list_picks(tenant_id, capper_ids=[user.id], limit=recent_picks)
            summaries.append(CapperSummary(user=user, stats=stats, recent_picks=picks))
            if len(summaries) >= limit:
                break
        return summaries

    def invalidate(self, tenant_id: str) -> int:
        return self.cache.invalidate(tenant_id)
