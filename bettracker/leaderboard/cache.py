"""
Leaderboard cache.

Ranked snapshots keyed by (tenant, timeframe, sport, bet type) with a TTL.
Entries are pure derived data: concurrent misses may both recompute and the
last write wins.
"""
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from bettracker.core.protocols import RecordStore
from bettracker.exceptions import StorageError
from bettracker.schema import LeaderboardSnapshot, RankedEntry, Timeframe, utcnow
from bettracker.utils.observability import Logger, MetricsRegistry, get_metrics

logger = Logger(__name__)


class LeaderboardCache:
    """Store-backed snapshot cache with Time-To-Live (TTL)."""

    def __init__(
        self,
        store: RecordStore,
        ttl_seconds: int = 3600,
        clock: Optional[Callable[[], datetime]] = None,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock or utcnow
        self.metrics = metrics or get_metrics()

    def get(
        self,
        tenant_id: str,
        timeframe: Timeframe,
        sport: Optional[str] = None,
        bet_type: Optional[str] = None,
    ) -> Optional[LeaderboardSnapshot]:
        """A fresh snapshot for the key, or None."""
        try:
            snapshot = self.store.get_leaderboard_snapshot(tenant_id, timeframe, sport, bet_type)
        except StorageError as e:
            logger.log_error("leaderboard_cache_read_failed", tenant_id=tenant_id, error=str(e))
            snapshot = None

        if snapshot is None or not snapshot.is_fresh(self.clock()):
            if snapshot is not None:
                logger.log_event(
                    "leaderboard_cache_stale",
                    tenant_id=tenant_id,
                    timeframe=timeframe.value,
                    expired_at=snapshot.expires_at.isoformat(),
                )
            self.metrics.leaderboard_requests.labels(cache="miss").inc()
            return None

        self.metrics.leaderboard_requests.labels(cache="hit").inc()
        logger.log_event(
            "leaderboard_cache_hit",
            tenant_id=tenant_id,
            timeframe=timeframe.value,
            sport=sport,
            bet_type=bet_type,
            entries=len(snapshot.entries),
        )
        return snapshot

    def put(
        self,
        tenant_id: str,
        timeframe: Timeframe,
        sport: Optional[str],
        bet_type: Optional[str],
        entries: List[RankedEntry],
    ) -> LeaderboardSnapshot:
        """Store a ranking; a failed write is logged and the snapshot still returned."""
        now = self.clock()
        snapshot = LeaderboardSnapshot(
            tenant_id=tenant_id,
            timeframe=timeframe,
            sport=sport,
            bet_type=bet_type,
            entries=entries,
            generated_at=now,
            expires_at=now + self.ttl,
        )
        try:
            self.store.put_leaderboard_snapshot(snapshot)
            logger.log_event(
                "leaderboard_cache_save",
                tenant_id=tenant_id,
                timeframe=timeframe.value,
                entries=len(entries),
                ttl=int(self.ttl.total_seconds()),
            )
        except StorageError as e:
            logger.log_error("leaderboard_cache_save_failed", tenant_id=tenant_id, error=str(e))
        return snapshot

    def invalidate(self, tenant_id: str) -> int:
        """Drop every snapshot for a tenant."""
        removed = self.store.delete_leaderboard_snapshots(tenant_id)
        logger.log_event("leaderboard_cache_invalidated", tenant_id=tenant_id, removed=removed)
        return removed
