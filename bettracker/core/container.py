"""
Service Container - Process-owned wiring for the record store and services.

Usage:
    from bettracker.core import ServiceContainer

    # Default SQLite store from settings
    services = ServiceContainer()
    services.settlement.settle_bet(bet_id, "won", user_id, tenant_id)

    # Custom store / clock (tests)
    services = ServiceContainer(store=my_store, clock=lambda: fixed_now)

The store is constructed once and handed by reference to every component;
nothing below this module reaches for a global database handle.
"""
from datetime import datetime
from typing import Callable, Optional
import logging

from bettracker.config import Settings, settings as default_settings
from bettracker.core.protocols import RecordStore
from bettracker.schema import utcnow
from bettracker.utils.observability import MetricsRegistry, get_metrics

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class ServiceContainer:
    """
    Simple dependency injection container.

    Builds the default SQLite record store when none is supplied and wires
    every service against it.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        store: Optional[RecordStore] = None,
        clock: Optional[Clock] = None,
        metrics: Optional[MetricsRegistry] = None,
    ):
        # Local imports keep service modules free to import the container
        from bettracker.betting.ledger import BankrollLedger
        from bettracker.betting.picks import PickBoard
        from bettracker.betting.risk import BankrollRiskMonitor
        from bettracker.betting.settlement import SettlementCoordinator
        from bettracker.betting.stats import StatsAggregator
        from bettracker.betting.tracker import BetTracker
        from bettracker.community.members import MemberDirectory
        from bettracker.leaderboard.cache import LeaderboardCache
        from bettracker.leaderboard.ranker import LeaderboardRanker

        self.config = config or default_settings
        self.clock = clock or utcnow
        self.metrics = metrics or get_metrics()

        if store is None:
            from .storage import SQLiteRecordStore
            store = SQLiteRecordStore(
                db_path=str(self.config.storage.db_path),
                busy_timeout_s=self.config.storage.busy_timeout_s,
            )
            logger.debug("Initialized default SQLiteRecordStore")
        else:
            logger.info(f"Registered store: {type(store).__name__}")
        self.store = store

        self.members = MemberDirectory(self.store, clock=self.clock)
        self.risk = BankrollRiskMonitor()
        self.ledger = BankrollLedger(
            self.store, self.config.ledger, clock=self.clock, metrics=self.metrics
        )
        self.stats = StatsAggregator(self.store, clock=self.clock, metrics=self.metrics)
        self.tracker = BetTracker(
            self.store, self.ledger, self.risk, clock=self.clock
        )
        self.picks = PickBoard(self.store, clock=self.clock)
        self.settlement = SettlementCoordinator(
            self.store, self.stats, self.ledger, clock=self.clock, metrics=self.metrics
        )
        self.leaderboard_cache = LeaderboardCache(
            self.store,
            ttl_seconds=self.config.leaderboard.cache_ttl_seconds,
            clock=self.clock,
            metrics=self.metrics,
        )
        self.leaderboard = LeaderboardRanker(
            self.store,
            self.leaderboard_cache,
            self.config.leaderboard,
            clock=self.clock,
            metrics=self.metrics,
        )
