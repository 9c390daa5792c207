"""
Betting module - odds math, ledger, statistics, settlement, picks and risk.
"""
from bettracker.betting.ledger import BankrollLedger
from bettracker.betting.stats import StatsAggregator
from bettracker.betting.settlement import SettlementCoordinator
from bettracker.betting.tracker import BetTracker
from bettracker.betting.picks import PickBoard
from bettracker.betting.risk import BankrollRiskMonitor

__all__ = [
    "BankrollLedger",
    "StatsAggregator",
    "SettlementCoordinator",
    "BetTracker",
    "PickBoard",
    "BankrollRiskMonitor",
]
