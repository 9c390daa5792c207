"""
Leaderboard module - ranking and snapshot cache.
"""
from bettracker.leaderboard.cache import LeaderboardCache
from bettracker.leaderboard.ranker import LeaderboardRanker

__all__ = ["LeaderboardCache", "LeaderboardRanker"]
