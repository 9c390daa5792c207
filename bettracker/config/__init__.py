"""
Configuration module with strongly typed settings.

Usage:
    from bettracker.config import settings
    
    print(settings.storage.db_path)
    print(settings.leaderboard.min_bets)
"""
from .settings import (
    Settings,
    StorageSettings,
    LedgerSettings,
    LeaderboardSettings,
    ObservabilitySettings,
)

# Singleton instance - validates on import
settings = Settings()

__all__ = [
    "settings",
    "Settings",
    "StorageSettings",
    "LedgerSettings",
    "LeaderboardSettings",
    "ObservabilitySettings",
]
