"""
Strongly typed configuration using pydantic-settings.

All settings are validated at startup and loaded from:
1. Default values defined here
2. .env file (if present)
3. Environment variables (highest priority)

Environment variable naming:
- StorageSettings: STORAGE_DB_PATH, STORAGE_BUSY_TIMEOUT_S
- LedgerSettings: LEDGER_DEFAULT_CURRENCY, LEDGER_DEFAULT_MAX_BET_PERCENTAGE, etc.
- LeaderboardSettings: LEADERBOARD_MIN_BETS, LEADERBOARD_CACHE_TTL_SECONDS, etc.
- ObservabilitySettings: ENVIRONMENT, LOG_LEVEL (no prefix)
"""
from decimal import Decimal
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Record store settings."""
    
    model_config = SettingsConfigDict(env_prefix="STORAGE_")
    
    db_path: Path = Field(default=Path("data/bettracker.db"), description="SQLite database file")
    busy_timeout_s: float = Field(default=5.0, gt=0.0, le=120.0, description="Wait for write lock")


class LedgerSettings(BaseSettings):
    """Bankroll defaults."""
    
    model_config = SettingsConfigDict(env_prefix="LEDGER_")
    
    default_bankroll_name: str = Field(default="Main Bankroll", min_length=1)
    default_currency: str = Field(default="USD", pattern="^[A-Z]{3}$")
    default_max_bet_percentage: Decimal = Field(
        default=Decimal("5"), gt=0, le=100,
        description="Advisory cap on a single stake as % of balance"
    )


class LeaderboardSettings(BaseSettings):
    """Leaderboard ranking and cache settings."""
    
    model_config = SettingsConfigDict(env_prefix="LEADERBOARD_")
    
    min_bets: int = Field(default=10, ge=1, description="Settled bets required to rank")
    cache_ttl_seconds: int = Field(default=3600, ge=0, description="Ranking snapshot TTL")
    default_timeframe: str = Field(default="monthly", pattern="^(daily|weekly|monthly|all_time)$")
    default_limit: int = Field(default=50, ge=1)
    max_limit: int = Field(default=500, ge=1)
    
    @field_validator('max_limit')
    @classmethod
    def max_limit_gte_default(cls, v, info):
        if 'default_limit' in info.data and v < info.data['default_limit']:
            raise ValueError('max_limit must be >= default_limit')
        return v


class ObservabilitySettings(BaseSettings):
    """Logging and metrics settings."""
    
    model_config = SettingsConfigDict(env_prefix="")  # Direct: ENVIRONMENT, LOG_LEVEL
    
    environment: str = Field(default="development", pattern="^(development|staging|production)$")
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_format: str = Field(default="console", pattern="^(console|json)$")
    enable_metrics: bool = Field(default=True)


class Settings(BaseSettings):
    """
    Root settings aggregating all subsections.
    
    Usage:
        from bettracker.config import settings
        
        settings.storage.db_path
        settings.leaderboard.cache_ttl_seconds
        settings.observability.log_level
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    storage: StorageSettings = Field(default_factory=StorageSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    leaderboard: LeaderboardSettings = Field(default_factory=LeaderboardSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
