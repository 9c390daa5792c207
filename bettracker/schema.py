"""
Domain records for the bet tracker.

Every record is scoped to exactly one tenant (community). Money fields are
``Decimal``; timestamps are timezone-aware UTC datetimes.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BetResult(str, Enum):
    PENDING = "pending"
    WON = "won"
    LOST = "lost"
    PUSH = "push"

    @property
    def is_terminal(self) -> bool:
        return self is not BetResult.PENDING


TERMINAL_RESULTS = (BetResult.WON, BetResult.LOST, BetResult.PUSH)


class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    BET = "bet"
    WIN = "win"
    LOSS = "loss"

    @property
    def sign(self) -> int:
        """Direction a transaction of this type moves the balance."""
        return _TRANSACTION_SIGNS[self]


# ``bet`` entries are memos: the stake only moves the balance once the
# bet settles, through a ``win`` or ``loss`` entry.
_TRANSACTION_SIGNS = {
    TransactionType.DEPOSIT: 1,
    TransactionType.WITHDRAWAL: -1,
    TransactionType.BET: 0,
    TransactionType.WIN: 1,
    TransactionType.LOSS: -1,
}


class AccessTier(str, Enum):
    PUBLIC = "public"
    PREMIUM = "premium"
    VIP = "vip"


class Timeframe(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all_time"


@dataclass
class User:
    """A member of one tenant."""
    id: int
    tenant_id: str
    external_user_id: str
    username: str
    display_name: str
    is_capper: bool = False
    is_verified: bool = False
    is_active: bool = True
    created_at: Optional[datetime] = None


@dataclass
class Bet:
    """A wager. Only the terminal fields change after creation."""
    id: int
    user_id: int
    tenant_id: str
    sport: str
    bet_type: str
    description: str
    odds_american: int
    stake: Decimal
    potential_return: Decimal
    actual_return: Decimal = Decimal("0")
    result: BetResult = BetResult.PENDING
    sportsbook: Optional[str] = None
    game_date: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None

    @property
    def is_settled(self) -> bool:
        return self.result.is_terminal


@dataclass
class Pick:
    """A capper's published recommendation."""
    id: int
    capper_id: int
    tenant_id: str
    sport: str
    bet_type: str
    description: str
    league: Optional[str] = None
    reasoning: Optional[str] = None
    confidence: Optional[int] = None
    recommended_odds_american: Optional[int] = None
    recommended_units: Optional[Decimal] = None
    max_bet_amount: Optional[Decimal] = None
    access_tier: AccessTier = AccessTier.PUBLIC
    is_premium: bool = False
    price: Optional[Decimal] = None
    views: int = 0
    follows: int = 0
    result: BetResult = BetResult.PENDING
    actual_odds_american: Optional[int] = None
    roi: Decimal = Decimal("0")
    game_time: Optional[str] = None
    expires_at: Optional[str] = None
    posted_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None

    @property
    def is_settled(self) -> bool:
        return self.result.is_terminal


@dataclass
class PickFollow:
    """A follower's copy of a pick, with their own stake and odds."""
    id: int
    pick_id: int
    user_id: int
    capper_id: int
    tenant_id: str
    bet_amount: Optional[Decimal] = None
    actual_odds_american: Optional[int] = None
    result: BetResult = BetResult.PENDING
    profit_loss: Optional[Decimal] = None
    created_at: Optional[datetime] = None


@dataclass
class Bankroll:
    """A named pool of capital. ``current_amount`` is derived from the ledger."""
    id: int
    user_id: int
    tenant_id: str
    name: str
    starting_amount: Decimal
    current_amount: Decimal
    currency: str = "USD"
    sport: Optional[str] = None
    sportsbook: Optional[str] = None
    total_deposited: Decimal = Decimal("0")
    total_withdrawn: Decimal = Decimal("0")
    max_bet_percentage: Optional[Decimal] = None
    stop_loss_threshold: Optional[Decimal] = None
    target_profit: Optional[Decimal] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_transaction_at: Optional[datetime] = None


@dataclass
class Transaction:
    """Immutable ledger entry. ``amount`` is a magnitude; ``type`` gives the sign."""
    id: int
    bankroll_id: int
    user_id: int
    tenant_id: str
    type: TransactionType
    amount: Decimal
    description: Optional[str] = None
    reference: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def signed_amount(self) -> Decimal:
        return self.amount * self.type.sign


@dataclass
class UserStats:
    """Cached aggregate of a user's settled bets in one tenant."""
    user_id: int
    tenant_id: str
    total_bets: int = 0
    wins: int = 0
    losses: int = 0
    pushes: int = 0
    pending: int = 0
    win_rate: Decimal = Decimal("0")
    roi: Decimal = Decimal("0")
    net_profit: Decimal = Decimal("0")
    current_streak: int = 0
    units_won: Decimal = Decimal("0")
    updated_at: Optional[datetime] = None


@dataclass
class RankedEntry:
    """One row of a leaderboard snapshot."""
    rank: int
    user_id: int
    external_user_id: str
    username: str
    display_name: str
    is_verified: bool
    is_capper: bool
    total_bets: int
    win_rate: Decimal
    roi: Decimal
    net_profit: Decimal
    current_streak: int
    units_won: Decimal

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("win_rate", "roi", "net_profit", "units_won"):
            data[key] = str(data[key])
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RankedEntry":
        data = dict(data)
        for key in ("win_rate", "roi", "net_profit", "units_won"):
            data[key] = Decimal(data[key])
        return cls(**data)


@dataclass
class LeaderboardSnapshot:
    """A cached ranking for one (tenant, timeframe, sport, bet type) key."""
    tenant_id: str
    timeframe: Timeframe
    sport: Optional[str]
    bet_type: Optional[str]
    entries: List[RankedEntry]
    generated_at: datetime
    expires_at: datetime

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


@dataclass
class Leaderboard:
    """What callers get back from a leaderboard read."""
    tenant_id: str
    timeframe: Timeframe
    entries: List[RankedEntry]
    cached: bool
    generated_at: datetime
    sport: Optional[str] = None
    bet_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "timeframe": self.timeframe.value,
            "sport": self.sport,
            "bet_type": self.bet_type,
            "cached": self.cached,
            "generated_at": self.generated_at.isoformat(),
            "leaderboard": [e.to_dict() for e in self.entries],
        }


@dataclass
class CapperSummary:
    """A capper with their stats and most recent picks."""
    user: User
    stats: UserStats
    recent_picks: List[Pick] = field(default_factory=list)
