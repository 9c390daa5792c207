"""
Bet intake and performance history.
"""
import polars as pl
from datetime import datetime
from typing import Callable, Dict, List, Optional

from bettracker.betting.ledger import BankrollLedger
from bettracker.betting.odds import (
    potential_return,
    profit,
    validate_american_odds,
    validate_stake,
)
from bettracker.betting.risk import BankrollRiskMonitor, StakeCheck
from bettracker.betting.stats import settlement_order
from bettracker.core.protocols import RecordStore
from bettracker.exceptions import (
    BetNotFoundError,
    ForbiddenError,
    InvalidInputError,
    NoActiveBankrollError,
)
from bettracker.schema import Bet, BetResult, TERMINAL_RESULTS, utcnow
from bettracker.utils.money import money
from bettracker.utils.observability import Logger

logger = Logger(__name__)

BREAKDOWN_COLUMNS = ("sport", "bet_type", "sportsbook")


def _pct(part: str, whole: str, decimals: int) -> pl.Expr:
    """``part / whole`` as a rounded percentage; 0 where ``whole`` is 0."""
    return (
        pl.when(pl.col(whole) != 0)
        .then(pl.col(part) / pl.col(whole) * 100)
        .otherwise(0.0)
        .round(decimals)
    )


_CURVE_SCHEMA = {
    "bet_id": pl.Int64,
    "settled_at": pl.Datetime(time_zone="UTC"),
    "sport": pl.String,
    "bet_type": pl.String,
    "result": pl.String,
    "stake": pl.Float64,
    "profit": pl.Float64,
    "cumulative_profit": pl.Float64,
    "cumulative_staked": pl.Float64,
    "cumulative_roi_pct": pl.Float64,
}


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidInputError(f"Missing required field: {field}")
    return str(value).strip()


class BetTracker:
    """
    Create bets and report on a user's betting history.

    Analysis frames (profit curve, breakdowns) are polars DataFrames with
    float columns; the ledger and stats keep exact Decimals.
    """

    def __init__(
        self,
        store: RecordStore,
        ledger: BankrollLedger,
        risk: Optional[BankrollRiskMonitor] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.risk = risk or BankrollRiskMonitor()
        self.clock = clock or utcnow

    def create_bet(
        self,
        user_id: int,
        tenant_id: str,
        sport: str,
        bet_type: str,
        description: str,
        odds_american,
        stake,
        sportsbook: Optional[str] = None,
        game_date: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Bet:
        """
        Record a pending bet.

        Args:
            user_id: Owner
            tenant_id: Community
            sport: e.g. "NFL"
            bet_type: e.g. "spread", "moneyline"
            description: Free text
            odds_american: Non-zero integer odds
            stake: Positive amount

        Returns:
            The stored Bet with its computed potential return
        """
        sport = _require_text(sport, "sport")
        bet_type = _require_text(bet_type, "bet_type")
        description = _require_text(description, "description")
        odds = validate_american_odds(odds_american)
        amount = validate_stake(stake)

        check = self._stake_check(user_id, tenant_id, sport, amount)

        bet = self.store.insert_bet({
            "user_id": user_id,
            "tenant_id": tenant_id,
            "sport": sport,
            "bet_type": bet_type,
            "description": description,
            "odds_american": odds,
            "stake": amount,
            "potential_return": potential_return(amount, odds),
            "actual_return": money(0),
            "result": BetResult.PENDING,
            "sportsbook": sportsbook,
            "game_date": game_date,
            "notes": notes,
            "created_at": self.clock(),
        })
        logger.log_event(
            "bet_created",
            bet_id=bet.id,
            tenant_id=tenant_id,
            user_id=user_id,
            odds=odds,
            stake=str(amount),
            over_limit=bool(check and check.exceeds_limit),
        )
        return bet

    def _stake_check(self, user_id: int, tenant_id: str, sport: str, stake) -> Optional[StakeCheck]:
        try:
            bankroll = self.ledger.select_bankroll(user_id, tenant_id, sport)
        except NoActiveBankrollError:
            return None
        check = self.risk.check_stake(bankroll, stake)
        if check.exceeds_limit:
            logger.log_warning(
                "stake_exceeds_limit",
                user_id=user_id,
                bankroll_id=bankroll.id,
                stake=str(check.stake),
                max_stake=str(check.max_stake),
            )
        return check

    def get_bet(self, bet_id: int, tenant_id: str, user_id: Optional[int] = None) -> Bet:
        bet = self.store.get_bet(bet_id, tenant_id)
        if bet is None:
            raise BetNotFoundError(bet_id, tenant_id)
        if user_id is not None and bet.user_id != user_id:
            raise ForbiddenError(f"Bet {bet_id} does not belong to user {user_id}")
        return bet

    def list_bets(
        self,
        user_id: int,
        tenant_id: str,
        result: Optional[str] = None,
        sport: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Bet]:
        """Newest first."""
        results = None
        if result is not None:
            try:
                results = [BetResult(result)]
            except ValueError:
                raise InvalidInputError(f"Unknown result filter: {result!r}")
        return self.store.list_bets(
            tenant_id, user_id=user_id, results=results, sport=sport, limit=limit
        )

    def _settled_rows(self, user_id: int, tenant_id: str) -> List[Dict]:
        bets = self.store.list_bets(
            tenant_id, user_id=user_id, results=list(TERMINAL_RESULTS), chronological=True
        )
        return [
            {
                "bet_id": b.id,
                "settled_at": b.settled_at,
                "sport": b.sport,
                "bet_type": b.bet_type,
                "sportsbook": b.sportsbook,
                "result": b.result.value,
                "won": b.result is BetResult.WON,
                "stake": float(b.stake),
                "profit": float(profit(b.result, b.stake, b.actual_return)),
            }
            for b in sorted(bets, key=settlement_order)
        ]

    def profit_curve(self, user_id: int, tenant_id: str) -> pl.DataFrame:
        """Settled bets oldest first with running profit and ROI (%)."""
        rows = self._settled_rows(user_id, tenant_id)
        if not rows:
            return pl.DataFrame(schema=_CURVE_SCHEMA)

        df = pl.DataFrame(rows).drop(["sportsbook", "won"])
        return df.with_columns([
            pl.col("profit").cum_sum().alias("cumulative_profit"),
            pl.col("stake").cum_sum().alias("cumulative_staked"),
        ]).with_columns([
            _pct("cumulative_profit", "cumulative_staked", 2).alias("cumulative_roi_pct"),
        ]).select(list(_CURVE_SCHEMA))

    def breakdown(self, user_id: int, tenant_id: str, by: str = "sport") -> pl.DataFrame:
        """Performance per sport, bet type or sportsbook."""
        if by not in BREAKDOWN_COLUMNS:
            raise InvalidInputError(
                f"Cannot break down by {by!r}. Must be one of: {', '.join(BREAKDOWN_COLUMNS)}"
            )
        rows = self._settled_rows(user_id, tenant_id)
        if not rows:
            return pl.DataFrame()

        df = pl.DataFrame(rows).with_columns(pl.col(by).fill_null("unknown"))
        return df.group_by(by).agg([
            pl.len().alias("bets"),
            pl.col("won").sum().alias("wins"),
            pl.col("profit").sum().alias("profit"),
            pl.col("stake").sum().alias("staked"),
        ]).with_columns([
            _pct("wins", "bets", 1).alias("win_rate_pct"),
            _pct("profit", "staked", 1).alias("roi_pct"),
        ]).sort("profit", descending=True)
