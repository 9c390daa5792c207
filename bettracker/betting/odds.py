"""
American odds arithmetic.

All functions are pure. Monetary outputs are Decimal quantized to cents,
ratios (units, per-bet ROI) to four places.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from bettracker.exceptions import InvalidOddsError, InvalidResultError, InvalidAmountError
from bettracker.schema import BetResult
from bettracker.utils.money import money, ratio, to_decimal, ZERO, HUNDRED

ONE = Decimal("1")


def validate_american_odds(odds) -> int:
    """Coerce odds to a non-zero int or raise InvalidOddsError."""
    if odds is None or isinstance(odds, bool):
        raise InvalidOddsError(odds)
    try:
        value = to_decimal(odds)
    except (TypeError, ValueError):
        raise InvalidOddsError(odds)
    if value == 0 or value != value.to_integral_value():
        raise InvalidOddsError(odds)
    return int(value)


def validate_stake(stake, field: str = "stake") -> Decimal:
    """Coerce a stake/amount to a positive Decimal of cents."""
    if stake is None or isinstance(stake, bool):
        raise InvalidAmountError(stake, field)
    try:
        value = money(stake)
    except (TypeError, ValueError):
        raise InvalidAmountError(stake, field)
    if value <= 0:
        raise InvalidAmountError(stake, field)
    return value


def coerce_result(result: Union[str, BetResult]) -> BetResult:
    """Parse a settlement result; only terminal values are accepted."""
    try:
        parsed = BetResult(result)
    except ValueError:
        raise InvalidResultError(result)
    if not parsed.is_terminal:
        raise InvalidResultError(result)
    return parsed


def win_ratio(american_odds) -> Decimal:
    """Profit per unit staked on a win (unquantized)."""
    odds = validate_american_odds(american_odds)
    if odds > 0:
        return Decimal(odds) / HUNDRED
    return HUNDRED / Decimal(abs(odds))


def potential_return(stake, american_odds) -> Decimal:
    """
    Profit paid on a winning stake.
    
    +150 on 100 returns 150; -110 on 100 returns 90.91.
    """
    return money(to_decimal(stake) * win_ratio(american_odds))


def units_on_win(stake, american_odds) -> Decimal:
    """Profit on a win expressed as a multiple of the stake."""
    stake = to_decimal(stake)
    if stake <= 0:
        raise InvalidAmountError(stake, "stake")
    return ratio(potential_return(stake, american_odds) / stake)


def actual_return(result, stake, potential: Decimal) -> Decimal:
    """Cash handed back at settlement: stake plus profit, the stake, or nothing."""
    result = coerce_result(result)
    stake = to_decimal(stake)
    if result is BetResult.WON:
        return money(potential + stake)
    if result is BetResult.PUSH:
        return money(stake)
    return money(ZERO)


def profit(result, stake, actual: Decimal) -> Decimal:
    """Net profit of a settled wager."""
    result = coerce_result(result)
    if result is BetResult.WON:
        return money(to_decimal(actual) - to_decimal(stake))
    if result is BetResult.LOST:
        return money(-to_decimal(stake))
    return money(ZERO)


def roi_on_settled_bet(result, stake, actual) -> Decimal:
    """Per-bet return on stake as a ratio: won (ret-stake)/stake, lost -1, push 0."""
    result = coerce_result(result)
    if result is BetResult.WON:
        stake = to_decimal(stake)
        if stake <= 0:
            raise InvalidAmountError(stake, "stake")
        return ratio((to_decimal(actual) - stake) / stake)
    if result is BetResult.LOST:
        return ratio(-ONE)
    return ratio(ZERO)


def unit_roi(result, american_odds: Optional[int]) -> Decimal:
    """
    Per-unit outcome of a settled pick: the win ratio at the given odds,
    -1 for a loss, 0 for a push. A win without a price counts as 0.
    """
    result = coerce_result(result)
    if result is BetResult.WON:
        if american_odds is None:
            return ratio(ZERO)
        return ratio(win_ratio(american_odds))
    if result is BetResult.LOST:
        return ratio(-ONE)
    return ratio(ZERO)


@dataclass(frozen=True)
class SettlementFigures:
    """Everything a settlement writes, for one stake owner."""
    result: BetResult
    stake: Decimal
    potential_return: Decimal
    actual_return: Decimal
    profit: Decimal
    roi: Decimal


def settle_stake(result, stake, american_odds: Optional[int]) -> SettlementFigures:
    """
    Settle one stake at the given odds.
    
    Shared by bets (owner's stake), picks (one notional unit) and pick
    follows (each follower's own stake and odds). Odds are only required
    for a win; losses and pushes do not depend on price.
    """
    result = coerce_result(result)
    stake = to_decimal(stake)
    if stake <= 0:
        raise InvalidAmountError(stake, "stake")
    if result is BetResult.WON:
        potential = potential_return(stake, american_odds)
    elif american_odds is not None:
        potential = potential_return(stake, american_odds)
    else:
        potential = money(ZERO)
    returned = actual_return(result, stake, potential)
    return SettlementFigures(
        result=result,
        stake=stake,
        potential_return=potential,
        actual_return=returned,
        profit=profit(result, stake, returned),
        roi=roi_on_settled_bet(result, stake, returned),
    )
