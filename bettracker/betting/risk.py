"""
Bankroll risk controls: stake sizing, stop-loss and profit targets.

Advisory only. Nothing here blocks a bet; callers decide what to do with
the flags.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional
import logging

from bettracker.schema import Bankroll
from bettracker.utils.money import ZERO, HUNDRED, money, percent, to_decimal

logger = logging.getLogger(__name__)


@dataclass
class StakeCheck:
    """Stake vs the bankroll's per-bet cap."""
    stake: Decimal
    max_stake: Optional[Decimal]
    stake_pct: Decimal
    exceeds_limit: bool


@dataclass
class RiskAssessment:
    """Snapshot of a bankroll against its risk controls."""
    bankroll_id: int
    balance: Decimal
    betting_profit: Decimal
    peak_balance: Decimal
    max_drawdown: Decimal
    max_drawdown_pct: Decimal
    stop_loss_hit: bool
    target_reached: bool


class BankrollRiskMonitor:
    """
    Risk checks against a bankroll's configured controls.

    Provides:
    - Per-stake check against ``max_bet_percentage``
    - Stop-loss / profit-target flags from betting P&L
    - Peak-to-trough drawdown over a replayed balance history
    """

    def betting_profit(self, bankroll: Bankroll) -> Decimal:
        """Balance movement from wins and losses only (deposits/withdrawals excluded)."""
        return money(
            bankroll.current_amount
            - bankroll.starting_amount
            - bankroll.total_deposited
            + bankroll.total_withdrawn
        )

    def check_stake(self, bankroll: Bankroll, stake) -> StakeCheck:
        stake = money(stake)
        balance = bankroll.current_amount
        max_stake = None
        if bankroll.max_bet_percentage is not None:
            max_stake = money(balance * bankroll.max_bet_percentage / HUNDRED)
        exceeds = max_stake is not None and stake > max_stake
        if exceeds:
            logger.warning(
                f"Stake {stake} exceeds {bankroll.max_bet_percentage}% cap "
                f"({max_stake}) on bankroll #{bankroll.id}"
            )
        return StakeCheck(
            stake=stake,
            max_stake=max_stake,
            stake_pct=percent(stake, balance) if balance > 0 else ZERO,
            exceeds_limit=exceeds,
        )

    def assess(self, bankroll: Bankroll, balances: Optional[List[Decimal]] = None) -> RiskAssessment:
        """
        Assess a bankroll.

        Args:
            bankroll: Bankroll to check
            balances: Running balances oldest first (e.g. from a ledger
                replay); defaults to the current balance alone
        """
        series = [bankroll.starting_amount] + [to_decimal(b) for b in (balances or [])]
        if not balances:
            series.append(bankroll.current_amount)

        peak = series[0]
        max_dd = ZERO
        max_dd_pct = ZERO
        for value in series:
            peak = max(peak, value)
            drawdown = peak - value
            if drawdown > max_dd:
                max_dd = drawdown
                max_dd_pct = percent(drawdown, peak)

        pnl = self.betting_profit(bankroll)
        stop_loss_hit = (
            bankroll.stop_loss_threshold is not None and pnl <= -bankroll.stop_loss_threshold
        )
        target_reached = (
            bankroll.target_profit is not None and pnl >= bankroll.target_profit
        )
        if stop_loss_hit:
            logger.warning(f"Bankroll #{bankroll.id} hit stop-loss ({pnl})")

        return RiskAssessment(
            bankroll_id=bankroll.id,
            balance=bankroll.current_amount,
            betting_profit=pnl,
            peak_balance=money(peak),
            max_drawdown=money(max_dd),
            max_drawdown_pct=max_dd_pct,
            stop_loss_hit=stop_loss_hit,
            target_reached=target_reached,
        )
