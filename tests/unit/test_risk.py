"""
Unit tests for bankroll risk controls.
"""
import pytest
from decimal import Decimal

from bettracker.betting.risk import BankrollRiskMonitor
from bettracker.schema import Bankroll


def make_bankroll(**overrides):
    fields = dict(
        id=1, user_id=1, tenant_id="t", name="Main",
        starting_amount=Decimal("1000.00"), current_amount=Decimal("1000.00"),
        max_bet_percentage=Decimal("5.00"),
    )
    fields.update(overrides)
    return Bankroll(**fields)


@pytest.fixture
def monitor():
    return BankrollRiskMonitor()


class TestStakeCheck:

    def test_within_cap(self, monitor):
        check = monitor.check_stake(make_bankroll(), "50")

        assert check.max_stake == Decimal("50.00")
        assert check.stake_pct == Decimal("5.00")
        assert not check.exceeds_limit

    def test_over_cap_flagged_and_logged(self, monitor, caplog):
        check = monitor.check_stake(make_bankroll(), "50.01")

        assert check.exceeds_limit
        assert "exceeds" in caplog.text

    def test_cap_follows_current_balance(self, monitor):
        check = monitor.check_stake(make_bankroll(current_amount=Decimal("400.00")), "25")
        assert check.max_stake == Decimal("20.00")
        assert check.exceeds_limit

    def test_no_cap_configured(self, monitor):
        check = monitor.check_stake(make_bankroll(max_bet_percentage=None), "900")
        assert check.max_stake is None
        assert not check.exceeds_limit

    def test_empty_bankroll(self, monitor):
        check = monitor.check_stake(make_bankroll(current_amount=Decimal("0.00")), "10")
        assert check.stake_pct == Decimal("0")
        assert check.exceeds_limit


class TestAssess:

    def test_betting_profit_excludes_cash_movements(self, monitor):
        bankroll = make_bankroll(
            current_amount=Decimal("1150.00"),
            total_deposited=Decimal("300.00"),
            total_withdrawn=Decimal("100.00"),
        )
        # 1150 - 1000 - 300 + 100
        assert monitor.betting_profit(bankroll) == Decimal("-50.00")

    def test_stop_loss(self, monitor):
        bankroll = make_bankroll(
            current_amount=Decimal("800.00"), stop_loss_threshold=Decimal("200.00")
        )
        assessment = monitor.assess(bankroll)
        assert assessment.stop_loss_hit
        assert not assessment.target_reached

    def test_target_profit(self, monitor):
        bankroll = make_bankroll(
            current_amount=Decimal("1250.00"), target_profit=Decimal("250.00")
        )
        assessment = monitor.assess(bankroll)
        assert assessment.target_reached
        assert not assessment.stop_loss_hit

    def test_drawdown_from_history(self, monitor):
        bankroll = make_bankroll(current_amount=Decimal("1100.00"))
        history = [Decimal("1200.00"), Decimal("900.00"), Decimal("1100.00")]

        assessment = monitor.assess(bankroll, history)
        assert assessment.peak_balance == Decimal("1200.00")
        assert assessment.max_drawdown == Decimal("300.00")
        assert assessment.max_drawdown_pct == Decimal("25.00")

    def test_replayed_ledger_feeds_drawdown(self, services, bankroll, tenant):
        services.ledger.record_transaction(bankroll.id, tenant, "loss", "100")
        services.ledger.record_transaction(bankroll.id, tenant, "win", "50")
        current = services.ledger.get_bankroll(bankroll.id, tenant)
        balances = [p.balance for p in services.ledger.replay(bankroll.id, tenant)]

        assessment = services.risk.assess(current, balances)
        assert assessment.balance == Decimal("950.00")
        assert assessment.betting_profit == Decimal("-50.00")
        assert assessment.max_drawdown == Decimal("100.00")
