"""
Unit tests for the bankroll ledger.
"""
import pytest
from decimal import Decimal

from bettracker.betting.ledger import settlement_reference
from bettracker.exceptions import (
    BankrollNotFoundError,
    ForbiddenError,
    InsufficientBankrollError,
    InvalidAmountError,
    InvalidInputError,
    InvalidTransactionTypeError,
    NoActiveBankrollError,
)
from bettracker.schema import TransactionType


class TestOpenBankroll:

    def test_defaults_from_settings(self, services, user, tenant):
        bankroll = services.ledger.open_bankroll(user.id, tenant, "500")

        assert bankroll.name == "Main Bankroll"
        assert bankroll.currency == "USD"
        assert bankroll.starting_amount == Decimal("500.00")
        assert bankroll.current_amount == Decimal("500.00")
        assert bankroll.max_bet_percentage == Decimal("5.00")
        assert bankroll.is_active

    def test_no_opening_transaction(self, services, bankroll, tenant):
        """The starting amount is the replay origin, not a deposit."""
        assert services.ledger.list_transactions(bankroll.id, tenant) == []

    @pytest.mark.parametrize("amount", [0, "-10", None])
    def test_rejects_non_positive_start(self, services, user, tenant, amount):
        with pytest.raises(InvalidAmountError):
            services.ledger.open_bankroll(user.id, tenant, amount)

    def test_rejects_bad_max_bet_percentage(self, services, user, tenant):
        with pytest.raises(InvalidInputError):
            services.ledger.open_bankroll(user.id, tenant, "100", max_bet_percentage="150")

    def test_list_active_newest_first(self, services, user, tenant, bankroll):
        nba = services.ledger.open_bankroll(user.id, tenant, "200", name="NBA", sport="NBA")
        old = services.ledger.open_bankroll(user.id, tenant, "50", name="Old")
        services.ledger.deactivate_bankroll(old.id, tenant)

        active = services.ledger.list_bankrolls(user.id, tenant)
        assert [b.id for b in active] == [nba.id, bankroll.id]
        everything = services.ledger.list_bankrolls(user.id, tenant, active_only=False)
        assert len(everything) == 3


class TestDepositWithdraw:

    def test_deposit_moves_balance_and_totals(self, services, bankroll, tenant):
        txn = services.ledger.deposit(bankroll.id, tenant, "250.50")
        updated = services.ledger.get_bankroll(bankroll.id, tenant)

        assert txn.type is TransactionType.DEPOSIT
        assert txn.amount == Decimal("250.50")
        assert updated.current_amount == Decimal("1250.50")
        assert updated.total_deposited == Decimal("250.50")
        assert updated.last_transaction_at is not None

    def test_withdraw_moves_balance_and_totals(self, services, bankroll, tenant):
        services.ledger.withdraw(bankroll.id, tenant, "300")
        updated = services.ledger.get_bankroll(bankroll.id, tenant)

        assert updated.current_amount == Decimal("700.00")
        assert updated.total_withdrawn == Decimal("300.00")

    def test_overdraw_rejected_without_side_effects(self, services, bankroll, tenant):
        with pytest.raises(InsufficientBankrollError):
            services.ledger.withdraw(bankroll.id, tenant, "1000.01")

        assert services.ledger.get_bankroll(bankroll.id, tenant).current_amount == Decimal("1000.00")
        assert services.ledger.list_transactions(bankroll.id, tenant) == []

    @pytest.mark.parametrize("amount", [0, "-5", "abc"])
    def test_invalid_amount(self, services, bankroll, tenant, amount):
        with pytest.raises(InvalidAmountError):
            services.ledger.deposit(bankroll.id, tenant, amount)

    def test_unknown_bankroll(self, services, tenant):
        with pytest.raises(BankrollNotFoundError):
            services.ledger.deposit(9999, tenant, "10")

    def test_other_tenant_cannot_see_bankroll(self, services, bankroll):
        with pytest.raises(BankrollNotFoundError):
            services.ledger.deposit(bankroll.id, "another_community", "10")

    def test_unknown_transaction_type(self, services, bankroll, tenant):
        with pytest.raises(InvalidTransactionTypeError):
            services.ledger.record_transaction(bankroll.id, tenant, "refund", "10")

    def test_bet_entries_are_memos(self, services, bankroll, tenant):
        txn = services.ledger.record_transaction(bankroll.id, tenant, "bet", "40")

        assert txn.signed_amount == Decimal("0")
        assert services.ledger.get_bankroll(bankroll.id, tenant).current_amount == Decimal("1000.00")

    def test_owner_check(self, services, bankroll, tenant, make_member):
        intruder = make_member("whop_user_zzzzzz")
        with pytest.raises(ForbiddenError):
            services.ledger.record_transaction(
                bankroll.id, tenant, "deposit", "10", user_id=intruder.id
            )

    def test_transaction_metric(self, services, bankroll, tenant, metrics):
        services.ledger.deposit(bankroll.id, tenant, "10")
        services.ledger.deposit(bankroll.id, tenant, "10")

        value = metrics.registry.get_sample_value("ledger_transactions_total", {"type": "deposit"})
        assert value == 2.0


class TestReplay:
    """Cached balance always equals starting amount plus signed history."""

    def test_every_prefix_matches(self, services, bankroll, tenant):
        ledger = services.ledger
        ledger.deposit(bankroll.id, tenant, "200")
        ledger.record_transaction(bankroll.id, tenant, "loss", "110")
        ledger.record_transaction(bankroll.id, tenant, "win", "90.91")
        ledger.withdraw(bankroll.id, tenant, "0.01")
        ledger.record_transaction(bankroll.id, tenant, "bet", "50")

        points = ledger.replay(bankroll.id, tenant)
        running = bankroll.starting_amount
        for point in points:
            running += point.signed_amount
            assert point.balance == running

        assert [p.balance for p in points] == [
            Decimal("1200.00"),
            Decimal("1090.00"),
            Decimal("1180.91"),
            Decimal("1180.90"),
            Decimal("1180.90"),
        ]
        assert ledger.get_bankroll(bankroll.id, tenant).current_amount == points[-1].balance

    def test_verify_consistent(self, services, bankroll, tenant):
        services.ledger.deposit(bankroll.id, tenant, "0.10")
        services.ledger.deposit(bankroll.id, tenant, "0.20")

        check = services.ledger.verify(bankroll.id, tenant)
        assert check.consistent
        assert check.replayed_balance == Decimal("1000.30")
        assert check.transactions == 2

    def test_audit_flags_tampered_balance(self, services, bankroll, tenant, store):
        services.ledger.deposit(bankroll.id, tenant, "50")
        with store.atomic_transaction() as conn:
            conn.execute("UPDATE bankrolls SET current_amount = '9.99' WHERE id = ?", (bankroll.id,))

        audit = services.ledger.audit(tenant)
        assert not audit.ok
        assert audit.checked == 1
        assert audit.mismatches[0].bankroll_id == bankroll.id
        assert audit.mismatches[0].replayed_balance == Decimal("1050.00")

    def test_list_transactions_newest_first(self, services, bankroll, tenant):
        services.ledger.deposit(bankroll.id, tenant, "1")
        services.ledger.deposit(bankroll.id, tenant, "2")
        services.ledger.deposit(bankroll.id, tenant, "3")

        txns = services.ledger.list_transactions(bankroll.id, tenant, limit=2)
        assert [t.amount for t in txns] == [Decimal("3.00"), Decimal("2.00")]


class TestApplySettlement:

    def _settled(self, services, user, tenant, result, sport="NFL"):
        bet = services.tracker.create_bet(user.id, tenant, sport, "spread", "Test", -110, "100")
        services.store.settle_bet_if_pending(
            bet.id, tenant, result,
            {"won": Decimal("190.91"), "lost": Decimal("0.00"), "push": Decimal("100.00")}[result],
            services.clock(),
        )
        return services.store.get_bet(bet.id, tenant)

    def test_win_posts_profit(self, services, user, bankroll, tenant):
        bet = self._settled(services, user, tenant, "won")
        txn = services.ledger.apply_settlement(bet)

        assert txn.type is TransactionType.WIN
        assert txn.amount == Decimal("90.91")
        assert txn.reference == settlement_reference(bet.id)
        assert services.ledger.get_bankroll(bankroll.id, tenant).current_amount == Decimal("1090.91")

    def test_loss_posts_stake(self, services, user, bankroll, tenant):
        bet = self._settled(services, user, tenant, "lost")
        txn = services.ledger.apply_settlement(bet)

        assert txn.type is TransactionType.LOSS
        assert txn.amount == Decimal("100.00")
        assert services.ledger.get_bankroll(bankroll.id, tenant).current_amount == Decimal("900.00")

    def test_push_posts_nothing(self, services, user, bankroll, tenant):
        bet = self._settled(services, user, tenant, "push")

        assert services.ledger.apply_settlement(bet) is None
        assert services.ledger.list_transactions(bankroll.id, tenant) == []

    def test_idempotent_per_bet(self, services, user, bankroll, tenant):
        bet = self._settled(services, user, tenant, "lost")
        services.ledger.apply_settlement(bet)

        assert services.ledger.apply_settlement(bet) is None
        assert len(services.ledger.list_transactions(bankroll.id, tenant)) == 1
        assert services.ledger.get_bankroll(bankroll.id, tenant).current_amount == Decimal("900.00")

    def test_prefers_sport_bankroll(self, services, user, bankroll, tenant, clock):
        clock.advance(seconds=1)
        nba = services.ledger.open_bankroll(user.id, tenant, "300", name="NBA", sport="nba")
        bet = self._settled(services, user, tenant, "lost", sport="NBA")
        services.ledger.apply_settlement(bet)

        assert services.ledger.get_bankroll(nba.id, tenant).current_amount == Decimal("200.00")
        assert services.ledger.get_bankroll(bankroll.id, tenant).current_amount == Decimal("1000.00")

    def test_falls_back_to_oldest_active(self, services, user, tenant, clock):
        older = services.ledger.open_bankroll(user.id, tenant, "100", name="Old")
        clock.advance(seconds=1)
        newer = services.ledger.open_bankroll(user.id, tenant, "100", name="New")
        clock.advance(seconds=1)
        services.ledger.open_bankroll(user.id, tenant, "100", name="MLB", sport="MLB")

        assert services.ledger.select_bankroll(user.id, tenant, "NHL").id == older.id
        assert services.ledger.select_bankroll(user.id, tenant).id == older.id
        services.ledger.deactivate_bankroll(older.id, tenant)
        assert services.ledger.select_bankroll(user.id, tenant, "NHL").id == newer.id

    def test_settlement_posts_to_oldest_without_sport_match(self, services, user, bankroll, tenant, clock):
        clock.advance(seconds=1)
        newer = services.ledger.open_bankroll(user.id, tenant, "500", name="Second")
        bet = self._settled(services, user, tenant, "lost", sport="NHL")
        services.ledger.apply_settlement(bet)

        assert services.ledger.get_bankroll(bankroll.id, tenant).current_amount == Decimal("900.00")
        assert services.ledger.get_bankroll(newer.id, tenant).current_amount == Decimal("500.00")

    def test_no_active_bankroll(self, services, user, tenant):
        bet = self._settled(services, user, tenant, "won")
        with pytest.raises(NoActiveBankrollError):
            services.ledger.apply_settlement(bet)
