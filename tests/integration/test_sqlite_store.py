"""
Integration tests for the SQLite record store.
"""
import sqlite3

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from bettracker.core.protocols import RecordStore
from bettracker.core.storage import SQLiteRecordStore
from bettracker.exceptions import (
    AlreadySettledError,
    BankrollNotFoundError,
    InsufficientBankrollError,
    PickNotFoundError,
    StorageConflictError,
    StorageUnavailableError,
)
from bettracker.schema import AccessTier, BetResult, TransactionType, UserStats

pytestmark = pytest.mark.integration

NOW = datetime(2026, 3, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)


@pytest.fixture
def member(store):
    user, _ = store.get_or_create_user("t1", "whop_user_a1b2c3", "user_a1b2c3", "User a1b2c3", NOW)
    return user


@pytest.fixture
def bet(store, member):
    return store.insert_bet({
        "user_id": member.id,
        "tenant_id": "t1",
        "sport": "NFL",
        "bet_type": "spread",
        "description": "Chiefs -3",
        "odds_american": -110,
        "stake": Decimal("100.00"),
        "potential_return": Decimal("90.91"),
        "actual_return": Decimal("0.00"),
        "result": BetResult.PENDING,
        "created_at": NOW,
    })


@pytest.fixture
def bankroll(store, member):
    return store.insert_bankroll({
        "user_id": member.id,
        "tenant_id": "t1",
        "name": "Main Bankroll",
        "starting_amount": Decimal("500.00"),
        "current_amount": Decimal("500.00"),
        "created_at": NOW,
        "updated_at": NOW,
    })


class TestSQLiteRecordStore:

    def test_satisfies_protocol(self, store):
        assert isinstance(store, RecordStore)

    def test_schema_is_reentrant(self, db_path, member):
        """Opening an existing database keeps its rows."""
        reopened = SQLiteRecordStore(str(db_path))
        assert reopened.get_user(member.id, "t1") == member

    def test_wal_journal(self, store):
        with store._connection() as conn:
            assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"

    def test_decimal_and_timestamp_round_trip(self, store, bet):
        loaded = store.get_bet(bet.id, "t1")

        assert loaded.stake == Decimal("100.00")
        assert str(loaded.potential_return) == "90.91"
        assert loaded.created_at == NOW
        assert loaded.created_at.tzinfo is not None
        assert loaded.result is BetResult.PENDING

    def test_timestamps_sort_as_text(self, store):
        early = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        late = early + timedelta(microseconds=1)
        from bettracker.core.storage.sqlite import _ts

        assert _ts(early) < _ts(late)
        assert len(_ts(early)) == len(_ts(late))

    def test_non_utc_input_is_normalised(self, store, member):
        plus_two = timezone(timedelta(hours=2))
        user, _ = store.get_or_create_user(
            "t1", "whop_user_tz0001", "u", "U", datetime(2026, 3, 1, 14, 0, tzinfo=plus_two)
        )
        assert user.created_at == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_conditional_settlement(self, store, bet):
        assert store.settle_bet_if_pending(bet.id, "t1", BetResult.WON, Decimal("190.91"), NOW)
        assert not store.settle_bet_if_pending(bet.id, "t1", BetResult.LOST, Decimal("0.00"), NOW)

        loaded = store.get_bet(bet.id, "t1")
        assert loaded.result is BetResult.WON
        assert loaded.actual_return == Decimal("190.91")

    def test_conditional_settlement_is_tenant_scoped(self, store, bet):
        assert not store.settle_bet_if_pending(bet.id, "t2", BetResult.WON, Decimal("190.91"), NOW)
        assert store.get_bet(bet.id, "t2") is None

    def test_chronological_listing_uses_settlement_time(self, store, member, bet):
        second = store.insert_bet({
            "user_id": member.id, "tenant_id": "t1", "sport": "NFL", "bet_type": "spread",
            "description": "Later bet", "odds_american": 150, "stake": Decimal("10.00"),
            "potential_return": Decimal("15.00"), "result": BetResult.PENDING,
            "created_at": NOW + timedelta(hours=1),
        })
        store.settle_bet_if_pending(second.id, "t1", BetResult.LOST, Decimal("0"), NOW + timedelta(hours=2))
        store.settle_bet_if_pending(bet.id, "t1", BetResult.WON, Decimal("190.91"), NOW + timedelta(hours=3))

        ordered = store.list_bets("t1", chronological=True)
        assert [b.id for b in ordered] == [second.id, bet.id]
        newest_first = store.list_bets("t1")
        assert [b.id for b in newest_first] == [second.id, bet.id]

    def test_post_transaction_updates_balance(self, store, bankroll):
        txn = store.post_transaction(bankroll.id, "t1", TransactionType.DEPOSIT, Decimal("25.50"), NOW)
        loaded = store.get_bankroll(bankroll.id, "t1")

        assert txn.amount == Decimal("25.50")
        assert loaded.current_amount == Decimal("525.50")
        assert loaded.total_deposited == Decimal("25.50")
        assert loaded.last_transaction_at == NOW

    def test_reference_posts_once(self, store, bankroll):
        first = store.post_transaction(
            bankroll.id, "t1", TransactionType.LOSS, Decimal("100"), NOW, reference="bet:1"
        )
        second = store.post_transaction(
            bankroll.id, "t1", TransactionType.LOSS, Decimal("100"), NOW, reference="bet:1"
        )

        assert first is not None
        assert second is None
        assert len(store.list_transactions(bankroll.id, "t1")) == 1
        assert store.get_bankroll(bankroll.id, "t1").current_amount == Decimal("400")

    def test_reference_unique_index(self, store, bankroll):
        store.post_transaction(bankroll.id, "t1", TransactionType.WIN, Decimal("5"), NOW, reference="bet:9")
        with pytest.raises(StorageConflictError):
            with store.atomic_transaction() as conn:
                conn.execute(
                    "INSERT INTO transactions (bankroll_id, user_id, tenant_id, type, amount, reference, created_at) "
                    "VALUES (?, ?, 't1', 'win', '5', 'bet:9', 'x')",
                    (bankroll.id, bankroll.user_id),
                )

    def test_overdraw_rolls_back(self, store, bankroll):
        with pytest.raises(InsufficientBankrollError):
            store.post_transaction(bankroll.id, "t1", TransactionType.WITHDRAWAL, Decimal("500.01"), NOW)

        assert store.get_bankroll(bankroll.id, "t1").current_amount == Decimal("500.00")
        assert store.list_transactions(bankroll.id, "t1") == []

    def test_missing_bankroll(self, store):
        with pytest.raises(BankrollNotFoundError):
            store.post_transaction(99, "t1", TransactionType.DEPOSIT, Decimal("1"), NOW)

    def test_duplicate_user_maps_to_conflict(self, store, member):
        with pytest.raises(StorageConflictError):
            with store.atomic_transaction() as conn:
                conn.execute(
                    "INSERT INTO users (tenant_id, external_user_id, username, display_name, created_at) "
                    "VALUES ('t1', 'whop_user_a1b2c3', 'dup', 'Dup', 'x')"
                )

    def test_lock_timeout_maps_to_unavailable(self, db_path, member):
        impatient = SQLiteRecordStore(str(db_path), busy_timeout_s=0.05)
        holder = sqlite3.connect(str(db_path), isolation_level=None)
        holder.execute("BEGIN IMMEDIATE")
        try:
            with pytest.raises(StorageUnavailableError):
                impatient.update_user_flags(member.id, "t1", is_capper=True)
        finally:
            holder.rollback()
            holder.close()

    def test_rollback_on_error(self, store, member):
        with pytest.raises(RuntimeError):
            with store.atomic_transaction() as conn:
                conn.execute("UPDATE users SET username = 'changed' WHERE id = ?", (member.id,))
                raise RuntimeError("abort")
        assert store.get_user(member.id, "t1").username == "user_a1b2c3"

    def test_other_sqlite_errors_map_to_unavailable(self, store):
        with pytest.raises(StorageUnavailableError):
            with store.atomic_transaction() as conn:
                conn.execute("SELECT ?, ?", (1,))


class TestPickFollows:

    @pytest.fixture
    def pick(self, store, member):
        return store.insert_pick({
            "capper_id": member.id,
            "tenant_id": "t1",
            "sport": "NBA",
            "bet_type": "moneyline",
            "description": "Celtics ML",
            "recommended_odds_american": -150,
            "access_tier": AccessTier.PUBLIC,
            "result": BetResult.PENDING,
            "posted_at": NOW,
        })

    def _follow(self, store, pick, user_id, bet_amount="60.00"):
        return store.insert_follow({
            "pick_id": pick.id,
            "user_id": user_id,
            "capper_id": pick.capper_id,
            "tenant_id": "t1",
            "bet_amount": Decimal(bet_amount),
            "result": BetResult.PENDING,
            "created_at": NOW,
        })

    def test_follow_requires_pending_pick(self, store, member, pick):
        store.settle_pick_if_pending(pick.id, "t1", BetResult.WON, None, Decimal("0.6667"), NOW)

        with pytest.raises(AlreadySettledError):
            self._follow(store, pick, member.id)
        assert store.list_follows(pick.id, "t1") == []
        assert store.get_pick(pick.id, "t1").follows == 0

    def test_follow_unknown_pick(self, store, member, pick):
        with pytest.raises(PickNotFoundError):
            store.insert_follow({
                "pick_id": pick.id, "user_id": member.id, "capper_id": member.id,
                "tenant_id": "t2", "result": BetResult.PENDING, "created_at": NOW,
            })

    def test_settle_follows_touches_pending_rows_once(self, store, member, pick):
        self._follow(store, pick, member.id)
        seen = []

        def outcome(follow):
            seen.append(follow.id)
            return -150, Decimal("40.00")

        assert store.settle_follows(pick.id, "t1", BetResult.WON, outcome) == 1
        assert store.settle_follows(pick.id, "t1", BetResult.WON, outcome) == 0
        assert len(seen) == 1
        follow = store.list_follows(pick.id, "t1")[0]
        assert follow.result is BetResult.WON
        assert follow.profit_loss == Decimal("40.00")


class TestRecomputeUserStats:

    def test_reads_and_writes_in_one_call(self, store, member, bet):
        store.settle_bet_if_pending(bet.id, "t1", BetResult.WON, Decimal("190.91"), NOW)
        captured = {}

        def build(settled, pending):
            captured["settled"] = [b.id for b in settled]
            captured["pending"] = pending
            return UserStats(user_id=member.id, tenant_id="t1", total_bets=len(settled),
                             wins=len(settled), pending=pending, updated_at=NOW)

        stats = store.recompute_user_stats(member.id, "t1", build)

        assert captured == {"settled": [bet.id], "pending": 0}
        assert store.get_user_stats(member.id, "t1") == stats

    def test_failed_build_writes_nothing(self, store, member, bet):
        def build(settled, pending):
            raise ArithmeticError("bad row")

        with pytest.raises(ArithmeticError):
            store.recompute_user_stats(member.id, "t1", build)
        assert store.get_user_stats(member.id, "t1") is None
