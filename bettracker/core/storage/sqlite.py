"""
SQLite Record Store - Default storage implementation.

One short-lived connection per operation, WAL journal and a busy timeout so
concurrent requests queue on the write lock instead of failing. Multi-statement
writes run under ``BEGIN IMMEDIATE``, which takes the write lock before the
first read, so a balance read inside the transaction can never be stale.

Money is stored as decimal text; timestamps as fixed-width UTC ISO strings so
they compare correctly as text.
"""
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
import logging

from bettracker.exceptions import (
    AlreadySettledError,
    BankrollNotFoundError,
    InsufficientBankrollError,
    PickNotFoundError,
    StorageConflictError,
    StorageUnavailableError,
)
from bettracker.schema import (
    AccessTier,
    Bankroll,
    Bet,
    BetResult,
    LeaderboardSnapshot,
    Pick,
    PickFollow,
    RankedEntry,
    TERMINAL_RESULTS,
    Timeframe,
    Transaction,
    TransactionType,
    User,
    UserStats,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id TEXT NOT NULL,
    external_user_id TEXT NOT NULL,
    username TEXT NOT NULL,
    display_name TEXT NOT NULL,
    is_capper INTEGER NOT NULL DEFAULT 0,
    is_verified INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    UNIQUE(tenant_id, external_user_id)
);

CREATE TABLE IF NOT EXISTS bets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    tenant_id TEXT NOT NULL,
    sport TEXT NOT NULL,
    bet_type TEXT NOT NULL,
    description TEXT NOT NULL,
    odds_american INTEGER NOT NULL,
    stake TEXT NOT NULL,
    potential_return TEXT NOT NULL,
    actual_return TEXT NOT NULL DEFAULT '0.00',
    result TEXT NOT NULL DEFAULT 'pending',
    sportsbook TEXT,
    game_date TEXT,
    notes TEXT,
    created_at TEXT NOT NULL,
    settled_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_bets_user ON bets(tenant_id, user_id, result);

CREATE TABLE IF NOT EXISTS picks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    capper_id INTEGER NOT NULL REFERENCES users(id),
    tenant_id TEXT NOT NULL,
    sport TEXT NOT NULL,
    league TEXT,
    bet_type TEXT NOT NULL,
    description TEXT NOT NULL,
    reasoning TEXT,
    confidence INTEGER,
    recommended_odds_american INTEGER,
    recommended_units TEXT,
    max_bet_amount TEXT,
    access_tier TEXT NOT NULL DEFAULT 'public',
    is_premium INTEGER NOT NULL DEFAULT 0,
    price TEXT,
    views INTEGER NOT NULL DEFAULT 0,
    follows INTEGER NOT NULL DEFAULT 0,
    result TEXT NOT NULL DEFAULT 'pending',
    actual_odds_american INTEGER,
    roi TEXT NOT NULL DEFAULT '0.0000',
    game_time TEXT,
    expires_at TEXT,
    posted_at TEXT NOT NULL,
    settled_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_picks_tenant ON picks(tenant_id, posted_at);

CREATE TABLE IF NOT EXISTS pick_follows (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pick_id INTEGER NOT NULL REFERENCES picks(id),
    user_id INTEGER NOT NULL REFERENCES users(id),
    capper_id INTEGER NOT NULL,
    tenant_id TEXT NOT NULL,
    bet_amount TEXT,
    actual_odds_american INTEGER,
    result TEXT NOT NULL DEFAULT 'pending',
    profit_loss TEXT,
    created_at TEXT NOT NULL,
    UNIQUE(pick_id, user_id)
);

CREATE TABLE IF NOT EXISTS bankrolls (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    tenant_id TEXT NOT NULL,
    name TEXT NOT NULL,
    currency TEXT NOT NULL DEFAULT 'USD',
    sport TEXT,
    sportsbook TEXT,
    starting_amount TEXT NOT NULL,
    current_amount TEXT NOT NULL,
    total_deposited TEXT NOT NULL DEFAULT '0.00',
    total_withdrawn TEXT NOT NULL DEFAULT '0.00',
    max_bet_percentage TEXT,
    stop_loss_threshold TEXT,
    target_profit TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_transaction_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_bankrolls_user ON bankrolls(tenant_id, user_id, is_active);

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    bankroll_id INTEGER NOT NULL REFERENCES bankrolls(id),
    user_id INTEGER NOT NULL,
    tenant_id TEXT NOT NULL,
    type TEXT NOT NULL,
    amount TEXT NOT NULL,
    description TEXT,
    reference TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_transactions_bankroll ON transactions(bankroll_id, id);

CREATE UNIQUE INDEX IF NOT EXISTS idx_transactions_reference
ON transactions(tenant_id, reference) WHERE reference IS NOT NULL;

CREATE TABLE IF NOT EXISTS user_stats (
    user_id INTEGER NOT NULL REFERENCES users(id),
    tenant_id TEXT NOT NULL,
    total_bets INTEGER NOT NULL DEFAULT 0,
    wins INTEGER NOT NULL DEFAULT 0,
    losses INTEGER NOT NULL DEFAULT 0,
    pushes INTEGER NOT NULL DEFAULT 0,
    pending INTEGER NOT NULL DEFAULT 0,
    win_rate TEXT NOT NULL DEFAULT '0.00',
    roi TEXT NOT NULL DEFAULT '0.00',
    net_profit TEXT NOT NULL DEFAULT '0.00',
    current_streak INTEGER NOT NULL DEFAULT 0,
    units_won TEXT NOT NULL DEFAULT '0.0000',
    updated_at TEXT NOT NULL,
    PRIMARY KEY (user_id, tenant_id)
);

CREATE INDEX IF NOT EXISTS idx_user_stats_board ON user_stats(tenant_id, updated_at, total_bets);

CREATE TABLE IF NOT EXISTS leaderboard_cache (
    tenant_id TEXT NOT NULL,
    timeframe TEXT NOT NULL,
    sport TEXT NOT NULL DEFAULT '',
    bet_type TEXT NOT NULL DEFAULT '',
    payload TEXT NOT NULL,
    generated_at TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    PRIMARY KEY (tenant_id, timeframe, sport, bet_type)
);
"""

_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def _ts(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TS_FORMAT)


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _num(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _dec(value: Optional[str]) -> Optional[Decimal]:
    return None if value is None else Decimal(value)


def _user(row: sqlite3.Row, prefix: str = "") -> User:
    return User(
        id=row[f"{prefix}id"],
        tenant_id=row[f"{prefix}tenant_id"],
        external_user_id=row[f"{prefix}external_user_id"],
        username=row[f"{prefix}username"],
        display_name=row[f"{prefix}display_name"],
        is_capper=bool(row[f"{prefix}is_capper"]),
        is_verified=bool(row[f"{prefix}is_verified"]),
        is_active=bool(row[f"{prefix}is_active"]),
        created_at=_dt(row[f"{prefix}created_at"]),
    )


def _bet(row: sqlite3.Row) -> Bet:
    return Bet(
        id=row["id"],
        user_id=row["user_id"],
        tenant_id=row["tenant_id"],
        sport=row["sport"],
        bet_type=row["bet_type"],
        description=row["description"],
        odds_american=row["odds_american"],
        stake=Decimal(row["stake"]),
        potential_return=Decimal(row["potential_return"]),
        actual_return=Decimal(row["actual_return"]),
        result=BetResult(row["result"]),
        sportsbook=row["sportsbook"],
        game_date=row["game_date"],
        notes=row["notes"],
        created_at=_dt(row["created_at"]),
        settled_at=_dt(row["settled_at"]),
    )


def _pick(row: sqlite3.Row) -> Pick:
    return Pick(
        id=row["id"],
        capper_id=row["capper_id"],
        tenant_id=row["tenant_id"],
        sport=row["sport"],
        league=row["league"],
        bet_type=row["bet_type"],
        description=row["description"],
        reasoning=row["reasoning"],
        confidence=row["confidence"],
        recommended_odds_american=row["recommended_odds_american"],
        recommended_units=_dec(row["recommended_units"]),
        max_bet_amount=_dec(row["max_bet_amount"]),
        access_tier=AccessTier(row["access_tier"]),
        is_premium=bool(row["is_premium"]),
        price=_dec(row["price"]),
        views=row["views"],
        follows=row["follows"],
        result=BetResult(row["result"]),
        actual_odds_american=row["actual_odds_american"],
        roi=Decimal(row["roi"]),
        game_time=row["game_time"],
        expires_at=row["expires_at"],
        posted_at=_dt(row["posted_at"]),
        settled_at=_dt(row["settled_at"]),
    )


def _follow(row: sqlite3.Row) -> PickFollow:
    return PickFollow(
        id=row["id"],
        pick_id=row["pick_id"],
        user_id=row["user_id"],
        capper_id=row["capper_id"],
        tenant_id=row["tenant_id"],
        bet_amount=_dec(row["bet_amount"]),
        actual_odds_american=row["actual_odds_american"],
        result=BetResult(row["result"]),
        profit_loss=_dec(row["profit_loss"]),
        created_at=_dt(row["created_at"]),
    )


def _bankroll(row: sqlite3.Row) -> Bankroll:
    return Bankroll(
        id=row["id"],
        user_id=row["user_id"],
        tenant_id=row["tenant_id"],
        name=row["name"],
        currency=row["currency"],
        sport=row["sport"],
        sportsbook=row["sportsbook"],
        starting_amount=Decimal(row["starting_amount"]),
        current_amount=Decimal(row["current_amount"]),
        total_deposited=Decimal(row["total_deposited"]),
        total_withdrawn=Decimal(row["total_withdrawn"]),
        max_bet_percentage=_dec(row["max_bet_percentage"]),
        stop_loss_threshold=_dec(row["stop_loss_threshold"]),
        target_profit=_dec(row["target_profit"]),
        is_active=bool(row["is_active"]),
        created_at=_dt(row["created_at"]),
        updated_at=_dt(row["updated_at"]),
        last_transaction_at=_dt(row["last_transaction_at"]),
    )


def _transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        bankroll_id=row["bankroll_id"],
        user_id=row["user_id"],
        tenant_id=row["tenant_id"],
        type=TransactionType(row["type"]),
        amount=Decimal(row["amount"]),
        description=row["description"],
        reference=row["reference"],
        created_at=_dt(row["created_at"]),
    )


def _stats(row: sqlite3.Row) -> UserStats:
    return UserStats(
        user_id=row["user_id"],
        tenant_id=row["tenant_id"],
        total_bets=row["total_bets"],
        wins=row["wins"],
        losses=row["losses"],
        pushes=row["pushes"],
        pending=row["pending"],
        win_rate=Decimal(row["win_rate"]),
        roi=Decimal(row["roi"]),
        net_profit=Decimal(row["net_profit"]),
        current_streak=row["current_streak"],
        units_won=Decimal(row["units_won"]),
        updated_at=_dt(row["updated_at"]),
    )


def _store_value(value: Any) -> Any:
    """Convert a Python value to its column representation."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return _ts(value)
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        return value.value  # str enums
    return value


class SQLiteRecordStore:
    """
    SQLite-backed record store.

    Tables: users, bets, picks, pick_follows, bankrolls, transactions,
    user_stats, leaderboard_cache. Every table carries ``tenant_id``.
    """

    def __init__(self, db_path: str = "data/bettracker.db", busy_timeout_s: float = 5.0):
        """
        Initialize store.

        Args:
            db_path: Path to SQLite database
            busy_timeout_s: How long a writer waits for the lock
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout_s = busy_timeout_s
        self._init_db()

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------
    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection; sqlite errors mapped to storage errors."""
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_s,
                isolation_level=None,
            )
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        except sqlite3.IntegrityError as e:
            raise StorageConflictError(str(e)) from e
        except sqlite3.OperationalError as e:
            raise StorageUnavailableError(str(e)) from e
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"{type(e).__name__}: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def atomic_transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block under ``BEGIN IMMEDIATE``: commit on success, roll back
        on any exception.
        """
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()

    def _init_db(self):
        """Initialize database schema."""
        with self._connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
        logger.info(f"Initialized record store at {self.db_path}")

    @staticmethod
    def _insert(conn: sqlite3.Connection, table: str, fields: Dict[str, Any]) -> int:
        columns = list(fields)
        placeholders = ", ".join("?" for _ in columns)
        cursor = conn.execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
            [_store_value(fields[c]) for c in columns],
        )
        return cursor.lastrowid

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def get_or_create_user(
        self,
        tenant_id: str,
        external_user_id: str,
        username: str,
        display_name: str,
        now: datetime,
    ) -> Tuple[User, bool]:
        with self.atomic_transaction() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO users
                (tenant_id, external_user_id, username, display_name, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (tenant_id, external_user_id, username, display_name, _ts(now)),
            )
            created = cursor.rowcount == 1
            row = conn.execute(
                "SELECT * FROM users WHERE tenant_id = ? AND external_user_id = ?",
                (tenant_id, external_user_id),
            ).fetchone()
        return _user(row), created

    def get_user(self, user_id: int, tenant_id: str) -> Optional[User]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE id = ? AND tenant_id = ?",
                (user_id, tenant_id),
            ).fetchone()
        return _user(row) if row else None

    def get_user_by_external_id(self, external_user_id: str, tenant_id: str) -> Optional[User]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE external_user_id = ? AND tenant_id = ?",
                (external_user_id, tenant_id),
            ).fetchone()
        return _user(row) if row else None

    def update_user_flags(self, user_id: int, tenant_id: str, **flags: bool) -> Optional[User]:
        allowed = {"is_capper", "is_verified", "is_active"}
        unknown = set(flags) - allowed
        if unknown:
            raise ValueError(f"Unknown user flags: {sorted(unknown)}")
        with self.atomic_transaction() as conn:
            if flags:
                assignments = ", ".join(f"{name} = ?" for name in flags)
                conn.execute(
                    f"UPDATE users SET {assignments} WHERE id = ? AND tenant_id = ?",
                    [int(v) for v in flags.values()] + [user_id, tenant_id],
                )
            row = conn.execute(
                "SELECT * FROM users WHERE id = ? AND tenant_id = ?",
                (user_id, tenant_id),
            ).fetchone()
        return _user(row) if row else None

    # ------------------------------------------------------------------
    # Bets
    # ------------------------------------------------------------------
    def insert_bet(self, fields: Dict[str, Any]) -> Bet:
        with self.atomic_transaction() as conn:
            bet_id = self._insert(conn, "bets", fields)
            row = conn.execute("SELECT * FROM bets WHERE id = ?", (bet_id,)).fetchone()
        return _bet(row)

    def get_bet(self, bet_id: int, tenant_id: str) -> Optional[Bet]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM bets WHERE id = ? AND tenant_id = ?",
                (bet_id, tenant_id),
            ).fetchone()
        return _bet(row) if row else None

    def list_bets(
        self,
        tenant_id: str,
        user_id: Optional[int] = None,
        results: Optional[List[BetResult]] = None,
        sport: Optional[str] = None,
        bet_type: Optional[str] = None,
        chronological: bool = False,
        limit: Optional[int] = None,
    ) -> List[Bet]:
        sql, params = self._bets_query(
            tenant_id, user_id, results, sport, bet_type, chronological, limit
        )
        with self._connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_bet(r) for r in rows]

    @staticmethod
    def _bets_query(
        tenant_id: str,
        user_id: Optional[int] = None,
        results: Optional[List[BetResult]] = None,
        sport: Optional[str] = None,
        bet_type: Optional[str] = None,
        chronological: bool = False,
        limit: Optional[int] = None,
    ) -> Tuple[str, List[Any]]:
        clauses = ["tenant_id = ?"]
        params: List[Any] = [tenant_id]
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if results:
            clauses.append(f"result IN ({', '.join('?' for _ in results)})")
            params.extend(BetResult(r).value for r in results)
        if sport:
            clauses.append("sport = ?")
            params.append(sport)
        if bet_type:
            clauses.append("bet_type = ?")
            params.append(bet_type)

        if chronological:
            order = "COALESCE(settled_at, created_at) ASC, created_at ASC, id ASC"
        else:
            order = "created_at DESC, id DESC"
        sql = f"SELECT * FROM bets WHERE {' AND '.join(clauses)} ORDER BY {order}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return sql, params

    def settle_bet_if_pending(
        self,
        bet_id: int,
        tenant_id: str,
        result: BetResult,
        actual_return: Decimal,
        settled_at: datetime,
    ) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE bets
                SET result = ?, actual_return = ?, settled_at = ?
                WHERE id = ? AND tenant_id = ? AND result = 'pending'
                """,
                (BetResult(result).value, str(actual_return), _ts(settled_at), bet_id, tenant_id),
            )
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Picks
    # ------------------------------------------------------------------
    def insert_pick(self, fields: Dict[str, Any]) -> Pick:
        with self.atomic_transaction() as conn:
            pick_id = self._insert(conn, "picks", fields)
            row = conn.execute("SELECT * FROM picks WHERE id = ?", (pick_id,)).fetchone()
        return _pick(row)

    def get_pick(self, pick_id: int, tenant_id: str) -> Optional[Pick]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM picks WHERE id = ? AND tenant_id = ?",
                (pick_id, tenant_id),
            ).fetchone()
        return _pick(row) if row else None

    def list_picks(
        self,
        tenant_id: str,
        access_tiers: Optional[List[str]] = None,
        capper_ids: Optional[List[int]] = None,
        sport: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Pick]:
        clauses = ["tenant_id = ?"]
        params: List[Any] = [tenant_id]
        if access_tiers:
            clauses.append(f"access_tier IN ({', '.join('?' for _ in access_tiers)})")
            params.extend(access_tiers)
        if capper_ids is not None:
            if not capper_ids:
                return []
            clauses.append(f"capper_id IN ({', '.join('?' for _ in capper_ids)})")
            params.extend(capper_ids)
        if sport:
            clauses.append("sport = ?")
            params.append(sport)
        sql = f"SELECT * FROM picks WHERE {' AND '.join(clauses)} ORDER BY posted_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_pick(r) for r in rows]

    def settle_pick_if_pending(
        self,
        pick_id: int,
        tenant_id: str,
        result: BetResult,
        actual_odds_american: Optional[int],
        roi: Decimal,
        settled_at: datetime,
    ) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE picks
                SET result = ?, actual_odds_american = ?, roi = ?, settled_at = ?
                WHERE id = ? AND tenant_id = ? AND result = 'pending'
                """,
                (
                    BetResult(result).value,
                    actual_odds_american,
                    str(roi),
                    _ts(settled_at),
                    pick_id,
                    tenant_id,
                ),
            )
        return cursor.rowcount == 1

    def increment_pick_views(self, pick_id: int, tenant_id: str) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE picks SET views = views + 1 WHERE id = ? AND tenant_id = ?",
                (pick_id, tenant_id),
            )
        return cursor.rowcount == 1

    def insert_follow(self, fields: Dict[str, Any]) -> Optional[PickFollow]:
        with self.atomic_transaction() as conn:
            pick = conn.execute(
                "SELECT result FROM picks WHERE id = ? AND tenant_id = ?",
                (fields["pick_id"], fields["tenant_id"]),
            ).fetchone()
            if pick is None:
                raise PickNotFoundError(fields["pick_id"], fields["tenant_id"])
            if pick["result"] != BetResult.PENDING.value:
                raise AlreadySettledError("pick", fields["pick_id"], pick["result"])
            existing = conn.execute(
                "SELECT id FROM pick_follows WHERE pick_id = ? AND user_id = ?",
                (fields["pick_id"], fields["user_id"]),
            ).fetchone()
            if existing:
                return None
            follow_id = self._insert(conn, "pick_follows", fields)
            conn.execute(
                "UPDATE picks SET follows = follows + 1 WHERE id = ? AND tenant_id = ?",
                (fields["pick_id"], fields["tenant_id"]),
            )
            row = conn.execute("SELECT * FROM pick_follows WHERE id = ?", (follow_id,)).fetchone()
        return _follow(row)

    def delete_follow(self, pick_id: int, user_id: int, tenant_id: str) -> bool:
        with self.atomic_transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM pick_follows WHERE pick_id = ? AND user_id = ? AND tenant_id = ?",
                (pick_id, user_id, tenant_id),
            )
            if cursor.rowcount == 0:
                return False
            conn.execute(
                "UPDATE picks SET follows = MAX(0, follows - 1) WHERE id = ? AND tenant_id = ?",
                (pick_id, tenant_id),
            )
        return True

    def list_follows(self, pick_id: int, tenant_id: str) -> List[PickFollow]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM pick_follows WHERE pick_id = ? AND tenant_id = ? ORDER BY id",
                (pick_id, tenant_id),
            ).fetchall()
        return [_follow(r) for r in rows]

    def settle_follows(
        self,
        pick_id: int,
        tenant_id: str,
        result: BetResult,
        outcome: Callable[[PickFollow], Tuple[Optional[int], Decimal]],
    ) -> int:
        updated = 0
        with self.atomic_transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM pick_follows
                WHERE pick_id = ? AND tenant_id = ? AND result = 'pending'
                ORDER BY id
                """,
                (pick_id, tenant_id),
            ).fetchall()
            for row in rows:
                odds, profit_loss = outcome(_follow(row))
                cursor = conn.execute(
                    """
                    UPDATE pick_follows
                    SET result = ?, actual_odds_american = ?, profit_loss = ?
                    WHERE id = ?
                    """,
                    (BetResult(result).value, odds, str(profit_loss), row["id"]),
                )
                updated += cursor.rowcount
        return updated

    # ------------------------------------------------------------------
    # Bankrolls & ledger
    # ------------------------------------------------------------------
    def insert_bankroll(self, fields: Dict[str, Any]) -> Bankroll:
        with self.atomic_transaction() as conn:
            bankroll_id = self._insert(conn, "bankrolls", fields)
            row = conn.execute("SELECT * FROM bankrolls WHERE id = ?", (bankroll_id,)).fetchone()
        return _bankroll(row)

    def get_bankroll(self, bankroll_id: int, tenant_id: str) -> Optional[Bankroll]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM bankrolls WHERE id = ? AND tenant_id = ?",
                (bankroll_id, tenant_id),
            ).fetchone()
        return _bankroll(row) if row else None

    def list_bankrolls(
        self,
        tenant_id: str,
        user_id: Optional[int] = None,
        active_only: bool = True,
    ) -> List[Bankroll]:
        clauses = ["tenant_id = ?"]
        params: List[Any] = [tenant_id]
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if active_only:
            clauses.append("is_active = 1")
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM bankrolls WHERE {' AND '.join(clauses)} "
                "ORDER BY created_at DESC, id DESC",
                params,
            ).fetchall()
        return [_bankroll(r) for r in rows]

    def set_bankroll_active(
        self, bankroll_id: int, tenant_id: str, active: bool, now: datetime
    ) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE bankrolls SET is_active = ?, updated_at = ? WHERE id = ? AND tenant_id = ?",
                (int(active), _ts(now), bankroll_id, tenant_id),
            )
        return cursor.rowcount == 1

    def post_transaction(
        self,
        bankroll_id: int,
        tenant_id: str,
        type: TransactionType,
        amount: Decimal,
        now: datetime,
        description: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> Optional[Transaction]:
        type = TransactionType(type)
        with self.atomic_transaction() as conn:
            row = conn.execute(
                "SELECT * FROM bankrolls WHERE id = ? AND tenant_id = ?",
                (bankroll_id, tenant_id),
            ).fetchone()
            if row is None:
                raise BankrollNotFoundError(bankroll_id, tenant_id)
            bankroll = _bankroll(row)

            if reference is not None:
                seen = conn.execute(
                    "SELECT id FROM transactions WHERE tenant_id = ? AND reference = ?",
                    (tenant_id, reference),
                ).fetchone()
                if seen:
                    logger.info(f"Ledger reference {reference} already posted, skipping")
                    return None

            signed = amount * type.sign
            new_balance = bankroll.current_amount + signed
            if type is TransactionType.WITHDRAWAL and new_balance < 0:
                raise InsufficientBankrollError(
                    f"Withdrawal of {amount} exceeds balance {bankroll.current_amount} "
                    f"on bankroll {bankroll_id}"
                )

            deposited = bankroll.total_deposited
            withdrawn = bankroll.total_withdrawn
            if type is TransactionType.DEPOSIT:
                deposited += amount
            elif type is TransactionType.WITHDRAWAL:
                withdrawn += amount

            txn_id = self._insert(conn, "transactions", {
                "bankroll_id": bankroll_id,
                "user_id": bankroll.user_id,
                "tenant_id": tenant_id,
                "type": type.value,
                "amount": amount,
                "description": description,
                "reference": reference,
                "created_at": now,
            })
            conn.execute(
                """
                UPDATE bankrolls
                SET current_amount = ?, total_deposited = ?, total_withdrawn = ?,
                    last_transaction_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (str(new_balance), str(deposited), str(withdrawn), _ts(now), _ts(now), bankroll_id),
            )
            txn_row = conn.execute("SELECT * FROM transactions WHERE id = ?", (txn_id,)).fetchone()

        logger.info(
            f"Posted {type.value} of {amount} to bankroll #{bankroll_id} "
            f"(balance {bankroll.current_amount} -> {new_balance})"
        )
        return _transaction(txn_row)

    def list_transactions(
        self,
        bankroll_id: int,
        tenant_id: str,
        limit: Optional[int] = None,
        ascending: bool = False,
    ) -> List[Transaction]:
        direction = "ASC" if ascending else "DESC"
        sql = (
            "SELECT * FROM transactions WHERE bankroll_id = ? AND tenant_id = ? "
            f"ORDER BY id {direction}"
        )
        params: List[Any] = [bankroll_id, tenant_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_transaction(r) for r in rows]

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------
    def recompute_user_stats(
        self,
        user_id: int,
        tenant_id: str,
        build: Callable[[List[Bet], int], UserStats],
    ) -> UserStats:
        """
        Read the user's settled bets and pending count, then write
        ``build(settled, pending)``, all under one write lock.
        """
        sql, params = self._bets_query(
            tenant_id, user_id, results=list(TERMINAL_RESULTS), chronological=True
        )
        with self.atomic_transaction() as conn:
            settled = [_bet(r) for r in conn.execute(sql, params).fetchall()]
            pending = conn.execute(
                "SELECT COUNT(*) FROM bets WHERE user_id = ? AND tenant_id = ? AND result = 'pending'",
                (user_id, tenant_id),
            ).fetchone()[0]
            stats = build(settled, pending)
            self._upsert_stats(conn, stats)
        return stats

    @staticmethod
    def _upsert_stats(conn: sqlite3.Connection, stats: UserStats) -> None:
        conn.execute(
            """
            INSERT INTO user_stats
            (user_id, tenant_id, total_bets, wins, losses, pushes, pending,
             win_rate, roi, net_profit, current_streak, units_won, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, tenant_id) DO UPDATE SET
                total_bets = excluded.total_bets,
                wins = excluded.wins,
                losses = excluded.losses,
                pushes = excluded.pushes,
                pending = excluded.pending,
                win_rate = excluded.win_rate,
                roi = excluded.roi,
                net_profit = excluded.net_profit,
                current_streak = excluded.current_streak,
                units_won = excluded.units_won,
                updated_at = excluded.updated_at
            """,
            (
                stats.user_id, stats.tenant_id, stats.total_bets, stats.wins,
                stats.losses, stats.pushes, stats.pending, str(stats.win_rate),
                str(stats.roi), str(stats.net_profit), stats.current_streak,
                str(stats.units_won), _ts(stats.updated_at),
            ),
        )

    def get_user_stats(self, user_id: int, tenant_id: str) -> Optional[UserStats]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM user_stats WHERE user_id = ? AND tenant_id = ?",
                (user_id, tenant_id),
            ).fetchone()
        return _stats(row) if row else None

    def list_user_stats(
        self,
        tenant_id: str,
        updated_since: Optional[datetime] = None,
        min_total_bets: int = 0,
        cappers_only: bool = False,
    ) -> List[Tuple[UserStats, User]]:
        clauses = ["s.tenant_id = ?", "s.total_bets >= ?"]
        params: List[Any] = [tenant_id, min_total_bets]
        if updated_since is not None:
            clauses.append("s.updated_at >= ?")
            params.append(_ts(updated_since))
        if cappers_only:
            clauses.append("u.is_capper = 1")
        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT s.*,
                       u.id AS u_id, u.tenant_id AS u_tenant_id,
                       u.external_user_id AS u_external_user_id,
                       u.username AS u_username, u.display_name AS u_display_name,
                       u.is_capper AS u_is_capper, u.is_verified AS u_is_verified,
                       u.is_active AS u_is_active, u.created_at AS u_created_at
                FROM user_stats s
                JOIN users u ON u.id = s.user_id AND u.tenant_id = s.tenant_id
                WHERE {' AND '.join(clauses)}
                ORDER BY s.user_id
                """,
                params,
            ).fetchall()
        pairs = [(_stats(r), _user(r, prefix="u_")) for r in rows]
        # ROI is decimal text, so order in Python; sorted() is stable
        return sorted(pairs, key=lambda pair: pair[0].roi, reverse=True)

    # ------------------------------------------------------------------
    # Leaderboard cache
    # ------------------------------------------------------------------
    def get_leaderboard_snapshot(
        self,
        tenant_id: str,
        timeframe: Timeframe,
        sport: Optional[str],
        bet_type: Optional[str],
    ) -> Optional[LeaderboardSnapshot]:
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM leaderboard_cache
                WHERE tenant_id = ? AND timeframe = ? AND sport = ? AND bet_type = ?
                """,
                (tenant_id, Timeframe(timeframe).value, sport or "", bet_type or ""),
            ).fetchone()
        if row is None:
            return None
        return LeaderboardSnapshot(
            tenant_id=row["tenant_id"],
            timeframe=Timeframe(row["timeframe"]),
            sport=row["sport"] or None,
            bet_type=row["bet_type"] or None,
            entries=[RankedEntry.from_dict(e) for e in json.loads(row["payload"])],
            generated_at=_dt(row["generated_at"]),
            expires_at=_dt(row["expires_at"]),
        )

    def put_leaderboard_snapshot(self, snapshot: LeaderboardSnapshot) -> None:
        payload = json.dumps([e.to_dict() for e in snapshot.entries])
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO leaderboard_cache
                (tenant_id, timeframe, sport, bet_type, payload, generated_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(tenant_id, timeframe, sport, bet_type) DO UPDATE SET
                    payload = excluded.payload,
                    generated_at = excluded.generated_at,
                    expires_at = excluded.expires_at
                """,
                (
                    snapshot.tenant_id,
                    Timeframe(snapshot.timeframe).value,
                    snapshot.sport or "",
                    snapshot.bet_type or "",
                    payload,
                    _ts(snapshot.generated_at),
                    _ts(snapshot.expires_at),
                ),
            )

    def delete_leaderboard_snapshots(self, tenant_id: str) -> int:
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM leaderboard_cache WHERE tenant_id = ?", (tenant_id,)
            )
        return cursor.rowcount
