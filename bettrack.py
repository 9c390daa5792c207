#!/usr/bin/env python
"""
Bet Tracker - Ledger and statistics CLI with observability.
"""
import sys
import argparse
import os
import time
import uuid

from bettracker.config import ObservabilitySettings, Settings, StorageSettings
from bettracker.core import ServiceContainer
from bettracker.utils import setup_logging
from bettracker.utils.observability import initialize_observability, get_metrics, Logger, CORRELATION_ID

# Initialize observability
ENVIRONMENT = os.getenv('ENVIRONMENT', 'development')
initialize_observability(ObservabilitySettings(environment=ENVIRONMENT))
setup_logging()

logger = Logger(__name__)
metrics = get_metrics()


def _services(args) -> ServiceContainer:
    """Build the container, honouring --db."""
    if getattr(args, "db", None):
        return ServiceContainer(Settings(storage=StorageSettings(db_path=args.db)))
    return ServiceContainer()


def _member(services: ServiceContainer, args):
    return services.members.get_or_create_user(args.user, args.tenant)


def cmd_init_db(args):
    """Create the database schema."""
    services = _services(args)
    print(f"[OK] Database ready: {services.store.db_path}")


def cmd_open_bankroll(args):
    services = _services(args)
    user = _member(services, args)
    bankroll = services.ledger.open_bankroll(
        user.id,
        args.tenant,
        args.amount,
        name=args.name,
        currency=args.currency,
        sport=args.sport,
        max_bet_percentage=args.max_bet_pct,
    )
    print(f"[OK] Bankroll #{bankroll.id} '{bankroll.name}': {bankroll.current_amount} {bankroll.currency}")


def cmd_transaction(args):
    services = _services(args)
    user = _member(services, args)
    txn = services.ledger.record_transaction(
        args.bankroll, args.tenant, args.type, args.amount,
        description=args.description, user_id=user.id,
    )
    bankroll = services.ledger.get_bankroll(args.bankroll, args.tenant)
    print(f"[OK] {txn.type.value} {txn.amount} -> balance {bankroll.current_amount}")


def cmd_place_bet(args):
    services = _services(args)
    user = _member(services, args)
    bet = services.tracker.create_bet(
        user.id,
        args.tenant,
        sport=args.sport,
        bet_type=args.bet_type,
        description=args.description,
        odds_american=args.odds,
        stake=args.stake,
        sportsbook=args.sportsbook,
    )
    print(f"[OK] Bet #{bet.id}: {bet.stake} @ {bet.odds_american:+d} (to win {bet.potential_return})")


def cmd_settle(args):
    services = _services(args)
    user = _member(services, args)
    if args.pick is not None:
        pick = services.settlement.settle_pick(
            args.pick, args.result, user.id, args.tenant, actual_odds=args.actual_odds
        )
        print(f"[OK] Pick #{pick.id} settled {pick.result.value} (roi {pick.roi})")
        return
    if args.bet is None:
        print("ERROR: --bet or --pick required")
        return 1
    bet = services.settlement.settle_bet(args.bet, args.result, user.id, args.tenant)
    print(f"[OK] Bet #{bet.id} settled {bet.result.value} (returned {bet.actual_return})")


def cmd_stats(args):
    services = _services(args)
    user = _member(services, args)
    stats = services.stats.get_user_stats(user.id, args.tenant)

    print(f"\nStats for {user.display_name} ({args.tenant})")
    print("=" * 50)
    print(f"  Settled bets: {stats.total_bets} ({stats.wins}W-{stats.losses}L-{stats.pushes}P)")
    print(f"  Pending:      {stats.pending}")
    print(f"  Win rate:     {stats.win_rate}%")
    print(f"  ROI:          {stats.roi}%")
    print(f"  Net profit:   {stats.net_profit}")
    print(f"  Units won:    {stats.units_won}")
    print(f"  Streak:       {stats.current_streak:+d}")
    print("=" * 50)


def cmd_recompute(args):
    services = _services(args)
    user = _member(services, args)
    stats = services.stats.recompute(user.id, args.tenant)
    print(f"[OK] Recomputed: {stats.total_bets} settled, roi {stats.roi}%")


def cmd_leaderboard(args):
    services = _services(args)
    board = services.leaderboard.get_leaderboard(
        args.tenant,
        timeframe=args.timeframe,
        sport=args.sport,
        bet_type=args.bet_type,
        limit=args.limit,
    )

    source = "cached" if board.cached else "fresh"
    print(f"\nLEADERBOARD - {board.timeframe.value} ({source}, {board.generated_at:%Y-%m-%d %H:%M} UTC)")
    print("=" * 72)
    print(f"{'#':>3} | {'User':<20} | {'Bets':>5} | {'Win%':>7} | {'ROI%':>8} | {'Units':>8} | {'Strk':>4}")
    print("-" * 72)
    for entry in board.entries:
        name = entry.display_name[:20]
        print(
            f"{entry.rank:>3} | {name:<20} | {entry.total_bets:>5} | {entry.win_rate:>7} | "
            f"{entry.roi:>8} | {entry.units_won:>8} | {entry.current_streak:>+4d}"
        )
    if not board.entries:
        print("  No qualifying users yet.")
    print("=" * 72)


def cmd_audit(args):
    """Replay every bankroll in a tenant and report mismatches."""
    services = _services(args)
    audit = services.ledger.audit(args.tenant)
    print(f"Checked {audit.checked} bankrolls in {args.tenant}")
    for check in audit.mismatches:
        print(
            f"  [MISMATCH] bankroll #{check.bankroll_id}: cached {check.cached_balance} "
            f"!= replayed {check.replayed_balance}"
        )
    if not audit.ok:
        return 1
    print("[OK] All balances match their transaction history")


def main():
    parser = argparse.ArgumentParser(description="Bet Tracker")
    parser.add_argument("--db", help="SQLite database path (overrides STORAGE_DB_PATH)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def scoped(name, help_text, with_user=True):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--tenant", required=True, help="Community / tenant id")
        if with_user:
            sub.add_argument("--user", required=True, help="External user id")
        return sub

    init_db = subparsers.add_parser("init-db", help="Create the database schema")
    init_db.set_defaults(func=cmd_init_db)

    open_bankroll = scoped("open-bankroll", "Open a bankroll")
    open_bankroll.add_argument("--amount", required=True, help="Starting amount")
    open_bankroll.add_argument("--name")
    open_bankroll.add_argument("--currency")
    open_bankroll.add_argument("--sport")
    open_bankroll.add_argument("--max-bet-pct", help="Per-bet cap as %% of balance")
    open_bankroll.set_defaults(func=cmd_open_bankroll)

    transaction = scoped("transaction", "Record a ledger transaction")
    transaction.add_argument("--bankroll", type=int, required=True)
    transaction.add_argument("--type", required=True,
                             choices=["deposit", "withdrawal", "bet", "win", "loss"])
    transaction.add_argument("--amount", required=True)
    transaction.add_argument("--description")
    transaction.set_defaults(func=cmd_transaction)

    place_bet = scoped("place-bet", "Record a pending bet")
    place_bet.add_argument("--sport", required=True)
    place_bet.add_argument("--bet-type", required=True)
    place_bet.add_argument("--description", required=True)
    place_bet.add_argument("--odds", type=int, required=True, help="American odds, e.g. -110")
    place_bet.add_argument("--stake", required=True)
    place_bet.add_argument("--sportsbook")
    place_bet.set_defaults(func=cmd_place_bet)

    settle = scoped("settle", "Settle a bet or pick")
    settle.add_argument("--bet", type=int)
    settle.add_argument("--pick", type=int)
    settle.add_argument("--result", required=True, choices=["won", "lost", "push"])
    settle.add_argument("--actual-odds", type=int, help="Closing odds for a pick")
    settle.set_defaults(func=cmd_settle)

    stats = scoped("stats", "Show a user's statistics")
    stats.set_defaults(func=cmd_stats)

    recompute = scoped("recompute", "Rebuild a user's statistics")
    recompute.set_defaults(func=cmd_recompute)

    leaderboard = scoped("leaderboard", "Show the tenant leaderboard", with_user=False)
    leaderboard.add_argument("--timeframe", default=None,
                             help="daily, weekly, monthly or all_time (default monthly)")
    leaderboard.add_argument("--sport")
    leaderboard.add_argument("--bet-type")
    leaderboard.add_argument("--limit", type=int, default=None)
    leaderboard.set_defaults(func=cmd_leaderboard)

    audit = scoped("audit", "Verify bankroll balances against the ledger", with_user=False)
    audit.set_defaults(func=cmd_audit)

    args = parser.parse_args()

    # Initialize correlation ID for this run
    correlation_id = str(uuid.uuid4())
    CORRELATION_ID.set(correlation_id)

    start_time = time.time()

    try:
        status = args.func(args)
    except Exception as e:
        logger.log_error("command_failed", command=args.command, error=str(e), exc_info=True)
        print(f"ERROR: {e}")
        sys.exit(1)
    finally:
        duration = time.time() - start_time
        logger.log_event('command_completed', command=args.command, duration_seconds=duration)

    if status == 1:
        sys.exit(1)


if __name__ == "__main__":
    main()
