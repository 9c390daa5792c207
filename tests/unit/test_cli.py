import pytest
import sqlite3
import sys
from unittest.mock import patch
from bettrack import main

@pytest.fixture
def mock_functions():
    with patch("bettrack.cmd_init_db") as mock_init_db, \
         patch("bettrack.cmd_open_bankroll") as mock_open_bankroll, \
         patch("bettrack.cmd_transaction") as mock_transaction, \
         patch("bettrack.cmd_place_bet") as mock_place_bet, \
         patch("bettrack.cmd_settle") as mock_settle, \
         patch("bettrack.cmd_stats") as mock_stats, \
         patch("bettrack.cmd_recompute") as mock_recompute, \
         patch("bettrack.cmd_leaderboard") as mock_leaderboard, \
         patch("bettrack.cmd_audit") as mock_audit:
        yield {
            "init-db": mock_init_db,
            "open-bankroll": mock_open_bankroll,
            "transaction": mock_transaction,
            "place-bet": mock_place_bet,
            "settle": mock_settle,
            "stats": mock_stats,
            "recompute": mock_recompute,
            "leaderboard": mock_leaderboard,
            "audit": mock_audit,
        }

SCOPE = ["--tenant", "exp_community_1", "--user", "whop_user_a1b2c3"]

@pytest.mark.parametrize("args,command_key", [
    (["init-db"], "init-db"),
    (["open-bankroll", *SCOPE, "--amount", "500"], "open-bankroll"),
    (["transaction", *SCOPE, "--bankroll", "1", "--type", "deposit", "--amount", "50"], "transaction"),
    (["place-bet", *SCOPE, "--sport", "NFL", "--bet-type", "spread",
      "--description", "Chiefs -3", "--odds", "-110", "--stake", "100"], "place-bet"),
    (["settle", *SCOPE, "--bet", "1", "--result", "won"], "settle"),
    (["stats", *SCOPE], "stats"),
    (["recompute", *SCOPE], "recompute"),
    (["leaderboard", "--tenant", "exp_community_1"], "leaderboard"),
    (["audit", "--tenant", "exp_community_1"], "audit"),
])
def test_cli_command_routing(mock_functions, args, command_key):
    """Verify CLI routes commands correctly to their handler functions."""
    with patch.object(sys, 'argv', ["bettrack.py"] + args):
        main()
        mock_functions[command_key].assert_called_once()

def test_cli_place_bet_args(mock_functions):
    """Test place-bet argument parsing."""
    argv = ["bettrack.py", "place-bet", *SCOPE, "--sport", "NBA", "--bet-type", "total",
            "--description", "Over 221.5", "--odds", "+120", "--stake", "25.50"]
    with patch.object(sys, 'argv', argv):
        main()
        args = mock_functions["place-bet"].call_args[0][0]
        assert args.odds == 120
        assert args.stake == "25.50"
        assert args.bet_type == "total"
        assert args.tenant == "exp_community_1"

def test_cli_leaderboard_args(mock_functions):
    """Test leaderboard argument parsing."""
    argv = ["bettrack.py", "--db", "/tmp/x.db", "leaderboard", "--tenant", "t1",
            "--timeframe", "weekly", "--limit", "5"]
    with patch.object(sys, 'argv', argv):
        main()
        args = mock_functions["leaderboard"].call_args[0][0]
        assert args.timeframe == "weekly"
        assert args.limit == 5
        assert args.db == "/tmp/x.db"

def test_cli_rejects_unknown_result(mock_functions):
    """Only terminal results are accepted."""
    argv = ["bettrack.py", "settle", *SCOPE, "--bet", "1", "--result", "pending"]
    with patch.object(sys, 'argv', argv), pytest.raises(SystemExit):
        main()

def test_cli_missing_command():
    """Test behavior when no command is provided."""
    with patch.object(sys, 'argv', ["bettrack.py"]), pytest.raises(SystemExit):
        main()

def test_cli_command_failure_exits_nonzero(mock_functions):
    """Handler errors are logged and turned into exit status 1."""
    mock_functions["audit"].side_effect = RuntimeError("database is locked")
    with patch.object(sys, 'argv', ["bettrack.py", "audit", "--tenant", "t1"]), \
         pytest.raises(SystemExit) as exc:
        main()
    assert exc.value.code == 1

def test_cli_end_to_end(tmp_path):
    """Real handlers against a temporary database."""
    from bettracker.config import Settings, StorageSettings
    from bettracker.core import ServiceContainer

    db = str(tmp_path / "cli.db")

    def run(*args):
        with patch.object(sys, 'argv', ["bettrack.py", "--db", db, *args]):
            main()

    run("open-bankroll", *SCOPE, "--amount", "1000")
    run("place-bet", *SCOPE, "--sport", "NFL", "--bet-type", "spread",
        "--description", "Chiefs -3", "--odds", "-110", "--stake", "100")
    run("settle", *SCOPE, "--bet", "1", "--result", "won")
    run("audit", "--tenant", "exp_community_1")

    services = ServiceContainer(Settings(storage=StorageSettings(db_path=db)))
    user = services.members.find_user("whop_user_a1b2c3", "exp_community_1")
    assert str(services.stats.get_user_stats(user.id, "exp_community_1").roi) == "90.91"
    assert str(services.ledger.get_bankroll(1, "exp_community_1").current_amount) == "1090.91"

def test_cli_audit_mismatch_exits_nonzero(tmp_path):
    """A tampered balance fails the audit command."""
    db = str(tmp_path / "cli.db")
    with patch.object(sys, 'argv', ["bettrack.py", "--db", db, "open-bankroll", *SCOPE, "--amount", "50"]):
        main()
    with sqlite3.connect(db) as conn:
        conn.execute("UPDATE bankrolls SET current_amount = '1.00'")
    with patch.object(sys, 'argv', ["bettrack.py", "--db", db, "audit", "--tenant", "exp_community_1"]), \
         pytest.raises(SystemExit) as exc:
        main()
    assert exc.value.code == 1
