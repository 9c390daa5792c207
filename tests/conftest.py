# tests/conftest.py
import pytest
from datetime import datetime, timedelta, timezone

from bettracker.config import Settings, StorageSettings
from bettracker.core import ServiceContainer
from bettracker.core.storage import SQLiteRecordStore
from bettracker.utils.observability import MetricsRegistry

# Configure pytest
pytest_plugins = []

TENANT = "exp_community_1"
OTHER_TENANT = "exp_community_2"


# Markers for test categorization
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "e2e: marks tests as end-to-end tests")


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def metrics():
    """Fresh registry per test so counters start at zero."""
    return MetricsRegistry()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "bettracker.db"


@pytest.fixture
def store(db_path):
    return SQLiteRecordStore(str(db_path), busy_timeout_s=10.0)


@pytest.fixture
def services(db_path, store, clock, metrics):
    """Container over a temporary SQLite file with a controllable clock."""
    config = Settings(storage=StorageSettings(db_path=db_path))
    return ServiceContainer(config=config, store=store, clock=clock, metrics=metrics)


@pytest.fixture
def tenant():
    return TENANT


@pytest.fixture
def user(services, tenant):
    return services.members.get_or_create_user("whop_user_a1b2c3", tenant)


@pytest.fixture
def bankroll(services, user, tenant):
    return services.ledger.open_bankroll(user.id, tenant, "1000.00")


@pytest.fixture
def make_member(services, tenant):
    """Create members on demand: make_member("alice")."""
    def _make(external_id: str, capper: bool = False, tenant_id: str = tenant):
        member = services.members.get_or_create_user(external_id, tenant_id)
        if capper:
            member = services.members.promote_to_capper(member.id, tenant_id)
        return member
    return _make


@pytest.fixture
def settle_sequence(services, clock, tenant):
    """
    Place and settle one bet per result, oldest first, one minute apart.

    Returns the settled bets.
    """
    def _settle(member, results, odds=-110, stake="100", sport="NFL", bet_type="spread"):
        settled = []
        for result in results:
            bet = services.tracker.create_bet(
                member.id, tenant, sport, bet_type, f"{sport} {result}", odds, stake
            )
            clock.advance(minutes=1)
            settled.append(services.settlement.settle_bet(bet.id, result, member.id, tenant))
        return settled
    return _settle


@pytest.fixture
def mock_logger(mocker):
    """Mock structured logger."""
    logger = mocker.MagicMock()
    logger.log_event = mocker.MagicMock()
    logger.log_warning = mocker.MagicMock()
    logger.log_error = mocker.MagicMock()
    return logger
