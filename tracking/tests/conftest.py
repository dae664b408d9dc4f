# tracking/tests/conftest.py
import pytest
from sqlalchemy.pool import StaticPool

from tracking.app.db.session import build_session_factory
from tracking.app.models.vehicle_location import VehicleLocation
from tracking.app.stores.history_store import SqlAlchemyHistoryStore
from tracking.app.stores.latest_cache import InMemoryLatestStateCache


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return InMemoryLatestStateCache(ttl_seconds=86400, clock=clock)


# In-memory SQLite shared across the worker threads the store runs queries in
@pytest.fixture
def session_factory():
    factory = build_session_factory(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def history_store(session_factory):
    store = SqlAlchemyHistoryStore(session_factory)
    store.create_schema()
    return store


@pytest.fixture
def history_rows(session_factory, history_store):
    """Number of history rows stored for a vehicle."""
    def count(vehicle_id):
        with session_factory() as db:
            return db.query(VehicleLocation).filter(VehicleLocation.vehicle_id == vehicle_id).count()
    return count
