"""Shared test fixtures for the gym membership engine."""
import pytest
import pytest_asyncio
from datetime import date

from config.settings import DatabaseConfig, LifecycleConfig, reset_settings
from database.selector import BackendSelector
from database.store_factory import reset_store
from lifecycle.engine import MembershipLifecycle
from models.schemas import MembershipType, NewMember
from notifications.scheduler import LogNotificationScheduler


@pytest.fixture(autouse=True)
def _reset_singletons():
    reset_settings()
    reset_store()
    yield
    reset_settings()
    reset_store()


@pytest.fixture
def memory_config() -> DatabaseConfig:
    return DatabaseConfig(store_backend="memory")


@pytest.fixture
def sql_config(tmp_path) -> DatabaseConfig:
    """SQLite file in a fresh directory, with short bridge polling."""
    return DatabaseConfig(
        url=f"sqlite:///{tmp_path / 'data' / 'gym.db'}",
        store_backend="sql",
        bridge_poll_attempts=3,
        bridge_poll_interval_s=0.01,
    )


@pytest_asyncio.fixture
async def memory_store(memory_config):
    store = BackendSelector(memory_config)
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def sql_store(sql_config):
    store = BackendSelector(sql_config)
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request, memory_config, sql_config):
    """Each test using this runs once per backend."""
    config = memory_config if request.param == "memory" else sql_config
    selector = BackendSelector(config)
    await selector.initialize()
    yield selector
    await selector.close()


@pytest.fixture
def notifier() -> LogNotificationScheduler:
    return LogNotificationScheduler()


@pytest.fixture
def lifecycle(store, notifier) -> MembershipLifecycle:
    return MembershipLifecycle(store, notifier=notifier, config=LifecycleConfig())


@pytest.fixture
def new_member() -> NewMember:
    return NewMember(
        name="Asha Verma",
        phone="9812345678",
        email="asha@example.com",
        membership_type=MembershipType.MONTHLY,
        start_date=date(2024, 1, 1),
    )


@pytest.fixture
def make_member():
    """Factory for NewMember inputs with an explicit end date."""
    def _make(name: str = "Ravi", end: date = date(2024, 6, 30),
              start: date = date(2024, 1, 1), active: bool = True,
              membership_type: MembershipType = MembershipType.MONTHLY) -> NewMember:
        return NewMember(
            name=name,
            phone="9800000000",
            membership_type=membership_type,
            start_date=start,
            end_date=end,
            is_active=active,
        )
    return _make
