import copy
from datetime import datetime, timedelta
from typing import List

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine

from economy_engine.core.config import Settings
from economy_engine.core.database import build_session_factory
from economy_engine.domains.economy import models  # noqa: F401  (registers tables)
from economy_engine.domains.economy.config_store import EconomyConfigStore
from economy_engine.domains.economy.defaults import DEFAULT_ECONOMY_CONFIG
from economy_engine.domains.economy.models import UserEconomyState
from economy_engine.domains.economy.schemas import EconomyConfigPayload
from economy_engine.domains.economy.service import EconomyService
from economy_engine.shared.models.base import Base

# Wednesday, outside every default happy hour
START = datetime(2026, 3, 4, 10, 0, 0)


class FrozenClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingDispatcher:
    def __init__(self):
        self.dispatched: List[str] = []

    async def dispatch(self, withdrawal_id: str) -> None:
        self.dispatched.append(withdrawal_id)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def document():
    """Mutable copy of the default economy document."""
    return copy.deepcopy(DEFAULT_ECONOMY_CONFIG)


@pytest.fixture
def make_config(document):
    def build(**overrides):
        raw = copy.deepcopy(document)
        raw.update(overrides)
        return EconomyConfigPayload.parse(raw).to_config(version=1)

    return build


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'economy.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _wal(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def empty_store(session_factory):
    return EconomyConfigStore(session_factory, ttl_seconds=60.0)


@pytest.fixture
async def config_store(empty_store, document):
    await empty_store.write(document, admin_id="seed")
    return empty_store


@pytest.fixture
def test_settings():
    return Settings(
        TXN_MAX_ATTEMPTS=10,
        TXN_BACKOFF_SECONDS=0.0,
        TXN_BACKOFF_MAX_SECONDS=0.0,
        PAYOUT_SWEEP_AFTER_MINUTES=15,
        PAYOUT_MAX_DISPATCHES=3,
    )


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def service(session_factory, config_store, dispatcher, clock, test_settings):
    return EconomyService(
        session_factory=session_factory,
        config_store=config_store,
        dispatcher=dispatcher,
        clock=clock,
        app_settings=test_settings,
    )


@pytest.fixture
def make_user(session_factory, clock):
    async def create(
        user_id: str,
        points: int = 0,
        country: str = "US",
        account_age_days: float = 90,
        email_verified: bool = True,
        phone_verified: bool = True,
        daily_streak: int = 0,
        device_id: str = None,
        ip_address: str = None,
    ) -> UserEconomyState:
        state = UserEconomyState(
            user_id=user_id,
            total_points=points,
            points_ads=0,
            points_news=0,
            points_trivia=0,
            points_games=0,
            points_offers=points,
            points_surveys=0,
            points_referrals=0,
            daily_streak=daily_streak,
            daily_counters={},
            country=country,
            email_verified=email_verified,
            phone_verified=phone_verified,
            device_id=device_id,
            ip_address=ip_address,
            account_created_at=clock.now - timedelta(days=account_age_days),
        )
        async with session_factory() as session:
            async with session.begin():
                session.add(state)
        return state

    return create


@pytest.fixture
def load_user(session_factory):
    async def load(user_id: str) -> UserEconomyState:
        async with session_factory() as session:
            return await session.get(UserEconomyState, user_id)

    return load
