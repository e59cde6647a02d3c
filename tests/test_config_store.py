import pytest
from sqlalchemy import func, select

from economy_engine.domains.economy.config_store import EconomyConfigStore
from economy_engine.domains.economy.errors import (ConfigUnavailable,
                                                   InvalidConfig)
from economy_engine.domains.economy.models import UserEconomyState
from economy_engine.domains.economy.service import EconomyService


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


class FakeRedis:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.published = []

    async def publish(self, channel, message):
        if self.fail:
            raise ConnectionError("redis is down")
        self.published.append((channel, message))
        return 1


async def test_empty_store_fails_closed(empty_store):
    with pytest.raises(ConfigUnavailable):
        await empty_store.get()


@pytest.mark.parametrize(
    "field, value",
    [
        ("globalMargin", 0),
        ("globalMargin", 3.0),
        ("pointsPerDollar", 0),
        ("countryMultipliers", {"US": -1.0}),
        ("earningRates", {"watchAd": 20, "mineBitcoin": 5000}),
    ],
)
async def test_invalid_documents_are_rejected(empty_store, document, field, value):
    document[field] = value

    with pytest.raises(InvalidConfig) as exc:
        await empty_store.write(document, admin_id="admin")

    assert exc.value.details["errors"]
    with pytest.raises(ConfigUnavailable):
        await empty_store.get()


async def test_happy_hour_window_must_be_ordered(empty_store, document):
    document["happyHours"] = [{"name": "Backwards", "startHour": 20, "endHour": 18, "multiplier": 2.0}]
    with pytest.raises(InvalidConfig):
        await empty_store.write(document)


async def test_writes_append_versions(config_store, document):
    document["globalMargin"] = 0.8

    row, config = await config_store.write(document, admin_id="admin")
    stored, current = await config_store.read()

    assert row.version == 2
    assert config.version == 2
    assert stored.version == 2
    assert stored.created_by == "admin"
    assert current.global_margin == 0.8
    assert (await config_store.get()).global_margin == 0.8


async def test_cache_holds_until_ttl_or_invalidate(session_factory, document):
    monotonic = FakeMonotonic()
    writer = EconomyConfigStore(session_factory)
    reader = EconomyConfigStore(session_factory, ttl_seconds=60.0, monotonic=monotonic)

    await writer.write(document)
    assert (await reader.get()).version == 1

    document["globalMargin"] = 0.5
    await writer.write(document)
    monotonic.value += 30
    assert (await reader.get()).version == 1

    reader.invalidate()
    assert (await reader.get()).version == 2

    document["globalMargin"] = 0.6
    await writer.write(document)
    monotonic.value += 61
    assert (await reader.get()).version == 3


async def test_failed_refresh_serves_last_snapshot(config_store, monkeypatch):
    cached = await config_store.get()

    async def broken():
        raise ConnectionError("database went away")

    monkeypatch.setattr(config_store, "refresh", broken)
    config_store.invalidate()

    assert await config_store.get() is cached


async def test_failed_refresh_without_snapshot_is_unavailable(empty_store, monkeypatch):
    async def broken():
        raise ConnectionError("database went away")

    monkeypatch.setattr(empty_store, "refresh", broken)

    with pytest.raises(ConfigUnavailable):
        await empty_store.get()


async def test_write_broadcasts_new_version(session_factory, document):
    redis = FakeRedis()
    store = EconomyConfigStore(session_factory, redis_factory=lambda: redis)

    await store.write(document, admin_id="admin")

    assert redis.published == [("economy:config:invalidate", "1")]


async def test_broadcast_failure_does_not_fail_write(session_factory, document):
    store = EconomyConfigStore(session_factory, redis_factory=lambda: FakeRedis(fail=True))

    row, _ = await store.write(document, admin_id="admin")

    assert row.version == 1
    assert (await store.get()).version == 1


async def test_grant_without_config_changes_nothing(
    session_factory, empty_store, dispatcher, clock, test_settings
):
    service = EconomyService(
        session_factory=session_factory,
        config_store=empty_store,
        dispatcher=dispatcher,
        clock=clock,
        app_settings=test_settings,
    )

    with pytest.raises(ConfigUnavailable):
        await service.grant("u1", "watchAd")

    async with session_factory() as session:
        result = await session.execute(select(func.count(UserEconomyState.user_id)))
        assert result.scalar_one() == 0


async def test_failed_refresh_backs_off_before_retrying(session_factory, document, monkeypatch):
    monotonic = FakeMonotonic()
    store = EconomyConfigStore(
        session_factory, ttl_seconds=60.0, monotonic=monotonic, retry_after_seconds=5.0
    )
    await store.write(document)
    attempts = []

    async def broken():
        attempts.append(monotonic.value)
        raise ConnectionError("database went away")

    monkeypatch.setattr(store, "refresh", broken)
    store.invalidate()

    for _ in range(3):
        assert (await store.get()).version == 1
    assert len(attempts) == 1

    monotonic.value += 5
    await store.get()
    assert len(attempts) == 2
