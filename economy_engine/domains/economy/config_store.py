"""
EconomyConfigStore: the only holder of a mutable reference to the economy
config. Consumers get an immutable ``EconomyConfig`` snapshot and pass it by
value into the pure components.

Reads are served from a process-wide cache refreshed after
``ttl_seconds`` or on ``invalidate()``. A failed refresh keeps serving the
last good snapshot; with nothing cached the store fails closed with
``ConfigUnavailable`` instead of inventing defaults. Admin writes append a
new version row, invalidate the local cache and broadcast the new version
over Redis so peer processes drop theirs.
"""
import asyncio
import time
from typing import Any, Callable, Dict, Optional, Tuple

from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from economy_engine.domains.economy.entities import EconomyConfig
from economy_engine.domains.economy.errors import ConfigUnavailable
from economy_engine.domains.economy.models import EconomyConfigVersion
from economy_engine.domains.economy.schemas import EconomyConfigPayload
from economy_engine.shared.utils.logger import get_logger

logger = get_logger(__name__)


class EconomyConfigStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl_seconds: float = 60.0,
        redis_factory: Optional[Callable[[], Redis]] = None,
        channel: str = "economy:config:invalidate",
        monotonic: Callable[[], float] = time.monotonic,
        retry_after_seconds: float = 5.0,
    ):
        self.session_factory = session_factory
        self.ttl_seconds = ttl_seconds
        self.redis_factory = redis_factory
        self.channel = channel
        self._monotonic = monotonic
        self.retry_after_seconds = retry_after_seconds
        self._snapshot: Optional[EconomyConfig] = None
        self._loaded_at: Optional[float] = None
        self._refresh_lock = asyncio.Lock()

    @property
    def snapshot(self) -> Optional[EconomyConfig]:
        return self._snapshot

    def _is_fresh(self) -> bool:
        if self._snapshot is None or self._loaded_at is None:
            return False
        return self._monotonic() - self._loaded_at < self.ttl_seconds

    async def get(self) -> EconomyConfig:
        """Current snapshot; refreshes when stale, fails closed when empty."""
        if self._is_fresh():
            return self._snapshot

        async with self._refresh_lock:
            # Another waiter may have refreshed while we queued
            if self._is_fresh():
                return self._snapshot
            try:
                await self.refresh()
            except ConfigUnavailable:
                if self._snapshot is None:
                    raise
                logger.warning("Economy config missing on refresh, serving cached snapshot")
                self._retry_later()
            except Exception as e:
                if self._snapshot is None:
                    logger.error(f"Economy config refresh failed with an empty cache: {e}")
                    raise ConfigUnavailable("Economy config could not be loaded") from e
                logger.warning(f"Economy config refresh failed, serving cached snapshot: {e}")
                self._retry_later()
        return self._snapshot

    def _retry_later(self) -> None:
        # Keep serving the stale snapshot without a refresh per request
        delay = min(self.retry_after_seconds, self.ttl_seconds)
        self._loaded_at = self._monotonic() - self.ttl_seconds + delay

    async def refresh(self) -> EconomyConfig:
        async with self.session_factory() as session:
            row = await self._latest(session)
        if row is None:
            raise ConfigUnavailable("No economy config has been written yet")
        config = EconomyConfigPayload.parse(row.body).to_config(version=row.version)
        self._snapshot = config
        self._loaded_at = self._monotonic()
        logger.debug(f"Economy config v{row.version} loaded")
        return config

    def invalidate(self) -> None:
        # Keep the old snapshot as the fallback for a failed refresh
        self._loaded_at = None

    async def read(self) -> Tuple[EconomyConfigVersion, EconomyConfig]:
        """Admin read: the stored row straight from the database."""
        async with self.session_factory() as session:
            row = await self._latest(session)
        if row is None:
            raise ConfigUnavailable("No economy config has been written yet")
        return row, EconomyConfigPayload.parse(row.body).to_config(version=row.version)

    async def write(
        self, document: Dict[str, Any], admin_id: Optional[str] = None
    ) -> Tuple[EconomyConfigVersion, EconomyConfig]:
        """Validate and store a new version; raises InvalidConfig on bad input."""
        payload = EconomyConfigPayload.parse(document)
        body = payload.to_config().to_dict()

        async with self.session_factory() as session:
            async with session.begin():
                row = EconomyConfigVersion(body=body, created_by=admin_id)
                session.add(row)
            await session.refresh(row)

        config = payload.to_config(version=row.version)
        logger.info(f"Economy config v{row.version} written by {admin_id or 'system'}")

        self._snapshot = config
        self._loaded_at = self._monotonic()
        await self._broadcast(row.version)
        return row, config

    async def _latest(self, session: AsyncSession) -> Optional[EconomyConfigVersion]:
        result = await session.execute(
            select(EconomyConfigVersion)
            .order_by(EconomyConfigVersion.version.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _broadcast(self, version: int) -> None:
        if self.redis_factory is None:
            return
        try:
            await self.redis_factory().publish(self.channel, str(version))
        except Exception as e:
            # Peers still converge once their TTL lapses
            logger.warning(f"Could not broadcast config v{version} invalidation: {e}")

    async def listen_for_invalidations(self, reconnect_delay: float = 5.0) -> None:
        """Long-running subscriber started from the app lifespan."""
        if self.redis_factory is None:
            return
        while True:
            try:
                await self._listen()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Missed broadcasts are covered by dropping the cache now
                logger.warning(f"Config invalidation listener lost Redis: {e}")
                self.invalidate()
                await asyncio.sleep(reconnect_delay)

    async def _listen(self) -> None:
        pubsub = self.redis_factory().pubsub()
        await pubsub.subscribe(self.channel)
        logger.info(f"Listening for config invalidations on {self.channel}")
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                current = self._snapshot.version if self._snapshot else None
                if current is None or str(current) != str(message.get("data")):
                    self.invalidate()
                    logger.info(f"Config invalidated by broadcast v{message.get('data')}")
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()
