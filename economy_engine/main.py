import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from economy_engine.core import (celery, config, database, exception_handlers,
                                 redis)
from economy_engine.domains import economy
from economy_engine.domains.economy.service import economy_service
from economy_engine.shared.utils.logger import get_logger

logger = get_logger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    celery.init_celery()
    await database.init_db()
    economy.register_event_handlers()
    listener = asyncio.create_task(economy_service.config_store.listen_for_invalidations())
    logger.info(f"Economy engine started ({config.settings.ENVIRONMENT.value})")
    yield
    listener.cancel()
    with suppress(asyncio.CancelledError, Exception):
        await listener
    await redis.RedisManager.close()
    await database.engine.dispose()


app = FastAPI(title="Points Economy & Withdrawal Risk Engine", version=VERSION, lifespan=lifespan)

exception_handlers.setup_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(economy.router, prefix="/api/economy", tags=["Economy"])


@app.get("/health")
async def health():
    services = {
        "database": await database.check_connection(),
        "redis": await redis.check_connection(),
        "rabbitmq": await celery.check_connection(),
    }
    status = "healthy" if all(services.values()) else "degraded"
    return {
        "status": status,
        "services": services,
        "version": VERSION,
    }
