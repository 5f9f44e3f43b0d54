from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from backend.src.api.database import async_session_factory, engine
from backend.src.api.routes import limiter, router
from backend.src.config import settings
from backend.src.contracts.models import Base
from backend.src.logging_config import configure_logging
from backend.src.pipeline.factory import build_alert_pass
from backend.src.scheduler.scheduler import AlertScheduler

configure_logging(json_logs=settings.log_json)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    logger.info("starting_up", cors_origins=settings.cors_origin_list)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_tables_ready")

    redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)
    app.state.redis = redis_client

    alert_pass = build_alert_pass(settings, async_session_factory, redis_client)
    scheduler = AlertScheduler(alert_pass, settings.alert_interval_minutes)
    app.state.scheduler = scheduler

    if settings.alert_auto_sync:
        scheduler.start()
        logger.info("scheduler_started")
    else:
        logger.info("scheduler_disabled")

    yield

    # Shutdown
    if settings.alert_auto_sync:
        scheduler.stop()
        logger.info("scheduler_stopped")

    await redis_client.aclose()
    await engine.dispose()
    logger.info("shutdown_complete")


app = FastAPI(
    title="Course Alert API",
    description="Course availability monitoring and alert system",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
