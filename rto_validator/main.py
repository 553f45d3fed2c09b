"""RTO validator API application."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from rto_validator.api.v1.endpoints import health
from rto_validator.api.v1.router import api_router
from rto_validator.core.config import settings
from rto_validator.core.database import async_session_maker, close_database, init_database
from rto_validator.core.temporal_client import TemporalPublisher
from rto_validator.services.outbox_dispatcher import OutboxDispatcher
from rto_validator.utils.logging import get_logger

LOGGER = get_logger(__name__, level=settings.log_level)

CORRELATION_HEADER = "X-Correlation-ID"


def _start_outbox_dispatcher(stop_event: asyncio.Event) -> asyncio.Task:
    dispatcher = OutboxDispatcher(
        async_session_maker,
        TemporalPublisher(),
        batch_size=settings.outbox.batch_size,
        max_attempts=settings.outbox.max_attempts,
    )
    return asyncio.create_task(
        dispatcher.run_forever(settings.outbox.poll_interval_seconds, stop_event)
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    LOGGER.info(
        f"Starting {settings.app_name} {settings.app_version}",
        extra={"environment": settings.environment},
    )
    if not settings.llm.gemini_api_key:
        LOGGER.warning("GEMINI_API_KEY is not set; requirement re-validation is disabled")

    try:
        await init_database(create_tables=settings.auto_create_tables)
    except Exception as e:
        LOGGER.error(f"Database initialization failed: {e}", exc_info=True)

    # Normally the worker publishes the outbox; single-process deployments opt in here
    stop_event = asyncio.Event()
    dispatcher_task: Optional[asyncio.Task] = None
    if settings.outbox.run_in_api:
        dispatcher_task = _start_outbox_dispatcher(stop_event)

    yield

    if dispatcher_task is not None:
        stop_event.set()
        await dispatcher_task
    await close_database()
    LOGGER.info(f"{settings.app_name} stopped")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Validates RTO assessment documents against unit of competency requirements",
    lifespan=lifespan,
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid4())
    request.state.correlation_id = correlation_id
    response = await call_next(request)
    response.headers[CORRELATION_HEADER] = correlation_id
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=[CORRELATION_HEADER],
)

app.include_router(api_router, prefix=settings.api_v1_prefix)
app.include_router(health.router, prefix="/health", tags=["Health"])


@app.get("/", tags=["Root"], summary="Service descriptor", operation_id="get_service_info")
async def root() -> dict:
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "rto_validator.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
