"""FastAPI entrypoint."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from mmtwilio.bindings.store import BindingStore
from mmtwilio.commands.router import router as command_router
from mmtwilio.config import get_settings, validate_settings_for_env
from mmtwilio.db.migrations.runner import run_migrations
from mmtwilio.errors import MMTwilioError
from mmtwilio.inbound.router import router as inbound_router
from mmtwilio.logging import configure_logging
from mmtwilio.outbound.router import router as outbound_router
from mmtwilio.routes.health import router as health_router
from mmtwilio.runtime import Runtime, build_runtime

logger = logging.getLogger(__name__)


async def _migrate_legacy_bindings(store: BindingStore) -> None:
    if store.legacy_migrated():
        return
    try:
        migrated = await asyncio.to_thread(store.migrate_legacy)
    except MMTwilioError as exc:
        logger.error("Legacy binding migration failed: %s", exc)
        return
    logger.info("Legacy binding migration finished (migrated=%d)", migrated)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    validate_settings_for_env(settings)
    configure_logging(settings.log_level)
    applied = run_migrations()
    if applied:
        logger.info("Applied migrations: %s", ", ".join(applied))

    runtime: Runtime | None = getattr(app.state, "runtime", None)
    if runtime is None:
        runtime = build_runtime(settings)
        app.state.runtime = runtime

    if not runtime.snapshots.loaded:
        try:
            await runtime.snapshots.reload(settings, runtime.host)
        except MMTwilioError as exc:
            # Webhooks answer 503 until POST /admin/reload succeeds.
            logger.error("Could not load configuration at startup: %s", exc)

    migration_task: asyncio.Task[None] | None = None
    if int(settings.legacy_migration_on_startup) == 1:
        migration_task = asyncio.create_task(_migrate_legacy_bindings(runtime.store))
    yield
    if migration_task is not None:
        await migration_task


limiter = Limiter(key_func=get_remote_address)

app = FastAPI(title="Mattermost Twilio Relay", version="0.1.0", lifespan=lifespan)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"error": "rate limit exceeded", "detail": str(exc.detail)},
    )


app.include_router(health_router)
app.include_router(inbound_router)
app.include_router(outbound_router)
app.include_router(command_router)
