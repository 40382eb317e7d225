from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI

from authcycle.api.error_handling import register_exception_handlers
from authcycle.api.routes import router
from authcycle.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

__version__ = "0.1.0"


async def _run_token_purge(token_store: Any, interval_seconds: float) -> None:
    """Background loop that drops expired refresh records."""

    try:
        while True:
            try:
                await token_store.purge_expired_tokens()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("token_purge_failed", error_type=type(exc).__name__, error=str(exc))
            await asyncio.sleep(interval_seconds)
    except asyncio.CancelledError:
        logger.info("token_purge_task_cancelled")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open store connections on startup and release them on shutdown."""
    from authcycle.service.runtime import get_runtime

    runtime = get_runtime()
    await runtime.start()
    logger.info("app_started", version=__version__)

    # Redis expires refresh records on its own TTL and has nothing to purge
    _purge_task: Optional[asyncio.Task] = None
    interval = runtime.settings.token_purge_interval_seconds
    if interval > 0 and hasattr(runtime.token_store, "purge_expired_tokens"):
        _purge_task = asyncio.create_task(_run_token_purge(runtime.token_store, interval))

    yield

    try:
        if _purge_task:
            _purge_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await _purge_task
        await runtime.close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="authcycle", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Bind a correlation ID to the request and echo it in X-Request-ID.

    The client-supplied X-Request-ID is reused when present; it is also
    recorded on refresh tokens minted during the request.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz", tags=["ops"])
async def healthz():
    return {"status": "ok", "version": __version__}
