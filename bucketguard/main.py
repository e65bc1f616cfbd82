"""BucketGuard status API.

:func:`create_app` builds the FastAPI application.  When the app manages the
worker runtime (the default) its startup builds and starts the
:class:`~bucketguard.runtime.Runtime` and its shutdown performs the graceful
worker shutdown, so ``uvicorn bucketguard.main:app`` runs a complete worker.

If a background loop stops on a fatal error the app records
``app.state.exit_code = 1`` and, when served by
:func:`bucketguard.worker.main`, asks the server to exit.
"""

import asyncio
import logging

from fastapi import FastAPI

from bucketguard.api.middleware.logging import RequestLoggingMiddleware
from bucketguard.api.routes.health import router as health_router
from bucketguard.api.routes.tasks import router as tasks_router
from bucketguard.config import get_settings
from bucketguard.runtime import Runtime, build_runtime, configure_logging

logger = logging.getLogger(__name__)


def create_app(runtime: Runtime | None = None, *, manage_runtime: bool = True) -> FastAPI:
    """Build the API application.

    Args:
        runtime: Runtime served by the routes.  When ``None`` and
            *manage_runtime* is set, one is built from the settings at
            startup.
        manage_runtime: Start the runtime on startup and shut it down on
            shutdown.  Disable when the caller owns the runtime.
    """
    app = FastAPI(
        title="BucketGuard API",
        description="Malware scan orchestrator status API",
        version="1.0.0",
    )

    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health_router)
    app.include_router(tasks_router)

    app.state.runtime = runtime
    app.state.exit_code = 0
    app.state.server = None
    app.state.watcher = None

    @app.on_event("startup")
    async def startup_event() -> None:
        if not manage_runtime:
            return
        logger.info("BucketGuard API starting up")
        if app.state.runtime is None:
            settings = get_settings()
            configure_logging(settings.LOG_LEVEL)
            app.state.runtime = build_runtime(settings)
        await app.state.runtime.start()
        app.state.watcher = asyncio.create_task(_watch_runtime(app))

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        if not manage_runtime:
            return
        watcher = app.state.watcher
        if watcher is not None and not watcher.done():
            watcher.cancel()
        if app.state.runtime is not None:
            await app.state.runtime.shutdown()
        logger.info("BucketGuard API shutting down")

    return app


async def _watch_runtime(app: FastAPI) -> None:
    try:
        await app.state.runtime.wait()
    except Exception as exc:
        logger.critical("Worker stopped on fatal error: %s", exc)
        app.state.exit_code = 1
        server = app.state.server
        if server is not None:
            server.should_exit = True


app = create_app()
