"""Process entry point: ``python -m bucketguard``.

With ``API_ENABLED`` (the default) the worker runtime is served together
with the status API by an in-process uvicorn server, which owns SIGTERM and
SIGINT handling.  Without it the runtime runs headless and this module
installs the signal handlers itself.

Either way a signal triggers the graceful shutdown of the scheduler, and the
process exits with status 1 when:

* the AV engine never passes its startup health check, or
* a configured table or queue does not exist.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import uvicorn

from bucketguard.config import Settings, get_settings
from bucketguard.core.errors import EngineUnavailableError
from bucketguard.runtime import Runtime, build_runtime, configure_logging

logger = logging.getLogger(__name__)


async def run_headless(runtime: Runtime) -> int:
    """Run *runtime* until a signal arrives or a loop fails; return the exit code."""
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    try:
        await runtime.start()
    except EngineUnavailableError as exc:
        logger.critical("AV engine unavailable: %s", exc)
        await runtime.shutdown()
        return 1

    waiter = asyncio.create_task(runtime.wait())
    stopper = asyncio.create_task(stop.wait())
    done, _ = await asyncio.wait({waiter, stopper}, return_when=asyncio.FIRST_COMPLETED)

    exit_code = 0
    if waiter in done and waiter.exception() is not None:
        logger.critical("Worker stopped on fatal error: %s", waiter.exception())
        exit_code = 1
    else:
        logger.warning("Received shutdown request")

    for task in (waiter, stopper):
        task.cancel()
    await runtime.shutdown()
    return exit_code


async def run_with_api(runtime: Runtime, settings: Settings) -> int:
    """Serve the status API and *runtime* in this process; return the exit code."""
    from bucketguard.main import create_app

    app = create_app(runtime)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=settings.API_HOST,
            port=settings.API_PORT,
            log_config=None,
            log_level=settings.LOG_LEVEL.lower(),
        )
    )
    app.state.server = server
    await server.serve()
    if not server.started:
        # Startup failed, e.g. the AV engine never became healthy.
        return 1
    return app.state.exit_code


def main() -> int:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    runtime = build_runtime(settings)
    if settings.API_ENABLED:
        return asyncio.run(run_with_api(runtime, settings))
    return asyncio.run(run_headless(runtime))


if __name__ == "__main__":
    sys.exit(main())
