"""Sprout service entry point."""

import asyncio
import contextlib
import logging
import signal

from sprout.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


async def serve() -> None:
    """Run the API server (and idle sweeper) until SIGINT/SIGTERM."""
    from sprout.engine.realtime import RealtimeEventRouter
    from sprout.engine.turn import SessionEngine
    from sprout.scheduler.idle import IdleSessionSweeper
    from sprout.server.app import ApiServer

    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY is empty; replies will fail")

    engine = SessionEngine.create()
    server = ApiServer(engine, RealtimeEventRouter(engine))
    sweeper = IdleSessionSweeper(engine) if settings.idle_completion_enabled else None

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    await server.start()
    if sweeper is not None:
        await sweeper.start()
    try:
        await stop.wait()
    finally:
        if sweeper is not None:
            await sweeper.stop()
        await server.stop()
        await engine.drain()


def main() -> None:
    """Start the service."""
    logger.info("Starting Sprout on %s:%d...", settings.server_host, settings.server_port)
    asyncio.run(serve())


if __name__ == "__main__":
    main()
