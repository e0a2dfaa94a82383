"""
Standalone worker process: runs a scheduler against the shared job store.

Start as many of these as needed; claims are atomic in the database, so
workers never share a job. Jobs created through the facade stay with the
API process that created them.
"""

import asyncio
import logging
import signal

from notequeue.bootstrap import build_queue
from notequeue.config import settings, setup_opentelemetry
from notequeue.db.session import dispose_engine
from notequeue.db.valkey import close_valkey_client

logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_SECONDS = 60


async def run_worker(stop_event: asyncio.Event | None = None) -> None:
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    handled = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
            handled.append(sig)
        except NotImplementedError:
            # not available on every platform's event loop
            pass

    components = build_queue()
    scheduler = components.scheduler
    await scheduler.start()

    try:
        await stop_event.wait()
    finally:
        logger.info(f"Worker {scheduler.worker_id} shutting down")
        await scheduler.stop(drain=True, timeout=SHUTDOWN_DRAIN_SECONDS)
        await dispose_engine()
        await close_valkey_client()
        for sig in handled:
            loop.remove_signal_handler(sig)


def main() -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    setup_opentelemetry()
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
