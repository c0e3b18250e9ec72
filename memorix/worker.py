"""Consumer-only entry point.

Runs the event consumers of the configured service role without the HTTP API,
so message consumption and request handling can live in separate processes.

Usage:
    SERVICE_ROLE=deck memorix-worker
    SERVICE_ROLE=card python -m memorix.worker
"""

import asyncio
import signal
from typing import Optional

from memorix.core.config import Settings, settings as default_settings
from memorix.core.logging import get_logger, setup_logging
from memorix.core.observability import setup_observability
from memorix.infrastructure.container import ServiceContainer

logger = get_logger(__name__)


async def run_worker(
    settings: Optional[Settings] = None,
    stop_event: Optional[asyncio.Event] = None,
    container: Optional[ServiceContainer] = None,
) -> None:
    settings = settings or default_settings
    container = container or ServiceContainer(settings)
    stop_event = stop_event or asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Not supported outside the main thread or on some platforms
            pass

    await container.start(with_consumers=True)
    logger.info(
        "Worker running",
        role=container.role,
        queues=[consumer.queue for consumer in container.consumers()],
    )
    try:
        await stop_event.wait()
    finally:
        logger.info("Worker stopping", role=container.role)
        await container.stop()


def main() -> None:
    setup_logging()
    setup_observability()
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
