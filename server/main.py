"""
Lead workflow engine bootstrap.

Builds the dependency injection container, configures logging and runs the
delay scheduler until the process is stopped. Host applications embed the
engine through ``lifespan`` and call the WorkflowService it yields.
"""

import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from core.config import Settings
from core.container import Container
from core.logging import configure_logging, get_logger
from services.workflow import WorkflowService

logger = get_logger(__name__)


def create_container(settings: Optional[Settings] = None) -> Container:
    """Build a container, optionally with explicit settings."""
    container = Container()
    if settings is not None:
        container.settings.override(settings)
    return container


def _quiet_noisy_loggers() -> None:
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("apscheduler.scheduler").setLevel(logging.WARNING)
    logging.getLogger("apscheduler.executors").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(container: Container) -> AsyncIterator[WorkflowService]:
    """Engine lifespan management."""
    settings = container.settings()
    configure_logging(settings)
    _quiet_noisy_loggers()

    logger.info("Starting lead workflow engine",
                storage_backend=settings.storage_backend,
                delay_scheduler=settings.delay_scheduler,
                durable_delays=settings.is_durable)

    service = container.workflow_service()
    await service.start()
    logger.info("Engine started successfully")

    try:
        yield service
    finally:
        await service.stop()
        await container.email_sender().aclose()
        await container.content_generator().aclose()
        await container.email_analyzer().aclose()
        if settings.storage_backend == "redis":
            await container.redis_client().aclose()
        logger.info("Engine shutdown complete")


async def serve(settings: Optional[Settings] = None) -> None:
    """Run the engine until SIGINT/SIGTERM."""
    container = create_container(settings)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    async with lifespan(container):
        await stop.wait()


if __name__ == "__main__":
    asyncio.run(serve())
