import asyncio
import logging
import signal
from typing import Optional, Sequence

from ingest_scheduler.config import Settings, configure_logging
from ingest_scheduler.domain.schedule import Schedule
from ingest_scheduler.errors import PersistenceFailure
from ingest_scheduler.scheduler import SchedulerLoop
from ingest_scheduler.storages.protocol import RunStorage


logger = logging.getLogger(__name__)


async def register_schedules(storage: RunStorage, schedules: Sequence[Schedule]) -> None:
    """
    Make sure the storage knows every task before runs referencing it are saved.

    Storage failures are logged, the scheduler still starts without them.
    """
    try:
        await storage.create_tables()
    except PersistenceFailure:
        logger.exception("Could not prepare run storage, task definitions not saved")
        return
    for schedule in schedules:
        try:
            if await storage.save_task(schedule):
                logger.info("Saved task definition %s", schedule.readable_string)
        except PersistenceFailure:
            logger.exception("Could not save task definition %s", schedule.name)


async def run(
    schedules: Sequence[Schedule],
    settings: Optional[Settings] = None,
    storage: Optional[RunStorage] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    """
    Run the scheduler until SIGINT/SIGTERM or until ``stop_event`` is set.
    """
    settings = settings or Settings()
    configure_logging(settings.log_level)
    logger.info("Starting ingest scheduler")

    scheduler = SchedulerLoop(schedules, tick_interval=settings.tick_interval, timezone=settings.timezone)
    scheduler.validate()
    if storage is not None:
        await register_schedules(storage, schedules)

    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # not available on this platform or outside the main thread
            pass

    await scheduler.start()
    try:
        await stop_event.wait()
    finally:
        await scheduler.stop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass
