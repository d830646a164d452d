import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union
from zoneinfo import ZoneInfo

from ingest_scheduler.domain.result import RunStatus, TaskSuccess, period_run_name
from ingest_scheduler.domain.schedule import Schedule
from ingest_scheduler.errors import ScheduleValidationError
from ingest_scheduler.guard import ExecutionGuard
from ingest_scheduler.retry import RetryController, Succeeded, persist_result


logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = timedelta(milliseconds=1000)


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class SchedulerLoop:
    """
    Ticks at a fixed interval, launches due tasks as independent asyncio tasks and
    supervises them until stop().

    A task is never launched while a previous triggering of it (retries included)
    is still in flight; such ticks are skipped.
    """

    def __init__(
        self,
        schedules: Sequence[Schedule],
        tick_interval: Union[timedelta, float] = DEFAULT_TICK_INTERVAL,
        timezone: str = "UTC",
    ):
        if isinstance(tick_interval, timedelta):
            tick_interval = tick_interval.total_seconds()
        if tick_interval <= 0:
            raise ValueError("Tick interval must be positive")
        self.schedules: List[Schedule] = list(schedules)
        self.tick_interval: float = tick_interval
        self.tz = ZoneInfo(timezone)
        self.state: SchedulerState = SchedulerState.STOPPED
        self.guard: Optional[ExecutionGuard] = None
        self.retries: Optional[RetryController] = None
        self._tick_task: Optional[asyncio.Task] = None
        self._last_slots: Dict[str, datetime] = {}

    @property
    def is_running(self) -> bool:
        return self.state == SchedulerState.RUNNING

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def validate(self) -> None:
        """
        Validate every schedule, failing on the first invalid one.

        Raises:
            ScheduleValidationError: if a schedule is invalid or names/ids collide.
        """
        names, ids = set(), set()
        for schedule in self.schedules:
            schedule.check()
            if schedule.name in names:
                raise ScheduleValidationError(f"Duplicate task name: {schedule.name}")
            if schedule.task_id in ids:
                raise ScheduleValidationError(f"Duplicate task id: {schedule.task_id}")
            names.add(schedule.name)
            ids.add(schedule.task_id)

    async def start(self) -> None:
        if self.is_running:
            logger.warning("Scheduler is already running, skipping start")
            return

        self.validate()
        logger.info(
            "Tasks validated & scheduled: %s",
            ", ".join(s.name for s in self.schedules if s.enabled) or "none",
        )

        self.guard = ExecutionGuard()
        self.retries = RetryController(clock=self.now)
        self._last_slots.clear()
        self.state = SchedulerState.RUNNING
        self._tick_task = asyncio.create_task(self._tick_loop())
        logger.info("Scheduler started at %s", self.now().isoformat())

    async def stop(self) -> None:
        if not self.is_running:
            logger.warning("Scheduler is not running")
            return

        logger.info("Stopping scheduler")
        self.state = SchedulerState.STOPPED
        if self._tick_task:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None

        guard, retries = self.guard, self.retries
        self.guard = None
        self.retries = None
        cancelled = guard.cancel_all()
        guard.clear()
        retries.clear()
        self._last_slots.clear()
        await asyncio.gather(*cancelled, return_exceptions=True)
        logger.info("Scheduler stopped at %s", self.now().isoformat())

    async def _tick_loop(self) -> None:
        while True:
            try:
                self.tick(self.now())
            except Exception:
                logger.exception("Error in scheduler tick")
            await asyncio.sleep(self.tick_interval)

    def tick(self, now: datetime) -> None:
        """
        Evaluate every enabled schedule at ``now`` and launch the due ones.
        """
        guard = self.guard
        if guard is None:
            return
        for schedule in self.schedules:
            if not schedule.enabled:
                continue
            if not schedule.is_due(now):
                continue
            slot = schedule.matcher.slot(now)
            if self._last_slots.get(schedule.name) == slot:
                continue
            if not guard.try_acquire(schedule.name):
                logger.debug("Task %s is still running, skipping this tick", schedule.name)
                continue
            self._last_slots[schedule.name] = slot
            handle = asyncio.create_task(self._run_execution(schedule, guard, self.retries))
            guard.attach(schedule.name, handle)

    async def _run_execution(self, schedule: Schedule, guard: ExecutionGuard, retries: RetryController) -> None:
        try:
            if await self._already_done(schedule):
                await self._record_skip(schedule)
                return
            outcome = await retries.run(schedule)
            next_run = schedule.next_occurrence(self.now())
            if isinstance(outcome, Succeeded):
                logger.info(
                    "Task %s completed successfully after %d attempt(s) - task will run again at %s",
                    schedule.name, outcome.attempts, next_run,
                )
            else:
                logger.error(
                    "Task %s gave up after %d attempt(s) - task will try again at %s",
                    schedule.name, outcome.attempts, next_run,
                )
        except asyncio.CancelledError:
            logger.info("Execution of task %s cancelled", schedule.name)
            raise
        except Exception:
            logger.exception("Unexpected error supervising task %s", schedule.name)
        finally:
            guard.release(schedule.name)

    async def _already_done(self, schedule: Schedule) -> bool:
        try:
            return bool(await schedule.task.check_already_done_for_period())
        except Exception:
            logger.exception("Error checking previous runs of task %s, running it anyway", schedule.name)
            return False

    async def _record_skip(self, schedule: Schedule) -> None:
        now = self.now()
        logger.info("Task %s already executed for this period, skipping", schedule.name)
        await persist_result(
            schedule.task,
            TaskSuccess(
                task_id=schedule.task_id,
                run_name=period_run_name(schedule.name, now),
                status=RunStatus.SKIPPED,
                executed_at=now,
            ),
        )
