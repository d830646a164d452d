import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import pytest

from ingest_scheduler.domain.result import TaskError, TaskResult, TaskSuccess, period_run_name
from ingest_scheduler.domain.schedule import Schedule


class RecordingTask:
    """
    Scripted task. ``outcomes`` is consumed one entry per execute() call, the last
    entry repeating: "success", "error", "hang", an exception instance to raise, or
    any other object to return as-is.
    """

    def __init__(
        self,
        name: str = "RecordingTask",
        outcomes: Optional[list] = None,
        delay: float = 0.0,
        already_done: bool = False,
        persist_ok: bool = True,
        timeout: timedelta = timedelta(seconds=5),
        max_retries: int = 3,
        retry_delay: timedelta = timedelta(milliseconds=50),
    ):
        self.name = name
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.outcomes = outcomes or ["success"]
        self.delay = delay
        self.already_done = already_done
        self.persist_ok = persist_ok
        self.execute_calls = 0
        self.check_calls = 0
        self.running = 0
        self.max_running = 0
        self.persisted: List[TaskResult] = []
        self.persist_times: List[float] = []

    async def check_already_done_for_period(self) -> bool:
        self.check_calls += 1
        if isinstance(self.already_done, BaseException):
            raise self.already_done
        return self.already_done

    async def execute(self):
        self.execute_calls += 1
        outcome = self.outcomes[min(self.execute_calls, len(self.outcomes)) - 1]
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if outcome == "hang":
                await asyncio.sleep(3600)
        finally:
            self.running -= 1
        now = datetime.now(timezone.utc)
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome == "success":
            return TaskSuccess(task_id=1, run_name=period_run_name(self.name, now), executed_at=now)
        if outcome == "error":
            return TaskError(task_id=1, run_name=period_run_name(self.name, now), executed_at=now, detail="boom")
        return outcome

    async def persist(self, result: TaskResult) -> bool:
        if isinstance(self.persist_ok, BaseException):
            raise self.persist_ok
        self.persisted.append(result)
        self.persist_times.append(asyncio.get_running_loop().time())
        return self.persist_ok

    @property
    def statuses(self) -> List[str]:
        return [r.status.value for r in self.persisted]


@pytest.fixture(scope="function")
def make_task() -> Callable[..., RecordingTask]:
    return RecordingTask


@pytest.fixture(scope="function")
def make_schedule() -> Callable[..., Schedule]:
    def _make(task, cron_expression: str = "* * * * * ?", task_id: int = 1, **overrides) -> Schedule:
        return Schedule.for_task(task, task_id=task_id, cron_expression=cron_expression, **overrides)
    return _make
