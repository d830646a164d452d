import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ingest_scheduler.domain.result import (
    RunStatus,
    TaskError,
    TaskResult,
    TaskSuccess,
    period_run_name,
)
from ingest_scheduler.domain.schedule import Schedule
from ingest_scheduler.errors import ExecutionFault, TaskTimeoutError
from ingest_scheduler.tasks.protocol import Task


logger = logging.getLogger(__name__)


class Attempt(BaseModel):
    """
    Chain state: attempt ``number`` is about to run. 0 is the scheduled run.
    """
    model_config = ConfigDict(frozen=True)

    number: int = Field(..., ge=0)


class Succeeded(BaseModel):
    model_config = ConfigDict(frozen=True)

    attempts: int
    result: TaskSuccess


class ExhaustedFailed(BaseModel):
    model_config = ConfigDict(frozen=True)

    attempts: int
    result: TaskError


ChainState = Union[Attempt, Succeeded, ExhaustedFailed]


async def _call(task: Task) -> TaskResult:
    # a TimeoutError raised by execute() itself is a fault, only wait_for expiring is a timeout
    try:
        return await task.execute()
    except asyncio.TimeoutError as e:
        raise ExecutionFault(f"Unexpected error: {e!r}") from e


async def persist_result(task: Task, result: TaskResult) -> bool:
    """
    Hand a result to the task's persistence. Failures are logged, never raised.
    """
    try:
        saved = await task.persist(result)
    except Exception:
        logger.exception("Failed to persist %s result of run %s", result.status.value, result.run_name)
        return False
    if not saved:
        logger.error("Task %s could not persist %s result of run %s", task.name, result.status.value, result.run_name)
    return bool(saved)


class RetryController:
    """
    Drives one triggering of a task through Attempt(0..max_retries) until it
    reaches Succeeded or ExhaustedFailed.

    Every attempt gets the full timeout budget. Results are persisted in the order
    attempts complete.
    """

    def __init__(self, clock: Callable[[], datetime]):
        self._clock = clock
        self._attempts: Dict[str, int] = {}

    def current_attempt(self, task_name: str) -> Optional[int]:
        return self._attempts.get(task_name)

    def clear(self) -> None:
        self._attempts.clear()

    def __len__(self) -> int:
        return len(self._attempts)

    async def run(self, schedule: Schedule) -> Union[Succeeded, ExhaustedFailed]:
        name = schedule.name
        state: ChainState = Attempt(number=0)
        self._attempts[name] = 0
        try:
            while isinstance(state, Attempt):
                self._attempts[name] = state.number
                if state.number > 0:
                    await asyncio.sleep(schedule.retry_delay.total_seconds())
                result = await self._attempt(schedule)
                await persist_result(schedule.task, result)
                state = self._transition(schedule, state, result)
        finally:
            self._attempts.pop(name, None)
        return state

    def _transition(self, schedule: Schedule, state: Attempt, result: TaskResult) -> ChainState:
        if isinstance(result, TaskSuccess):
            return Succeeded(attempts=state.number + 1, result=result)
        if state.number < schedule.max_retries:
            logger.warning(
                "Task %s failed (%s), scheduling retry %d/%d after %s",
                schedule.name, result.status.value, state.number + 1,
                schedule.max_retries, schedule.retry_delay,
            )
            return Attempt(number=state.number + 1)
        logger.error("Task %s failed after %d retries", schedule.name, schedule.max_retries)
        return ExhaustedFailed(attempts=state.number + 1, result=result)

    async def _attempt(self, schedule: Schedule) -> TaskResult:
        try:
            return await self._execute(schedule)
        except TaskTimeoutError as e:
            logger.warning(str(e))
            return self._error(schedule, RunStatus.TIMED_OUT, str(e))
        except ExecutionFault as e:
            logger.exception("Unexpected error executing task %s", schedule.name)
            return self._error(schedule, RunStatus.FAILED, str(e))

    async def _execute(self, schedule: Schedule) -> TaskResult:
        timeout = schedule.timeout.total_seconds()
        try:
            result = await asyncio.wait_for(_call(schedule.task), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TaskTimeoutError(
                f"Task {schedule.name} timed out after {timeout:g} seconds"
            ) from e
        except ExecutionFault:
            raise
        except Exception as e:
            raise ExecutionFault(f"Unexpected error: {e}") from e
        if not isinstance(result, (TaskSuccess, TaskError)):
            raise ExecutionFault(f"Task {schedule.name} returned {type(result).__name__}, not a TaskResult")
        return result

    def _error(self, schedule: Schedule, status: RunStatus, detail: str) -> TaskError:
        now = self._clock()
        return TaskError(
            task_id=schedule.task_id,
            run_name=period_run_name(schedule.name, now),
            status=status,
            executed_at=now,
            detail=detail,
        )
