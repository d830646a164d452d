from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    SUCCESS = "Success"
    SKIPPED = "Skipped"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


class BaseTaskResult(BaseModel):
    """
    Outcome of one task attempt, as handed to the task's persistence.
    """
    task_id: int = Field(..., description="Identifier of the task that produced the result")
    run_name: str = Field(..., description="Run identifier, usually '<period>-<task name>'")
    status: RunStatus
    executed_at: datetime
    detail: Optional[str] = Field(None, description="Error message or other human readable detail")
    data: Optional[Any] = Field(None, description="JSON-able payload persisted alongside the run")

    @property
    def is_success(self) -> bool:
        return False


class TaskSuccess(BaseTaskResult):
    kind: Literal["success"] = "success"
    status: RunStatus = RunStatus.SUCCESS

    @property
    def is_success(self) -> bool:
        return True


class TaskError(BaseTaskResult):
    kind: Literal["error"] = "error"
    status: RunStatus = RunStatus.FAILED


TaskResult = Annotated[Union[TaskSuccess, TaskError], Field(discriminator="kind")]


def period_run_name(task_name: str, instant: datetime) -> str:
    """
    Build the run identifier for the period containing ``instant``.

    The period is the calendar date of ``instant`` in its own timezone, so callers
    must pass an instant already converted to the scheduler's timezone.
    """
    return f"{instant.date().isoformat()}-{task_name}"
