from datetime import datetime, timedelta
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from ingest_scheduler.cron import CronMatcher
from ingest_scheduler.errors import ScheduleValidationError
from ingest_scheduler.tasks.protocol import Task


class Schedule(BaseModel):
    """
    Timing and failure policy for one task. Immutable once built.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    task: Task = Field(..., description="The unit of work this schedule triggers")
    task_id: int = Field(..., description="Unique task identifier")
    name: str = Field(..., description="Task name, also the key of the execution guard")
    description: str = Field("", description="Free-form description of the task")
    cron_expression: str = Field(..., description="Cron expression, seconds first when six or seven fields")
    enabled: bool = Field(default=True, description="Disabled schedules are never evaluated")
    max_retries: int = Field(default=3, description="Retries after the initial attempt")
    retry_delay: timedelta = Field(default=timedelta(minutes=5), description="Pause between attempts")
    timeout: timedelta = Field(default=timedelta(minutes=10), description="Budget for every single attempt")

    _matcher: Optional[CronMatcher] = PrivateAttr(default=None)

    @classmethod
    def for_task(cls, task: Task, task_id: int, cron_expression: str, **overrides: Any) -> "Schedule":
        """
        Build a schedule that takes its name and failure policy from ``task``.
        """
        values = {
            "task": task,
            "task_id": task_id,
            "name": task.name,
            "cron_expression": cron_expression,
            "max_retries": task.max_retries,
            "retry_delay": task.retry_delay,
            "timeout": task.timeout,
        }
        values.update(overrides)
        return cls(**values)

    def check(self) -> CronMatcher:
        """
        Validate the schedule and compile its cron expression.

        Raises:
            ScheduleValidationError: on the first invalid setting.
        """
        if not self.name or not self.name.strip():
            raise ScheduleValidationError("Task name cannot be empty")
        if not CronMatcher.is_valid_expression(self.cron_expression):
            raise ScheduleValidationError(f"Invalid cron expression for task '{self.name}': {self.cron_expression!r}")
        if self.max_retries < 0:
            raise ScheduleValidationError(f"Max retries must be non-negative for task '{self.name}'")
        if self.retry_delay < timedelta(0):
            raise ScheduleValidationError(f"Retry delay must be non-negative for task '{self.name}'")
        if self.timeout < timedelta(0):
            raise ScheduleValidationError(f"Timeout must be non-negative for task '{self.name}'")
        if self._matcher is None:
            self._matcher = CronMatcher(self.cron_expression)
        return self._matcher

    @property
    def matcher(self) -> CronMatcher:
        if self._matcher is None:
            return self.check()
        return self._matcher

    def is_due(self, instant: datetime) -> bool:
        if not self.enabled:
            return False
        return self.matcher.matches(instant)

    def next_occurrence(self, from_instant: datetime) -> Optional[datetime]:
        return self.matcher.next_occurrence(from_instant)

    @property
    def readable_string(self) -> str:
        summary = f"Task '{self.name}' (id={self.task_id}) on '{self.cron_expression}'"
        if not self.enabled:
            summary += " [disabled]"
        return (
            f"{summary}, max {self.max_retries} retries every {self.retry_delay}, "
            f"timeout {self.timeout}"
        )
