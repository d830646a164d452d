"""
Cron-driven Task Scheduler

Core Concepts:

Task:
    A Task is a unit of work, typically a call to an external API followed by
    storing what it returned. Tasks implement the protocol in
    ``ingest_scheduler.tasks.protocol``: execute once, report whether the current
    period is already done, and persist a result.

Schedule:
    A Schedule binds a Task to a cron expression together with its failure
    policy: how many times to retry, how long to wait between attempts and how
    long one attempt may run.

Execution:
    Each time a Schedule becomes due the scheduler launches one execution of its
    Task. An execution consists of the scheduled attempt plus up to
    ``max_retries`` retries and ends either succeeded or exhausted.

Relationships:
    - A Schedule owns exactly one Task.
    - A Task never has more than one execution in flight.
"""

from .domain import Schedule, TaskResult, TaskSuccess, TaskError, RunStatus, period_run_name
from .errors import SchedulerError, ScheduleValidationError, TaskTimeoutError, ExecutionFault, PersistenceFailure
from .cron import CronMatcher
from .scheduler import SchedulerLoop

__all__ = [
    "Schedule",
    "TaskResult",
    "TaskSuccess",
    "TaskError",
    "RunStatus",
    "period_run_name",
    "SchedulerError",
    "ScheduleValidationError",
    "TaskTimeoutError",
    "ExecutionFault",
    "PersistenceFailure",
    "CronMatcher",
    "SchedulerLoop",
]
