from datetime import timedelta
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ingest_scheduler.domain.result import TaskResult


@runtime_checkable
class Task(Protocol):
    """
    Protocol for schedulable units of work.

    New tasks are added by implementing these members; the scheduler never looks
    past them.
    """

    name: str
    timeout: timedelta
    max_retries: int
    retry_delay: timedelta

    async def check_already_done_for_period(self) -> bool:
        """
        Return True when the current period's work has already been done, in which
        case the scheduler records a Skipped run instead of calling execute().
        Implementations that have no such notion return False.
        """
        ...

    async def execute(self) -> "TaskResult":
        """
        Do the work once. May raise; the scheduler treats a raised exception as a
        failed attempt.
        """
        ...

    async def persist(self, result: "TaskResult") -> bool:
        """
        Store a result. Must not raise; return False when the result could not be
        saved.
        """
        ...
