from typing import List, Protocol

from ingest_scheduler.domain.result import TaskResult
from ingest_scheduler.domain.schedule import Schedule


class RunStorage(Protocol):
    async def create_tables(self) -> None:
        """Create the tables backing the storage if they do not exist."""
        ...

    async def save_task(self, schedule: Schedule) -> bool:
        """Insert or update a task definition. Return True if a row was written, False if nothing changed."""
        ...

    async def save_run(self, result: TaskResult) -> int:
        """Store the result of one run and return its row ID."""
        ...

    async def has_successful_run(self, run_name: str) -> bool:
        """Whether a successful run with this run name exists."""
        ...

    async def list_recent_runs(self, task_id: int, limit: int = 10) -> List[TaskResult]:
        """List runs for a specific task, most recent first."""
        ...
