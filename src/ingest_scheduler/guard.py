import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


logger = logging.getLogger(__name__)


class ExecutionRecord(BaseModel):
    """
    Marker for one in-flight execution, including its retry chain.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    task_name: str
    handle: Optional[asyncio.Task] = Field(None, description="The asyncio task running the execution")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_active(self) -> bool:
        return self.handle is None or not self.handle.done()


class ExecutionGuard:
    """
    Per-task mutual exclusion: at most one execution per task name in flight.

    All operations are synchronous, so on a single event loop each one is atomic
    with respect to the coroutines sharing the guard.
    """

    def __init__(self):
        self._records: Dict[str, ExecutionRecord] = {}

    def try_acquire(self, task_name: str) -> bool:
        record = self._records.get(task_name)
        if record is not None and record.is_active:
            return False
        self._records[task_name] = ExecutionRecord(task_name=task_name)
        return True

    def attach(self, task_name: str, handle: asyncio.Task) -> None:
        """
        Bind the running execution to an acquired record so stop() can cancel it.
        """
        record = self._records.get(task_name)
        if record is None:
            raise KeyError(f"No execution acquired for task '{task_name}'")
        record.handle = handle

    def release(self, task_name: str) -> None:
        self._records.pop(task_name, None)

    def is_held(self, task_name: str) -> bool:
        record = self._records.get(task_name)
        return record is not None and record.is_active

    def get(self, task_name: str) -> Optional[ExecutionRecord]:
        return self._records.get(task_name)

    def cancel_all(self) -> List[asyncio.Task]:
        """
        Cancel every in-flight execution and return their handles.
        """
        cancelled = []
        for record in self._records.values():
            if record.handle is not None and not record.handle.done():
                logger.info("Cancelling running execution of task %s", record.task_name)
                record.handle.cancel()
                cancelled.append(record.handle)
        return cancelled

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, task_name: object) -> bool:
        return task_name in self._records
