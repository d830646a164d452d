import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo

import aiohttp
from pydantic import BaseModel, Field

from ingest_scheduler.domain.result import RunStatus, TaskError, TaskResult, TaskSuccess, period_run_name
from ingest_scheduler.errors import PersistenceFailure
from ingest_scheduler.storages.protocol import RunStorage


logger = logging.getLogger(__name__)


class HttpRequest(BaseModel):
    url: str = Field(..., description="The URL to make the HTTP request to")
    method: str = Field("GET", description="The HTTP method to use (e.g. GET, POST, PUT, DELETE)")
    headers: Dict[str, str] = Field(default={}, description="Optional headers to include in the request")
    body: Optional[Dict[str, Any]] = Field(default=None, description="Optional JSON body for the request")
    params: Dict[str, str] = Field(default={}, description="Optional query parameters for the request")


class HttpPollTask:
    """
    Task that polls an HTTP endpoint once per execution using aiohttp.

    The response status and body are kept as the run data. A period counts as done
    once a successful run with the period's run name is in storage.
    """

    def __init__(
        self,
        task_id: int,
        name: str,
        request: HttpRequest,
        storage: RunStorage,
        timeout: timedelta = timedelta(minutes=5),
        max_retries: int = 3,
        retry_delay: timedelta = timedelta(minutes=1),
        timezone: str = "UTC",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.task_id = task_id
        self.name = name
        self.request = request
        self.storage = storage
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.tz = ZoneInfo(timezone)
        self._clock = clock or (lambda: datetime.now(self.tz))

    @property
    def run_name(self) -> str:
        return period_run_name(self.name, self._clock())

    async def check_already_done_for_period(self) -> bool:
        return await self.storage.has_successful_run(self.run_name)

    async def execute(self) -> TaskResult:
        """
        Asynchronously make the configured HTTP request.

        Returns:
            TaskResult: Success for a 2xx response, Error for any other status or a
            client-side failure.
        """
        run_name, executed_at = self.run_name, self._clock()
        logger.info("Executing task %s: %s %s", self.name, self.request.method, self.request.url)
        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method=self.request.method,
                    url=self.request.url,
                    headers=self.request.headers,
                    params=self.request.params,
                    json=self.request.body
                ) as response:
                    data: Dict[str, Any] = {
                        "status": response.status,
                        "body": await response.text()
                    }
        except aiohttp.ClientError as e:
            logger.error("Request of task %s to %s failed: %s", self.name, self.request.url, e)
            return TaskError(
                task_id=self.task_id,
                run_name=run_name,
                status=RunStatus.FAILED,
                executed_at=executed_at,
                detail=f"Request failed: {e}",
            )

        if 200 <= data["status"] < 300:
            return TaskSuccess(task_id=self.task_id, run_name=run_name, executed_at=executed_at, data=data)
        logger.error("Task %s got HTTP %d from %s", self.name, data["status"], self.request.url)
        return TaskError(
            task_id=self.task_id,
            run_name=run_name,
            status=RunStatus.FAILED,
            executed_at=executed_at,
            detail=f"HTTP {data['status']}",
            data=data,
        )

    async def persist(self, result: TaskResult) -> bool:
        try:
            await self.storage.save_run(result)
        except PersistenceFailure:
            logger.exception("Failed to save run %s of task %s", result.run_name, self.name)
            return False
        return True
