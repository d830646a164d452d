from datetime import datetime, timezone

import aiohttp
import pytest
import pytest_asyncio
from aioresponses import aioresponses

from ingest_scheduler.domain.result import RunStatus, TaskError, TaskSuccess
from ingest_scheduler.errors import PersistenceFailure
from ingest_scheduler.storages.sqlalchemy import InMemoryStorage
from ingest_scheduler.tasks.http import HttpPollTask, HttpRequest
from ingest_scheduler.tasks.protocol import Task

NOW = datetime(2026, 5, 1, 8, 0, tzinfo=timezone.utc)
URL = "https://newsapi.example.com/v2/top-headlines"


@pytest_asyncio.fixture(scope="function")
async def storage():
    storage = InMemoryStorage()
    await storage.create_tables()
    yield storage
    await storage.dispose()


@pytest.fixture(scope="function")
def http_task(storage) -> HttpPollTask:
    return HttpPollTask(
        task_id=1,
        name="TrendingNews",
        request=HttpRequest(url=URL, params={"country": "us"}),
        storage=storage,
        clock=lambda: NOW,
    )


def test_implements_task_protocol(http_task: HttpPollTask) -> None:
    assert isinstance(http_task, Task)
    assert http_task.run_name == "2026-05-01-TrendingNews"


@pytest.mark.asyncio
async def test_execute_success(http_task: HttpPollTask) -> None:
    with aioresponses() as m:
        m.get(f"{URL}?country=us", status=200, body='{"articles": []}')
        result = await http_task.execute()

    assert isinstance(result, TaskSuccess)
    assert result.status == RunStatus.SUCCESS
    assert result.task_id == 1
    assert result.run_name == "2026-05-01-TrendingNews"
    assert result.executed_at == NOW
    assert result.data == {"status": 200, "body": '{"articles": []}'}


@pytest.mark.asyncio
async def test_execute_http_error_status(http_task: HttpPollTask) -> None:
    with aioresponses() as m:
        m.get(f"{URL}?country=us", status=500, body="oops")
        result = await http_task.execute()

    assert isinstance(result, TaskError)
    assert result.status == RunStatus.FAILED
    assert result.detail == "HTTP 500"


@pytest.mark.asyncio
async def test_execute_client_error(http_task: HttpPollTask) -> None:
    with aioresponses() as m:
        m.get(f"{URL}?country=us", exception=aiohttp.ClientConnectionError("Connection refused"))
        result = await http_task.execute()

    assert isinstance(result, TaskError)
    assert "Connection refused" in result.detail


@pytest.mark.asyncio
async def test_period_done_after_successful_run(http_task: HttpPollTask) -> None:
    assert not await http_task.check_already_done_for_period()

    saved = await http_task.persist(TaskSuccess(task_id=1, run_name=http_task.run_name, executed_at=NOW))

    assert saved
    assert await http_task.check_already_done_for_period()


@pytest.mark.asyncio
async def test_persist_reports_storage_failure() -> None:
    class BrokenStorage:
        async def save_run(self, result):
            raise PersistenceFailure("database is locked")

    task = HttpPollTask(task_id=1, name="TrendingNews", request=HttpRequest(url=URL), storage=BrokenStorage())
    result = TaskError(task_id=1, run_name="2026-05-01-TrendingNews", executed_at=NOW)
    assert await task.persist(result) is False
