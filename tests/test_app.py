import asyncio
import logging

import pytest
import pytest_asyncio

from ingest_scheduler.app import register_schedules, run
from ingest_scheduler.config import Settings
from ingest_scheduler.errors import PersistenceFailure, ScheduleValidationError
from ingest_scheduler.storages.sqlalchemy import InMemoryStorage


@pytest_asyncio.fixture(scope="function")
async def storage():
    storage = InMemoryStorage()
    yield storage
    await storage.dispose()


@pytest.fixture(scope="function")
def settings() -> Settings:
    return Settings(_env_file=None, tick_interval_ms=50, log_level="DEBUG")


@pytest.mark.asyncio
async def test_register_schedules(storage, make_task, make_schedule) -> None:
    schedules = [
        make_schedule(make_task(name="News"), task_id=1),
        make_schedule(make_task(name="Weather"), task_id=2),
    ]
    await register_schedules(storage, schedules)

    for schedule in schedules:
        assert await storage.save_task(schedule) is False


@pytest.mark.asyncio
async def test_run_until_stopped(storage, settings, make_task, make_schedule) -> None:
    task = make_task()
    stop_event = asyncio.Event()

    async def stop_soon():
        await asyncio.sleep(1.2)
        stop_event.set()

    stopper = asyncio.create_task(stop_soon())
    await asyncio.wait_for(
        run([make_schedule(task, "* * * * * ?")], settings=settings, storage=storage, stop_event=stop_event),
        timeout=5,
    )
    await stopper

    assert task.execute_calls >= 1
    assert all(status == "Success" for status in task.statuses)


@pytest.mark.asyncio
async def test_run_refuses_invalid_schedules(storage, settings, make_task, make_schedule) -> None:
    with pytest.raises(ScheduleValidationError):
        await run(
            [make_schedule(make_task(), "61 * * * * *")],
            settings=settings,
            storage=storage,
            stop_event=asyncio.Event(),
        )


class UnavailableStorage:
    def __init__(self, fail_create: bool):
        self.fail_create = fail_create
        self.save_calls = 0

    async def create_tables(self) -> None:
        if self.fail_create:
            raise PersistenceFailure("Failed to create tables: database is locked")

    async def save_task(self, schedule) -> bool:
        self.save_calls += 1
        raise PersistenceFailure("Failed to save task: database is locked")


@pytest.mark.asyncio
@pytest.mark.parametrize("fail_create", [True, False])
async def test_register_schedules_survives_storage_failure(fail_create, make_task, make_schedule, caplog) -> None:
    storage = UnavailableStorage(fail_create=fail_create)
    schedules = [
        make_schedule(make_task(name="News"), task_id=1),
        make_schedule(make_task(name="Weather"), task_id=2),
    ]

    with caplog.at_level(logging.ERROR, logger="ingest_scheduler.app"):
        await register_schedules(storage, schedules)

    assert storage.save_calls == (0 if fail_create else 2)
    assert "Could not" in caplog.text
    assert all(isinstance(r.exc_info[1], PersistenceFailure) for r in caplog.records if r.exc_info)


@pytest.mark.asyncio
async def test_run_starts_when_storage_is_unavailable(settings, make_task, make_schedule) -> None:
    task = make_task()
    stop_event = asyncio.Event()
    asyncio.get_running_loop().call_later(1.2, stop_event.set)

    await asyncio.wait_for(
        run(
            [make_schedule(task, "* * * * * ?")],
            settings=settings,
            storage=UnavailableStorage(fail_create=True),
            stop_event=stop_event,
        ),
        timeout=5,
    )

    assert task.execute_calls >= 1
