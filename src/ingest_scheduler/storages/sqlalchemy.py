from datetime import datetime, timezone
from typing import List

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Float, Text, JSON, ForeignKey
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker, relationship
from sqlalchemy.future import select

from ingest_scheduler.domain.result import RunStatus, TaskError, TaskResult, TaskSuccess
from ingest_scheduler.domain.schedule import Schedule
from ingest_scheduler.errors import PersistenceFailure
from ingest_scheduler.storages.protocol import RunStorage

Base = declarative_base()

class TaskModel(Base):
    __tablename__ = 'tasks'

    task_id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    cron_expression = Column(String(255), nullable=False)
    enabled = Column(Boolean, default=True)
    max_retries = Column(Integer, nullable=False)
    retry_delay_seconds = Column(Float, nullable=False)
    timeout_seconds = Column(Float, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    runs = relationship("TaskRunModel", back_populates="task")

class TaskRunModel(Base):
    __tablename__ = 'task_runs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey('tasks.task_id'), nullable=False)
    run_name = Column(String(255), nullable=False, index=True)
    kind = Column(String(16), nullable=False)
    status = Column(String(50), nullable=False)
    detail = Column(Text)
    data = Column(JSON)
    executed_at = Column(DateTime(timezone=True), nullable=False)

    task = relationship("TaskModel", back_populates="runs")

class SqlAlchemyStorage(RunStorage):
    """
    Task definitions and run history in any database SQLAlchemy's asyncio
    extension can reach. Database errors surface as PersistenceFailure.
    """

    def __init__(self, db_url: str):
        self.engine = create_async_engine(db_url)
        self.async_session = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Failed to create tables: {e}") from e

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def save_task(self, schedule: Schedule) -> bool:
        values = {
            "name": schedule.name,
            "description": schedule.description,
            "cron_expression": schedule.cron_expression,
            "enabled": schedule.enabled,
            "max_retries": schedule.max_retries,
            "retry_delay_seconds": schedule.retry_delay.total_seconds(),
            "timeout_seconds": schedule.timeout.total_seconds(),
        }
        try:
            async with self.async_session() as session:
                result = await session.execute(select(TaskModel).filter_by(task_id=schedule.task_id))
                db_task = result.scalar_one_or_none()
                if db_task is None:
                    db_task = TaskModel(task_id=schedule.task_id, **values)
                    session.add(db_task)
                elif all(getattr(db_task, key) == value for key, value in values.items()):
                    return False
                else:
                    for key, value in values.items():
                        setattr(db_task, key, value)
                db_task.updated_at = datetime.now(timezone.utc)
                await session.commit()
                return True
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Failed to save task {schedule.name}: {e}") from e

    async def save_run(self, result: TaskResult) -> int:
        try:
            async with self.async_session() as session:
                db_run = TaskRunModel(
                    task_id=result.task_id,
                    run_name=result.run_name,
                    kind=result.kind,
                    status=result.status.value,
                    detail=result.detail,
                    data=result.data,
                    executed_at=result.executed_at,
                )
                session.add(db_run)
                await session.commit()
                return db_run.id
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Failed to save run {result.run_name}: {e}") from e

    async def has_successful_run(self, run_name: str) -> bool:
        try:
            async with self.async_session() as session:
                result = await session.execute(
                    select(TaskRunModel.id)
                    .filter_by(run_name=run_name, status=RunStatus.SUCCESS.value)
                    .limit(1)
                )
                return result.scalar_one_or_none() is not None
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Failed to look up run {run_name}: {e}") from e

    async def list_recent_runs(self, task_id: int, limit: int = 10) -> List[TaskResult]:
        try:
            async with self.async_session() as session:
                result = await session.execute(
                    select(TaskRunModel)
                    .filter_by(task_id=task_id)
                    .order_by(TaskRunModel.id.desc())
                    .limit(limit)
                )
                return [self._db_to_result(db_run) for db_run in result.scalars()]
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Failed to list runs of task {task_id}: {e}") from e

    def _db_to_result(self, db_run: TaskRunModel) -> TaskResult:
        result_class = TaskSuccess if db_run.kind == "success" else TaskError
        return result_class(
            task_id=db_run.task_id,
            run_name=db_run.run_name,
            status=RunStatus(db_run.status),
            executed_at=db_run.executed_at,
            detail=db_run.detail,
            data=db_run.data,
        )


class InMemoryStorage(SqlAlchemyStorage):
    def __init__(self):
        super().__init__("sqlite+aiosqlite:///:memory:")
