import asyncio
import os
from datetime import timedelta

from ingest_scheduler.app import run
from ingest_scheduler.config import Settings
from ingest_scheduler.domain.schedule import Schedule
from ingest_scheduler.storages.sqlalchemy import SqlAlchemyStorage
from ingest_scheduler.tasks.http import HttpPollTask, HttpRequest

# Set up the storage and the task
settings = Settings()
storage = SqlAlchemyStorage(settings.database_url)

trending_news = HttpPollTask(
    task_id=1,
    name="TrendingNewsArticles",
    request=HttpRequest(
        url="https://newsapi.org/v2/top-headlines",
        params={"country": "us", "apiKey": os.environ.get("NEWSAPI_KEY", "")},
    ),
    storage=storage,
    timeout=timedelta(minutes=5),
    max_retries=3,
    retry_delay=timedelta(minutes=1),
    timezone=settings.timezone,
)

schedules = [
    Schedule.for_task(
        trending_news,
        task_id=trending_news.task_id,
        cron_expression="0 0/1 * * * ?",
        description="Fetches the latest trending news articles from newsapi.org",
    ),
]

if __name__ == "__main__":
    asyncio.run(run(schedules, settings=settings, storage=storage))
