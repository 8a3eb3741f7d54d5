"""Taskiq broker and scheduler for the review sync jobs.

Run with:
    taskiq worker src.core.tasks.broker:broker src.core.tasks.review_tasks
    taskiq scheduler src.core.tasks.broker:scheduler src.core.tasks.review_tasks
"""

from taskiq import TaskiqScheduler
from taskiq.schedule_sources import LabelScheduleSource
from taskiq_redis import ListQueueBroker

from src.core.config import settings

broker = ListQueueBroker(
    url=settings.redis_url,
    queue_name="review_desk",
)

scheduler = TaskiqScheduler(
    broker=broker,
    sources=[LabelScheduleSource(broker)],
)
