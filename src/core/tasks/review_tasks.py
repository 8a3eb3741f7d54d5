"""Scheduled review reconciliation."""

import logging

from src.core.review_sync import sync_unanswered_reviews
from src.core.tasks.broker import broker

logger = logging.getLogger(__name__)


@broker.task(schedule=[{"cron": "0 */2 * * *"}])
async def sync_reviews_task() -> dict:
    """Every 2 hours: pull new reviews and reply changes for all connected orgs."""
    result = await sync_unanswered_reviews()
    failed = [r.organization_id for r in result.results if not r.success]
    logger.info(
        "Review sync finished: %d organizations, %d failed", result.synced, len(failed)
    )
    return result.model_dump(by_alias=True)
