"""Scheduler-facing endpoint for external cron triggers."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.deps import error_detail, http_error, verify_cron_secret
from src.core.exceptions import ReviewDeskError
from src.core.review_sync import sync_unanswered_reviews

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])


@router.api_route("/sync-reviews", methods=["GET", "POST"])
async def cron_sync_reviews():
    """Same pass the taskiq schedule runs, for platform cron triggers."""
    try:
        result = await sync_unanswered_reviews()
    except ReviewDeskError as e:
        raise http_error(e) from e
    except Exception as e:
        logger.error("Cron review sync failed: %s", e)
        raise HTTPException(
            status_code=500, detail=error_detail("Review sync failed", "retry")
        ) from e
    return result.model_dump(by_alias=True)
