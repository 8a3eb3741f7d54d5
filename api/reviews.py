"""Review mirror, import, reply and reply-drafting endpoints."""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from api.deps import RequestIdentity, error_detail, get_identity, http_error
from src.core import google_business, review_store, review_sync
from src.core.exceptions import ReviewDeskError
from src.core.reply_generator import ReplyConfig, ReviewInput, generate_reply, stream_reply
from src.core.review_sync import LocationSelection

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/reviews", tags=["reviews"])


# --- Request schemas ---


class ImportRequest(BaseModel):
    locations: list[LocationSelection] = Field(default_factory=list)


class ReplyRequest(BaseModel):
    comment: str


class GenerateRequest(BaseModel):
    review: ReviewInput
    config: ReplyConfig
    stream: bool = False
    model: str | None = None


# --- Mirror ---


@router.get("")
async def list_reviews(
    location_id: str | None = None,
    unanswered: bool = False,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    identity: RequestIdentity = Depends(get_identity),
):
    try:
        items = await review_store.list_reviews(
            identity.organization_id,
            location_id=location_id,
            unanswered_only=unanswered,
            limit=limit,
            offset=offset,
        )
    except ReviewDeskError as e:
        raise http_error(e) from e
    return {"items": items, "count": len(items)}


@router.get("/remote")
async def list_remote_reviews(
    account_id: str,
    location_id: str,
    identity: RequestIdentity = Depends(get_identity),
):
    """Live fetch from Google without touching the mirror."""
    try:
        reviews = await google_business.get_reviews(
            identity.organization_id, account_id, location_id
        )
    except ReviewDeskError as e:
        raise http_error(e) from e
    return {
        "reviews": [
            {**review, "rating": review_sync.star_rating_to_int(review.get("starRating"))}
            for review in reviews
        ]
    }


@router.post("/import")
async def import_reviews(body: ImportRequest, identity: RequestIdentity = Depends(get_identity)):
    try:
        result = await review_sync.import_locations(identity.organization_id, body.locations)
    except ReviewDeskError as e:
        raise http_error(e) from e
    return result.model_dump(by_alias=True)


# --- Replies ---


@router.post("/{review_id}/reply")
async def reply_to_review(
    review_id: str, body: ReplyRequest, identity: RequestIdentity = Depends(get_identity)
):
    try:
        posted = await review_sync.reply_to_review(
            identity.organization_id, review_id, body.comment
        )
    except ReviewDeskError as e:
        raise http_error(e) from e
    if not posted:
        raise HTTPException(
            status_code=502, detail=error_detail("Google did not accept the reply", "retry")
        )
    return {"success": True}


@router.delete("/{review_id}/reply")
async def delete_reply(review_id: str, identity: RequestIdentity = Depends(get_identity)):
    try:
        deleted = await review_sync.delete_review_reply(identity.organization_id, review_id)
    except ReviewDeskError as e:
        raise http_error(e) from e
    if not deleted:
        raise HTTPException(
            status_code=502, detail=error_detail("Google did not delete the reply", "retry")
        )
    return {"success": True}


# --- Drafting ---


async def _sse(body: GenerateRequest):
    try:
        async for chunk in stream_reply(body.review, body.config, body.model):
            yield f"data: {json.dumps({'text': chunk})}\n\n"
    except Exception as e:
        logger.error("Reply stream failed: %s", e)
        payload = error_detail("Failed to generate reply", "retry")
        yield f"event: error\ndata: {json.dumps(payload)}\n\n"
        return
    yield "data: [DONE]\n\n"


@router.post("/generate")
async def generate(body: GenerateRequest, identity: RequestIdentity = Depends(get_identity)):
    """Draft a reply; ``stream=true`` switches to server-sent events."""
    if body.stream:
        return StreamingResponse(_sse(body), media_type="text/event-stream")

    try:
        reply = await generate_reply(body.review, body.config, body.model)
    except Exception as e:
        logger.error("Reply generation failed for org %s: %s", identity.organization_id, e)
        raise HTTPException(
            status_code=502, detail=error_detail("Failed to generate reply", "retry")
        ) from e
    return {"reply": reply}
