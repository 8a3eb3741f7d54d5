"""Persistence for the local review mirror.

Rows are keyed by ``(organization_id, platform, platform_review_id)``; the
named unique constraint is the only guard against duplicate inserts from
concurrent syncs.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert

from src.core.db import async_session
from src.core.exceptions import ValidationError
from src.core.models.enums import ReviewPlatform
from src.core.models.review import REVIEW_NATURAL_KEY, Review

logger = logging.getLogger(__name__)

DEFAULT_PLATFORM = ReviewPlatform.google.value


@dataclass
class ReplyState:
    id: str
    review_reply: str | None


def _org_uuid(organization_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(organization_id))
    except ValueError as e:
        raise ValidationError(f"organization_id is not a valid id: {organization_id!r}") from e


def _as_dict(review: Review) -> dict:
    return {
        "id": str(review.id),
        "organization_id": str(review.organization_id),
        "platform": review.platform,
        "platform_review_id": review.platform_review_id,
        "location_id": review.location_id,
        "location_name": review.location_name,
        "reviewer_name": review.reviewer_name,
        "reviewer_avatar_url": review.reviewer_avatar_url,
        "rating": review.rating,
        "review_text": review.review_text,
        "review_reply": review.review_reply,
        "reviewed_at": review.reviewed_at,
        "reply_updated_at": review.reply_updated_at,
        "raw_data": review.raw_data,
    }


def build_insert(values: dict):
    """INSERT ... ON CONFLICT ON CONSTRAINT <natural key> DO NOTHING RETURNING id."""
    row = dict(values)
    row["id"] = uuid.uuid4()
    row["organization_id"] = _org_uuid(row["organization_id"])
    row.setdefault("platform", DEFAULT_PLATFORM)
    return (
        insert(Review)
        .values(**row)
        .on_conflict_do_nothing(constraint=REVIEW_NATURAL_KEY)
        .returning(Review.id)
    )


async def find_reply_state(
    organization_id: str, platform_review_id: str, platform: str = DEFAULT_PLATFORM
) -> ReplyState | None:
    async with async_session() as session:
        row = (
            await session.execute(
                select(Review.id, Review.review_reply).where(
                    Review.organization_id == _org_uuid(organization_id),
                    Review.platform == platform,
                    Review.platform_review_id == platform_review_id,
                )
            )
        ).first()
    if row is None:
        return None
    return ReplyState(id=str(row.id), review_reply=row.review_reply)


async def insert_if_absent(values: dict) -> bool:
    """Insert a mirror row; False when the natural key already exists."""
    async with async_session() as session:
        inserted_id = await session.scalar(build_insert(values))
        await session.commit()
    return inserted_id is not None


async def update_reply(
    organization_id: str,
    platform_review_id: str,
    review_reply: str | None,
    reply_updated_at: datetime | None,
    platform: str = DEFAULT_PLATFORM,
) -> None:
    """Overwrite only the reply fields of an existing row."""
    async with async_session() as session:
        await session.execute(
            update(Review)
            .where(
                Review.organization_id == _org_uuid(organization_id),
                Review.platform == platform,
                Review.platform_review_id == platform_review_id,
            )
            .values(
                review_reply=review_reply,
                reply_updated_at=reply_updated_at,
                updated_at=datetime.now(UTC),
            )
        )
        await session.commit()


async def get_review(
    organization_id: str, platform_review_id: str, platform: str = DEFAULT_PLATFORM
) -> dict | None:
    async with async_session() as session:
        review = await session.scalar(
            select(Review).where(
                Review.organization_id == _org_uuid(organization_id),
                Review.platform == platform,
                Review.platform_review_id == platform_review_id,
            )
        )
    return _as_dict(review) if review else None


async def list_reviews(
    organization_id: str,
    location_id: str | None = None,
    unanswered_only: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> list[dict]:
    stmt = select(Review).where(Review.organization_id == _org_uuid(organization_id))
    if location_id:
        stmt = stmt.where(Review.location_id == location_id)
    if unanswered_only:
        stmt = stmt.where(Review.review_reply.is_(None))
    stmt = stmt.order_by(Review.reviewed_at.desc().nulls_last()).limit(limit).offset(offset)

    async with async_session() as session:
        result = await session.scalars(stmt)
        return [_as_dict(review) for review in result.all()]


async def count_unanswered_by_organization() -> dict[str, int]:
    async with async_session() as session:
        rows = (
            await session.execute(
                select(Review.organization_id, func.count(Review.id))
                .where(Review.review_reply.is_(None))
                .group_by(Review.organization_id)
            )
        ).all()
    return {str(org_id): count for org_id, count in rows}
