"""Review reconciliation: merge remote Google reviews into the local mirror.

New reviews are inserted once (the natural-key constraint absorbs concurrent
inserts); existing rows only change when the reply text differs. One failing
location or organization is recorded in the result and never aborts the pass;
an authentication failure stops the rest of that organization's locations but
keeps the counts already gathered.
"""

import logging
import math
import re
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.core import google_business, location_discovery, review_store, token_store
from src.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    PartialSyncError,
    ReviewDeskError,
    ReviewNotFoundError,
    ValidationError,
)
from src.core.models.enums import ReviewPlatform
from src.tools.google_business import GoogleBusinessClient, resource_id, strip_prefix

logger = logging.getLogger(__name__)

PLATFORM = ReviewPlatform.google.value
STAR_RATINGS = ("ONE", "TWO", "THREE", "FOUR", "FIVE")
MIN_REPLY_LENGTH = 10

_FRACTION = re.compile(r"(\.\d{6})\d+")


# ── result records ──────────────────────────────────────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LocationSyncResult(_CamelModel):
    location_id: str
    location_name: str | None = None
    review_count: int = 0
    new_count: int = 0
    unanswered_count: int = 0
    updated_count: int = 0


class LocationError(_CamelModel):
    location_id: str
    location_name: str | None = None
    error: str


class SyncResult(_CamelModel):
    organization_id: str
    success: bool
    new_reviews: int = 0
    unanswered_reviews: int = 0
    locations: list[LocationSyncResult] = Field(default_factory=list)
    location_errors: list[LocationError] = Field(default_factory=list)
    error: str | None = None


class BatchSyncResult(_CamelModel):
    success: bool
    synced: int
    results: list[SyncResult] = Field(default_factory=list)


class LocationSelection(_CamelModel):
    account_id: str = ""
    location_id: str = ""
    location_name: str | None = None


# ── normalization ───────────────────────────────────────────────────────


def star_rating_to_int(value) -> int:
    """Map ``"ONE"``..``"FIVE"``, numbers or numeric strings onto 1..5.

    Out-of-range numbers clamp; anything unrecognised becomes 1.
    """
    if isinstance(value, bool) or value is None:
        return 1
    if isinstance(value, str):
        word = value.strip().upper()
        if word in STAR_RATINGS:
            return STAR_RATINGS.index(word) + 1
        try:
            number = float(word)
        except ValueError:
            return 1
    elif isinstance(value, int | float):
        number = float(value)
    else:
        return 1
    if math.isnan(number):
        return 1
    # Clamp before rounding so infinities land on the bounds.
    return int(round(max(1.0, min(5.0, number))))


def int_to_star_rating(value: int) -> str:
    return STAR_RATINGS[max(1, min(5, int(value))) - 1]


def platform_review_id(remote: dict) -> str:
    review_id = remote.get("reviewId") or resource_id(remote.get("name") or "")
    if not review_id:
        raise ValidationError("Remote review has neither reviewId nor name")
    return str(review_id)


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(_FRACTION.sub(r"\1", value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable timestamp from Google: %s", value)
        return None


def _reply_text(remote: dict) -> str | None:
    reply = remote.get("reviewReply") or {}
    return reply.get("comment") or None


def _reply_time(remote: dict) -> datetime | None:
    if _reply_text(remote) is None:
        return None
    reply = remote.get("reviewReply") or {}
    return _parse_time(reply.get("updateTime")) or datetime.now(UTC)


def review_values(
    organization_id: str, location_id: str, location_name: str, remote: dict
) -> dict:
    """Mirror row for a remote review observed for the first time."""
    reviewer = remote.get("reviewer") or {}
    return {
        "organization_id": organization_id,
        "platform": PLATFORM,
        "platform_review_id": platform_review_id(remote),
        "location_id": location_id,
        "location_name": location_name,
        "reviewer_name": reviewer.get("displayName") or "Anonymous",
        "reviewer_avatar_url": reviewer.get("profilePhotoUrl"),
        "rating": star_rating_to_int(remote.get("starRating")),
        "review_text": remote.get("comment"),
        "review_reply": _reply_text(remote),
        "reviewed_at": _parse_time(remote.get("createTime")),
        "reply_updated_at": _reply_time(remote),
        "raw_data": remote,
    }


# ── reconciliation ──────────────────────────────────────────────────────


async def sync_location(
    organization_id: str,
    account_id: str,
    location_id: str,
    client: GoogleBusinessClient,
    location_name: str | None = None,
) -> LocationSyncResult:
    """Reconcile one location's reviews. Remote errors propagate to the caller."""
    account_id = strip_prefix(account_id, "accounts")
    location_id = strip_prefix(location_id, "locations")
    if not account_id or not location_id:
        raise ValidationError("account_id and location_id are required")

    name = location_name or f"accounts/{account_id}/locations/{location_id}"
    result = LocationSyncResult(location_id=location_id, location_name=name)

    remote_reviews = await client.list_reviews(account_id, location_id, strict=True)
    for remote in remote_reviews:
        try:
            review_id = platform_review_id(remote)
        except ValidationError as e:
            logger.warning("Skipping review without id at location %s: %s", location_id, e)
            continue

        result.review_count += 1
        remote_reply = _reply_text(remote)
        if remote_reply is None:
            result.unanswered_count += 1

        state = await review_store.find_reply_state(organization_id, review_id)
        if state is None:
            values = review_values(organization_id, location_id, name, remote)
            if await review_store.insert_if_absent(values):
                result.new_count += 1
                continue
            # Lost an insert race; compare against the winner's row.
            state = await review_store.find_reply_state(organization_id, review_id)
            if state is None:
                continue

        if state.review_reply != remote_reply:
            await review_store.update_reply(
                organization_id, review_id, remote_reply, _reply_time(remote)
            )
            result.updated_count += 1

    logger.info(
        "Synced location %s for org %s: %d reviews, %d new, %d updated, %d unanswered",
        location_id, organization_id, result.review_count, result.new_count,
        result.updated_count, result.unanswered_count,
    )
    return result


async def _sync_locations(
    organization_id: str, client: GoogleBusinessClient, selections: list[LocationSelection]
) -> SyncResult:
    result = SyncResult(organization_id=organization_id, success=True)
    for selection in selections:
        try:
            location = await sync_location(
                organization_id,
                selection.account_id,
                selection.location_id,
                client,
                selection.location_name,
            )
        except ConfigurationError:
            raise
        except Exception as e:
            failure = PartialSyncError(selection.location_name or selection.location_id, e)
            logger.error("Location sync failed for org %s: %s", organization_id, failure)
            result.location_errors.append(
                LocationError(
                    location_id=selection.location_id,
                    location_name=selection.location_name,
                    error=str(failure),
                )
            )
            if isinstance(e, AuthenticationError):
                # The credential is dead for every remaining location too.
                result.success = False
                result.error = f"Reconnect required: {e}"
                break
            continue

        result.locations.append(location)
        result.new_reviews += location.new_count
        result.unanswered_reviews += location.unanswered_count
    return result


async def sync_organization(organization_id: str) -> SyncResult:
    """Discover every reachable location and reconcile each one."""
    try:
        async with google_business.open_client(organization_id) as client:
            discovered = await location_discovery.get_all_accessible_locations(client)
            selections = [
                LocationSelection(
                    account_id=location.account_id,
                    location_id=location.location_id,
                    location_name=location.title or location.name,
                )
                for location in discovered
            ]
            return await _sync_locations(organization_id, client, selections)
    except ConfigurationError:
        raise
    except ReviewDeskError as e:
        logger.warning("Sync failed for organization %s: %s", organization_id, e)
        return SyncResult(organization_id=organization_id, success=False, error=str(e))


async def sync_unanswered_reviews() -> BatchSyncResult:
    """Scheduled pass over every organization holding a refresh token."""
    organization_ids = await token_store.list_connected_organizations()
    logger.info("Starting review sync for %d organizations", len(organization_ids))

    results: list[SyncResult] = []
    for organization_id in organization_ids:
        try:
            results.append(await sync_organization(organization_id))
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error("Review sync crashed for organization %s: %s", organization_id, e)
            results.append(
                SyncResult(organization_id=organization_id, success=False, error=str(e))
            )

    return BatchSyncResult(success=True, synced=len(organization_ids), results=results)


async def import_locations(
    organization_id: str, locations: list[LocationSelection]
) -> SyncResult:
    """Interactive import of a user-chosen set of locations."""
    if not locations:
        raise ValidationError("No locations selected")
    async with google_business.open_client(organization_id) as client:
        return await _sync_locations(organization_id, client, locations)


# ── replies ─────────────────────────────────────────────────────────────


def review_resource_name(review: dict) -> str:
    """Recover ``accounts/{a}/locations/{l}/reviews/{r}`` from the raw snapshot."""
    raw = review.get("raw_data") or {}
    name = (raw.get("name") or "").strip("/")
    if name.startswith("accounts/") and "/reviews/" in name:
        return name
    raise ValidationError(
        "Review has no Google resource name on file; sync its location again"
    )


async def _load_review(organization_id: str, review_id: str) -> dict:
    if not review_id:
        raise ValidationError("review_id is required")
    review = await review_store.get_review(organization_id, review_id)
    if review is None:
        raise ReviewNotFoundError(f"Review {review_id} not found")
    return review


async def reply_to_review(organization_id: str, review_id: str, comment: str) -> bool:
    """Post a reply at Google, then mirror it. False when Google refused."""
    comment = (comment or "").strip()
    if len(comment) < MIN_REPLY_LENGTH:
        raise ValidationError(f"Reply must be at least {MIN_REPLY_LENGTH} characters")

    review = await _load_review(organization_id, review_id)
    name = review_resource_name(review)
    if not await google_business.reply_to_review_by_name(organization_id, name, comment):
        return False

    try:
        await review_store.update_reply(organization_id, review_id, comment, datetime.now(UTC))
    except Exception as e:
        # Google already has the reply; the next sync restores the mirror.
        logger.error("Reply posted but mirror update failed for %s: %s", review_id, e)
    return True


async def delete_review_reply(organization_id: str, review_id: str) -> bool:
    review = await _load_review(organization_id, review_id)
    name = review_resource_name(review)
    if not await google_business.delete_review_reply_by_name(organization_id, name):
        return False

    try:
        await review_store.update_reply(organization_id, review_id, None, None)
    except Exception as e:
        logger.error("Reply deleted but mirror update failed for %s: %s", review_id, e)
    return True


async def get_unanswered_review_counts() -> dict[str, int]:
    return await review_store.count_unanswered_by_organization()
