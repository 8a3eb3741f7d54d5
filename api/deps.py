"""Request identity, cron guard and error translation shared by the routers.

The user id arrives in ``X-User-Id`` from the upstream session layer and the
active organization in the ``current_org_id`` cookie. Both are trusted as
given and passed explicitly into the core.
"""

import hmac
import logging
from dataclasses import dataclass

from fastapi import HTTPException, Request

from src.core.config import settings
from src.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DecryptionError,
    OAuthError,
    RemoteAPIError,
    ReviewDeskError,
    ReviewNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
ORG_COOKIE = "current_org_id"


@dataclass
class RequestIdentity:
    user_id: str
    organization_id: str


def error_detail(message: str, action: str) -> dict:
    return {"error": message, "action": action}


async def get_identity(request: Request) -> RequestIdentity:
    user_id = request.headers.get(USER_ID_HEADER, "").strip()
    if not user_id:
        raise HTTPException(
            status_code=401, detail=error_detail("Not authenticated", "contact_support")
        )
    organization_id = request.cookies.get(ORG_COOKIE, "").strip()
    if not organization_id:
        raise HTTPException(
            status_code=400, detail=error_detail("No organization selected", "retry")
        )
    return RequestIdentity(user_id=user_id, organization_id=organization_id)


async def verify_cron_secret(request: Request) -> None:
    """Require ``Authorization: Bearer <CRON_SECRET>`` in production."""
    if not settings.is_production:
        return
    if not settings.cron_secret:
        logger.error("CRON_SECRET is not configured; refusing scheduler call")
        raise HTTPException(
            status_code=503, detail=error_detail("Scheduler is not configured", "contact_support")
        )
    expected = f"Bearer {settings.cron_secret}"
    provided = request.headers.get("Authorization", "")
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail=error_detail("Unauthorized", "contact_support"))


def http_error(exc: ReviewDeskError) -> HTTPException:
    """Translate a core error into a structured HTTP error."""
    if isinstance(exc, ReviewNotFoundError):
        return HTTPException(status_code=404, detail=error_detail(str(exc), "retry"))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=error_detail(str(exc), "retry"))
    if isinstance(exc, (AuthenticationError, DecryptionError)):
        return HTTPException(
            status_code=401,
            detail=error_detail("Google connection expired, please reconnect", "reconnect"),
        )
    if isinstance(exc, OAuthError):
        return HTTPException(status_code=400, detail=error_detail(str(exc), "reconnect"))
    if isinstance(exc, RemoteAPIError):
        return HTTPException(status_code=502, detail=error_detail(str(exc), "retry"))
    if isinstance(exc, ConfigurationError):
        logger.error("Configuration error: %s", exc)
        return HTTPException(
            status_code=503, detail=error_detail("Service is not configured", "contact_support")
        )
    logger.error("Unhandled review desk error: %s", exc)
    return HTTPException(status_code=500, detail=error_detail("Internal error", "contact_support"))
