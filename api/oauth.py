"""Google Business Profile connection endpoints."""

import html
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel

from api.deps import RequestIdentity, error_detail, get_identity, http_error
from src.core import google_business, location_discovery
from src.core.config import settings
from src.core.exceptions import (
    AuthenticationError,
    DecryptionError,
    RemoteAPIError,
    ReviewDeskError,
    ValidationError,
)
from src.core.google_auth import (
    OAUTH_STATE_COOKIE,
    OAUTH_STATE_MAX_AGE,
    get_auth_url,
    handle_oauth_callback,
    has_valid_token,
    new_oauth_state,
    revoke_token,
    verify_state,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations/google", tags=["integrations"])


class AcceptInvitationRequest(BaseModel):
    invitation_name: str


def _redirect_uri(request: Request) -> str:
    if settings.google_redirect_uri:
        return settings.google_redirect_uri
    return str(request.url_for("google_oauth_callback"))


def _result_page(error: str | None) -> HTMLResponse:
    if error is None:
        return HTMLResponse(
            "<html><body><h2>Google connected!</h2>"
            "<p>You can close this window and return to Review Desk.</p>"
            "</body></html>"
        )
    return HTMLResponse(
        "<html><body><h2>Google connection failed</h2>"
        f"<p>{html.escape(error)}</p>"
        "</body></html>",
        status_code=400,
    )


@router.post("/connect")
async def google_connect(request: Request, identity: RequestIdentity = Depends(get_identity)):
    """Start the OAuth flow: issue a state cookie and return the consent URL."""
    state = new_oauth_state()
    try:
        url = get_auth_url(state, _redirect_uri(request))
    except ReviewDeskError as e:
        raise http_error(e) from e

    response = JSONResponse({"url": url})
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        state,
        max_age=OAUTH_STATE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
        path="/",
    )
    logger.info("OAuth flow started for organization %s", identity.organization_id)
    return response


@router.get("/callback", name="google_oauth_callback")
async def google_oauth_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    identity: RequestIdentity = Depends(get_identity),
):
    """Validate state, exchange the code and store the credential."""
    failure: str | None = None
    if error:
        failure = (
            "Authorization was cancelled"
            if error == "access_denied"
            else f"Authorization failed: {error}"
        )
    else:
        try:
            verify_state(request.cookies.get(OAUTH_STATE_COOKIE), state)
            if not code:
                raise ValidationError("Missing authorization code")
            await handle_oauth_callback(
                code, identity.organization_id, identity.user_id, _redirect_uri(request)
            )
        except ReviewDeskError as e:
            logger.warning(
                "OAuth callback failed for organization %s: %s", identity.organization_id, e
            )
            failure = str(e)

    response = _result_page(failure)
    response.delete_cookie(OAUTH_STATE_COOKIE, path="/")
    return response


@router.get("/status")
async def google_status(identity: RequestIdentity = Depends(get_identity)):
    """Connection state plus what the credential can reach."""
    disconnected = {"connected": False, "accounts": [], "locations": [], "invitations": []}
    if not await has_valid_token(identity.organization_id):
        return disconnected

    try:
        async with google_business.open_client(identity.organization_id) as client:
            accounts = await client.list_accounts(strict=True)
            locations = await location_discovery.get_all_accessible_locations(client, accounts)
            invitations = await location_discovery.get_invitations(client, accounts)
    except (AuthenticationError, DecryptionError) as e:
        logger.warning("Google credential unusable for %s: %s", identity.organization_id, e)
        return {**disconnected, "action": "reconnect"}
    except RemoteAPIError as e:
        return {
            "connected": True,
            "accounts": [],
            "locations": [],
            "invitations": [],
            **error_detail(str(e), "retry"),
        }

    return {
        "connected": True,
        "accounts": accounts,
        "locations": [loc.model_dump(exclude={"raw"}) for loc in locations],
        "invitations": invitations,
    }


@router.post("/disconnect")
async def google_disconnect(identity: RequestIdentity = Depends(get_identity)):
    try:
        await revoke_token(identity.organization_id)
    except ReviewDeskError as e:
        raise http_error(e) from e
    return {"connected": False}


@router.post("/invitations/accept")
async def google_accept_invitation(
    body: AcceptInvitationRequest, identity: RequestIdentity = Depends(get_identity)
):
    try:
        accepted = await google_business.accept_invitation(
            identity.organization_id, body.invitation_name
        )
    except ReviewDeskError as e:
        raise http_error(e) from e
    if not accepted:
        raise HTTPException(
            status_code=502, detail=error_detail("Google did not accept the invitation", "retry")
        )
    return {"accepted": True}
