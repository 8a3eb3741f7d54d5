"""Google OAuth exchange and credential lifecycle for Business Profile access."""

import hmac
import logging
import secrets
import urllib.parse
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import httpx

from src.core import token_store
from src.core.config import settings
from src.core.exceptions import (
    ConfigurationError,
    DecryptionError,
    InvalidStateError,
    MissingTokensError,
    RefreshFailedError,
    TokenExchangeError,
    ValidationError,
)
from src.core.token_store import StoredCredential

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
SCOPES = [
    "openid",
    "email",
    "profile",
    "https://www.googleapis.com/auth/business.manage",
]

OAUTH_STATE_COOKIE = "google_oauth_state"
OAUTH_STATE_MAX_AGE = 600  # 10 min

DEFAULT_EXPIRES_IN = 3600


@dataclass
class TokenGrant:
    access_token: str
    refresh_token: str
    expires_at: datetime


@dataclass
class RefreshedToken:
    access_token: str
    expires_at: datetime


def new_oauth_state() -> str:
    return secrets.token_urlsafe(32)


def verify_state(expected: str | None, returned: str | None) -> None:
    """Reject the callback unless the returned state matches the issued one exactly."""
    if not expected or not returned:
        raise InvalidStateError("Invalid OAuth state - please try again")
    if not hmac.compare_digest(expected.encode(), returned.encode()):
        raise InvalidStateError("Invalid OAuth state - please try again")


def _require_client_config() -> None:
    if not settings.google_oauth_configured:
        raise ConfigurationError(
            "GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set for Google OAuth."
        )


def _expiry(expires_in) -> datetime:
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError):
        seconds = DEFAULT_EXPIRES_IN
    return datetime.now(UTC) + timedelta(seconds=seconds)


def _json_body(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def get_auth_url(state: str, redirect_uri: str) -> str:
    """Build the consent URL. Offline access and re-consent are always forced."""
    if not settings.google_client_id:
        raise ConfigurationError("GOOGLE_CLIENT_ID must be set for Google OAuth.")
    params = urllib.parse.urlencode(
        {
            "client_id": settings.google_client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
    )
    return f"{GOOGLE_AUTH_URL}?{params}"


async def exchange_code(code: str, redirect_uri: str) -> TokenGrant:
    """Trade an authorization code for an access/refresh token pair."""
    _require_client_config()
    try:
        async with httpx.AsyncClient(timeout=settings.google_http_timeout) as client:
            resp = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "code": code,
                    "client_id": settings.google_client_id,
                    "client_secret": settings.google_client_secret,
                    "redirect_uri": redirect_uri,
                    "grant_type": "authorization_code",
                },
            )
    except httpx.HTTPError as e:
        logger.error("OAuth token exchange request failed: %s", e)
        raise TokenExchangeError(f"Token endpoint unreachable: {e}") from e

    data = _json_body(resp)
    if resp.is_error or data.get("error"):
        logger.error("OAuth token exchange failed with status %s", resp.status_code)
        raise TokenExchangeError(
            data.get("error_description")
            or data.get("error")
            or f"Token endpoint returned HTTP {resp.status_code}"
        )

    access_token = data.get("access_token")
    refresh_token = data.get("refresh_token")
    if not access_token or not refresh_token:
        raise MissingTokensError("No tokens received")

    return TokenGrant(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=_expiry(data.get("expires_in")),
    )


async def refresh_access_token(refresh_token: str) -> RefreshedToken:
    """Exchange the long-lived refresh token for a new access token.

    Any failure raises ``RefreshFailedError``; callers surface it as
    "reconnect required" and never retry.
    """
    _require_client_config()
    if not refresh_token:
        raise RefreshFailedError("No refresh token available")

    try:
        async with httpx.AsyncClient(timeout=settings.google_http_timeout) as client:
            resp = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": settings.google_client_id,
                    "client_secret": settings.google_client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
    except httpx.HTTPError as e:
        logger.error("Token refresh request failed: %s", e)
        raise RefreshFailedError(f"Token endpoint unreachable: {e}") from e

    data = _json_body(resp)
    if resp.is_error or not data.get("access_token"):
        logger.error("Token refresh failed with status %s", resp.status_code)
        raise RefreshFailedError(
            data.get("error_description") or data.get("error") or "Failed to refresh token"
        )

    return RefreshedToken(
        access_token=data["access_token"],
        expires_at=_expiry(data.get("expires_in")),
    )


async def revoke_remote(token: str) -> bool:
    """Best-effort revocation at Google. Never raises."""
    if not token:
        return False
    try:
        async with httpx.AsyncClient(timeout=settings.google_http_timeout) as client:
            resp = await client.post(
                GOOGLE_REVOKE_URL,
                params={"token": token},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
    except httpx.HTTPError as e:
        logger.warning("Token revocation request failed: %s", e)
        return False

    if resp.status_code != 200:
        logger.warning("Token revocation returned status %s", resp.status_code)
        return False
    return True


async def handle_oauth_callback(
    code: str, organization_id: str, user_id: str, redirect_uri: str
) -> None:
    """Exchange the code and persist the credential for the organization.

    Nothing is written unless the exchange produced both tokens.
    """
    if not code:
        raise ValidationError("Authorization code is required")
    if not organization_id:
        raise ValidationError("organization_id is required")
    if not user_id:
        raise ValidationError("user_id is required")

    grant = await exchange_code(code, redirect_uri)
    await token_store.upsert(
        organization_id,
        user_id,
        grant.access_token,
        grant.refresh_token,
        grant.expires_at,
    )
    logger.info("Google connected for organization %s by user %s", organization_id, user_id)


async def get_tokens(organization_id: str) -> StoredCredential | None:
    return await token_store.get(organization_id)


async def has_valid_token(organization_id: str) -> bool:
    """True when a credential exists and its refresh token decrypts."""
    try:
        credential = await token_store.get(organization_id)
    except DecryptionError:
        logger.warning("Stored Google credential for %s is undecryptable", organization_id)
        return False
    except ValidationError:
        return False
    return credential is not None and bool(credential.refresh_token)


async def revoke_token(organization_id: str) -> None:
    """Disconnect Google: revoke remotely if possible, then always delete the row."""
    credential = None
    try:
        credential = await token_store.get(organization_id)
    except DecryptionError:
        logger.warning(
            "Skipping remote revocation for %s: credential undecryptable", organization_id
        )

    if credential is not None:
        token = credential.refresh_token or credential.access_token
        if not await revoke_remote(token):
            logger.warning("Remote revocation failed for organization %s", organization_id)

    await token_store.delete(organization_id)
    logger.info("Google disconnected for organization %s", organization_id)
