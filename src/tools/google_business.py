"""Google Business Profile API client: accounts, locations, invitations, reviews.

One instance wraps one organization's credential. Every call carries the
current access token; a 401 triggers exactly one refresh and one retry of the
same request.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

import httpx

from src.core.config import settings
from src.core.exceptions import AuthenticationError, RemoteAPIError, ValidationError
from src.core.google_auth import RefreshedToken, refresh_access_token

logger = logging.getLogger(__name__)

ACCOUNT_MANAGEMENT_URL = "https://mybusinessaccountmanagement.googleapis.com/v1"
BUSINESS_INFORMATION_URL = "https://mybusinessbusinessinformation.googleapis.com/v1"
REVIEWS_URL = "https://mybusiness.googleapis.com/v4"

LOCATION_READ_MASK = "name,title,storefrontAddress,metadata"
LOCATIONS_PAGE_SIZE = 100
REVIEWS_PAGE_SIZE = 50

# First attempt plus one retry after a refresh.
MAX_ATTEMPTS = 2

TokenRefreshCallback = Callable[[RefreshedToken], Awaitable[None]]


# ── name helpers ────────────────────────────────────────────────────────


def strip_prefix(value: str, segment: str) -> str:
    """Return the id that follows ``segment/`` in *value*, or *value* itself.

    ``strip_prefix("accounts/123", "accounts") == "123"`` and
    ``strip_prefix("accounts/1/locations/2", "locations") == "2"``.
    """
    value = (value or "").strip().strip("/")
    marker = f"{segment}/"
    if value.startswith(marker):
        return value[len(marker):].split("/")[0]
    if f"/{marker}" in value:
        return value.rsplit(f"/{marker}", 1)[1].split("/")[0]
    return value


def resource_id(name: str) -> str:
    """Last path segment of a hierarchical resource name."""
    return (name or "").strip().rstrip("/").rsplit("/", 1)[-1]


def location_path(account_id: str, location_id: str) -> str:
    account = strip_prefix(account_id, "accounts")
    location = strip_prefix(location_id, "locations")
    if not account or not location:
        raise ValidationError("account_id and location_id are required")
    return f"accounts/{account}/locations/{location}"


def review_path(account_id: str, location_id: str, review_id: str) -> str:
    review = strip_prefix(review_id, "reviews")
    if not review:
        raise ValidationError("review_id is required")
    return f"{location_path(account_id, location_id)}/reviews/{review}"


def split_review_name(name: str) -> tuple[str, str, str]:
    """Split ``accounts/{a}/locations/{l}/reviews/{r}`` into its three ids."""
    parts = (name or "").strip().strip("/").split("/")
    if (
        len(parts) != 6
        or parts[0] != "accounts"
        or parts[2] != "locations"
        or parts[4] != "reviews"
        or not all(parts[1::2])
    ):
        raise ValidationError(f"Not a review resource name: {name!r}")
    return parts[1], parts[3], parts[5]


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return resp.reason_phrase or f"HTTP {resp.status_code}"


class GoogleBusinessClient:
    """Authenticated client bound to one access/refresh token pair.

    ``on_token_refresh`` is awaited after every successful refresh so the
    owner can persist the new access token.
    """

    def __init__(
        self,
        access_token: str,
        refresh_token: str | None = None,
        on_token_refresh: TokenRefreshCallback | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        expires_at: datetime | None = None,
    ):
        self._access_token = access_token
        self._refresh_token = refresh_token
        self._on_token_refresh = on_token_refresh
        self._expires_at = expires_at
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.google_http_timeout
        )
        self.refresh_count = 0

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "GoogleBusinessClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    @property
    def access_token(self) -> str:
        return self._access_token

    # ── token handling ──────────────────────────────────────────────────

    async def _refresh(self) -> None:
        refreshed = await refresh_access_token(self._refresh_token or "")
        self._access_token = refreshed.access_token
        self._expires_at = refreshed.expires_at
        self.refresh_count += 1
        if self._on_token_refresh is not None:
            await self._on_token_refresh(refreshed)

    async def ensure_fresh_token(self) -> None:
        """Refresh up front when the known expiry has passed."""
        if self._expires_at is None:
            return
        margin = timedelta(seconds=settings.token_refresh_skew_seconds)
        if self._expires_at <= datetime.now(UTC) + margin:
            logger.info("Access token expired, refreshing before first call")
            await self._refresh()

    # ── transport ───────────────────────────────────────────────────────

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._access_token}"}
        try:
            return await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("Google API %s %s timed out", method, url)
            raise RemoteAPIError(None, f"request timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.warning("Google API %s %s failed: %s", method, url, e)
            raise RemoteAPIError(None, str(e) or type(e).__name__) from e

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send a request, refreshing and retrying once on 401.

        A 401 on the last attempt raises ``AuthenticationError``. Refresh
        failures propagate as ``RefreshFailedError``.
        """
        for attempt in range(1, MAX_ATTEMPTS + 1):
            resp = await self._send(method, url, **kwargs)
            if resp.status_code != 401:
                return resp
            if attempt < MAX_ATTEMPTS:
                logger.info("Google API returned 401 for %s %s, refreshing token", method, url)
                await self._refresh()
        raise AuthenticationError("Google rejected the access token after refresh; reconnect required")

    async def _get_json(self, url: str, params: dict | None = None, strict: bool = False) -> dict | None:
        try:
            resp = await self._request("GET", url, params=params)
        except RemoteAPIError:
            if strict:
                raise
            return None

        if resp.is_success:
            try:
                data = resp.json()
            except ValueError:
                data = {}
            return data if isinstance(data, dict) else {}

        message = _error_message(resp)
        logger.warning("Google API GET %s returned %s: %s", url, resp.status_code, message)
        if strict:
            raise RemoteAPIError(resp.status_code, message)
        return None

    async def _paginate(
        self, url: str, key: str, params: dict | None = None, strict: bool = False
    ) -> list[dict]:
        """Collect ``key`` across pages, following ``nextPageToken``."""
        items: list[dict] = []
        page_token = None
        for _ in range(settings.google_max_pages):
            query = dict(params or {})
            if page_token:
                query["pageToken"] = page_token
            data = await self._get_json(url, query, strict=strict)
            if data is None:
                break
            items.extend(data.get(key) or [])
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        else:
            logger.warning("Stopped paginating %s after %d pages", url, settings.google_max_pages)
        return items

    async def _write(self, method: str, url: str, **kwargs) -> bool:
        try:
            resp = await self._request(method, url, **kwargs)
        except RemoteAPIError as e:
            logger.warning("Google API %s %s failed: %s", method, url, e)
            return False
        if not resp.is_success:
            logger.warning(
                "Google API %s %s returned %s: %s",
                method, url, resp.status_code, _error_message(resp),
            )
            return False
        return True

    # ── accounts & locations ────────────────────────────────────────────

    async def list_accounts(self, strict: bool = False) -> list[dict]:
        return await self._paginate(f"{ACCOUNT_MANAGEMENT_URL}/accounts", "accounts", strict=strict)

    async def list_locations(self, account_id: str, strict: bool = False) -> list[dict]:
        account = strip_prefix(account_id, "accounts")
        if not account:
            raise ValidationError("account_id is required")
        return await self._paginate(
            f"{BUSINESS_INFORMATION_URL}/accounts/{account}/locations",
            "locations",
            params={"readMask": LOCATION_READ_MASK, "pageSize": LOCATIONS_PAGE_SIZE},
            strict=strict,
        )

    async def get_location(self, location_id: str, strict: bool = False) -> dict | None:
        location = strip_prefix(location_id, "locations")
        if not location:
            raise ValidationError("location_id is required")
        return await self._get_json(
            f"{BUSINESS_INFORMATION_URL}/locations/{location}",
            {"readMask": LOCATION_READ_MASK},
            strict=strict,
        )

    # ── invitations ─────────────────────────────────────────────────────

    async def list_invitations(self, account_id: str, strict: bool = False) -> list[dict]:
        account = strip_prefix(account_id, "accounts")
        if not account:
            raise ValidationError("account_id is required")
        return await self._paginate(
            f"{ACCOUNT_MANAGEMENT_URL}/accounts/{account}/invitations",
            "invitations",
            strict=strict,
        )

    async def accept_invitation(self, invitation_name: str) -> bool:
        name = (invitation_name or "").strip().strip("/")
        if not name.startswith("accounts/") or "/invitations/" not in name:
            raise ValidationError(f"Not an invitation resource name: {invitation_name!r}")
        return await self._write("POST", f"{ACCOUNT_MANAGEMENT_URL}/{name}:accept")

    # ── reviews ─────────────────────────────────────────────────────────

    async def list_reviews(self, account_id: str, location_id: str, strict: bool = False) -> list[dict]:
        path = location_path(account_id, location_id)
        return await self._paginate(
            f"{REVIEWS_URL}/{path}/reviews",
            "reviews",
            params={"pageSize": REVIEWS_PAGE_SIZE},
            strict=strict,
        )

    async def get_reviews_by_location_name(self, location_name: str, strict: bool = False) -> list[dict]:
        """Reviews for ``accounts/{a}/locations/{l}``."""
        name = (location_name or "").strip().strip("/")
        if not name.startswith("accounts/") or "/locations/" not in name:
            raise ValidationError(f"Not a location resource name: {location_name!r}")
        account = strip_prefix(name, "accounts")
        location = strip_prefix(name, "locations")
        return await self.list_reviews(account, location, strict=strict)

    async def reply_to_review(
        self, account_id: str, location_id: str, review_id: str, comment: str
    ) -> bool:
        path = review_path(account_id, location_id, review_id)
        return await self._write("PUT", f"{REVIEWS_URL}/{path}/reply", json={"comment": comment})

    async def reply_to_review_by_name(self, review_name: str, comment: str) -> bool:
        account, location, review = split_review_name(review_name)
        return await self.reply_to_review(account, location, review, comment)

    async def delete_review_reply(self, account_id: str, location_id: str, review_id: str) -> bool:
        path = review_path(account_id, location_id, review_id)
        return await self._write("DELETE", f"{REVIEWS_URL}/{path}/reply")

    async def delete_review_reply_by_name(self, review_name: str) -> bool:
        account, location, review = split_review_name(review_name)
        return await self.delete_review_reply(account, location, review)
