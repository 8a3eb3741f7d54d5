"""Tests for the Google Business Profile client (wire level, MockTransport)."""

import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.core.exceptions import (
    AuthenticationError,
    RefreshFailedError,
    RemoteAPIError,
    ValidationError,
)
from src.core.google_auth import RefreshedToken
from src.tools.google_business import (
    ACCOUNT_MANAGEMENT_URL,
    BUSINESS_INFORMATION_URL,
    REVIEWS_URL,
    GoogleBusinessClient,
    location_path,
    resource_id,
    split_review_name,
    strip_prefix,
)

MODULE = "src.tools.google_business"


def _refreshed(token="fresh-token"):
    return RefreshedToken(access_token=token, expires_at=datetime.now(UTC) + timedelta(hours=1))


def _client(handler, **kwargs) -> GoogleBusinessClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GoogleBusinessClient("stale-token", "refresh-token", http_client=http, **kwargs)


# --- name helpers ---


@pytest.mark.parametrize(
    "value, segment, expected",
    [
        ("accounts/123", "accounts", "123"),
        ("123", "accounts", "123"),
        ("locations/456", "locations", "456"),
        ("accounts/1/locations/456", "locations", "456"),
        ("accounts/1/locations/456", "accounts", "1"),
        ("/accounts/9/", "accounts", "9"),
        ("", "accounts", ""),
    ],
)
def test_strip_prefix(value, segment, expected):
    assert strip_prefix(value, segment) == expected


def test_resource_id_and_paths():
    assert resource_id("accounts/1/locations/2/reviews/abc") == "abc"
    assert location_path("accounts/1", "locations/2") == "accounts/1/locations/2"
    assert location_path("1", "2") == "accounts/1/locations/2"
    assert split_review_name("accounts/1/locations/2/reviews/r9") == ("1", "2", "r9")


@pytest.mark.parametrize("name", ["", "reviews/r9", "accounts/1/locations/2", "accounts//locations/2/reviews/r"])
def test_split_review_name_rejects_partial_names(name):
    with pytest.raises(ValidationError):
        split_review_name(name)


# --- refresh-once-on-401 ---


async def test_refresh_once_then_success():
    seen_tokens = []

    def handler(request):
        seen_tokens.append(request.headers["Authorization"])
        if request.headers["Authorization"] == "Bearer stale-token":
            return httpx.Response(401)
        return httpx.Response(200, json={"accounts": [{"name": "accounts/1"}]})

    persisted = AsyncMock()
    refresh = AsyncMock(return_value=_refreshed())
    client = _client(handler, on_token_refresh=persisted)

    with patch(f"{MODULE}.refresh_access_token", refresh):
        accounts = await client.list_accounts()

    assert accounts == [{"name": "accounts/1"}]
    assert seen_tokens == ["Bearer stale-token", "Bearer fresh-token"]
    refresh.assert_awaited_once_with("refresh-token")
    persisted.assert_awaited_once()
    assert client.refresh_count == 1
    assert client.access_token == "fresh-token"


async def test_second_401_raises_authentication_error():
    calls = []

    def handler(request):
        calls.append(request.url)
        return httpx.Response(401)

    refresh = AsyncMock(return_value=_refreshed())
    client = _client(handler)

    with patch(f"{MODULE}.refresh_access_token", refresh):
        with pytest.raises(AuthenticationError):
            await client.list_accounts()

    assert len(calls) == 2
    refresh.assert_awaited_once()


async def test_refresh_failure_propagates():
    client = _client(lambda request: httpx.Response(401))
    refresh = AsyncMock(side_effect=RefreshFailedError("invalid_grant"))

    with patch(f"{MODULE}.refresh_access_token", refresh):
        with pytest.raises(RefreshFailedError):
            await client.list_accounts()


async def test_ensure_fresh_token_refreshes_expired_credential():
    client = _client(
        lambda request: httpx.Response(200, json={}),
        expires_at=datetime.now(UTC) - timedelta(minutes=1),
    )
    refresh = AsyncMock(return_value=_refreshed())

    with patch(f"{MODULE}.refresh_access_token", refresh):
        await client.ensure_fresh_token()

    refresh.assert_awaited_once()
    assert client.access_token == "fresh-token"


async def test_ensure_fresh_token_skips_valid_credential():
    client = _client(
        lambda request: httpx.Response(200, json={}),
        expires_at=datetime.now(UTC) + timedelta(hours=1),
    )
    refresh = AsyncMock()

    with patch(f"{MODULE}.refresh_access_token", refresh):
        await client.ensure_fresh_token()

    refresh.assert_not_awaited()


# --- reads ---


async def test_read_degrades_to_empty_on_error():
    client = _client(lambda request: httpx.Response(500, json={"error": {"message": "backend"}}))
    assert await client.list_reviews("1", "2") == []


async def test_strict_read_raises_remote_error():
    client = _client(lambda request: httpx.Response(403, json={"error": {"message": "denied"}}))
    with pytest.raises(RemoteAPIError) as exc_info:
        await client.list_reviews("1", "2", strict=True)
    assert exc_info.value.status_code == 403
    assert "denied" in str(exc_info.value)


async def test_timeout_is_remote_error_without_retry():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ReadTimeout("slow", request=request)

    client = _client(handler)
    with pytest.raises(RemoteAPIError) as exc_info:
        await client.list_reviews("1", "2", strict=True)

    assert exc_info.value.status_code is None
    assert len(calls) == 1
    assert await client.list_reviews("1", "2") == []


async def test_list_reviews_normalizes_prefixed_ids_and_paginates():
    urls = []

    def handler(request):
        urls.append(request.url)
        if "pageToken" not in request.url.params:
            return httpx.Response(200, json={"reviews": [{"reviewId": "a"}], "nextPageToken": "p2"})
        return httpx.Response(200, json={"reviews": [{"reviewId": "b"}]})

    client = _client(handler)
    reviews = await client.list_reviews("accounts/1", "locations/2")

    assert [r["reviewId"] for r in reviews] == ["a", "b"]
    assert str(urls[0]).startswith(f"{REVIEWS_URL}/accounts/1/locations/2/reviews")
    assert urls[1].params["pageToken"] == "p2"


async def test_pagination_is_bounded():
    def handler(request):
        return httpx.Response(200, json={"reviews": [{"reviewId": "x"}], "nextPageToken": "again"})

    client = _client(handler)
    with patch(f"{MODULE}.settings.google_max_pages", 3):
        reviews = await client.list_reviews("1", "2")

    assert len(reviews) == 3


async def test_list_locations_sends_read_mask():
    captured = {}

    def handler(request):
        captured["url"] = request.url
        return httpx.Response(200, json={"locations": [{"name": "locations/9", "title": "Cafe"}]})

    client = _client(handler)
    locations = await client.list_locations("accounts/1")

    assert locations[0]["title"] == "Cafe"
    assert str(captured["url"]).startswith(f"{BUSINESS_INFORMATION_URL}/accounts/1/locations")
    assert "readMask" in captured["url"].params


async def test_get_reviews_by_location_name():
    def handler(request):
        assert request.url.path == "/v4/accounts/1/locations/2/reviews"
        return httpx.Response(200, json={"reviews": [{"reviewId": "r"}]})

    client = _client(handler)
    assert await client.get_reviews_by_location_name("accounts/1/locations/2") == [{"reviewId": "r"}]

    with pytest.raises(ValidationError):
        await client.get_reviews_by_location_name("locations/2")


# --- writes ---


async def test_reply_by_name_puts_comment():
    captured = {}

    def handler(request):
        captured["method"] = request.method
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"comment": "Thanks!"})

    client = _client(handler)
    ok = await client.reply_to_review_by_name("accounts/1/locations/2/reviews/r9", "Thanks!")

    assert ok is True
    assert captured["method"] == "PUT"
    assert captured["url"] == f"{REVIEWS_URL}/accounts/1/locations/2/reviews/r9/reply"
    assert captured["body"] == {"comment": "Thanks!"}


async def test_write_failure_returns_false():
    client = _client(lambda request: httpx.Response(404))
    assert await client.delete_review_reply_by_name("accounts/1/locations/2/reviews/r9") is False


async def test_write_transport_failure_returns_false():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    client = _client(handler)
    assert await client.reply_to_review("1", "2", "r9", "Thanks for visiting!") is False


async def test_accept_invitation_posts_to_accept_verb():
    captured = {}

    def handler(request):
        captured["method"] = request.method
        captured["url"] = str(request.url)
        return httpx.Response(200, json={})

    client = _client(handler)
    assert await client.accept_invitation("accounts/1/invitations/inv-7") is True
    assert captured["method"] == "POST"
    assert captured["url"] == f"{ACCOUNT_MANAGEMENT_URL}/accounts/1/invitations/inv-7:accept"


async def test_accept_invitation_rejects_bad_name():
    client = _client(lambda request: httpx.Response(200))
    with pytest.raises(ValidationError):
        await client.accept_invitation("invitations/7")
