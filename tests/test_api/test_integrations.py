"""Tests for the Google connection endpoints."""

import urllib.parse
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.deps import RequestIdentity, get_identity
from api.oauth import router
from src.core.exceptions import TokenExchangeError
from src.core.google_auth import OAUTH_STATE_COOKIE

ORG_ID = "7b1f5c1e-0f6e-4f7e-9d55-1a2b3c4d5e6f"
USER_ID = "c0ffee00-0000-4000-8000-000000000001"


def _create_test_app(with_identity: bool = True) -> FastAPI:
    test_app = FastAPI()
    test_app.include_router(router)
    if with_identity:

        async def _override_identity():
            return RequestIdentity(user_id=USER_ID, organization_id=ORG_ID)

        test_app.dependency_overrides[get_identity] = _override_identity
    return test_app


def test_identity_required():
    client = TestClient(_create_test_app(with_identity=False))
    response = client.get("/integrations/google/status")

    assert response.status_code == 401
    assert response.json()["detail"]["action"] == "contact_support"


def test_organization_cookie_required():
    client = TestClient(_create_test_app(with_identity=False))
    response = client.get("/integrations/google/status", headers={"X-User-Id": USER_ID})

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "No organization selected"


def test_connect_issues_state_cookie():
    client = TestClient(_create_test_app())
    response = client.post("/integrations/google/connect")

    assert response.status_code == 200
    url = response.json()["url"]
    state = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)["state"][0]
    assert response.cookies[OAUTH_STATE_COOKIE] == state
    set_cookie = response.headers["set-cookie"].lower()
    assert "httponly" in set_cookie
    assert "max-age=600" in set_cookie
    assert "samesite=lax" in set_cookie


def test_callback_access_denied():
    client = TestClient(_create_test_app())
    client.cookies.set(OAUTH_STATE_COOKIE, "s1")

    with patch("api.oauth.handle_oauth_callback", new_callable=AsyncMock) as handle:
        response = client.get("/integrations/google/callback?error=access_denied&state=s1")

    assert response.status_code == 400
    assert "Authorization was cancelled" in response.text
    handle.assert_not_awaited()


def test_callback_rejects_state_mismatch():
    client = TestClient(_create_test_app())
    client.cookies.set(OAUTH_STATE_COOKIE, "issued-state")

    with patch("api.oauth.handle_oauth_callback", new_callable=AsyncMock) as handle:
        response = client.get("/integrations/google/callback?code=c&state=forged-state")

    assert response.status_code == 400
    assert "Invalid OAuth state" in response.text
    handle.assert_not_awaited()
    assert OAUTH_STATE_COOKIE in response.headers["set-cookie"]


def test_callback_rejects_missing_cookie():
    client = TestClient(_create_test_app())

    with patch("api.oauth.handle_oauth_callback", new_callable=AsyncMock) as handle:
        response = client.get("/integrations/google/callback?code=c&state=anything")

    assert response.status_code == 400
    handle.assert_not_awaited()


def test_callback_success_stores_credential():
    client = TestClient(_create_test_app())
    client.cookies.set(OAUTH_STATE_COOKIE, "s1")

    with patch("api.oauth.handle_oauth_callback", new_callable=AsyncMock) as handle:
        response = client.get("/integrations/google/callback?code=auth-code&state=s1")

    assert response.status_code == 200
    assert "Google connected" in response.text
    args = handle.call_args.args
    assert args[:3] == ("auth-code", ORG_ID, USER_ID)
    assert args[3].endswith("/integrations/google/callback")


def test_callback_exchange_failure_is_reported():
    client = TestClient(_create_test_app())
    client.cookies.set(OAUTH_STATE_COOKIE, "s1")

    with patch(
        "api.oauth.handle_oauth_callback",
        new_callable=AsyncMock,
        side_effect=TokenExchangeError("Bad Request"),
    ):
        response = client.get("/integrations/google/callback?code=auth-code&state=s1")

    assert response.status_code == 400
    assert "Bad Request" in response.text


def test_status_disconnected():
    client = TestClient(_create_test_app())
    with patch("api.oauth.has_valid_token", new_callable=AsyncMock, return_value=False):
        response = client.get("/integrations/google/status")

    assert response.status_code == 200
    assert response.json()["connected"] is False


def test_status_connected_lists_accounts_once():
    google = MagicMock()
    google.list_accounts = AsyncMock(return_value=[{"name": "accounts/A", "accountName": "Cafe Group"}])
    google.list_locations = AsyncMock(return_value=[{"name": "locations/1", "title": "Downtown"}])
    google.list_invitations = AsyncMock(return_value=[{"name": "accounts/A/invitations/i1"}])

    @asynccontextmanager
    async def open_client(organization_id):
        yield google

    client = TestClient(_create_test_app())
    with (
        patch("api.oauth.has_valid_token", new_callable=AsyncMock, return_value=True),
        patch("src.core.google_business.open_client", open_client),
    ):
        response = client.get("/integrations/google/status")

    body = response.json()
    assert response.status_code == 200
    assert body["connected"] is True
    assert [loc["location_id"] for loc in body["locations"]] == ["1"]
    assert body["invitations"] == [{"name": "accounts/A/invitations/i1"}]
    google.list_accounts.assert_awaited_once()


def test_disconnect_revokes():
    client = TestClient(_create_test_app())
    with patch("api.oauth.revoke_token", new_callable=AsyncMock) as revoke:
        response = client.post("/integrations/google/disconnect")

    assert response.json() == {"connected": False}
    revoke.assert_awaited_once_with(ORG_ID)


def test_accept_invitation_failure_is_structured():
    client = TestClient(_create_test_app())
    with patch(
        "api.oauth.google_business.accept_invitation",
        new_callable=AsyncMock,
        return_value=False,
    ):
        response = client.post(
            "/integrations/google/invitations/accept",
            json={"invitation_name": "accounts/1/invitations/2"},
        )

    assert response.status_code == 502
    assert response.json()["detail"]["action"] == "retry"
