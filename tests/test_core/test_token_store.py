"""Tests for the encrypted per-organization credential store."""

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql

from src.core import token_store
from src.core.crypto import encrypt_token
from src.core.exceptions import DecryptionError, ValidationError

MODULE = "src.core.token_store"


def _row(org_id, user_id, access="access-1", refresh="refresh-1", **overrides):
    row = MagicMock()
    row.organization_id = uuid.UUID(org_id)
    row.user_id = uuid.UUID(user_id)
    row.access_token = overrides.get("access_cipher", encrypt_token(access))
    row.refresh_token = overrides.get("refresh_cipher", encrypt_token(refresh))
    row.expires_at = datetime(2026, 5, 1, tzinfo=UTC)
    row.updated_at = datetime(2026, 4, 1, tzinfo=UTC)
    return row


async def test_get_returns_none_when_absent(mock_session, org_id):
    mock_session.scalar = AsyncMock(return_value=None)
    with patch(f"{MODULE}.async_session", return_value=mock_session):
        assert await token_store.get(org_id) is None


async def test_get_decrypts_both_halves(mock_session, org_id, user_id):
    mock_session.scalar = AsyncMock(return_value=_row(org_id, user_id))
    with patch(f"{MODULE}.async_session", return_value=mock_session):
        credential = await token_store.get(org_id)

    assert credential.access_token == "access-1"
    assert credential.refresh_token == "refresh-1"
    assert credential.organization_id == org_id
    assert credential.user_id == user_id


async def test_get_raises_on_undecryptable_row(mock_session, org_id, user_id):
    mock_session.scalar = AsyncMock(
        return_value=_row(org_id, user_id, refresh_cipher="deadbeef:cafe")
    )
    with patch(f"{MODULE}.async_session", return_value=mock_session):
        with pytest.raises(DecryptionError):
            await token_store.get(org_id)


async def test_get_rejects_invalid_org_id():
    with pytest.raises(ValidationError):
        await token_store.get("not-a-uuid")


async def test_upsert_stores_ciphertext_only(mock_session, org_id, user_id):
    mock_session.execute = AsyncMock()
    mock_session.commit = AsyncMock()
    expires = datetime.now(UTC) + timedelta(hours=1)

    with patch(f"{MODULE}.async_session", return_value=mock_session):
        await token_store.upsert(org_id, user_id, "plain-access", "plain-refresh", expires)

    stmt = mock_session.execute.call_args.args[0]
    compiled = stmt.compile(dialect=postgresql.dialect())
    sql = str(compiled)
    assert "ON CONFLICT (organization_id) DO UPDATE" in sql

    params = compiled.params
    assert "plain-access" not in params.values()
    assert "plain-refresh" not in params.values()
    assert ":" in params["access_token"]
    mock_session.commit.assert_awaited_once()


async def test_update_access_token_touches_access_half_only(mock_session, org_id):
    mock_session.execute = AsyncMock()
    mock_session.commit = AsyncMock()
    expires = datetime.now(UTC) + timedelta(hours=1)

    with patch(f"{MODULE}.async_session", return_value=mock_session):
        await token_store.update_access_token(org_id, "new-access", expires)

    stmt = mock_session.execute.call_args.args[0]
    sql = str(stmt.compile(dialect=postgresql.dialect()))
    assert sql.startswith("UPDATE google_tokens SET")
    assert "access_token" in sql
    assert "refresh_token" not in sql
    assert "updated_at" in sql


async def test_delete_commits(mock_session, org_id):
    mock_session.execute = AsyncMock()
    mock_session.commit = AsyncMock()
    with patch(f"{MODULE}.async_session", return_value=mock_session):
        await token_store.delete(org_id)

    sql = str(mock_session.execute.call_args.args[0].compile(dialect=postgresql.dialect()))
    assert sql.startswith("DELETE FROM google_tokens")
    mock_session.commit.assert_awaited_once()


async def test_list_connected_organizations(mock_session):
    ids = [uuid.uuid4(), uuid.uuid4()]
    result = MagicMock()
    result.all.return_value = ids
    mock_session.scalars = AsyncMock(return_value=result)

    with patch(f"{MODULE}.async_session", return_value=mock_session):
        orgs = await token_store.list_connected_organizations()

    assert orgs == [str(i) for i in ids]


def test_is_expired_respects_skew():
    credential = token_store.StoredCredential(
        organization_id="o",
        user_id="u",
        access_token="a",
        refresh_token="r",
        expires_at=datetime.now(UTC) + timedelta(seconds=30),
    )
    assert not credential.is_expired()
    assert credential.is_expired(skew_seconds=60)
