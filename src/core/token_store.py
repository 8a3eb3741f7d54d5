"""Per-organization Google credential storage.

Both token halves are encrypted before they reach the database and decrypted
on the way out; callers only ever see plaintext ``StoredCredential`` objects.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete as sa_delete
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert

from src.core.crypto import decrypt_token, encrypt_token
from src.core.db import async_session
from src.core.exceptions import ValidationError
from src.core.models.google_token import GoogleToken

logger = logging.getLogger(__name__)


@dataclass
class StoredCredential:
    organization_id: str
    user_id: str
    access_token: str
    refresh_token: str | None
    expires_at: datetime
    updated_at: datetime | None = None

    def is_expired(self, skew_seconds: int = 0) -> bool:
        return self.expires_at <= datetime.now(UTC) + timedelta(seconds=skew_seconds)


def _as_uuid(value: str, field: str = "organization_id") -> uuid.UUID:
    if not value:
        raise ValidationError(f"{field} is required")
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise ValidationError(f"{field} is not a valid id: {value!r}") from e


async def get(organization_id: str) -> StoredCredential | None:
    """Load and decrypt the organization's credential.

    Returns ``None`` when nothing is stored. Raises ``DecryptionError`` when a
    row exists but cannot be decrypted; the caller decides what that means.
    """
    org_uuid = _as_uuid(organization_id)
    async with async_session() as session:
        row = await session.scalar(
            select(GoogleToken).where(GoogleToken.organization_id == org_uuid)
        )
    if row is None:
        return None

    access_token = decrypt_token(row.access_token)
    refresh_token = decrypt_token(row.refresh_token) if row.refresh_token else None
    return StoredCredential(
        organization_id=str(row.organization_id),
        user_id=str(row.user_id),
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=row.expires_at,
        updated_at=row.updated_at,
    )


async def upsert(
    organization_id: str,
    user_id: str,
    access_token: str,
    refresh_token: str,
    expires_at: datetime,
) -> None:
    """Store a fresh authorization, replacing any previous one for the organization."""
    org_uuid = _as_uuid(organization_id)
    user_uuid = _as_uuid(user_id, "user_id")
    now = datetime.now(UTC)

    stmt = insert(GoogleToken).values(
        id=uuid.uuid4(),
        organization_id=org_uuid,
        user_id=user_uuid,
        access_token=encrypt_token(access_token),
        refresh_token=encrypt_token(refresh_token),
        expires_at=expires_at,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[GoogleToken.organization_id],
        set_={
            "user_id": stmt.excluded.user_id,
            "access_token": stmt.excluded.access_token,
            "refresh_token": stmt.excluded.refresh_token,
            "expires_at": stmt.excluded.expires_at,
            "updated_at": now,
        },
    )
    async with async_session() as session:
        await session.execute(stmt)
        await session.commit()
    logger.info("Stored Google credential for organization %s", organization_id)


async def update_access_token(
    organization_id: str, access_token: str, expires_at: datetime
) -> None:
    """Replace only the access half after a silent refresh."""
    org_uuid = _as_uuid(organization_id)
    async with async_session() as session:
        await session.execute(
            update(GoogleToken)
            .where(GoogleToken.organization_id == org_uuid)
            .values(
                access_token=encrypt_token(access_token),
                expires_at=expires_at,
                updated_at=datetime.now(UTC),
            )
        )
        await session.commit()
    logger.info("Refreshed access token persisted for organization %s", organization_id)


async def delete(organization_id: str) -> None:
    org_uuid = _as_uuid(organization_id)
    async with async_session() as session:
        await session.execute(
            sa_delete(GoogleToken).where(GoogleToken.organization_id == org_uuid)
        )
        await session.commit()
    logger.info("Deleted Google credential for organization %s", organization_id)


async def list_connected_organizations() -> list[str]:
    """Organizations holding a refresh token, i.e. the scheduled sync's input."""
    async with async_session() as session:
        result = await session.scalars(
            select(GoogleToken.organization_id).where(GoogleToken.refresh_token.is_not(None))
        )
        return [str(org_id) for org_id in result.all()]
