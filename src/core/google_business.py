"""Organization-scoped Google Business operations.

Bridges the token store and ``GoogleBusinessClient``: every function takes
the organization id explicitly, opens a client on its stored credential and
persists any refreshed access token.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from src.core import location_discovery, token_store
from src.core.exceptions import DecryptionError, NotConnectedError
from src.core.google_auth import RefreshedToken
from src.core.location_discovery import DiscoveredLocation
from src.tools.google_business import GoogleBusinessClient

logger = logging.getLogger(__name__)


async def create_client(organization_id: str) -> GoogleBusinessClient:
    """Build a client from the stored credential, refreshing it if expired.

    The caller owns the returned client and must close it.
    """
    try:
        credential = await token_store.get(organization_id)
    except DecryptionError as e:
        raise NotConnectedError(
            f"Stored Google credential for organization {organization_id} is unusable"
        ) from e
    if credential is None or not credential.refresh_token:
        raise NotConnectedError(f"Google is not connected for organization {organization_id}")

    async def persist(refreshed: RefreshedToken) -> None:
        await token_store.update_access_token(
            organization_id, refreshed.access_token, refreshed.expires_at
        )

    client = GoogleBusinessClient(
        credential.access_token,
        credential.refresh_token,
        on_token_refresh=persist,
        expires_at=credential.expires_at,
    )
    try:
        await client.ensure_fresh_token()
    except Exception:
        await client.aclose()
        raise
    return client


@asynccontextmanager
async def open_client(organization_id: str) -> AsyncIterator[GoogleBusinessClient]:
    client = await create_client(organization_id)
    try:
        yield client
    finally:
        await client.aclose()


async def list_accounts(organization_id: str) -> list[dict]:
    async with open_client(organization_id) as client:
        return await client.list_accounts()


async def list_locations(organization_id: str, account_id: str) -> list[dict]:
    async with open_client(organization_id) as client:
        return await client.list_locations(account_id)


async def get_reviews(organization_id: str, account_id: str, location_id: str) -> list[dict]:
    async with open_client(organization_id) as client:
        return await client.list_reviews(account_id, location_id)


async def get_all_accessible_locations(organization_id: str) -> list[DiscoveredLocation]:
    async with open_client(organization_id) as client:
        return await location_discovery.get_all_accessible_locations(client)


async def get_invitations(organization_id: str) -> list[dict]:
    async with open_client(organization_id) as client:
        return await location_discovery.get_invitations(client)


async def accept_invitation(organization_id: str, invitation_name: str) -> bool:
    async with open_client(organization_id) as client:
        return await location_discovery.accept_invitation(client, invitation_name)


async def get_reviews_by_location_name(organization_id: str, location_name: str) -> list[dict]:
    async with open_client(organization_id) as client:
        return await client.get_reviews_by_location_name(location_name)


async def reply_to_review_by_name(organization_id: str, review_name: str, comment: str) -> bool:
    async with open_client(organization_id) as client:
        return await client.reply_to_review_by_name(review_name, comment)


async def delete_review_reply_by_name(organization_id: str, review_name: str) -> bool:
    async with open_client(organization_id) as client:
        return await client.delete_review_reply_by_name(review_name)
