"""Enumerate every location a credential can reach across its accounts."""

import logging

from pydantic import BaseModel, Field

from src.core.exceptions import RemoteAPIError, ValidationError
from src.tools.google_business import GoogleBusinessClient, resource_id, strip_prefix

logger = logging.getLogger(__name__)


class DiscoveredLocation(BaseModel):
    name: str
    account_id: str
    location_id: str
    title: str = ""
    address: str | None = None
    raw: dict = Field(default_factory=dict)


def location_key(location: dict) -> str:
    """Stable id for de-duplication: last segment of ``name``, else an explicit id."""
    name = location.get("name") or ""
    if name:
        key = resource_id(name)
        if key:
            return key
    return str(location.get("locationId") or location.get("location_id") or "")


def _format_address(location: dict) -> str | None:
    address = location.get("storefrontAddress") or {}
    if not address:
        return None
    parts = list(address.get("addressLines") or [])
    parts += [address.get("locality"), address.get("administrativeArea"), address.get("postalCode")]
    text = ", ".join(p for p in parts if p)
    return text or None


async def get_all_accessible_locations(
    client: GoogleBusinessClient, accounts: list[dict] | None = None
) -> list[DiscoveredLocation]:
    """Union of locations over all accounts, de-duplicated by location id.

    The first account that lists a location wins. An account whose location
    list fails is logged and skipped. Pass ``accounts`` to reuse a listing the
    caller already holds.
    """
    if accounts is None:
        accounts = await client.list_accounts(strict=True)
    seen: dict[str, DiscoveredLocation] = {}

    for account in accounts:
        account_id = strip_prefix(account.get("name", ""), "accounts")
        if not account_id:
            continue
        try:
            locations = await client.list_locations(account_id, strict=True)
        except RemoteAPIError as e:
            logger.warning("Skipping account %s during discovery: %s", account_id, e)
            continue

        for location in locations:
            key = location_key(location)
            if not key or key in seen:
                continue
            seen[key] = DiscoveredLocation(
                name=f"accounts/{account_id}/locations/{key}",
                account_id=account_id,
                location_id=key,
                title=location.get("title") or "",
                address=_format_address(location),
                raw=location,
            )

    logger.info("Discovered %d locations across %d accounts", len(seen), len(accounts))
    return list(seen.values())


async def get_invitations(
    client: GoogleBusinessClient, accounts: list[dict] | None = None
) -> list[dict]:
    """Pending invitations across all accounts, for display only."""
    if accounts is None:
        accounts = await client.list_accounts()
    invitations: list[dict] = []
    for account in accounts:
        account_id = strip_prefix(account.get("name", ""), "accounts")
        if not account_id:
            continue
        try:
            invitations.extend(await client.list_invitations(account_id, strict=True))
        except RemoteAPIError as e:
            logger.warning("Skipping invitations for account %s: %s", account_id, e)
    return invitations


async def accept_invitation(client: GoogleBusinessClient, invitation_name: str) -> bool:
    if not invitation_name:
        raise ValidationError("invitation_name is required")
    accepted = await client.accept_invitation(invitation_name)
    if accepted:
        logger.info("Accepted invitation %s", invitation_name)
    return accepted
