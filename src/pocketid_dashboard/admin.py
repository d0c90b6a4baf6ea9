"""Admin-only routes."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from pocketid_dashboard.config import Settings, get_app_settings
from pocketid_dashboard.auth.gate import AuthenticatedUser, require_admin
from pocketid_dashboard.auth.middleware import CurrentSession
from pocketid_dashboard.services.pocket_id import (
    ManagementAPIError,
    PocketIDClient,
    get_pocket_id_client,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/clear-cache")
async def clear_cache(
    user: AuthenticatedUser,
    session: CurrentSession,
    settings: Annotated[Settings, Depends(get_app_settings)],
    client: Annotated[PocketIDClient | None, Depends(get_pocket_id_client)],
):
    """
    Clear the management API cache.
    Group membership is re-fetched first so a freshly granted or revoked
    admin group takes effect here.
    """
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pocket-ID management API is not configured",
        )

    try:
        groups = await client.get_user_groups(user.id)
    except ManagementAPIError as e:
        logger.error(f"Failed to refresh groups for user {user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to fetch group membership",
        )

    group_names = [group["name"] for group in groups if isinstance(group, dict) and group.get("name")]
    user.groups = group_names
    user.is_admin = settings.admin_group in group_names
    await session.save()

    await require_admin(user)

    logger.info(f"Clearing cache for admin {user.id}")
    client.clear_cache()
    return {"success": True, "message": "Cache cleared successfully"}
