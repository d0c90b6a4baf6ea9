"""Clients for services the dashboard talks to besides the OIDC provider."""

from pocketid_dashboard.services.pocket_id import (
    ManagementAPIError,
    PocketIDClient,
    get_pocket_id_client,
)

__all__ = [
    "ManagementAPIError",
    "PocketIDClient",
    "get_pocket_id_client",
]
