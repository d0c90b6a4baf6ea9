"""Client for the Pocket-ID management API."""

import logging
import time
from typing import Any

import httpx
from fastapi import Request

logger = logging.getLogger(__name__)

CLIENTS_CACHE_TTL_SECONDS = 3600


class ManagementAPIError(Exception):
    pass


class PocketIDClient:
    """Thin async wrapper over the management endpoints the dashboard needs.

    Transport failures (connection errors, timeouts) are retried once.
    HTTP error statuses are never retried.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._headers = {"Accept": "application/json", "X-API-KEY": api_key}
        self.timeout_s = timeout_s
        self._transport = transport
        self._clients_cache: tuple[Any, float] | None = None

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        last_error: httpx.TransportError | None = None

        async with httpx.AsyncClient(
            headers=self._headers, timeout=self.timeout_s, transport=self._transport
        ) as client:
            for attempt in (1, 2):
                try:
                    resp = await client.get(url, params=params)
                    resp.raise_for_status()
                    return resp.json()
                except httpx.TransportError as e:
                    logger.warning(f"Management API request to {path} failed (attempt {attempt}): {e}")
                    last_error = e
                except httpx.HTTPStatusError as e:
                    raise ManagementAPIError(
                        f"Management API returned HTTP {e.response.status_code} for {path}"
                    ) from e
                except ValueError as e:
                    raise ManagementAPIError(f"Management API returned non-JSON body for {path}") from e

        raise ManagementAPIError(f"Management API unreachable: {last_error}") from last_error

    async def get_user_groups(self, user_id: str) -> list[dict]:
        """All groups the user belongs to, as returned by the API."""
        logger.info(f"Fetching groups for user {user_id}")
        groups = await self._get(f"/users/{user_id}/groups")
        if not isinstance(groups, list):
            raise ManagementAPIError("Unexpected groups payload")
        return groups

    async def list_oidc_clients(self) -> Any:
        """List OIDC clients, cached for an hour."""
        if self._clients_cache is not None:
            data, fetched_at = self._clients_cache
            if time.monotonic() - fetched_at < CLIENTS_CACHE_TTL_SECONDS:
                logger.debug("Using cached clients list")
                return data

        data = await self._get(
            "/oidc/clients",
            params={"page": 1, "limit": 100, "sort_column": "name", "sort_direction": "asc"},
        )
        self._clients_cache = (data, time.monotonic())
        return data

    def clear_cache(self) -> None:
        self._clients_cache = None
        logger.info("Management API cache cleared")


def get_pocket_id_client(request: Request) -> PocketIDClient | None:
    return request.app.state.pocket_id_client
