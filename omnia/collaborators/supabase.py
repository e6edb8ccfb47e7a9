"""
omnia.collaborators.supabase — Auth and storage backed by Supabase's REST API.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from omnia.collaborators.base import AuthResolver, StorageCollaborator
from omnia.core.errors import ConfigurationError, Unauthenticated
from omnia.core.models import Caller, PermissionTier

logger = logging.getLogger("omnia.collaborators.supabase")


def _service_headers(service_key: str) -> dict[str, str]:
    return {"apikey": service_key, "Authorization": f"Bearer {service_key}"}


class SupabaseAuthResolver(AuthResolver):
    """
    Verifies a user access token and looks up the caller's role.

    A failed profile lookup is not fatal: the caller keeps the default
    ``user`` tier.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._configured = bool(base_url and service_key)
        self._service_key = service_key
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=httpx.Timeout(10.0)
        )

    async def resolve(self, token: str | None) -> Caller:
        if not self._configured:
            raise ConfigurationError("Supabase auth not configured")
        if not token:
            raise Unauthenticated("Authorization token required")

        try:
            resp = await self._client.get(
                "/auth/v1/user",
                headers={"apikey": self._service_key, "Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise Unauthenticated("Authentication failed") from exc
        if resp.status_code in (401, 403):
            raise Unauthenticated("Invalid authentication token")
        if resp.is_error:
            logger.error("Auth service returned HTTP %d", resp.status_code)
            raise Unauthenticated("Authentication failed")

        try:
            user_id = resp.json().get("id")
        except (ValueError, AttributeError) as exc:
            logger.error("Auth service returned an unreadable body: %s", exc)
            raise Unauthenticated("Authentication failed") from exc
        if not user_id:
            raise Unauthenticated("Invalid authentication token")
        logger.info("User authenticated: %s", user_id)
        return Caller(user_id=user_id, tier=await self._lookup_tier(user_id))

    async def _lookup_tier(self, user_id: str) -> PermissionTier:
        try:
            resp = await self._client.get(
                "/rest/v1/profiles",
                params={"id": f"eq.{user_id}", "select": "role"},
                headers=_service_headers(self._service_key),
            )
            resp.raise_for_status()
            rows = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Could not fetch profile role for %s: %s", user_id, exc)
            return PermissionTier.USER

        first = rows[0] if isinstance(rows, list) and rows else None
        role = first.get("role") if isinstance(first, dict) else None
        try:
            return PermissionTier(role or PermissionTier.USER)
        except ValueError:
            return PermissionTier.USER

    async def close(self) -> None:
        await self._client.aclose()


class SupabaseStorage(StorageCollaborator):
    """Uploads generated files to a public Supabase storage bucket."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str = "generated-images",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._configured = bool(base_url and service_key)
        self._base_url = base_url.rstrip("/")
        self._service_key = service_key
        self._bucket = bucket
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url, timeout=httpx.Timeout(30.0, connect=10.0)
        )

    async def upload(self, data: bytes, filename: str, mime_type: str) -> str:
        if not self._configured:
            raise ConfigurationError("Supabase storage not configured")
        path = f"{self._bucket}/{quote(filename)}"
        resp = await self._client.post(
            f"/storage/v1/object/{path}",
            content=data,
            headers={
                **_service_headers(self._service_key),
                "Content-Type": mime_type,
                "x-upsert": "false",
            },
        )
        resp.raise_for_status()
        logger.info("Uploaded %s (%d bytes)", filename, len(data))
        return f"{self._base_url}/storage/v1/object/public/{path}"

    async def close(self) -> None:
        await self._client.aclose()
