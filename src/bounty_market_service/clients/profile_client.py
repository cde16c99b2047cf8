"""Async HTTP client for the participant profile service."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from bounty_market_service.core.exceptions import ServiceError
from bounty_market_service.logging import get_logger

if TYPE_CHECKING:
    from bounty_market_service.clients.platform_signer import PlatformSigner


class ProfileClient:
    """Records completed tasks on a participant's profile."""

    def __init__(
        self,
        base_url: str,
        completed_task_path: str,
        timeout_seconds: int,
        platform_signer: PlatformSigner,
    ) -> None:
        self._base_url = base_url
        self._completed_task_path = completed_task_path
        self._platform_signer = platform_signer
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def record_completed_task(self, user_id: str, task_id: str) -> None:
        """
        Raises:
            ServiceError: PROFILE_SERVICE_UNAVAILABLE (502) on connection/timeout/unexpected status
        """
        logger = get_logger(__name__)
        path = self._completed_task_path.format(user_id=user_id)
        signed_token = self._platform_signer.sign(
            {"action": "record_completed_task", "user_id": user_id, "task_id": task_id}
        )

        try:
            response = await self._client.post(path, json={"token": signed_token})
        except httpx.HTTPError as exc:
            logger.warning(
                "Profile service request failed",
                extra={"error": str(exc), "user_id": user_id, "task_id": task_id},
            )
            raise ServiceError(
                error="PROFILE_SERVICE_UNAVAILABLE",
                message="Cannot connect to the profile service",
                status_code=502,
                details={},
            ) from exc

        if response.status_code not in (200, 201, 204):
            logger.warning(
                "Profile service unexpected status",
                extra={"status_code": response.status_code, "user_id": user_id},
            )
            raise ServiceError(
                error="PROFILE_SERVICE_UNAVAILABLE",
                message="Profile service returned unexpected status",
                status_code=502,
                details={},
            )

    async def close(self) -> None:
        await self._client.aclose()
