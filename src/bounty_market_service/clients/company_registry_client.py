"""Async HTTP client for the company vetting registry."""

from __future__ import annotations

import httpx

from bounty_market_service.core.exceptions import ServiceError
from bounty_market_service.logging import get_logger


class CompanyRegistryClient:
    """
    Answers whether a company is approved to post tasks.

    ``company_path`` is a template with a ``{company_id}`` placeholder.
    The registry answers 200 for a whitelisted company and 404 otherwise.
    """

    def __init__(self, base_url: str, company_path: str, timeout_seconds: int) -> None:
        self._base_url = base_url
        self._company_path = company_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def is_whitelisted(self, company_id: str) -> bool:
        """
        Raises:
            ServiceError: COMPANY_REGISTRY_UNAVAILABLE (502) on connection/timeout/unexpected status
        """
        logger = get_logger(__name__)
        path = self._company_path.format(company_id=company_id)

        try:
            response = await self._client.get(path)
        except httpx.HTTPError as exc:
            logger.warning(
                "Company registry request failed",
                extra={"error": str(exc), "base_url": self._base_url, "company_id": company_id},
            )
            raise ServiceError(
                error="COMPANY_REGISTRY_UNAVAILABLE",
                message="Cannot connect to the company registry",
                status_code=502,
                details={},
            ) from exc

        if response.status_code == 200:
            body = response.json()
            return bool(body.get("whitelisted", True)) if isinstance(body, dict) else True
        if response.status_code == 404:
            return False

        logger.warning(
            "Company registry unexpected status",
            extra={"status_code": response.status_code, "company_id": company_id},
        )
        raise ServiceError(
            error="COMPANY_REGISTRY_UNAVAILABLE",
            message="Company registry returned unexpected status",
            status_code=502,
            details={},
        )

    async def close(self) -> None:
        await self._client.aclose()
