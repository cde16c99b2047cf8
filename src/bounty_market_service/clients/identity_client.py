"""Async HTTP client for the Identity service."""

from __future__ import annotations

from typing import Any

import httpx

from bounty_market_service.core.exceptions import ServiceError
from bounty_market_service.logging import get_logger

_UNAVAILABLE = "IDENTITY_SERVICE_UNAVAILABLE"


def _unavailable(message: str) -> ServiceError:
    return ServiceError(error=_UNAVAILABLE, message=message, status_code=502, details={})


class IdentityClient:
    """
    Resolves the account behind a caller-signed token.

    Accounts and their public keys live in the Identity service; the
    marketplace sends it the compact JWS and gets back the signer's account
    id together with the payload it signed.
    """

    def __init__(
        self,
        base_url: str,
        verify_jws_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._verify_jws_path = verify_jws_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )
        self._logger = get_logger(__name__)

    async def verify_jws(self, token: str) -> dict[str, Any]:
        """
        Ask the Identity service who signed ``token``.

        Returns:
            dict with keys: valid (True), agent_id (signer account id), payload (dict)

        Raises:
            ServiceError: INVALID_JWS (400) when Identity cannot parse the token
            ServiceError: FORBIDDEN (403) for a bad signature or an unknown signer
            ServiceError: IDENTITY_SERVICE_UNAVAILABLE (502) on transport failures,
                          unexpected statuses or malformed answers
        """
        try:
            response = await self._client.post(self._verify_jws_path, json={"token": token})
        except httpx.HTTPError as exc:
            self._logger.warning(
                "Identity service request failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise _unavailable("Cannot connect to Identity service") from exc

        status = response.status_code
        if status == 400:
            raise ServiceError(
                error="INVALID_JWS",
                message=self._error_message(response, "Identity service rejected the token"),
                status_code=400,
                details={},
            )
        if status == 404:
            raise ServiceError(
                error="FORBIDDEN",
                message="Token signer is not a registered account",
                status_code=403,
                details={},
            )
        if status != 200:
            self._logger.warning(
                "Identity service unexpected status",
                extra={"status_code": status, "base_url": self._base_url},
            )
            raise _unavailable("Identity service returned unexpected status")

        try:
            result = response.json()
        except ValueError as exc:
            raise _unavailable("Identity service returned a non-JSON body") from exc
        if not isinstance(result, dict):
            raise _unavailable("Identity service returned an unexpected response")

        if result.get("valid") is not True:
            raise ServiceError(
                error="FORBIDDEN",
                message="JWS signature verification failed",
                status_code=403,
                details={"reason": result.get("reason")} if result.get("reason") else {},
            )
        if not isinstance(result.get("agent_id"), str) or not isinstance(
            result.get("payload"), dict
        ):
            raise _unavailable("Identity service returned an unexpected response")

        self._logger.debug("Caller verified", extra={"account_id": result["agent_id"]})
        return result

    @staticmethod
    def _error_message(response: httpx.Response, default: str) -> str:
        try:
            body = response.json()
        except ValueError:
            return default
        if isinstance(body, dict) and isinstance(body.get("message"), str):
            return body["message"]
        return default

    async def close(self) -> None:
        await self._client.aclose()
