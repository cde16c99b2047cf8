"""Async HTTP client for the value transfer service."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from bounty_market_service.core.exceptions import ServiceError
from bounty_market_service.logging import get_logger

if TYPE_CHECKING:
    from bounty_market_service.clients.platform_signer import PlatformSigner


class PaymentClient:
    """
    Moves value between callers and the marketplace's holdings.

    Two operation types:
    1. lock_deposit: forwards the caller's pre-signed deposit token to the
       lock endpoint. The caller signs this token, not the platform, and the
       payment service answers with the amount it actually moved.
    2. pay: a platform-signed transfer out of the marketplace's holdings.
       The marketplace does not wait for settlement: a 2xx means the
       transfer was accepted, not that it cleared.
    """

    def __init__(
        self,
        base_url: str,
        transfer_path: str,
        deposit_lock_path: str,
        timeout_seconds: int,
        platform_signer: PlatformSigner,
    ) -> None:
        self._base_url = base_url
        self._transfer_path = transfer_path
        self._deposit_lock_path = deposit_lock_path
        self._platform_signer = platform_signer
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def lock_deposit(self, deposit_token: str) -> dict[str, Any]:
        """
        Forward a caller-signed deposit token to the payment service.

        The payment service verifies the token and moves the funds into the
        marketplace's holdings.

        Returns:
            dict with keys: deposit_id, task_id, amount, status

        Raises:
            ServiceError: INSUFFICIENT_FUNDS (402) if the caller cannot cover the amount
            ServiceError: FORBIDDEN (403), ACCOUNT_NOT_FOUND (404) or CONFLICT (409)
                          as reported by the payment service
            ServiceError: PAYMENTS_UNAVAILABLE (502) on connection/timeout/unexpected status
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(
                self._deposit_lock_path,
                json={"token": deposit_token},
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Deposit lock request failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="PAYMENTS_UNAVAILABLE",
                message="Cannot connect to the payment service",
                status_code=502,
                details={},
            ) from exc

        if response.status_code in (200, 201):
            result: dict[str, Any] = response.json()
            return result

        if response.status_code == 402:
            raise ServiceError(
                error="INSUFFICIENT_FUNDS",
                message="Caller cannot cover the attached deposit",
                status_code=402,
                details={},
            )

        if response.status_code in (403, 404, 409):
            defaults = {403: "FORBIDDEN", 404: "ACCOUNT_NOT_FOUND", 409: "CONFLICT"}
            error_body: dict[str, Any] = response.json() if response.content else {}
            raise ServiceError(
                error=error_body.get("error", defaults[response.status_code]),
                message=error_body.get("message", "Payment service rejected the deposit"),
                status_code=response.status_code,
                details=error_body.get("details", {}),
            )

        logger.warning(
            "Payment service unexpected status on deposit lock",
            extra={"status_code": response.status_code, "base_url": self._base_url},
        )
        raise ServiceError(
            error="PAYMENTS_UNAVAILABLE",
            message="Payment service returned unexpected status",
            status_code=502,
            details={},
        )

    async def pay(
        self,
        recipient_id: str,
        amount: int,
        token_kind: str,
        memo: str,
    ) -> dict[str, Any]:
        """
        Transfer ``amount`` of ``token_kind`` to ``recipient_id``.

        Raises:
            ServiceError: PAYMENTS_UNAVAILABLE (502) on connection/timeout/unexpected status
        """
        logger = get_logger(__name__)

        signed_token = self._platform_signer.sign(
            {
                "action": "transfer",
                "recipient_id": recipient_id,
                "amount": str(amount),
                "token_kind": token_kind,
                "memo": memo,
            }
        )

        try:
            response = await self._client.post(self._transfer_path, json={"token": signed_token})
        except httpx.HTTPError as exc:
            logger.warning(
                "Payment service request failed",
                extra={"error": str(exc), "recipient_id": recipient_id, "memo": memo},
            )
            raise ServiceError(
                error="PAYMENTS_UNAVAILABLE",
                message="Cannot connect to the payment service",
                status_code=502,
                details={},
            ) from exc

        if response.status_code in (200, 201, 202):
            result: dict[str, Any] = response.json() if response.content else {}
            return result

        logger.warning(
            "Payment service unexpected status",
            extra={"status_code": response.status_code, "recipient_id": recipient_id, "memo": memo},
        )
        raise ServiceError(
            error="PAYMENTS_UNAVAILABLE",
            message="Payment service returned unexpected status",
            status_code=502,
            details={},
        )

    async def close(self) -> None:
        await self._client.aclose()
