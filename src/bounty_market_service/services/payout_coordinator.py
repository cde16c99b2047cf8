"""Post-commit delivery of payments and profile updates."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from bounty_market_service.core.exceptions import ServiceError
from bounty_market_service.logging import get_logger

if TYPE_CHECKING:
    from bounty_market_service.clients.payment_client import PaymentClient
    from bounty_market_service.clients.profile_client import ProfileClient


@dataclass(frozen=True)
class Payout:
    """A value transfer the marketplace owes once the call commits."""

    recipient_id: str
    amount: int
    token_kind: str
    task_id: str
    reason: str


@dataclass(frozen=True)
class ProfileUpdate:
    user_id: str
    task_id: str


@dataclass
class OutboundBatch:
    """Side effects collected during a call, released only after commit."""

    payouts: list[Payout] = field(default_factory=list)
    profile_updates: list[ProfileUpdate] = field(default_factory=list)

    def pay(self, recipient_id: str, amount: int, token_kind: str, task_id: str, reason: str) -> None:
        if amount > 0:
            self.payouts.append(Payout(recipient_id, amount, token_kind, task_id, reason))


class PayoutCoordinator:
    """
    Sends committed payouts to the payment service and completed tasks to
    the profile service.

    Delivery is fire-and-forget: the task state is already committed, so a
    failed transfer is logged and never rolled back into the lifecycle.
    """

    def __init__(self, payment_client: PaymentClient, profile_client: ProfileClient) -> None:
        self._payment_client = payment_client
        self._profile_client = profile_client
        self._logger = get_logger(__name__)

    def set_payment_client(self, client: PaymentClient) -> None:
        self._payment_client = client

    def set_profile_client(self, client: ProfileClient) -> None:
        self._profile_client = client

    async def lock_deposit(self, deposit_token: str) -> dict[str, Any]:
        """
        Move a caller's deposit into the marketplace's holdings.

        Unlike payouts this runs before the call commits, so failures reach
        the caller.

        Raises:
            ServiceError: whatever the payment service reported, or
                          PAYMENTS_UNAVAILABLE (502) on unexpected failures
        """
        try:
            return await self._payment_client.lock_deposit(deposit_token)
        except ServiceError:
            raise
        except Exception as exc:
            raise ServiceError(
                "PAYMENTS_UNAVAILABLE",
                "Cannot lock the attached deposit",
                502,
                {},
            ) from exc

    async def pay(self, payout: Payout) -> None:
        """
        Issue one transfer.

        Raises ServiceError("PAYMENTS_UNAVAILABLE", ..., 502) on failure.
        """
        try:
            await self._payment_client.pay(
                recipient_id=payout.recipient_id,
                amount=payout.amount,
                token_kind=payout.token_kind,
                memo=f"{payout.reason}:{payout.task_id}",
            )
        except ServiceError:
            raise
        except Exception as exc:
            raise ServiceError(
                "PAYMENTS_UNAVAILABLE",
                "Payment transfer failed",
                502,
                {},
            ) from exc

    async def record_completion(self, update: ProfileUpdate) -> None:
        """Raises ServiceError("PROFILE_SERVICE_UNAVAILABLE", ..., 502) on failure."""
        try:
            await self._profile_client.record_completed_task(
                user_id=update.user_id,
                task_id=update.task_id,
            )
        except ServiceError:
            raise
        except Exception as exc:
            raise ServiceError(
                "PROFILE_SERVICE_UNAVAILABLE",
                "Profile update failed",
                502,
                {},
            ) from exc

    async def dispatch(self, batch: OutboundBatch) -> None:
        """Deliver every side effect in the batch. Never raises."""
        for payout in batch.payouts:
            try:
                await self.pay(payout)
            except ServiceError:
                self._logger.warning(
                    "Outbound payment failed after commit",
                    extra={
                        "task_id": payout.task_id,
                        "recipient_id": payout.recipient_id,
                        "amount": payout.amount,
                        "reason": payout.reason,
                    },
                )

        for update in batch.profile_updates:
            try:
                await self.record_completion(update)
            except ServiceError:
                self._logger.warning(
                    "Profile update failed after commit",
                    extra={"task_id": update.task_id, "user_id": update.user_id},
                )
