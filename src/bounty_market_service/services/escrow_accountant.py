"""Reconciles the storage a call retains against the value its caller attached."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Protocol

from bounty_market_service.core.exceptions import ServiceError
from bounty_market_service.logging import get_logger


class StorageMeter(Protocol):
    def bytes_used(self) -> int: ...


@dataclass(frozen=True)
class Settlement:
    """Outcome of reconciling one call's deposit."""

    deposit: int
    storage_delta: int
    billable_bytes: int
    storage_cost: int
    reserve: int
    released: int
    required: int
    refund: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class EscrowAccountant:
    """
    Prices storage growth and decides the caller's refund.

    Each mutating call samples ``bytes_used`` before and after its writes
    (inside the same transaction) and hands both readings to ``settle``.
    Growth is billed at ``price_per_byte``; a reserve (the escrowed reward
    on task creation) is added on top. If the deposit does not cover the
    total, ``settle`` raises INSUFFICIENT_DEPOSIT and the caller's
    transaction rolls back every write of the call.
    """

    def __init__(self, meter: StorageMeter, price_per_byte: int, invitee_storage_bytes: int) -> None:
        self._meter = meter
        self._price_per_byte = price_per_byte
        self._invitee_storage_bytes = invitee_storage_bytes
        self._logger = get_logger(__name__)

    @property
    def price_per_byte(self) -> int:
        return self._price_per_byte

    @property
    def invitee_storage_bytes(self) -> int:
        """Bytes prepaid per invitee at creation; later covers the assignment."""
        return self._invitee_storage_bytes

    def measure(self) -> int:
        return self._meter.bytes_used()

    def storage_value(self, num_bytes: int) -> int:
        return num_bytes * self._price_per_byte

    def settle(
        self,
        *,
        caller_id: str,
        deposit: int,
        bytes_before: int,
        bytes_after: int,
        reserve: int = 0,
        surcharge_bytes: int = 0,
        prepaid_bytes: int = 0,
        released: int = 0,
    ) -> Settlement:
        """
        Reconcile a call's deposit.

        Args:
            caller_id: Account that attached the deposit
            deposit: Value attached to the call
            bytes_before: Meter reading before the call's writes
            bytes_after: Meter reading after the call's writes
            reserve: Value set aside by the call on top of storage
            surcharge_bytes: Extra bytes billed up front (per-invitee allowance)
            prepaid_bytes: Bytes already paid for by an earlier call
            released: Value the call hands back to the caller (reclaimed escrow)

        Raises:
            ServiceError: INSUFFICIENT_DEPOSIT when deposit < required
        """
        storage_delta = bytes_after - bytes_before
        billable_bytes = max(0, storage_delta + surcharge_bytes - prepaid_bytes)
        storage_cost = self.storage_value(billable_bytes)
        required = storage_cost + reserve

        if deposit < required:
            self._logger.info(
                "Deposit does not cover call",
                extra={"caller_id": caller_id, "deposit": deposit, "required": required},
            )
            raise ServiceError(
                "INSUFFICIENT_DEPOSIT",
                "Attached deposit does not cover storage and escrow",
                402,
                {
                    "account_id": caller_id,
                    "deposit": deposit,
                    "required": required,
                    "storage_bytes": billable_bytes,
                },
            )

        return Settlement(
            deposit=deposit,
            storage_delta=storage_delta,
            billable_bytes=billable_bytes,
            storage_cost=storage_cost,
            reserve=reserve,
            released=released,
            required=required,
            refund=deposit - required + released,
        )
