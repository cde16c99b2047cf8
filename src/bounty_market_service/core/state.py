"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from bounty_market_service.clients.company_registry_client import CompanyRegistryClient
    from bounty_market_service.clients.identity_client import IdentityClient
    from bounty_market_service.clients.payment_client import PaymentClient
    from bounty_market_service.clients.platform_signer import PlatformSigner
    from bounty_market_service.clients.profile_client import ProfileClient
    from bounty_market_service.services.payout_coordinator import PayoutCoordinator
    from bounty_market_service.services.task_manager import TaskManager
    from bounty_market_service.services.token_validator import TokenValidator


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    task_manager: TaskManager | None = None
    token_validator: TokenValidator | None = None
    payout_coordinator: PayoutCoordinator | None = None
    identity_client: IdentityClient | None = None
    company_registry_client: CompanyRegistryClient | None = None
    payment_client: PaymentClient | None = None
    profile_client: ProfileClient | None = None
    platform_signer: PlatformSigner | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        """Keep service dependency references in sync with the client fields."""
        super().__setattr__(name, value)
        if value is None:
            return

        token_validator = self.__dict__.get("token_validator")
        task_manager = self.__dict__.get("task_manager")
        payout_coordinator = self.__dict__.get("payout_coordinator")

        if name == "identity_client" and token_validator is not None:
            token_validator.set_identity_client(value)
        elif name == "company_registry_client" and task_manager is not None:
            task_manager.set_company_registry_client(value)
        elif name == "payment_client" and payout_coordinator is not None:
            payout_coordinator.set_payment_client(value)
        elif name == "profile_client" and payout_coordinator is not None:
            payout_coordinator.set_profile_client(value)

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
