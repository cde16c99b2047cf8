"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from bounty_market_service.clients.company_registry_client import CompanyRegistryClient
from bounty_market_service.clients.identity_client import IdentityClient
from bounty_market_service.clients.payment_client import PaymentClient
from bounty_market_service.clients.platform_signer import PlatformSigner, ensure_private_key
from bounty_market_service.clients.profile_client import ProfileClient
from bounty_market_service.config import get_settings
from bounty_market_service.core.state import init_app_state
from bounty_market_service.logging import get_logger, setup_logging
from bounty_market_service.services.clock import SystemClock
from bounty_market_service.services.deadline_evaluator import DeadlineEvaluator
from bounty_market_service.services.escrow_accountant import EscrowAccountant
from bounty_market_service.services.payout_coordinator import PayoutCoordinator
from bounty_market_service.services.storage_meter import SqliteStorageMeter
from bounty_market_service.services.task_manager import TaskManager
from bounty_market_service.services.task_store import TaskStore
from bounty_market_service.services.token_validator import TokenValidator

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    db_path = settings.database.path

    # Platform key signs outbound payments; generated next to the database on first start
    private_key_path = settings.platform.private_key_path
    if not private_key_path:
        private_key_path = str(Path(db_path).parent / "platform.pem")
    ensure_private_key(private_key_path)

    platform_signer = PlatformSigner(
        platform_agent_id=settings.platform.agent_id,
        private_key_path=private_key_path,
    )
    state.platform_signer = platform_signer

    identity_client = IdentityClient(
        base_url=settings.identity.base_url,
        verify_jws_path=settings.identity.verify_jws_path,
        timeout_seconds=settings.identity.timeout_seconds,
    )
    company_registry_client = CompanyRegistryClient(
        base_url=settings.company_registry.base_url,
        company_path=settings.company_registry.company_path,
        timeout_seconds=settings.company_registry.timeout_seconds,
    )
    payment_client = PaymentClient(
        base_url=settings.payments.base_url,
        transfer_path=settings.payments.transfer_path,
        deposit_lock_path=settings.payments.deposit_lock_path,
        timeout_seconds=settings.payments.timeout_seconds,
        platform_signer=platform_signer,
    )
    profile_client = ProfileClient(
        base_url=settings.profiles.base_url,
        completed_task_path=settings.profiles.completed_task_path,
        timeout_seconds=settings.profiles.timeout_seconds,
        platform_signer=platform_signer,
    )

    store = TaskStore(db_path=db_path)
    clock = SystemClock()
    meter = SqliteStorageMeter(
        store.connection,
        store.lock,
        record_overhead_bytes=settings.escrow.record_overhead_bytes,
    )
    escrow_accountant = EscrowAccountant(
        meter=meter,
        price_per_byte=settings.escrow.price_per_byte,
        invitee_storage_bytes=settings.escrow.invitee_storage_bytes,
    )
    payout_coordinator = PayoutCoordinator(
        payment_client=payment_client,
        profile_client=profile_client,
    )
    limits = settings.limits
    task_manager = TaskManager(
        store=store,
        company_registry_client=company_registry_client,
        payout_coordinator=payout_coordinator,
        escrow_accountant=escrow_accountant,
        deadline_evaluator=DeadlineEvaluator(store=store, clock=clock),
        clock=clock,
        token_kind=settings.escrow.token_kind,
        max_invitees=limits.max_invitees,
        default_page_limit=limits.default_page_limit,
        max_page_limit=limits.max_page_limit,
        max_account_id_length=limits.max_account_id_length,
        max_title_length=limits.max_title_length,
        max_description_length=limits.max_description_length,
    )

    state.task_manager = task_manager
    state.payout_coordinator = payout_coordinator
    state.token_validator = TokenValidator(identity_client=identity_client)
    state.identity_client = identity_client
    state.company_registry_client = company_registry_client
    state.payment_client = payment_client
    state.profile_client = profile_client

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "db_path": db_path,
            "identity_base_url": settings.identity.base_url,
            "company_registry_base_url": settings.company_registry.base_url,
            "payments_base_url": settings.payments.base_url,
            "profiles_base_url": settings.profiles.base_url,
            "platform_agent_id": settings.platform.agent_id,
            "price_per_byte": settings.escrow.price_per_byte,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    task_manager.close()

    await identity_client.close()
    await company_registry_client.close()
    await payment_client.close()
    await profile_client.close()
