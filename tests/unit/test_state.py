"""Unit tests for AppState lifecycle helpers."""

from __future__ import annotations

import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from bounty_market_service.core.state import AppState, get_app_state, init_app_state, reset_app_state


@pytest.mark.unit
def test_app_state_init() -> None:
    """AppState initializes with default dependency fields."""
    state = AppState()
    assert state.task_manager is None
    assert state.token_validator is None
    assert state.payout_coordinator is None
    assert state.identity_client is None
    assert state.company_registry_client is None
    assert state.payment_client is None
    assert state.profile_client is None
    assert state.platform_signer is None


@pytest.mark.unit
def test_app_state_uptime() -> None:
    state = AppState()
    time.sleep(0.001)
    assert state.uptime_seconds > 0


@pytest.mark.unit
def test_app_state_started_at() -> None:
    state = AppState()
    assert state.started_at.endswith("Z")
    assert "T" in state.started_at


@pytest.mark.unit
def test_get_app_state_uninitialized() -> None:
    reset_app_state()
    with pytest.raises(RuntimeError):
        _state = get_app_state()


@pytest.mark.unit
def test_init_app_state() -> None:
    state = init_app_state()
    assert isinstance(state, AppState)
    assert get_app_state() is state


@pytest.mark.unit
def test_replacing_clients_updates_services() -> None:
    """Client fields are pushed into the services that hold them."""
    state = AppState()
    state.task_manager = MagicMock()
    state.token_validator = MagicMock()
    state.payout_coordinator = MagicMock()

    identity, registry, payments, profiles = AsyncMock(), AsyncMock(), AsyncMock(), AsyncMock()
    state.identity_client = identity
    state.company_registry_client = registry
    state.payment_client = payments
    state.profile_client = profiles

    state.token_validator.set_identity_client.assert_called_once_with(identity)
    state.task_manager.set_company_registry_client.assert_called_once_with(registry)
    state.payout_coordinator.set_payment_client.assert_called_once_with(payments)
    state.payout_coordinator.set_profile_client.assert_called_once_with(profiles)
