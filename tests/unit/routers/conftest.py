"""Router test fixtures with mocked Identity, registry, payment and profile services."""

from __future__ import annotations

import json
import os
import time
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from bounty_market_service.app import create_app
from bounty_market_service.config import clear_settings_cache
from bounty_market_service.core.lifespan import lifespan
from bounty_market_service.core.state import get_app_state, reset_app_state
from tests.helpers import (
    decode_jws_parts,
    for_everyone_details,
    invite_only_details,
    make_fake_jws,
    make_submission,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

COMPANY_ID = "acme"
BOB_ID = "bob"
CAROL_ID = "carol"
DEPOSIT = 10**30
REWARD = 1_000


def future_ms(seconds: int = 86_400) -> int:
    """Epoch milliseconds ``seconds`` from now."""
    return int(time.time() * 1000) + seconds * 1000


def _verified(token: str) -> dict[str, Any]:
    header, payload = decode_jws_parts(token)
    return {"valid": True, "agent_id": header.get("kid", "unknown"), "payload": payload}


def _locked(token: str) -> dict[str, Any]:
    _header, payload = decode_jws_parts(token)
    return {
        "deposit_id": f"dep-{payload['task_id']}",
        "task_id": payload["task_id"],
        "amount": payload["amount"],
        "status": "locked",
    }


def deposit_token(signer: str, task_id: str, amount: int = DEPOSIT) -> str:
    """A caller-signed deposit token as the payment service expects it."""
    return make_fake_jws(
        {"action": "deposit_lock", "task_id": task_id, "amount": amount}, kid=signer
    )


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with temp database and mocked collaborators."""
    db_path = tmp_path / "test.db"
    config_content = f"""\
service:
  name: "bounty-market"
  version: "0.1.0"
logging:
  level: "WARNING"
  directory: "{tmp_path / "logs"}"
database:
  path: "{db_path}"
identity:
  base_url: "http://localhost:8001"
  verify_jws_path: "/agents/verify-jws"
  timeout_seconds: 10
company_registry:
  base_url: "http://localhost:8004"
  company_path: "/companies/{{company_id}}"
  timeout_seconds: 10
payments:
  base_url: "http://localhost:8002"
  transfer_path: "/transfers"
  deposit_lock_path: "/deposits/lock"
  timeout_seconds: 10
profiles:
  base_url: "http://localhost:8005"
  completed_task_path: "/profiles/{{user_id}}/completed-tasks"
  timeout_seconds: 10
platform:
  agent_id: "marketplace"
request:
  max_body_size: 8192
escrow:
  price_per_byte: 1
  invitee_storage_bytes: 64
  record_overhead_bytes: 40
  token_kind: "near"
limits:
  max_invitees: 5
  default_page_limit: 20
  max_page_limit: 50
  max_account_id_length: 64
  max_title_length: 200
  max_description_length: 2000
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()

        # Replacing a client field pushes the mock into the services holding it
        mock_identity = AsyncMock()
        mock_identity.verify_jws = AsyncMock(side_effect=_verified)
        state.identity_client = mock_identity

        mock_registry = AsyncMock()
        mock_registry.is_whitelisted = AsyncMock(return_value=True)
        state.company_registry_client = mock_registry

        mock_payments = AsyncMock()
        mock_payments.pay = AsyncMock(return_value={})
        mock_payments.lock_deposit = AsyncMock(side_effect=_locked)
        state.payment_client = mock_payments

        mock_profiles = AsyncMock()
        mock_profiles.record_completed_task = AsyncMock(return_value=None)
        state.profile_client = mock_profiles

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Mock override fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_identity_unavailable(_app: Any) -> None:
    """Configure the Identity mock to simulate service unavailability."""
    state = get_app_state()
    state.identity_client.verify_jws = AsyncMock(
        side_effect=ConnectionError("Identity service unreachable")
    )


@pytest.fixture
def mock_company_not_whitelisted(_app: Any) -> None:
    state = get_app_state()
    state.company_registry_client.is_whitelisted = AsyncMock(return_value=False)


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------
async def post_signed(
    client: AsyncClient,
    path: str,
    signer: str,
    payload: dict[str, Any],
    deposit: str | None = None,
) -> Any:
    """POST ``{"token": <JWS>}`` with the signer as ``kid``, plus a deposit token if given."""
    body: dict[str, Any] = {"token": make_fake_jws(payload, kid=signer)}
    if deposit is not None:
        body["deposit_token"] = deposit
    return await client.post(
        path,
        content=json.dumps(body),
        headers={"Content-Type": "application/json"},
    )


async def create_task(
    client: AsyncClient,
    *,
    task_id: str = "acme.t1",
    company_id: str = COMPANY_ID,
    details: dict[str, Any] | None = None,
    deadline: int | None = None,
    reward: int = REWARD,
    deposit: int | None = DEPOSIT,
) -> Any:
    """Create a task via POST /tasks; defaults to an invite-only task for bob."""
    if details is None:
        details = invite_only_details([BOB_ID], future_ms())
    payload = {
        "action": "create_task",
        "task_id": task_id,
        "details": details,
        "deadline": deadline if deadline is not None else future_ms(2 * 86_400),
        "reward": reward,
    }
    token = None if deposit is None else deposit_token(company_id, task_id, deposit)
    return await post_signed(client, "/tasks", company_id, payload, token)


async def create_open_task(client: AsyncClient, task_id: str = "acme.t2") -> Any:
    return await create_task(client, task_id=task_id, details=for_everyone_details())


async def task_action(
    client: AsyncClient,
    task_id: str,
    endpoint: str,
    action: str,
    signer: str,
    deposit: int | None = None,
    **fields: Any,
) -> Any:
    """POST to /tasks/{task_id}/{endpoint} with a signed payload naming the task."""
    payload = {"action": action, "task_id": task_id, **fields}
    token = None if deposit is None else deposit_token(signer, task_id, deposit)
    return await post_signed(client, f"/tasks/{task_id}/{endpoint}", signer, payload, token)


async def submit(
    client: AsyncClient, task_id: str, signer: str, content: str, deposit: int | None = DEPOSIT
) -> Any:
    return await task_action(
        client,
        task_id,
        "submissions",
        "submit_work",
        signer,
        deposit,
        submission=make_submission(content),
    )
