"""Unit tests for TokenValidator."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from bounty_market_service.core.exceptions import ServiceError
from bounty_market_service.services.token_validator import TokenValidator, decode_unverified_jws
from tests.helpers import generate_keypair, make_fake_jws, make_jws_token


def _token(payload: dict[str, object], agent_id: str = "acme") -> str:
    private_key, _public_key = generate_keypair()
    return make_jws_token(private_key, agent_id, payload)


def _validator(result: object = None, error: Exception | None = None) -> TokenValidator:
    mock_identity = AsyncMock()
    if error is not None:
        mock_identity.verify_jws = AsyncMock(side_effect=error)
    else:
        mock_identity.verify_jws = AsyncMock(return_value=result)
    return TokenValidator(identity_client=mock_identity)


@pytest.mark.unit
async def test_returns_signer_and_payload() -> None:
    payload = {"action": "create_task", "task_id": "acme.t1"}
    validator = _validator({"valid": True, "agent_id": "acme", "payload": payload})

    signer_id, verified = await validator.validate_jws_token(_token(payload), "create_task")

    assert signer_id == "acme"
    assert verified == payload


@pytest.mark.unit
@pytest.mark.parametrize("token", ["", "only.two", "a.b.c.d"], ids=["empty", "two-parts", "four-parts"])
async def test_malformed_token(token: str) -> None:
    validator = _validator()

    with pytest.raises(ServiceError) as exc_info:
        await validator.validate_jws_token(token, "create_task")

    assert exc_info.value.error == "INVALID_JWS"


@pytest.mark.unit
async def test_identity_unavailable() -> None:
    validator = _validator(error=ConnectionError("unavailable"))

    with pytest.raises(ServiceError) as exc_info:
        await validator.validate_jws_token(_token({"action": "ping_task"}), "ping_task")

    assert exc_info.value.error == "IDENTITY_SERVICE_UNAVAILABLE"
    assert exc_info.value.status_code == 502


@pytest.mark.unit
async def test_identity_service_error_propagates() -> None:
    expected = ServiceError("FORBIDDEN", "JWS signature verification failed", 403, {})
    validator = _validator(error=expected)

    with pytest.raises(ServiceError) as exc_info:
        await validator.validate_jws_token(_token({"action": "ping_task"}), "ping_task")

    assert exc_info.value is expected


@pytest.mark.unit
async def test_unexpected_identity_response() -> None:
    validator = _validator({"valid": True, "agent_id": "acme"})

    with pytest.raises(ServiceError) as exc_info:
        await validator.validate_jws_token(_token({"action": "ping_task"}), "ping_task")

    assert exc_info.value.error == "IDENTITY_SERVICE_UNAVAILABLE"


@pytest.mark.unit
async def test_missing_signer() -> None:
    validator = _validator({"valid": True, "agent_id": "", "payload": {"action": "ping_task"}})

    with pytest.raises(ServiceError) as exc_info:
        await validator.validate_jws_token(_token({"action": "ping_task"}), "ping_task")

    assert exc_info.value.error == "INVALID_JWS"


@pytest.mark.unit
@pytest.mark.parametrize(
    "payload",
    [{"task_id": "acme.t1"}, {"action": "claim_refund"}],
    ids=["missing-action", "wrong-action"],
)
async def test_action_mismatch(payload: dict[str, object]) -> None:
    validator = _validator({"valid": True, "agent_id": "acme", "payload": payload})

    with pytest.raises(ServiceError) as exc_info:
        await validator.validate_jws_token(_token(payload), "ping_task")

    assert exc_info.value.error == "INVALID_PAYLOAD"


@pytest.mark.unit
async def test_any_of_several_actions() -> None:
    payload = {"action": "ping_task"}
    validator = _validator({"valid": True, "agent_id": "bob", "payload": payload})

    signer_id, _payload = await validator.validate_jws_token(
        _token(payload, "bob"), ("ping_task", "claim_refund")
    )
    assert signer_id == "bob"


@pytest.mark.unit
def test_decode_unverified_jws_reads_header_and_payload() -> None:
    token = make_fake_jws({"action": "deposit_lock", "amount": 5}, kid="bob")

    header, payload = decode_unverified_jws(token)

    assert header["kid"] == "bob"
    assert payload == {"action": "deposit_lock", "amount": 5}


@pytest.mark.unit
@pytest.mark.parametrize(
    "token",
    ["a.b", "e30.!!!.c", "e30.bm90LWpzb24.c", "e30.WzFd.c"],
    ids=["two-parts", "bad-base64", "not-json", "not-an-object"],
)
def test_decode_unverified_jws_rejects_malformed_tokens(token: str) -> None:
    with pytest.raises(ServiceError) as exc_info:
        decode_unverified_jws(token)
    assert exc_info.value.error == "INVALID_JWS"
