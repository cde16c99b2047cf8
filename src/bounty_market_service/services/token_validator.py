"""Caller authentication for marketplace operations."""

from __future__ import annotations

import base64
import binascii
import json
from typing import TYPE_CHECKING, Any, cast

from bounty_market_service.core.exceptions import ServiceError

if TYPE_CHECKING:
    from bounty_market_service.clients.identity_client import IdentityClient


def decode_base64url_json(part: str, section_name: str) -> dict[str, Any]:
    """Decode a base64url JSON object from a JWS part."""
    padded = part + "=" * (-len(part) % 4)
    try:
        decoded = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as exc:
        raise ServiceError(
            "INVALID_JWS",
            f"Token {section_name} is not valid base64url",
            400,
            {},
        ) from exc

    try:
        value = json.loads(decoded)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JWS",
            f"Token {section_name} is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(value, dict):
        raise ServiceError(
            "INVALID_JWS",
            f"Token {section_name} must be a JSON object",
            400,
            {},
        )
    return value


def decode_unverified_jws(token: str) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Decode (header, payload) of a compact JWS WITHOUT verifying its signature.

    Used only to cross-check a token that another service verifies, such as
    a deposit token the payment service checks before moving funds.
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise ServiceError(
            "INVALID_JWS",
            "Token must be in JWS compact serialization format (header.payload.signature)",
            400,
            {},
        )
    return decode_base64url_json(parts[0], "header"), decode_base64url_json(parts[1], "payload")


class TokenValidator:
    """Verifies caller-signed JWS tokens and checks the requested action."""

    def __init__(self, identity_client: IdentityClient) -> None:
        self._identity_client = identity_client

    def set_identity_client(self, client: IdentityClient) -> None:
        self._identity_client = client

    async def validate_jws_token(
        self,
        token: str,
        expected_action: str | tuple[str, ...],
    ) -> tuple[str, dict[str, Any]]:
        """
        Verify a JWS token via the Identity service and validate the action field.

        Returns (signer account id, verified payload).

        Error precedence handled here:
        - INVALID_JWS: token is not a three-part JWS, or the signer is missing
        - IDENTITY_SERVICE_UNAVAILABLE: Identity service unreachable
        - FORBIDDEN: signature invalid
        - INVALID_PAYLOAD: wrong action or missing action

        Raises:
            ServiceError: INVALID_JWS, IDENTITY_SERVICE_UNAVAILABLE,
                          FORBIDDEN, or INVALID_PAYLOAD
        """
        if not token:
            raise ServiceError("INVALID_JWS", "Token must be a non-empty string", 400, {})

        parts = token.split(".")
        if len(parts) != 3:
            raise ServiceError(
                "INVALID_JWS",
                "Token must be in JWS compact serialization format (header.payload.signature)",
                400,
                {},
            )

        # IdentityClient.verify_jws raises:
        #   ServiceError("IDENTITY_SERVICE_UNAVAILABLE", ..., 502) on connection/timeout
        #   ServiceError("FORBIDDEN", ..., 403) when valid=false
        result: Any
        try:
            result = await self._identity_client.verify_jws(token)
        except ServiceError:
            raise
        except Exception as exc:
            raise ServiceError(
                "IDENTITY_SERVICE_UNAVAILABLE",
                "Cannot connect to Identity service",
                502,
                {},
            ) from exc

        if not isinstance(result, dict) or not isinstance(result.get("payload"), dict):
            raise ServiceError(
                "IDENTITY_SERVICE_UNAVAILABLE",
                "Identity service returned an unexpected response",
                502,
                {},
            )

        signer_id = result.get("agent_id")
        if not isinstance(signer_id, str) or len(signer_id) < 1:
            raise ServiceError("INVALID_JWS", "Token signer is missing", 400, {})
        payload = cast("dict[str, Any]", result["payload"])

        if "action" not in payload:
            raise ServiceError(
                "INVALID_PAYLOAD",
                "JWS payload must include an 'action' field",
                400,
                {},
            )

        allowed_actions = (
            {expected_action} if isinstance(expected_action, str) else set(expected_action)
        )
        action = payload["action"]
        if action not in allowed_actions:
            expected_actions_text = ", ".join(sorted(allowed_actions))
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Expected action in [{expected_actions_text}], got '{action}'",
                400,
                {},
            )

        return signer_id, payload
