"""Shared request validation helpers for marketplace routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from bounty_market_service.core.exceptions import ServiceError
from bounty_market_service.core.state import get_app_state

if TYPE_CHECKING:
    from fastapi import Request

    from bounty_market_service.services.task_manager import TaskManager


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def extract_token(data: dict[str, Any], field_name: str) -> str:
    """Extract and validate a token field from parsed JSON body."""
    if field_name not in data:
        raise ServiceError(
            "INVALID_JWS",
            f"Missing required field: {field_name}",
            400,
            {},
        )

    value = data[field_name]
    if not isinstance(value, str) or not value:
        raise ServiceError(
            "INVALID_JWS",
            f"Field '{field_name}' must be a non-empty string",
            400,
            {},
        )

    return value


def extract_optional_token(data: dict[str, Any], field_name: str) -> str | None:
    """Like extract_token, but an absent field yields None."""
    if field_name not in data:
        return None
    return extract_token(data, field_name)


def require_fields(payload: dict[str, Any], field_names: tuple[str, ...]) -> None:
    for field_name in field_names:
        if field_name not in payload:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Missing required field: {field_name}",
                400,
                {},
            )


def parse_page_params(request: Request) -> tuple[int | None, int | None]:
    """Read optional integer offset/limit query parameters."""
    values: list[int | None] = []
    for name in ("offset", "limit"):
        raw = request.query_params.get(name)
        if raw is None:
            values.append(None)
            continue
        try:
            values.append(int(raw))
        except ValueError as exc:
            raise ServiceError(
                "INVALID_PAGINATION", f"{name} must be an integer", 400, {}
            ) from exc
    return values[0], values[1]


def get_task_manager() -> TaskManager:
    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)
    return state.task_manager


async def authenticate(
    request: Request,
    action: str,
    task_id: str | None = None,
) -> tuple[str, dict[str, Any], str | None]:
    """
    Verify the ``{"token": <JWS>, "deposit_token": <JWS>}`` body of a mutation request.

    Returns (caller account id, payload, deposit token or None). When
    ``task_id`` comes from the URL the payload must name the same task.
    The deposit token is passed on unverified; the payment service checks it.
    """
    data = parse_json_body(await request.body())
    token = extract_token(data, "token")
    deposit_token = extract_optional_token(data, "deposit_token")

    state = get_app_state()
    if state.token_validator is None:
        msg = "TokenValidator not initialized"
        raise RuntimeError(msg)
    caller_id, payload = await state.token_validator.validate_jws_token(token, action)

    if task_id is not None:
        require_fields(payload, ("task_id",))
        if payload["task_id"] != task_id:
            raise ServiceError(
                "INVALID_PAYLOAD",
                "task_id in payload does not match URL path",
                400,
                {},
            )
    return caller_id, payload, deposit_token
