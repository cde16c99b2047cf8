"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from bounty_market_service.routers.validation import (
    authenticate,
    get_task_manager,
    parse_page_params,
    require_fields,
)
from bounty_market_service.schemas import TaskResponse

router = APIRouter()


# ---------------------------------------------------------------------------
# POST /tasks: create task (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Post a task and escrow its reward."""
    caller_id, payload, deposit_token = await authenticate(request, "create_task")
    require_fields(payload, ("task_id", "details", "deadline", "reward"))

    result = await get_task_manager().create_task(
        caller_id,
        payload["task_id"],
        payload["details"],
        payload["deadline"],
        payload["reward"],
        deposit_token,
    )
    return JSONResponse(status_code=201, content=result)


@router.get("/tasks")
async def list_tasks(request: Request) -> dict[str, Any]:
    """List every task in creation order."""
    offset, limit = parse_page_params(request)
    return await get_task_manager().list_tasks(offset=offset, limit=limit)


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str) -> dict[str, Any]:
    """Task as stored; time-based transitions show up after the next touch."""
    return await get_task_manager().get_task(task_id)


@router.post("/tasks/{task_id}/extend-deadline")
async def extend_deadline(task_id: str, request: Request) -> JSONResponse:
    caller_id, payload, deposit_token = await authenticate(request, "extend_deadline", task_id)
    require_fields(payload, ("new_deadline",))

    result = await get_task_manager().extend_deadline(
        caller_id, task_id, payload["new_deadline"], deposit_token
    )
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/accept")
async def accept_invite(task_id: str, request: Request) -> JSONResponse:
    """Accept an invitation and take the task."""
    caller_id, _payload, deposit_token = await authenticate(request, "accept_invite", task_id)
    result = await get_task_manager().accept_invite(caller_id, task_id, deposit_token)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/ping")
async def ping_task(task_id: str, request: Request) -> JSONResponse:
    """Materialize any overdue or expired transition."""
    caller_id, _payload, deposit_token = await authenticate(request, "ping_task", task_id)
    result = await get_task_manager().ping_task(caller_id, task_id, deposit_token)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/refund")
async def claim_refund(task_id: str, request: Request) -> JSONResponse:
    """Reclaim the escrow of an expired or overdue task."""
    caller_id, _payload, deposit_token = await authenticate(request, "claim_refund", task_id)
    result = await get_task_manager().claim_refund(caller_id, task_id, deposit_token)
    return JSONResponse(status_code=200, content=result)
