"""Submission endpoints."""

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
from bounty_market_service.schemas import SubmissionResponse

router = APIRouter()


@router.post("/tasks/{task_id}/submissions", status_code=201)
async def submit_work(task_id: str, request: Request) -> JSONResponse:
    """Submit work for a task."""
    caller_id, payload, deposit_token = await authenticate(request, "submit_work", task_id)
    require_fields(payload, ("submission",))

    result = await get_task_manager().submit_work(
        caller_id, task_id, payload["submission"], deposit_token
    )
    return JSONResponse(status_code=201, content=result)


@router.get("/tasks/{task_id}/submissions")
async def list_submissions(task_id: str, request: Request) -> dict[str, Any]:
    offset, limit = parse_page_params(request)
    return await get_task_manager().list_submissions(task_id, offset=offset, limit=limit)


@router.get("/tasks/{task_id}/submissions/{account_id}", response_model=SubmissionResponse)
async def get_submission(task_id: str, account_id: str) -> dict[str, Any]:
    return await get_task_manager().get_submission(task_id, account_id)
