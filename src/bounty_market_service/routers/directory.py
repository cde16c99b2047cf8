"""Reverse-index lookups: tasks by company, invitations by user."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from bounty_market_service.routers.validation import get_task_manager, parse_page_params

router = APIRouter()


@router.get("/companies/{company_id}/tasks")
async def list_company_tasks(company_id: str, request: Request) -> dict[str, Any]:
    """Tasks posted by a company, oldest first."""
    offset, limit = parse_page_params(request)
    return await get_task_manager().list_tasks_by_company(company_id, offset=offset, limit=limit)


@router.get("/users/{user_id}/invitations")
async def list_invitations(user_id: str, request: Request) -> dict[str, Any]:
    """Invite-only tasks the user was invited to."""
    offset, limit = parse_page_params(request)
    return await get_task_manager().list_invited_tasks(user_id, offset=offset, limit=limit)
