"""Pydantic response models for the API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_tasks: int
    tasks_by_status: dict[str, int]


class ErrorResponse(BaseModel):
    """Standard error response model."""

    model_config = ConfigDict(extra="forbid")
    error: str
    message: str
    details: dict[str, object]


class TaskResponse(BaseModel):
    """Full task detail response model."""

    model_config = ConfigDict(extra="forbid")
    task_id: str
    company_id: str
    title: str
    description: str
    required_skills: str
    task_type: Literal["invite_only", "for_everyone"]
    invited_accounts: list[str] | None
    valid_till: int | None
    reference: str
    reference_hash: str
    deadline: int
    person_assigned: str | None
    status: Literal["open", "pending", "completed", "expired", "overdue", "payed"]
    token_kind: str
    reward: int
    created_at: int
    submission_count: int
    deadline_at: str
    valid_till_at: str | None


class SubmissionBody(BaseModel):
    model_config = ConfigDict(extra="forbid")
    submission_reference: str
    submission_reference_hash: str


class SubmissionResponse(BaseModel):
    """One entry of a task's submission ledger."""

    model_config = ConfigDict(extra="forbid")
    task_id: str
    account_id: str
    submission: SubmissionBody


class IndexDriftResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    consistent: bool
    missing: list[list[str]]
    dangling: list[list[str]]


class IndexReportResponse(BaseModel):
    """Response model for GET /health/indices."""

    model_config = ConfigDict(extra="forbid")
    consistent: bool
    company_tasks: IndexDriftResponse
    invited_tasks: IndexDriftResponse
