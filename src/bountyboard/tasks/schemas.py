"""Request/response schemas for task endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from bountyboard.db.models import TaskPriority, TaskStatus


class CreateTaskRequest(BaseModel):
    title: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=1, max_length=5000)
    bounty_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    deadline: datetime
    priority: TaskPriority = TaskPriority.MEDIUM
    tags: list[str] = Field(default_factory=list, max_length=20)


class UpdateTaskRequest(BaseModel):
    title: str | None = Field(None, min_length=3, max_length=100)
    description: str | None = Field(None, min_length=1, max_length=5000)
    bounty_amount: Decimal | None = Field(None, gt=0, max_digits=12, decimal_places=2)
    deadline: datetime | None = None
    priority: TaskPriority | None = None
    tags: list[str] | None = Field(None, max_length=20)


class AssignTaskRequest(BaseModel):
    """Empty body claims the task for the caller."""

    user_id: int | None = Field(None, ge=1)


class UpdateStatusRequest(BaseModel):
    status: TaskStatus


class UserRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str
    status: str
    priority: str
    bounty_amount: Decimal
    deadline: datetime
    tags: list[str]
    team_id: int | None = None
    created_by: int
    assigned_to: int | None = None
    assigned_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    creator: UserRef | None = None
    assignee: UserRef | None = None


class KanbanBoardResponse(BaseModel):
    available: list[TaskResponse]
    in_progress: list[TaskResponse]
    review: list[TaskResponse]
    completed: list[TaskResponse]


class TaskStatusCounts(BaseModel):
    available: int
    in_progress: int
    review: int
    completed: int


class TaskStatisticsResponse(BaseModel):
    total: int
    by_status: TaskStatusCounts
    average_bounty: str
    total_available_bounty: str
