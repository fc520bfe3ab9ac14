from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from crmhub.enums import AccessLevel, AssignmentRole, BoardType, DependencyType, ListType, TaskPriority, TaskStatus, TaskType


def _metadata(attribute: str) -> Any:
    return Field(default_factory=dict, validation_alias=AliasChoices(attribute, "metadata"))


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    version: int
    created_at: datetime
    updated_at: datetime
    created_by: UUID | None = None
    updated_by: UUID | None = None


class VersionedRequest(BaseModel):
    version: int


# boards


class BoardCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    workspace_id: UUID | None = None
    owner_id: UUID | None = None
    board_type: BoardType = BoardType.KANBAN
    settings: dict[str, Any] = Field(default_factory=dict)
    is_template: bool = False
    is_public: bool = False
    access_level: AccessLevel = AccessLevel.PRIVATE
    shared_with: list[UUID] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    default_lists: bool = True


class BoardUpdate(VersionedRequest):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    board_type: BoardType | None = None
    settings: dict[str, Any] | None = None
    is_template: bool | None = None
    is_archived: bool | None = None
    is_public: bool | None = None
    access_level: AccessLevel | None = None
    shared_with: list[UUID] | None = None
    metadata: dict[str, Any] | None = None


class BoardRead(TaskRead):
    board_number: str
    name: str
    description: str | None = None
    workspace_id: UUID | None = None
    owner_id: UUID
    board_type: BoardType
    settings: dict[str, Any] = Field(default_factory=dict)
    is_template: bool
    is_archived: bool
    is_public: bool
    access_level: AccessLevel
    shared_with: list[UUID] = Field(default_factory=list)
    metadata: dict[str, Any] = _metadata("board_metadata")


# lists


class ListCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    position: int | None = Field(default=None, ge=0)
    list_type: ListType = ListType.TODO
    wip_limit: int | None = Field(default=None, gt=0)
    auto_close: bool = False
    settings: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ListUpdate(VersionedRequest):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    position: int | None = Field(default=None, ge=0)
    list_type: ListType | None = None
    wip_limit: int | None = Field(default=None, gt=0)
    auto_close: bool | None = None
    is_archived: bool | None = None
    settings: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


class ListRead(TaskRead):
    board_id: UUID
    name: str
    description: str | None = None
    position: int
    list_type: ListType
    wip_limit: int | None = None
    auto_close: bool
    is_archived: bool
    settings: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = _metadata("list_metadata")


# tasks


class _TaskDates(BaseModel):
    @model_validator(mode="after")
    def _start_before_due(self) -> "_TaskDates":
        start = getattr(self, "start_date", None)
        due = getattr(self, "due_date", None)
        if start is not None and due is not None and start > due:
            raise ValueError("start_date must not be after due_date")
        return self


class TaskCreate(_TaskDates):
    list_id: UUID
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    position: int | None = Field(default=None, ge=0)
    task_type: TaskType = TaskType.OTHER
    start_date: datetime | None = None
    due_date: datetime | None = None
    reminder_date: datetime | None = None
    priority: TaskPriority | None = None
    status: TaskStatus = TaskStatus.BACKLOG
    estimated_hours: Decimal | None = Field(default=None, ge=0)
    completion_percentage: int = Field(default=0, ge=0, le=100)
    checklists: list[dict[str, Any]] = Field(default_factory=list)
    links: list[dict[str, Any]] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class TaskUpdate(_TaskDates, VersionedRequest):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    task_type: TaskType | None = None
    start_date: datetime | None = None
    due_date: datetime | None = None
    reminder_date: datetime | None = None
    priority: TaskPriority | None = None
    status: TaskStatus | None = None
    estimated_hours: Decimal | None = Field(default=None, ge=0)
    completion_percentage: int | None = Field(default=None, ge=0, le=100)
    is_archived: bool | None = None
    is_locked: bool | None = None
    checklists: list[dict[str, Any]] | None = None
    links: list[dict[str, Any]] | None = None
    tags: list[str] | None = None
    metadata: dict[str, Any] | None = None


class TaskDetail(TaskRead):
    task_number: str
    list_id: UUID
    title: str
    description: str | None = None
    position: int
    task_type: TaskType
    start_date: datetime | None = None
    due_date: datetime | None = None
    reminder_date: datetime | None = None
    priority: TaskPriority | None = None
    status: TaskStatus
    estimated_hours: Decimal | None = None
    actual_hours: Decimal | None = None
    completion_percentage: int
    is_archived: bool
    is_locked: bool
    checklists: list[dict[str, Any]] = Field(default_factory=list)
    links: list[dict[str, Any]] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = _metadata("task_metadata")


class MoveTaskRequest(VersionedRequest):
    list_id: UUID
    position: int | None = Field(default=None, ge=0)


# assignments and dependencies


class AssignmentCreate(BaseModel):
    assignee_id: UUID
    role: AssignmentRole = AssignmentRole.ASSIGNEE
    notes: str | None = None
    estimated_hours: Decimal | None = Field(default=None, ge=0)


class AssignmentRead(TaskRead):
    task_id: UUID
    assignee_id: UUID
    role: AssignmentRole
    assigned_at: datetime
    status: str
    notes: str | None = None
    estimated_hours: Decimal | None = None


class DependencyCreate(BaseModel):
    predecessor_id: UUID
    dependency_type: DependencyType = DependencyType.FINISH_TO_START
    lag_time: int = 0
    is_blocking: bool = True
    notes: str | None = None


class DependencyRead(TaskRead):
    predecessor_id: UUID
    successor_id: UUID
    dependency_type: DependencyType
    lag_time: int
    is_blocking: bool
    notes: str | None = None


# comments and time


class CommentCreate(BaseModel):
    comment_text: str = Field(min_length=1)
    parent_id: UUID | None = None
    mentions: list[UUID] = Field(default_factory=list)


class CommentUpdate(VersionedRequest):
    comment_text: str | None = Field(default=None, min_length=1)
    is_resolved: bool | None = None


class CommentRead(TaskRead):
    task_id: UUID
    parent_id: UUID | None = None
    comment_text: str
    mentions: list[UUID] = Field(default_factory=list)
    is_edited: bool
    is_resolved: bool


class TimerStart(BaseModel):
    description: str | None = None
    is_billable: bool = False
    billing_rate: Decimal | None = Field(default=None, ge=0)


class TimeEntryCreate(TimerStart):
    start_time: datetime
    end_time: datetime

    @model_validator(mode="after")
    def _end_after_start(self) -> "TimeEntryCreate":
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self


class TimeEntryRead(TaskRead):
    task_id: UUID
    user_id: UUID
    start_time: datetime
    end_time: datetime | None = None
    duration_minutes: int | None = None
    description: str | None = None
    is_billable: bool
    billing_rate: Decimal | None = None


# summary


class ListSummary(BaseModel):
    list_id: UUID
    name: str
    task_count: int
    wip_limit: int | None = None
    over_limit: bool = False


class BoardSummary(BaseModel):
    board_id: UUID
    total_tasks: int
    by_status: dict[str, int]
    overdue: int
    estimated_hours: Decimal
    actual_hours: Decimal
    lists: list[ListSummary]
