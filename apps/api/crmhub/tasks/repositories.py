"""Row policies for the task tables.

Boards follow the public-or-shared rule; lists inherit visibility from their
board, and tasks are additionally visible (and writable) to their assignees.
Writes on lists and tasks are checked against the owning board.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from crmhub.enums import AccessLevel
from crmhub.platform.persistence import coerce_user_uuid
from crmhub.platform.security.context import AuthContext, is_admin_bypass
from crmhub.platform.security.errors import RowAccessDeniedError
from crmhub.platform.security.fls import validate_fls_write
from crmhub.platform.security.repository import BaseRepository
from crmhub.platform.security.rls import owner_or_role, public_if
from crmhub.tasks.models import Task, TaskAssignment, TaskBoard, TaskList


class TaskBoardRepository(BaseRepository):
    resource = "task_boards"
    model = TaskBoard
    policy = public_if(
        lambda model: model.is_public.is_(True) | (model.access_level == AccessLevel.PUBLIC),
        lambda record: record.is_public or record.access_level == AccessLevel.PUBLIC,
        "owner_id",
        shared_column="shared_with",
    )
    read_only_fields = frozenset({"board_number"})

    def visible_ids(self, ctx: AuthContext) -> Select[Any]:
        return self.apply_scope_query(select(TaskBoard.id).where(TaskBoard.deleted_at.is_(None)), ctx)


class TaskListRepository(BaseRepository):
    resource = "task_lists"
    model = TaskList
    policy = owner_or_role("created_by")

    def apply_scope_query(self, query: Select[Any], ctx: AuthContext) -> Select[Any]:
        if is_admin_bypass(ctx):
            return query
        return query.where(TaskList.board_id.in_(board_repository.visible_ids(ctx)))

    def validate_write_security(
        self,
        payload: dict[str, Any],
        ctx: AuthContext,
        *,
        record: Any = None,
        action: str = "write",
        session: Session | None = None,
    ) -> None:
        board_id = record.board_id if record is not None else payload.get("board_id")
        _check_board_owner(session, board_id, ctx, action)
        validate_fls_write(self.resource, self._normalize_write_payload(payload), ctx)


class TaskRepository(BaseRepository):
    resource = "tasks"
    model = Task
    policy = owner_or_role("created_by")
    read_only_fields = frozenset({"task_number", "actual_hours"})

    def apply_scope_query(self, query: Select[Any], ctx: AuthContext) -> Select[Any]:
        if is_admin_bypass(ctx):
            return query
        visible_lists = select(TaskList.id).where(TaskList.board_id.in_(board_repository.visible_ids(ctx)))
        return query.where(or_(Task.list_id.in_(visible_lists), Task.id.in_(_assigned_task_ids(ctx))))

    def validate_write_security(
        self,
        payload: dict[str, Any],
        ctx: AuthContext,
        *,
        record: Any = None,
        action: str = "write",
        session: Session | None = None,
    ) -> None:
        if record is not None and session is not None and not is_admin_bypass(ctx):
            assigned = session.scalar(_assigned_task_ids(ctx).where(TaskAssignment.task_id == record.id).limit(1))
            if assigned is not None:
                validate_fls_write(self.resource, self._normalize_write_payload(payload), ctx)
                return
        list_id = record.list_id if record is not None else payload.get("list_id")
        task_list = session.get(TaskList, list_id) if session is not None and list_id is not None else None
        _check_board_owner(session, task_list.board_id if task_list is not None else None, ctx, action)
        validate_fls_write(self.resource, self._normalize_write_payload(payload), ctx)


def _assigned_task_ids(ctx: AuthContext) -> Select[Any]:
    actor_ids = {coerce_user_uuid(ctx.user_id)}
    if ctx.profile_id is not None:
        actor_ids.add(uuid.UUID(ctx.profile_id))
    return select(TaskAssignment.task_id).where(
        TaskAssignment.assignee_id.in_(actor_ids),
        TaskAssignment.deleted_at.is_(None),
    )


def _check_board_owner(session: Session | None, board_id: Any, ctx: AuthContext, action: str) -> None:
    board = session.get(TaskBoard, board_id) if session is not None and board_id is not None else None
    if board is None:
        if is_admin_bypass(ctx):
            return
        raise RowAccessDeniedError(resource="task_boards", policy=board_repository.policy.archetype, action=action)
    board_repository.validate_write_security({}, ctx, record=board, action=action, session=session)


board_repository = TaskBoardRepository()
task_list_repository = TaskListRepository()
task_repository = TaskRepository()
