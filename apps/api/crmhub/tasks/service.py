from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from crmhub.enums import ListType, TaskStatus
from crmhub.platform.persistence import as_utc, utcnow
from crmhub.platform.security.actor import ActorUser, to_auth_context
from crmhub.platform.security.repository import BaseRepository
from crmhub.services.common import (
    bind,
    check_version,
    commit_or_conflict,
    flush_or_conflict,
    next_sequence_number,
    not_found,
    publish,
    security_errors_as_http,
    unprocessable,
)
from crmhub.tasks.models import Task, TaskAssignment, TaskBoard, TaskComment, TaskDependency, TaskList, TaskTimeEntry
from crmhub.tasks.repositories import board_repository, task_list_repository, task_repository
from crmhub.tasks.schemas import (
    AssignmentCreate,
    AssignmentRead,
    BoardCreate,
    BoardRead,
    BoardSummary,
    BoardUpdate,
    CommentCreate,
    CommentRead,
    CommentUpdate,
    DependencyCreate,
    DependencyRead,
    ListCreate,
    ListRead,
    ListSummary,
    ListUpdate,
    MoveTaskRequest,
    TaskCreate,
    TaskDetail,
    TaskUpdate,
    TimeEntryCreate,
    TimeEntryRead,
    TimerStart,
)


logger = logging.getLogger("crmhub.tasks")

DEFAULT_LISTS = (
    ("To Do", ListType.TODO, False),
    ("In Progress", ListType.IN_PROGRESS, False),
    ("Done", ListType.DONE, True),
)
CLOSED_STATUSES = {TaskStatus.COMPLETED, TaskStatus.CANCELLED}
MINUTES_PER_HOUR = Decimal(60)


class TaskService:
    """Boards, lists and tasks with assignments, dependencies, comments and time tracking."""

    # boards

    def create_board(self, session: Session, actor_user: ActorUser, dto: BoardCreate) -> BoardRead:
        bind(session, actor_user)
        values = dto.model_dump(exclude={"default_lists", "metadata"})
        values["owner_id"] = values["owner_id"] or actor_user.actor_uuid
        values["shared_with"] = [str(value) for value in dto.shared_with]
        self._authorize(session, actor_user, board_repository, values, None, "create")

        board = TaskBoard(
            **values,
            board_number=next_sequence_number(session, TaskBoard, TaskBoard.board_number, "BRD"),
            board_metadata=dto.metadata,
        )
        session.add(board)
        flush_or_conflict(session, "board number already in use")
        if dto.default_lists:
            for position, (name, list_type, auto_close) in enumerate(DEFAULT_LISTS):
                session.add(
                    TaskList(board_id=board.id, name=name, position=position, list_type=list_type, auto_close=auto_close)
                )
        publish("tasks.board.created", actor_user, {"id": str(board.id), "owner_id": str(board.owner_id)})
        commit_or_conflict(session, "board number already in use")
        session.refresh(board)
        logger.info("tasks.board_created", extra={"board_id": str(board.id)})
        return self._read(BoardRead, board_repository, board, actor_user)

    def get_board(self, session: Session, actor_user: ActorUser, board_id: uuid.UUID) -> BoardRead:
        board = self._visible(session, actor_user, board_repository, board_id, "board")
        return self._read(BoardRead, board_repository, board, actor_user)

    def list_boards(
        self,
        session: Session,
        actor_user: ActorUser,
        *,
        include_archived: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[BoardRead]:
        stmt = select(TaskBoard).where(TaskBoard.deleted_at.is_(None))
        if not include_archived:
            stmt = stmt.where(TaskBoard.is_archived.is_(False))
        stmt = board_repository.apply_scope_query(stmt, to_auth_context(actor_user))
        rows = session.scalars(stmt.order_by(TaskBoard.created_at.desc(), TaskBoard.id).offset(offset).limit(limit)).all()
        return [self._read(BoardRead, board_repository, row, actor_user) for row in rows]

    def update_board(self, session: Session, actor_user: ActorUser, board_id: uuid.UUID, dto: BoardUpdate) -> BoardRead:
        bind(session, actor_user)
        board = self._visible(session, actor_user, board_repository, board_id, "board")
        changes = dto.model_dump(exclude_unset=True)
        expected = changes.pop("version", None)
        self._authorize(session, actor_user, board_repository, changes, board, "update")
        check_version(board, expected, "task_boards")

        if "metadata" in changes:
            changes["board_metadata"] = changes.pop("metadata") or {}
        if changes.get("shared_with") is not None:
            changes["shared_with"] = [str(value) for value in changes["shared_with"]]
        for key, value in changes.items():
            if value is not None or key == "description":
                setattr(board, key, value)
        publish("tasks.board.updated", actor_user, {"id": str(board.id), "fields": sorted(changes)})
        commit_or_conflict(session, "board could not be updated")
        session.refresh(board)
        return self._read(BoardRead, board_repository, board, actor_user)

    def delete_board(self, session: Session, actor_user: ActorUser, board_id: uuid.UUID) -> None:
        bind(session, actor_user)
        board = self._visible(session, actor_user, board_repository, board_id, "board")
        self._authorize(session, actor_user, board_repository, {}, board, "delete")
        for task_list in self._lists_of(session, board.id):
            self._soft_delete_list(session, actor_user, task_list)
        board.soft_delete(actor_user.actor_uuid)
        publish("tasks.board.deleted", actor_user, {"id": str(board.id)})
        commit_or_conflict(session, "board could not be deleted")
        logger.info("tasks.board_deleted", extra={"board_id": str(board_id)})

    def board_summary(self, session: Session, actor_user: ActorUser, board_id: uuid.UUID) -> BoardSummary:
        board = self._visible(session, actor_user, board_repository, board_id, "board")
        lists = self._lists_of(session, board.id)
        tasks = session.scalars(
            select(Task).where(Task.list_id.in_([task_list.id for task_list in lists]), Task.deleted_at.is_(None))
        ).all()

        now = utcnow()
        by_status: dict[str, int] = {}
        counts: dict[uuid.UUID, int] = {}
        overdue = 0
        estimated = Decimal("0")
        actual = Decimal("0")
        for task in tasks:
            by_status[task.status.value] = by_status.get(task.status.value, 0) + 1
            counts[task.list_id] = counts.get(task.list_id, 0) + 1
            due = as_utc(task.due_date)
            if due is not None and due < now and task.status not in CLOSED_STATUSES:
                overdue += 1
            estimated += task.estimated_hours or 0
            actual += task.actual_hours or 0

        return BoardSummary(
            board_id=board.id,
            total_tasks=len(tasks),
            by_status=by_status,
            overdue=overdue,
            estimated_hours=estimated,
            actual_hours=actual,
            lists=[
                ListSummary(
                    list_id=task_list.id,
                    name=task_list.name,
                    task_count=counts.get(task_list.id, 0),
                    wip_limit=task_list.wip_limit,
                    over_limit=task_list.wip_limit is not None and counts.get(task_list.id, 0) > task_list.wip_limit,
                )
                for task_list in lists
            ],
        )

    # lists

    def create_list(self, session: Session, actor_user: ActorUser, board_id: uuid.UUID, dto: ListCreate) -> ListRead:
        bind(session, actor_user)
        board = self._visible(session, actor_user, board_repository, board_id, "board")
        values = dto.model_dump(exclude={"metadata"})
        self._authorize(session, actor_user, task_list_repository, {**values, "board_id": board.id}, None, "create")

        siblings = self._lists_of(session, board.id)
        position = self._insert_position(siblings, values.pop("position"))
        task_list = TaskList(**values, board_id=board.id, position=position, list_metadata=dto.metadata)
        session.add(task_list)
        flush_or_conflict(session, "list could not be created")
        publish("tasks.list.created", actor_user, {"id": str(task_list.id), "board_id": str(board.id)})
        commit_or_conflict(session, "list could not be created")
        session.refresh(task_list)
        return self._read(ListRead, task_list_repository, task_list, actor_user)

    def list_lists(self, session: Session, actor_user: ActorUser, board_id: uuid.UUID) -> list[ListRead]:
        board = self._visible(session, actor_user, board_repository, board_id, "board")
        return [self._read(ListRead, task_list_repository, row, actor_user) for row in self._lists_of(session, board.id)]

    def update_list(self, session: Session, actor_user: ActorUser, list_id: uuid.UUID, dto: ListUpdate) -> ListRead:
        bind(session, actor_user)
        task_list = self._visible(session, actor_user, task_list_repository, list_id, "task list")
        changes = dto.model_dump(exclude_unset=True)
        expected = changes.pop("version", None)
        self._authorize(session, actor_user, task_list_repository, changes, task_list, "update")
        check_version(task_list, expected, "task_lists")

        if "metadata" in changes:
            changes["list_metadata"] = changes.pop("metadata") or {}
        position = changes.pop("position", None)
        if position is not None and position != task_list.position:
            others = [row for row in self._lists_of(session, task_list.board_id) if row.id != task_list.id]
            task_list.position = self._insert_position(others, position)
        for key, value in changes.items():
            if value is not None or key in {"description", "wip_limit"}:
                setattr(task_list, key, value)
        if task_list.wip_limit is not None and self._task_count(session, task_list.id) > task_list.wip_limit:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="list already holds more tasks than wip_limit")
        publish("tasks.list.updated", actor_user, {"id": str(task_list.id), "fields": sorted(changes)})
        commit_or_conflict(session, "list could not be updated")
        session.refresh(task_list)
        return self._read(ListRead, task_list_repository, task_list, actor_user)

    def delete_list(self, session: Session, actor_user: ActorUser, list_id: uuid.UUID) -> None:
        bind(session, actor_user)
        task_list = self._visible(session, actor_user, task_list_repository, list_id, "task list")
        self._authorize(session, actor_user, task_list_repository, {}, task_list, "delete")
        self._soft_delete_list(session, actor_user, task_list)
        publish("tasks.list.deleted", actor_user, {"id": str(task_list.id)})
        commit_or_conflict(session, "list could not be deleted")

    # tasks

    def create_task(self, session: Session, actor_user: ActorUser, dto: TaskCreate) -> TaskDetail:
        bind(session, actor_user)
        task_list = self._visible(session, actor_user, task_list_repository, dto.list_id, "task list")
        values = dto.model_dump(exclude={"metadata"})
        self._authorize(session, actor_user, task_repository, values, None, "create")
        self._check_wip_limit(session, task_list)

        siblings = self._tasks_of(session, task_list.id)
        values["position"] = self._insert_position(siblings, values["position"])
        task = Task(
            **values,
            task_number=next_sequence_number(session, Task, Task.task_number, "TSK"),
            task_metadata=dto.metadata,
        )
        if task_list.auto_close:
            self._close(task)
        session.add(task)
        flush_or_conflict(session, "task number already in use")
        publish("tasks.task.created", actor_user, {"id": str(task.id), "list_id": str(task_list.id)})
        commit_or_conflict(session, "task number already in use")
        session.refresh(task)
        logger.info("tasks.task_created", extra={"task_id": str(task.id)})
        return self._read(TaskDetail, task_repository, task, actor_user)

    def get_task(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID) -> TaskDetail:
        task = self._visible(session, actor_user, task_repository, task_id, "task")
        return self._read(TaskDetail, task_repository, task, actor_user)

    def list_tasks(
        self,
        session: Session,
        actor_user: ActorUser,
        *,
        list_id: uuid.UUID | None = None,
        board_id: uuid.UUID | None = None,
        status_value: TaskStatus | None = None,
        assignee_id: uuid.UUID | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[TaskDetail]:
        stmt = select(Task).where(Task.deleted_at.is_(None))
        if list_id is not None:
            stmt = stmt.where(Task.list_id == list_id)
        if board_id is not None:
            stmt = stmt.where(
                Task.list_id.in_(select(TaskList.id).where(TaskList.board_id == board_id, TaskList.deleted_at.is_(None)))
            )
        if status_value is not None:
            stmt = stmt.where(Task.status == status_value)
        if assignee_id is not None:
            stmt = stmt.where(
                Task.id.in_(
                    select(TaskAssignment.task_id).where(
                        TaskAssignment.assignee_id == assignee_id,
                        TaskAssignment.deleted_at.is_(None),
                    )
                )
            )
        stmt = task_repository.apply_scope_query(stmt, to_auth_context(actor_user))
        rows = session.scalars(stmt.order_by(Task.list_id, Task.position, Task.id).offset(offset).limit(limit)).all()
        return [self._read(TaskDetail, task_repository, row, actor_user) for row in rows]

    def update_task(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID, dto: TaskUpdate) -> TaskDetail:
        bind(session, actor_user)
        task = self._visible(session, actor_user, task_repository, task_id, "task")
        changes = dto.model_dump(exclude_unset=True)
        expected = changes.pop("version", None)
        self._authorize(session, actor_user, task_repository, changes, task, "update")
        check_version(task, expected, "tasks")
        if task.is_locked and changes.get("is_locked") is not False:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="task is locked")

        if "metadata" in changes:
            changes["task_metadata"] = changes.pop("metadata") or {}
        nullable = {"description", "start_date", "due_date", "reminder_date", "priority", "estimated_hours"}
        for key, value in changes.items():
            if value is not None or key in nullable:
                setattr(task, key, value)
        start, due = as_utc(task.start_date), as_utc(task.due_date)
        if start is not None and due is not None and start > due:
            session.rollback()
            raise unprocessable("start_date must not be after due_date")
        if changes.get("status") == TaskStatus.COMPLETED:
            self._close(task)
        publish("tasks.task.updated", actor_user, {"id": str(task.id), "fields": sorted(changes)})
        commit_or_conflict(session, "task could not be updated")
        session.refresh(task)
        return self._read(TaskDetail, task_repository, task, actor_user)

    def delete_task(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID) -> None:
        bind(session, actor_user)
        task = self._visible(session, actor_user, task_repository, task_id, "task")
        self._authorize(session, actor_user, task_repository, {}, task, "delete")
        self._soft_delete_task(session, actor_user, task)
        for sibling in self._tasks_of(session, task.list_id):
            if sibling.id != task.id and sibling.position > task.position:
                sibling.position -= 1
        publish("tasks.task.deleted", actor_user, {"id": str(task.id)})
        commit_or_conflict(session, "task could not be deleted")

    def move_task(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID, dto: MoveTaskRequest) -> TaskDetail:
        """Move a task to a list of the same board at ``position`` (appended when omitted).

        Tasks after the vacated slot shift up and tasks at or after the target
        slot shift down. Entering a list over its WIP limit is a conflict;
        entering an ``auto_close`` list completes the task.
        """

        bind(session, actor_user)
        task = self._visible(session, actor_user, task_repository, task_id, "task")
        self._authorize(session, actor_user, task_repository, {"list_id": dto.list_id}, task, "update")
        check_version(task, dto.version, "tasks")
        if task.is_locked:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="task is locked")

        source = session.get(TaskList, task.list_id)
        target = self._visible(session, actor_user, task_list_repository, dto.list_id, "task list")
        if source is None or target.board_id != source.board_id:
            raise unprocessable("tasks can only move between lists of the same board")
        if target.id != source.id:
            self._check_wip_limit(session, target)

        for sibling in self._tasks_of(session, source.id):
            if sibling.id != task.id and sibling.position > task.position:
                sibling.position -= 1
        others = [row for row in self._tasks_of(session, target.id) if row.id != task.id]
        task.list_id = target.id
        task.position = self._insert_position(others, dto.position)
        if target.auto_close:
            self._close(task)
        publish(
            "tasks.task.moved",
            actor_user,
            {"id": str(task.id), "from_list_id": str(source.id), "to_list_id": str(target.id), "position": task.position},
        )
        commit_or_conflict(session, "task could not be moved")
        session.refresh(task)
        return self._read(TaskDetail, task_repository, task, actor_user)

    # assignments

    def assign_task(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID, dto: AssignmentCreate) -> AssignmentRead:
        bind(session, actor_user)
        task = self._visible(session, actor_user, task_repository, task_id, "task")
        self._authorize(session, actor_user, task_repository, {}, task, "update")
        assignment = TaskAssignment(task_id=task.id, **dto.model_dump())
        session.add(assignment)
        flush_or_conflict(session, "user already holds this role on the task")
        publish(
            "tasks.task.assigned",
            actor_user,
            {"id": str(task.id), "assignee_id": str(dto.assignee_id), "role": dto.role.value},
        )
        commit_or_conflict(session, "user already holds this role on the task")
        session.refresh(assignment)
        return AssignmentRead.model_validate(assignment)

    def list_assignments(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID) -> list[AssignmentRead]:
        task = self._visible(session, actor_user, task_repository, task_id, "task")
        rows = session.scalars(
            select(TaskAssignment)
            .where(TaskAssignment.task_id == task.id, TaskAssignment.deleted_at.is_(None))
            .order_by(TaskAssignment.assigned_at, TaskAssignment.id)
        ).all()
        return [AssignmentRead.model_validate(row) for row in rows]

    def unassign_task(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID, assignment_id: uuid.UUID) -> None:
        bind(session, actor_user)
        task = self._visible(session, actor_user, task_repository, task_id, "task")
        self._authorize(session, actor_user, task_repository, {}, task, "update")
        assignment = session.scalar(
            select(TaskAssignment).where(
                TaskAssignment.id == assignment_id,
                TaskAssignment.task_id == task.id,
                TaskAssignment.deleted_at.is_(None),
            )
        )
        if assignment is None:
            raise not_found("assignment")
        assignment.soft_delete(actor_user.actor_uuid)
        publish("tasks.task.unassigned", actor_user, {"id": str(task.id), "assignee_id": str(assignment.assignee_id)})
        commit_or_conflict(session, "assignment could not be removed")

    # dependencies

    def add_dependency(
        self,
        session: Session,
        actor_user: ActorUser,
        task_id: uuid.UUID,
        dto: DependencyCreate,
    ) -> DependencyRead:
        """Make ``task_id`` depend on ``dto.predecessor_id``; refuses self links, duplicates and cycles."""

        bind(session, actor_user)
        successor = self._visible(session, actor_user, task_repository, task_id, "task")
        self._authorize(session, actor_user, task_repository, {}, successor, "update")
        if dto.predecessor_id == successor.id:
            raise unprocessable("a task cannot depend on itself")
        predecessor = self._visible(session, actor_user, task_repository, dto.predecessor_id, "task")
        if self._depends_on(session, predecessor.id, successor.id):
            raise unprocessable("dependency would create a cycle")

        dependency = TaskDependency(successor_id=successor.id, **dto.model_dump())
        session.add(dependency)
        flush_or_conflict(session, "dependency already exists")
        publish(
            "tasks.dependency.added",
            actor_user,
            {"predecessor_id": str(predecessor.id), "successor_id": str(successor.id)},
        )
        commit_or_conflict(session, "dependency already exists")
        session.refresh(dependency)
        return DependencyRead.model_validate(dependency)

    def list_dependencies(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID) -> list[DependencyRead]:
        task = self._visible(session, actor_user, task_repository, task_id, "task")
        rows = session.scalars(
            select(TaskDependency)
            .where(
                (TaskDependency.successor_id == task.id) | (TaskDependency.predecessor_id == task.id),
                TaskDependency.deleted_at.is_(None),
            )
            .order_by(TaskDependency.created_at, TaskDependency.id)
        ).all()
        return [DependencyRead.model_validate(row) for row in rows]

    def remove_dependency(
        self,
        session: Session,
        actor_user: ActorUser,
        task_id: uuid.UUID,
        dependency_id: uuid.UUID,
    ) -> None:
        bind(session, actor_user)
        task = self._visible(session, actor_user, task_repository, task_id, "task")
        self._authorize(session, actor_user, task_repository, {}, task, "update")
        dependency = session.scalar(
            select(TaskDependency).where(
                TaskDependency.id == dependency_id,
                TaskDependency.successor_id == task.id,
                TaskDependency.deleted_at.is_(None),
            )
        )
        if dependency is None:
            raise not_found("dependency")
        dependency.soft_delete(actor_user.actor_uuid)
        publish("tasks.dependency.removed", actor_user, {"id": str(dependency.id)})
        commit_or_conflict(session, "dependency could not be removed")

    # comments

    def add_comment(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID, dto: CommentCreate) -> CommentRead:
        bind(session, actor_user)
        task = self._visible(session, actor_user, task_repository, task_id, "task")
        if dto.parent_id is not None:
            parent = session.scalar(
                select(TaskComment).where(
                    TaskComment.id == dto.parent_id,
                    TaskComment.task_id == task.id,
                    TaskComment.deleted_at.is_(None),
                )
            )
            if parent is None:
                raise unprocessable("parent_id does not reference a live comment on this task")
        comment = TaskComment(
            task_id=task.id,
            parent_id=dto.parent_id,
            comment_text=dto.comment_text,
            mentions=[str(value) for value in dto.mentions],
        )
        session.add(comment)
        flush_or_conflict(session, "comment could not be added")
        publish(
            "tasks.comment.added",
            actor_user,
            {"id": str(comment.id), "task_id": str(task.id), "mentions": comment.mentions},
        )
        commit_or_conflict(session, "comment could not be added")
        session.refresh(comment)
        return CommentRead.model_validate(comment)

    def list_comments(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID) -> list[CommentRead]:
        task = self._visible(session, actor_user, task_repository, task_id, "task")
        rows = session.scalars(
            select(TaskComment)
            .where(TaskComment.task_id == task.id, TaskComment.deleted_at.is_(None))
            .order_by(TaskComment.created_at, TaskComment.id)
        ).all()
        return [CommentRead.model_validate(row) for row in rows]

    def edit_comment(
        self,
        session: Session,
        actor_user: ActorUser,
        task_id: uuid.UUID,
        comment_id: uuid.UUID,
        dto: CommentUpdate,
    ) -> CommentRead:
        bind(session, actor_user)
        task = self._visible(session, actor_user, task_repository, task_id, "task")
        comment = session.scalar(
            select(TaskComment).where(
                TaskComment.id == comment_id,
                TaskComment.task_id == task.id,
                TaskComment.deleted_at.is_(None),
            )
        )
        if comment is None:
            raise not_found("comment")
        if comment.created_by != actor_user.actor_uuid and not actor_user.is_admin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="only the author can edit a comment")
        check_version(comment, dto.version, "task_comments")
        if dto.comment_text is not None and dto.comment_text != comment.comment_text:
            comment.comment_text = dto.comment_text
            comment.is_edited = True
        if dto.is_resolved is not None:
            comment.is_resolved = dto.is_resolved
        commit_or_conflict(session, "comment could not be updated")
        session.refresh(comment)
        return CommentRead.model_validate(comment)

    # time tracking

    def start_timer(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID, dto: TimerStart) -> TimeEntryRead:
        bind(session, actor_user)
        task = self._visible(session, actor_user, task_repository, task_id, "task")
        running = session.scalar(
            select(TaskTimeEntry.id).where(
                TaskTimeEntry.user_id == actor_user.actor_uuid,
                TaskTimeEntry.end_time.is_(None),
                TaskTimeEntry.deleted_at.is_(None),
            )
        )
        if running is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="a timer is already running")
        entry = TaskTimeEntry(task_id=task.id, user_id=actor_user.actor_uuid, start_time=utcnow(), **dto.model_dump())
        session.add(entry)
        commit_or_conflict(session, "timer could not be started")
        session.refresh(entry)
        return TimeEntryRead.model_validate(entry)

    def stop_timer(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID) -> TimeEntryRead:
        bind(session, actor_user)
        task = self._visible(session, actor_user, task_repository, task_id, "task")
        entry = session.scalar(
            select(TaskTimeEntry).where(
                TaskTimeEntry.task_id == task.id,
                TaskTimeEntry.user_id == actor_user.actor_uuid,
                TaskTimeEntry.end_time.is_(None),
                TaskTimeEntry.deleted_at.is_(None),
            )
        )
        if entry is None:
            raise not_found("running timer")
        entry.end_time = max(utcnow(), as_utc(entry.start_time))
        self._refresh_actual_hours(session, task)
        publish(
            "tasks.time.logged",
            actor_user,
            {"task_id": str(task.id), "entry_id": str(entry.id), "duration_minutes": entry.duration_minutes},
        )
        commit_or_conflict(session, "timer could not be stopped")
        session.refresh(entry)
        return TimeEntryRead.model_validate(entry)

    def log_time(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID, dto: TimeEntryCreate) -> TimeEntryRead:
        bind(session, actor_user)
        task = self._visible(session, actor_user, task_repository, task_id, "task")
        entry = TaskTimeEntry(task_id=task.id, user_id=actor_user.actor_uuid, **dto.model_dump())
        session.add(entry)
        self._refresh_actual_hours(session, task)
        publish(
            "tasks.time.logged",
            actor_user,
            {"task_id": str(task.id), "entry_id": str(entry.id), "duration_minutes": entry.duration_minutes},
        )
        commit_or_conflict(session, "time entry could not be recorded")
        session.refresh(entry)
        return TimeEntryRead.model_validate(entry)

    def list_time_entries(self, session: Session, actor_user: ActorUser, task_id: uuid.UUID) -> list[TimeEntryRead]:
        task = self._visible(session, actor_user, task_repository, task_id, "task")
        rows = session.scalars(
            select(TaskTimeEntry)
            .where(TaskTimeEntry.task_id == task.id, TaskTimeEntry.deleted_at.is_(None))
            .order_by(TaskTimeEntry.start_time, TaskTimeEntry.id)
        ).all()
        return [TimeEntryRead.model_validate(row) for row in rows]

    # helpers

    def _visible(
        self,
        session: Session,
        actor_user: ActorUser,
        repository: BaseRepository,
        record_id: uuid.UUID,
        label: str,
    ) -> Any:
        model = repository.model
        stmt = select(model).where(model.id == record_id, model.deleted_at.is_(None))
        record = session.scalar(repository.apply_scope_query(stmt, to_auth_context(actor_user)))
        if record is None:
            raise not_found(label)
        return record

    @staticmethod
    def _authorize(
        session: Session,
        actor_user: ActorUser,
        repository: BaseRepository,
        payload: dict[str, Any],
        record: Any,
        action: str,
    ) -> None:
        with security_errors_as_http():
            repository.validate_write_security(
                payload,
                to_auth_context(actor_user),
                record=record,
                action=action,
                session=session,
            )

    @staticmethod
    def _read(schema: Any, repository: BaseRepository, record: Any, actor_user: ActorUser) -> Any:
        payload = schema.model_validate(record).model_dump()
        return schema.model_validate(repository.apply_read_security(payload, to_auth_context(actor_user)))

    @staticmethod
    def _lists_of(session: Session, board_id: uuid.UUID) -> list[TaskList]:
        return list(
            session.scalars(
                select(TaskList)
                .where(TaskList.board_id == board_id, TaskList.deleted_at.is_(None))
                .order_by(TaskList.position, TaskList.id)
            ).all()
        )

    @staticmethod
    def _tasks_of(session: Session, list_id: uuid.UUID) -> list[Task]:
        return list(
            session.scalars(
                select(Task).where(Task.list_id == list_id, Task.deleted_at.is_(None)).order_by(Task.position, Task.id)
            ).all()
        )

    @staticmethod
    def _task_count(session: Session, list_id: uuid.UUID) -> int:
        return session.scalar(
            select(func.count()).select_from(Task).where(Task.list_id == list_id, Task.deleted_at.is_(None))
        ) or 0

    def _check_wip_limit(self, session: Session, task_list: TaskList) -> None:
        if task_list.wip_limit is not None and self._task_count(session, task_list.id) >= task_list.wip_limit:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="list has reached its wip_limit")

    @staticmethod
    def _insert_position(siblings: list[Any], requested: int | None) -> int:
        """Slot for a new row among ``siblings`` (ordered by position), shifting later rows down."""

        if requested is None or requested >= len(siblings):
            return len(siblings)
        for index, sibling in enumerate(siblings):
            sibling.position = index + 1 if index >= requested else index
        return requested

    @staticmethod
    def _close(task: Task) -> None:
        task.status = TaskStatus.COMPLETED
        task.completion_percentage = 100

    @staticmethod
    def _depends_on(session: Session, task_id: uuid.UUID, candidate: uuid.UUID) -> bool:
        """True when ``task_id`` already (transitively) depends on ``candidate``."""

        seen: set[uuid.UUID] = set()
        frontier = [task_id]
        while frontier:
            current = frontier.pop()
            if current == candidate:
                return True
            if current in seen:
                continue
            seen.add(current)
            frontier.extend(
                session.scalars(
                    select(TaskDependency.predecessor_id).where(
                        TaskDependency.successor_id == current,
                        TaskDependency.deleted_at.is_(None),
                    )
                ).all()
            )
        return False

    @staticmethod
    def _refresh_actual_hours(session: Session, task: Task) -> None:
        flush_or_conflict(session, "time entry could not be recorded")
        minutes = session.scalar(
            select(func.coalesce(func.sum(TaskTimeEntry.duration_minutes), 0)).where(
                TaskTimeEntry.task_id == task.id,
                TaskTimeEntry.deleted_at.is_(None),
            )
        )
        task.actual_hours = (Decimal(minutes or 0) / MINUTES_PER_HOUR).quantize(Decimal("0.01"))

    def _soft_delete_list(self, session: Session, actor_user: ActorUser, task_list: TaskList) -> None:
        for task in self._tasks_of(session, task_list.id):
            self._soft_delete_task(session, actor_user, task)
        task_list.soft_delete(actor_user.actor_uuid)

    @staticmethod
    def _soft_delete_task(session: Session, actor_user: ActorUser, task: Task) -> None:
        children: list[Any] = []
        for model in (TaskAssignment, TaskComment, TaskTimeEntry):
            children.extend(
                session.scalars(select(model).where(model.task_id == task.id, model.deleted_at.is_(None))).all()
            )
        children.extend(
            session.scalars(
                select(TaskDependency).where(
                    (TaskDependency.successor_id == task.id) | (TaskDependency.predecessor_id == task.id),
                    TaskDependency.deleted_at.is_(None),
                )
            ).all()
        )
        for child in children:
            child.soft_delete(actor_user.actor_uuid)
        task.soft_delete(actor_user.actor_uuid)


task_service = TaskService()
