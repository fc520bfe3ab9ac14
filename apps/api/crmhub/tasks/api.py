import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from crmhub.api.deps import get_current_user, http_error_response, require_permission
from crmhub.core.database import get_db
from crmhub.enums import TaskStatus
from crmhub.platform.security.actor import ActorUser
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
    ListUpdate,
    MoveTaskRequest,
    TaskCreate,
    TaskDetail,
    TaskUpdate,
    TimeEntryCreate,
    TimeEntryRead,
    TimerStart,
)
from crmhub.tasks.service import task_service as service


router = APIRouter(prefix="/api/tasks", tags=["tasks"])


# boards


@router.get("/boards", response_model=list[BoardRead])
def list_boards(
    request: Request,
    include_archived: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.read")
        return service.list_boards(db, user, include_archived=include_archived, limit=limit, offset=offset)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_board_list_failed")


@router.post("/boards", response_model=BoardRead, status_code=status.HTTP_201_CREATED)
def create_board(
    request: Request,
    dto: BoardCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.create")
        return service.create_board(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_board_create_failed")


@router.get("/boards/{board_id}", response_model=BoardRead)
def get_board(
    request: Request,
    board_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.read")
        return service.get_board(db, user, board_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_board_get_failed")


@router.patch("/boards/{board_id}", response_model=BoardRead)
def update_board(
    request: Request,
    board_id: uuid.UUID,
    dto: BoardUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.update")
        return service.update_board(db, user, board_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_board_update_failed")


@router.delete("/boards/{board_id}", response_model=None)
def delete_board(
    request: Request,
    board_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.delete")
        service.delete_board(db, user, board_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_board_delete_failed")


@router.get("/boards/{board_id}/summary", response_model=BoardSummary)
def board_summary(
    request: Request,
    board_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.read")
        return service.board_summary(db, user, board_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_board_summary_failed")


# lists


@router.get("/boards/{board_id}/lists", response_model=list[ListRead])
def list_lists(
    request: Request,
    board_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.read")
        return service.list_lists(db, user, board_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_list_list_failed")


@router.post("/boards/{board_id}/lists", response_model=ListRead, status_code=status.HTTP_201_CREATED)
def create_list(
    request: Request,
    board_id: uuid.UUID,
    dto: ListCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.create")
        return service.create_list(db, user, board_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_list_create_failed")


@router.patch("/lists/{list_id}", response_model=ListRead)
def update_list(
    request: Request,
    list_id: uuid.UUID,
    dto: ListUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.update")
        return service.update_list(db, user, list_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_list_update_failed")


@router.delete("/lists/{list_id}", response_model=None)
def delete_list(
    request: Request,
    list_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.delete")
        service.delete_list(db, user, list_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_list_delete_failed")


# tasks


@router.get("/items", response_model=list[TaskDetail])
def list_tasks(
    request: Request,
    list_id: uuid.UUID | None = Query(default=None),
    board_id: uuid.UUID | None = Query(default=None),
    status_value: TaskStatus | None = Query(default=None, alias="status"),
    assignee_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.read")
        return service.list_tasks(
            db,
            user,
            list_id=list_id,
            board_id=board_id,
            status_value=status_value,
            assignee_id=assignee_id,
            limit=limit,
            offset=offset,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_task_list_failed")


@router.post("/items", response_model=TaskDetail, status_code=status.HTTP_201_CREATED)
def create_task(
    request: Request,
    dto: TaskCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.create")
        return service.create_task(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_task_create_failed")


@router.get("/items/{task_id}", response_model=TaskDetail)
def get_task(
    request: Request,
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.read")
        return service.get_task(db, user, task_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_task_get_failed")


@router.patch("/items/{task_id}", response_model=TaskDetail)
def update_task(
    request: Request,
    task_id: uuid.UUID,
    dto: TaskUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.update")
        return service.update_task(db, user, task_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_task_update_failed")


@router.delete("/items/{task_id}", response_model=None)
def delete_task(
    request: Request,
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.delete")
        service.delete_task(db, user, task_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_task_delete_failed")


@router.post("/items/{task_id}/move", response_model=TaskDetail)
def move_task(
    request: Request,
    task_id: uuid.UUID,
    dto: MoveTaskRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.update")
        return service.move_task(db, user, task_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_task_move_failed")


# assignments


@router.get("/items/{task_id}/assignments", response_model=list[AssignmentRead])
def list_assignments(
    request: Request,
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.read")
        return service.list_assignments(db, user, task_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_assignment_list_failed")


@router.post("/items/{task_id}/assignments", response_model=AssignmentRead, status_code=status.HTTP_201_CREATED)
def assign_task(
    request: Request,
    task_id: uuid.UUID,
    dto: AssignmentCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.update")
        return service.assign_task(db, user, task_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_assign_failed")


@router.delete("/items/{task_id}/assignments/{assignment_id}", response_model=None)
def unassign_task(
    request: Request,
    task_id: uuid.UUID,
    assignment_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.update")
        service.unassign_task(db, user, task_id, assignment_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_unassign_failed")


# dependencies


@router.get("/items/{task_id}/dependencies", response_model=list[DependencyRead])
def list_dependencies(
    request: Request,
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.read")
        return service.list_dependencies(db, user, task_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_dependency_list_failed")


@router.post("/items/{task_id}/dependencies", response_model=DependencyRead, status_code=status.HTTP_201_CREATED)
def add_dependency(
    request: Request,
    task_id: uuid.UUID,
    dto: DependencyCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.update")
        return service.add_dependency(db, user, task_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_dependency_add_failed")


@router.delete("/items/{task_id}/dependencies/{dependency_id}", response_model=None)
def remove_dependency(
    request: Request,
    task_id: uuid.UUID,
    dependency_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.update")
        service.remove_dependency(db, user, task_id, dependency_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_dependency_remove_failed")


# comments


@router.get("/items/{task_id}/comments", response_model=list[CommentRead])
def list_comments(
    request: Request,
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.read")
        return service.list_comments(db, user, task_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_comment_list_failed")


@router.post("/items/{task_id}/comments", response_model=CommentRead, status_code=status.HTTP_201_CREATED)
def add_comment(
    request: Request,
    task_id: uuid.UUID,
    dto: CommentCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.read")
        return service.add_comment(db, user, task_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_comment_add_failed")


@router.patch("/items/{task_id}/comments/{comment_id}", response_model=CommentRead)
def edit_comment(
    request: Request,
    task_id: uuid.UUID,
    comment_id: uuid.UUID,
    dto: CommentUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.read")
        return service.edit_comment(db, user, task_id, comment_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_comment_edit_failed")


# time tracking


@router.get("/items/{task_id}/time", response_model=list[TimeEntryRead])
def list_time_entries(
    request: Request,
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.read")
        return service.list_time_entries(db, user, task_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_time_list_failed")


@router.post("/items/{task_id}/time", response_model=TimeEntryRead, status_code=status.HTTP_201_CREATED)
def log_time(
    request: Request,
    task_id: uuid.UUID,
    dto: TimeEntryCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.update")
        return service.log_time(db, user, task_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_time_log_failed")


@router.post("/items/{task_id}/timer/start", response_model=TimeEntryRead, status_code=status.HTTP_201_CREATED)
def start_timer(
    request: Request,
    task_id: uuid.UUID,
    dto: TimerStart,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.update")
        return service.start_timer(db, user, task_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_timer_start_failed")


@router.post("/items/{task_id}/timer/stop", response_model=TimeEntryRead)
def stop_timer(
    request: Request,
    task_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "tasks.update")
        return service.stop_timer(db, user, task_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "tasks_timer_stop_failed")
