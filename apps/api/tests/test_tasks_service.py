from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub import audit, events
from crmhub.core.database import Base
from crmhub.enums import TaskStatus
from crmhub.platform.security.actor import ActorUser
from crmhub.tasks.schemas import (
    BoardCreate,
    DependencyCreate,
    ListCreate,
    MoveTaskRequest,
    TaskCreate,
    TimeEntryCreate,
    TimerStart,
)
from crmhub.tasks.service import task_service


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_state() -> None:
    audit.audit_entries.clear()
    events.published_events.clear()


@pytest.fixture()
def actor() -> ActorUser:
    return ActorUser(
        user_id=str(uuid.uuid4()),
        permissions={"tasks.create", "tasks.read", "tasks.update", "tasks.delete"},
    )


def _board_lists(session: Session, actor: ActorUser):
    board = task_service.create_board(session, actor, BoardCreate(name="Launch"))
    return board, {row.name: row for row in task_service.list_lists(session, actor, board.id)}


def test_board_gets_default_lists(db_session: Session, actor: ActorUser) -> None:
    board, lists = _board_lists(db_session, actor)

    assert board.board_number == "BRD-000001"
    assert board.owner_id == actor.actor_uuid
    assert list(lists) == ["To Do", "In Progress", "Done"]
    assert lists["Done"].auto_close is True
    assert lists["To Do"].auto_close is False


def test_wip_limit_blocks_new_tasks(db_session: Session, actor: ActorUser) -> None:
    board, _ = _board_lists(db_session, actor)
    review = task_service.create_list(db_session, actor, board.id, ListCreate(name="Review", wip_limit=1))

    task_service.create_task(db_session, actor, TaskCreate(list_id=review.id, title="First"))
    with pytest.raises(HTTPException) as exc_info:
        task_service.create_task(db_session, actor, TaskCreate(list_id=review.id, title="Second"))

    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "list has reached its wip_limit"


def test_moving_into_done_completes_the_task(db_session: Session, actor: ActorUser) -> None:
    _, lists = _board_lists(db_session, actor)
    task = task_service.create_task(db_session, actor, TaskCreate(list_id=lists["To Do"].id, title="Write copy"))
    assert task.task_number == "TSK-000001"

    moved = task_service.move_task(
        db_session,
        actor,
        task.id,
        MoveTaskRequest(version=task.version, list_id=lists["Done"].id),
    )

    assert moved.list_id == lists["Done"].id
    assert moved.status == TaskStatus.COMPLETED
    assert moved.completion_percentage == 100
    assert moved.position == 0


def test_move_reorders_positions(db_session: Session, actor: ActorUser) -> None:
    _, lists = _board_lists(db_session, actor)
    todo = lists["To Do"].id
    first = task_service.create_task(db_session, actor, TaskCreate(list_id=todo, title="One"))
    second = task_service.create_task(db_session, actor, TaskCreate(list_id=todo, title="Two"))
    third = task_service.create_task(db_session, actor, TaskCreate(list_id=lists["In Progress"].id, title="Three"))

    task_service.move_task(db_session, actor, third.id, MoveTaskRequest(version=third.version, list_id=todo, position=0))

    ordered = task_service.list_tasks(db_session, actor, list_id=todo)
    assert [(row.title, row.position) for row in ordered] == [("Three", 0), ("One", 1), ("Two", 2)]
    assert {first.id, second.id, third.id} == {row.id for row in ordered}


def test_dependencies_refuse_self_links_and_cycles(db_session: Session, actor: ActorUser) -> None:
    _, lists = _board_lists(db_session, actor)
    todo = lists["To Do"].id
    design = task_service.create_task(db_session, actor, TaskCreate(list_id=todo, title="Design"))
    build = task_service.create_task(db_session, actor, TaskCreate(list_id=todo, title="Build"))
    ship = task_service.create_task(db_session, actor, TaskCreate(list_id=todo, title="Ship"))

    with pytest.raises(HTTPException) as self_link:
        task_service.add_dependency(db_session, actor, design.id, DependencyCreate(predecessor_id=design.id))
    assert self_link.value.status_code == 422
    assert self_link.value.detail == "a task cannot depend on itself"

    task_service.add_dependency(db_session, actor, build.id, DependencyCreate(predecessor_id=design.id))
    task_service.add_dependency(db_session, actor, ship.id, DependencyCreate(predecessor_id=build.id))

    with pytest.raises(HTTPException) as cycle:
        task_service.add_dependency(db_session, actor, design.id, DependencyCreate(predecessor_id=ship.id))
    assert cycle.value.status_code == 422
    assert cycle.value.detail == "dependency would create a cycle"

    assert len(task_service.list_dependencies(db_session, actor, build.id)) == 2


def test_only_one_running_timer_per_user(db_session: Session, actor: ActorUser) -> None:
    _, lists = _board_lists(db_session, actor)
    first = task_service.create_task(db_session, actor, TaskCreate(list_id=lists["To Do"].id, title="Calls"))
    second = task_service.create_task(db_session, actor, TaskCreate(list_id=lists["To Do"].id, title="Emails"))

    started = task_service.start_timer(db_session, actor, first.id, TimerStart(description="morning calls"))
    assert started.end_time is None

    with pytest.raises(HTTPException) as exc_info:
        task_service.start_timer(db_session, actor, second.id, TimerStart())
    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "a timer is already running"

    stopped = task_service.stop_timer(db_session, actor, first.id)
    assert stopped.end_time is not None
    assert stopped.duration_minutes == 0
    task_service.start_timer(db_session, actor, second.id, TimerStart())


def test_logged_time_rolls_up_to_actual_hours(db_session: Session, actor: ActorUser) -> None:
    board, lists = _board_lists(db_session, actor)
    task = task_service.create_task(
        db_session,
        actor,
        TaskCreate(list_id=lists["In Progress"].id, title="Quarterly report", estimated_hours=Decimal("2.5")),
    )
    start = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    entry = task_service.log_time(
        db_session,
        actor,
        task.id,
        TimeEntryCreate(start_time=start, end_time=start + timedelta(minutes=90)),
    )

    assert entry.duration_minutes == 90
    assert task_service.get_task(db_session, actor, task.id).actual_hours == Decimal("1.5")

    summary = task_service.board_summary(db_session, actor, board.id)
    assert summary.total_tasks == 1
    assert summary.by_status == {"backlog": 1}
    assert summary.estimated_hours == Decimal("2.5")
    assert summary.actual_hours == Decimal("1.5")


def test_private_board_is_hidden_from_other_users(db_session: Session, actor: ActorUser) -> None:
    board, _ = _board_lists(db_session, actor)
    stranger = ActorUser(user_id=str(uuid.uuid4()), permissions={"tasks.read"})

    with pytest.raises(HTTPException) as exc_info:
        task_service.get_board(db_session, stranger, board.id)

    assert exc_info.value.status_code == 404
