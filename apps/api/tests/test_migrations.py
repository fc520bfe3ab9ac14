from __future__ import annotations

import importlib.util
import re
from pathlib import Path
from types import ModuleType, SimpleNamespace

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, func, inspect, select, table

from crmhub import models  # noqa: F401
from crmhub.core.database import Base

API_ROOT = Path(__file__).resolve().parents[1]
VERSIONS = API_ROOT / "alembic" / "versions"


class RecordingOp:
    """Stands in for ``alembic.op`` and keeps the SQL a revision would run on Postgres."""

    def __init__(self) -> None:
        self.statements: list[str] = []

    def get_bind(self) -> SimpleNamespace:
        return SimpleNamespace(dialect=SimpleNamespace(name="postgresql"))

    def execute(self, statement: object) -> None:
        self.statements.append(" ".join(str(statement).split()))


def _load_revision(prefix: str) -> ModuleType:
    path = next(VERSIONS.glob(f"{prefix}_*.py"))
    spec = importlib.util.spec_from_file_location(f"revision_{prefix}", path)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _run(prefix: str, monkeypatch: pytest.MonkeyPatch, step: str = "upgrade") -> tuple[ModuleType, list[str]]:
    module = _load_revision(prefix)
    recorder = RecordingOp()
    monkeypatch.setattr(module, "op", recorder)
    getattr(module, step)()
    return module, recorder.statements


def _policy(statements: list[str], name: str) -> str:
    return next(statement for statement in statements if statement.startswith(f"CREATE POLICY {name} "))


def test_upgrade_builds_the_mapped_schema(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    url = f"sqlite+pysqlite:///{tmp_path / 'crmhub.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    config = Config()
    config.set_main_option("script_location", str(API_ROOT / "alembic"))

    command.upgrade(config, "head")

    engine = create_engine(url)
    try:
        inspector = inspect(engine)
        migrated = set(inspector.get_table_names()) - {"alembic_version"}
        assert migrated == set(Base.metadata.tables)
        for name, mapped in Base.metadata.tables.items():
            columns = {column["name"] for column in inspector.get_columns(name)}
            assert columns == {column.name for column in mapped.columns}, name
        with engine.connect() as connection:
            assert connection.scalar(select(func.count()).select_from(table("roles"))) > 0
    finally:
        engine.dispose()


def test_deleting_a_row_stamps_the_deleting_actor(monkeypatch: pytest.MonkeyPatch) -> None:
    module, statements = _run("202610190008", monkeypatch)

    function = next(statement for statement in statements if "CREATE OR REPLACE FUNCTION stamp_deletion()" in statement)
    assert "NEW.deleted_by := NULL" in function
    assert "current_setting('crmhub.actor_id', true)" in function
    for name in module.AUDITED_TABLES:
        assert (
            f"CREATE TRIGGER stamp_deletion BEFORE UPDATE ON {name} FOR EACH ROW "
            "WHEN (NEW.deleted_at IS DISTINCT FROM OLD.deleted_at) EXECUTE FUNCTION stamp_deletion()"
        ) in statements

    _module, dropped = _run("202610190008", monkeypatch, "downgrade")
    assert "DROP TRIGGER IF EXISTS stamp_deletion ON crm_contacts" in dropped
    assert "DROP FUNCTION IF EXISTS stamp_deletion()" in dropped


def test_row_security_covers_every_audited_table(monkeypatch: pytest.MonkeyPatch) -> None:
    triggers = _load_revision("202610190008")
    module, statements = _run("202610190010", monkeypatch)

    assert set(module.POLICIES) == set(triggers.AUDITED_TABLES)
    for name in triggers.AUDITED_TABLES:
        assert f"ALTER TABLE {name} ENABLE ROW LEVEL SECURITY" in statements
        for suffix in ("select", "insert", "update"):
            _policy(statements, f"{name}_{suffix}")
        assert f"CREATE POLICY {name}_no_hard_delete ON {name} FOR DELETE USING (false)" in statements


def test_contact_points_follow_the_entity_they_belong_to(monkeypatch: pytest.MonkeyPatch) -> None:
    _module, statements = _run("202610190010", monkeypatch)

    for name in ("entity_emails", "entity_phones", "entity_addresses"):
        visible = _policy(statements, f"{name}_select")
        assert "(is_public)" in visible
        assert "entity_type = 'crm_contact' AND entity_id IN (SELECT c.id FROM crm_contacts c)" in visible
        assert "entity_type = 'user_profile' AND entity_id IN (SELECT p.id FROM profiles p" in visible
        assert "(is_public)" not in _policy(statements, f"{name}_insert")


def test_profile_satellites_and_role_grants_stay_with_their_owner(monkeypatch: pytest.MonkeyPatch) -> None:
    _module, statements = _run("202610190010", monkeypatch)

    own_profile = "user_id IN (SELECT p.id FROM profiles p WHERE p.user_id = crmhub_actor_id())"
    for name in ("user_preferences", "user_security_settings", "user_onboarding"):
        assert own_profile in _policy(statements, f"{name}_select")
        assert own_profile in _policy(statements, f"{name}_insert")

    assert "is_system_assigned AND user_id IN" in _policy(statements, "user_roles_insert")
    assert _policy(statements, "roles_insert").endswith("WITH CHECK (crmhub_is_admin() OR (false))")
    assert _policy(statements, "roles_select").endswith("USING (crmhub_is_admin() OR (true))")


def test_shared_ledgers_are_readable_and_never_hard_deleted(monkeypatch: pytest.MonkeyPatch) -> None:
    _module, statements = _run("202610190010", monkeypatch)

    for name in ("chart_of_accounts", "journal_entries", "inventory_items", "purchase_orders"):
        assert _policy(statements, f"{name}_select").endswith("USING (crmhub_is_admin() OR (true))")
        assert f"CREATE POLICY {name}_no_hard_delete ON {name} FOR DELETE USING (false)" in statements


def test_task_rows_follow_board_visibility(monkeypatch: pytest.MonkeyPatch) -> None:
    _module, statements = _run("202610190010", monkeypatch)

    assert "board_id IN (SELECT b.id FROM task_boards b)" in _policy(statements, "task_lists_select")
    tasks = _policy(statements, "tasks_select")
    assert "list_id IN (SELECT l.id FROM task_lists l)" in tasks
    assert "FROM task_assignments a" in tasks
    for name in ("task_comments", "task_time_entries"):
        assert "task_id IN (SELECT t.id FROM tasks t)" in _policy(statements, f"{name}_select")
    assert "predecessor_id IN (SELECT t.id FROM tasks t)" in _policy(statements, "task_dependencies_select")


def test_policies_never_read_each_other_in_a_loop(monkeypatch: pytest.MonkeyPatch) -> None:
    module, statements = _run("202610190010", monkeypatch)

    reads: dict[str, set[str]] = {}
    for name in module.POLICIES:
        visible = _policy(statements, f"{name}_select")
        reads[name] = set(re.findall(r"FROM (\w+)", visible)) - {name}

    def visit(name: str, path: tuple[str, ...]) -> None:
        for target in reads.get(name, ()):
            assert target not in path, " -> ".join((*path, target))
            visit(target, (*path, target))

    for name in reads:
        visit(name, (name,))
