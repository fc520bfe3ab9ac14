from __future__ import annotations

import uuid
from collections.abc import Generator
from types import SimpleNamespace

import pytest

from crmhub import audit
from crmhub.platform.security import (
    AuthContext,
    RowAccessDeniedError,
    can_read_row,
    owner_or_role,
    public_if,
    validate_rls_write,
)


CONTACT_POLICY = owner_or_role("assigned_to", "created_by", roles={"sales_manager"})
PRODUCT_POLICY = public_if(lambda model: model.status == "active", lambda record: record.status == "active", "created_by")
NOTE_POLICY = public_if(lambda model: model.is_public, lambda record: record.is_public, "created_by", shared_column="shared_with")


@pytest.fixture(autouse=True)
def clear_audit() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    yield
    audit.audit_entries.clear()


def _ctx(*roles: str, user_id: uuid.UUID | None = None) -> AuthContext:
    return AuthContext(user_id=str(user_id or uuid.uuid4()), roles=list(roles), correlation_id="rls-test")


def test_owner_reads_own_row_and_stranger_is_denied() -> None:
    owner = uuid.uuid4()
    row = SimpleNamespace(id=uuid.uuid4(), assigned_to=None, created_by=owner)

    assert can_read_row("crm_contacts", row, CONTACT_POLICY, _ctx(user_id=owner))
    assert not can_read_row("crm_contacts", row, CONTACT_POLICY, _ctx("sales_rep"))

    denial = audit.audit_entries[-1]
    assert denial["action"] == "rls.denied"
    assert denial["after"]["resource"] == "crm_contacts"
    assert denial["correlation_id"] == "rls-test"


def test_policy_role_and_admin_see_every_row() -> None:
    row = SimpleNamespace(id=uuid.uuid4(), assigned_to=uuid.uuid4(), created_by=uuid.uuid4())

    assert can_read_row("crm_contacts", row, CONTACT_POLICY, _ctx("sales_manager"))
    assert can_read_row("crm_contacts", row, CONTACT_POLICY, _ctx("system_admin"))
    assert not audit.audit_entries


def test_public_rows_are_readable_by_anyone() -> None:
    active = SimpleNamespace(id=uuid.uuid4(), status="active", created_by=uuid.uuid4())
    draft = SimpleNamespace(id=uuid.uuid4(), status="draft", created_by=uuid.uuid4())

    assert can_read_row("crm_products", active, PRODUCT_POLICY, _ctx())
    assert not can_read_row("crm_products", draft, PRODUCT_POLICY, _ctx())


def test_shared_with_list_grants_read() -> None:
    reader = uuid.uuid4()
    note = SimpleNamespace(id=uuid.uuid4(), is_public=False, created_by=uuid.uuid4(), shared_with=[str(reader)])

    assert can_read_row("crm_notes", note, NOTE_POLICY, _ctx(user_id=reader))
    assert not can_read_row("crm_notes", note, NOTE_POLICY, _ctx())


def test_create_naming_someone_else_as_owner_is_refused() -> None:
    with pytest.raises(RowAccessDeniedError) as excinfo:
        validate_rls_write(
            "crm_contacts",
            CONTACT_POLICY,
            _ctx("sales_rep"),
            payload={"assigned_to": str(uuid.uuid4())},
            action="create",
        )

    assert excinfo.value.action == "create"
    assert excinfo.value.record_id is None


def test_update_of_foreign_row_names_the_row() -> None:
    row = SimpleNamespace(id=uuid.uuid4(), assigned_to=None, created_by=uuid.uuid4())

    with pytest.raises(RowAccessDeniedError) as excinfo:
        validate_rls_write("crm_contacts", CONTACT_POLICY, _ctx(), record=row, action="update")

    assert excinfo.value.record_id == str(row.id)
    assert str(row.id) in str(excinfo.value)


def test_owner_may_update_and_unowned_create_is_allowed() -> None:
    owner = uuid.uuid4()
    row = SimpleNamespace(id=uuid.uuid4(), assigned_to=owner, created_by=uuid.uuid4())

    validate_rls_write("crm_contacts", CONTACT_POLICY, _ctx(user_id=owner), record=row, action="update")
    validate_rls_write("crm_contacts", CONTACT_POLICY, _ctx(), payload={"first_name": "Ada"}, action="create")
