"""seed default roles, permission catalog and role grants

Revision ID: 202610190011
Revises: 202610190010
Create Date: 2026-10-19 10:40:00
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.orm import Session

from crmhub.rbac.seed import DEFAULT_PERMISSIONS, DEFAULT_ROLES, initialize_default_roles


revision: str = "202610190011"
down_revision: str | None = "202610190010"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    session = Session(bind=op.get_bind())
    try:
        initialize_default_roles(session)
        session.flush()
    finally:
        session.close()


def downgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.execute("SELECT set_config('crmhub.hard_delete', 'on', true)")

    role_names = [seed.name for seed in DEFAULT_ROLES]
    permission_names = [name for name, _description, _category in DEFAULT_PERMISSIONS]
    system_roles = sa.select(sa.column("id")).select_from(sa.table("roles")).where(
        sa.column("is_system").is_(True), sa.column("name").in_(role_names)
    )

    role_permissions = sa.table("role_permissions", sa.column("role_id"))
    roles = sa.table("roles", sa.column("id"), sa.column("name"), sa.column("is_system"), sa.column("parent_role_id"))
    permissions = sa.table("permissions", sa.column("name"), sa.column("is_system"))

    bind.execute(sa.delete(role_permissions).where(role_permissions.c.role_id.in_(system_roles)))
    bind.execute(
        sa.update(roles).where(roles.c.is_system.is_(True), roles.c.name.in_(role_names)).values(parent_role_id=None)
    )
    bind.execute(sa.delete(roles).where(roles.c.is_system.is_(True), roles.c.name.in_(role_names)))
    bind.execute(
        sa.delete(permissions).where(permissions.c.is_system.is_(True), permissions.c.name.in_(permission_names))
    )
