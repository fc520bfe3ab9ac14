from __future__ import annotations

import logging
import uuid
from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from crmhub import audit
from crmhub.core.config import get_settings
from crmhub.documents import TimeRestriction
from crmhub.enums import AssignmentType, DelegationStatus, StatusType
from crmhub.identity.models import Profile
from crmhub.models.audit import AuditLog
from crmhub.platform.persistence import SYSTEM_ACTOR_ID, as_utc, bind_actor, utcnow
from crmhub.platform.security.actor import ActorUser
from crmhub.rbac.models import Permission, Role, RoleDelegation, RolePermission, UserRole
from crmhub.rbac.resolver import MAX_ROLE_DEPTH, effective_permission_resolver
from crmhub.rbac.schemas import (
    AssignRoleRequest,
    DelegateRoleRequest,
    DelegationRead,
    EffectivePermissionsRead,
    ExpirySweepRead,
    GrantPermissionRequest,
    PermissionCreate,
    PermissionRead,
    PermissionUpdate,
    RoleAssignmentHistoryRead,
    RoleCheckRead,
    RoleConflictRead,
    RoleConflictReport,
    RoleCreate,
    RoleHierarchyRead,
    RolePermissionRead,
    RoleRead,
    RoleUpdate,
    SeedResultRead,
    TemporaryRoleRequest,
    UserRoleRead,
)
from crmhub.rbac.seed import initialize_default_roles
from crmhub.services.common import (
    bind,
    check_version,
    commit_or_conflict,
    flush_or_conflict,
    not_found,
    publish,
    unprocessable,
)


logger = logging.getLogger("crmhub.rbac")


def _retire_grant(grant: UserRole | RolePermission, new_status: StatusType, *, reason: str | None = None) -> None:
    """Move a grant out of ``active``; an approval stamp only survives on active rows, so it moves to metadata."""

    metadata = dict(grant.grant_metadata or {})
    if grant.approved_at is not None:
        metadata["approved_at"] = as_utc(grant.approved_at).isoformat()  # type: ignore[union-attr]
        metadata["approved_by"] = str(grant.approved_by)
        grant.approved_at = None
        grant.approved_by = None
    if reason:
        metadata["status_reason"] = reason
    grant.grant_metadata = metadata
    grant.status = new_status


def _retire_delegation(
    delegation: RoleDelegation,
    new_status: DelegationStatus,
    *,
    actor_id: uuid.UUID | None = None,
    reason: str | None = None,
) -> None:
    metadata = dict(delegation.delegation_metadata or {})
    if delegation.approved_at is not None:
        metadata["approved_at"] = as_utc(delegation.approved_at).isoformat()  # type: ignore[union-attr]
        metadata["approved_by"] = str(delegation.approved_by)
        delegation.approved_at = None
        delegation.approved_by = None
    delegation.delegation_metadata = metadata
    delegation.status = new_status
    delegation.is_active = False
    if new_status == DelegationStatus.REVOKED:
        delegation.revoked_at = utcnow()
        delegation.revoked_by = actor_id or SYSTEM_ACTOR_ID
        delegation.revocation_reason = reason or "revoked"


class RbacService:
    entity_type = "rbac"

    # roles

    def create_role(self, session: Session, actor_user: ActorUser, dto: RoleCreate) -> RoleRead:
        bind(session, actor_user)
        if dto.is_default and not dto.is_active:
            raise unprocessable("default role must be active")
        if dto.parent_role_id is not None:
            self._get_live_role(session, dto.parent_role_id, label="parent role")

        role = Role(
            name=dto.name.strip(),
            description=dto.description,
            role_type=dto.role_type,
            is_system=False,
            is_active=dto.is_active,
            is_default=dto.is_default,
            priority=dto.priority,
            parent_role_id=dto.parent_role_id,
            inheritance_enabled=dto.inheritance_enabled,
            max_users=dto.max_users,
            concurrent_session_limit=dto.concurrent_session_limit,
            max_session_duration=dto.max_session_duration,
            allowed_resources=list(dto.allowed_resources),
            denied_resources=list(dto.denied_resources),
            ip_whitelist=list(dto.ip_whitelist),
            requires_mfa=dto.requires_mfa,
            password_policy=dto.password_policy,
        )
        session.add(role)
        if dto.is_default:
            self._clear_other_defaults(session, role)
        flush_or_conflict(session, "role already exists")
        publish("rbac.role.created", actor_user, {"role_id": str(role.id), "slug": role.slug})
        commit_or_conflict(session, "role already exists")
        session.refresh(role)
        return RoleRead.model_validate(role)

    def list_roles(self, session: Session, *, include_inactive: bool = False) -> list[RoleRead]:
        stmt = select(Role).where(Role.deleted_at.is_(None))
        if not include_inactive:
            stmt = stmt.where(Role.is_active.is_(True))
        rows = session.scalars(stmt.order_by(Role.priority.desc(), Role.name.asc())).all()
        return [RoleRead.model_validate(row) for row in rows]

    def get_role(self, session: Session, role_id: uuid.UUID) -> RoleRead:
        return RoleRead.model_validate(self._get_live_role(session, role_id))

    def update_role(self, session: Session, actor_user: ActorUser, role_id: uuid.UUID, dto: RoleUpdate) -> RoleRead:
        bind(session, actor_user)
        role = self._get_live_role(session, role_id)
        if role.is_system:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="system role cannot be modified")
        check_version(role, dto.version, "roles")

        changes = dto.model_dump(exclude_unset=True, exclude={"version"})
        if "parent_role_id" in changes and changes["parent_role_id"] is not None:
            self._assert_no_cycle(session, role.id, changes["parent_role_id"])
        if "name" in changes and changes["name"] is not None:
            changes["name"] = changes["name"].strip()
        if "password_policy" in changes and dto.password_policy is not None:
            changes["password_policy"] = dto.password_policy.model_copy()

        is_active = changes.get("is_active", role.is_active)
        is_default = changes.get("is_default", role.is_default)
        if is_default and not is_active:
            raise unprocessable("default role must be active")

        for key, value in changes.items():
            if value is None and key in {"name", "is_active", "is_default", "priority", "inheritance_enabled"}:
                continue
            setattr(role, key, value)
        if is_default:
            self._clear_other_defaults(session, role)

        publish("rbac.role.updated", actor_user, {"role_id": str(role.id), "changed": sorted(changes)})
        commit_or_conflict(session, "role already exists")
        session.refresh(role)
        return RoleRead.model_validate(role)

    def delete_role(self, session: Session, actor_user: ActorUser, role_id: uuid.UUID) -> None:
        """Soft delete a role, revoking its live assignments and grants and re-parenting its children."""

        bind(session, actor_user)
        role = self._get_live_role(session, role_id)
        if role.is_system:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="system role cannot be deleted")

        actor_id = actor_user.actor_uuid
        revoked = 0
        for assignment in session.scalars(
            select(UserRole).where(UserRole.role_id == role.id, UserRole.deleted_at.is_(None))
        ):
            _retire_grant(assignment, StatusType.REVOKED, reason="role deleted")
            assignment.soft_delete(actor_id)
            revoked += 1
        for grant in session.scalars(
            select(RolePermission).where(RolePermission.role_id == role.id, RolePermission.deleted_at.is_(None))
        ):
            _retire_grant(grant, StatusType.REVOKED, reason="role deleted")
            grant.soft_delete(actor_id)
        for delegation in session.scalars(
            select(RoleDelegation).where(RoleDelegation.role_id == role.id, RoleDelegation.deleted_at.is_(None))
        ):
            if delegation.status in {DelegationStatus.ACTIVE, DelegationStatus.PENDING}:
                _retire_delegation(delegation, DelegationStatus.REVOKED, actor_id=actor_id, reason="role deleted")
        for child in session.scalars(
            select(Role).where(Role.parent_role_id == role.id, Role.deleted_at.is_(None))
        ):
            child.parent_role_id = role.parent_role_id

        role.is_default = False
        role.soft_delete(actor_id)
        publish("rbac.role.deleted", actor_user, {"role_id": str(role.id), "revoked_assignments": revoked})
        commit_or_conflict(session, "role could not be deleted")

    def get_role_hierarchy_level(self, session: Session, role_id: uuid.UUID) -> RoleHierarchyRead:
        """Depth of a role in the parent tree; roots are level 1."""

        role = self._get_live_role(session, role_id)
        ancestors: list[uuid.UUID] = []
        current = role
        while current.parent_role_id is not None and len(ancestors) < MAX_ROLE_DEPTH:
            parent = session.get(Role, current.parent_role_id)
            if parent is None or parent.deleted_at is not None or parent.id in ancestors:
                break
            ancestors.append(parent.id)
            current = parent
        return RoleHierarchyRead(role_id=role.id, level=len(ancestors) + 1, ancestors=ancestors)

    # permissions

    def create_permission(self, session: Session, actor_user: ActorUser, dto: PermissionCreate) -> PermissionRead:
        bind(session, actor_user)
        resource, _, action = dto.name.partition(".")
        permission = Permission(
            name=dto.name,
            description=dto.description,
            category=dto.category or resource,
            subcategory=dto.subcategory,
            resource_type=resource,
            action_type=action,
            is_system=False,
            is_active=dto.is_active,
            is_sensitive=dto.is_sensitive,
            priority=dto.priority,
            requires_mfa=dto.requires_mfa,
            requires_approval=dto.requires_approval,
            rate_limit=dto.rate_limit,
            time_restrictions=dto.time_restrictions or TimeRestriction.unrestricted(),
            conditions=dict(dto.conditions),
            dependent_permissions=list(dto.dependent_permissions),
            conflicting_permissions=list(dto.conflicting_permissions),
        )
        session.add(permission)
        flush_or_conflict(session, "permission already exists")
        publish("rbac.permission.created", actor_user, {"permission_id": str(permission.id), "name": permission.name})
        commit_or_conflict(session, "permission already exists")
        session.refresh(permission)
        return PermissionRead.model_validate(permission)

    def list_permissions(self, session: Session, *, category: str | None = None) -> list[PermissionRead]:
        stmt = select(Permission).where(Permission.deleted_at.is_(None))
        if category:
            stmt = stmt.where(Permission.category == category)
        rows = session.scalars(stmt.order_by(Permission.name.asc())).all()
        return [PermissionRead.model_validate(row) for row in rows]

    def get_permission(self, session: Session, permission_id: uuid.UUID) -> PermissionRead:
        return PermissionRead.model_validate(self._get_live_permission(session, permission_id))

    def update_permission(
        self,
        session: Session,
        actor_user: ActorUser,
        permission_id: uuid.UUID,
        dto: PermissionUpdate,
    ) -> PermissionRead:
        bind(session, actor_user)
        permission = self._get_live_permission(session, permission_id)
        if permission.is_system:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="system permission cannot be modified")
        check_version(permission, dto.version, "permissions")

        changes = dto.model_dump(exclude_unset=True, exclude={"version"})
        for key, value in changes.items():
            if key == "time_restrictions":
                value = dto.time_restrictions.model_copy() if dto.time_restrictions is not None else TimeRestriction.unrestricted()
            elif value is None:
                continue
            setattr(permission, key, value)

        commit_or_conflict(session, "permission already exists")
        session.refresh(permission)
        return PermissionRead.model_validate(permission)

    def delete_permission(self, session: Session, actor_user: ActorUser, permission_id: uuid.UUID) -> None:
        bind(session, actor_user)
        permission = self._get_live_permission(session, permission_id)
        if permission.is_system:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="system permission cannot be deleted")

        actor_id = actor_user.actor_uuid
        for grant in session.scalars(
            select(RolePermission).where(
                RolePermission.permission_id == permission.id,
                RolePermission.deleted_at.is_(None),
            )
        ):
            _retire_grant(grant, StatusType.REVOKED, reason="permission deleted")
            grant.soft_delete(actor_id)
        permission.soft_delete(actor_id)
        publish("rbac.permission.deleted", actor_user, {"permission_id": str(permission.id), "name": permission.name})
        commit_or_conflict(session, "permission could not be deleted")

    def grant_permission(
        self,
        session: Session,
        actor_user: ActorUser,
        role_id: uuid.UUID,
        dto: GrantPermissionRequest,
    ) -> RolePermissionRead:
        bind(session, actor_user)
        role = self._get_live_role(session, role_id)
        permission = self._get_live_permission(session, dto.permission_id)

        existing = session.scalar(
            select(RolePermission).where(
                RolePermission.role_id == role.id,
                RolePermission.permission_id == permission.id,
                RolePermission.deleted_at.is_(None),
            )
        )
        if existing is not None and existing.status == StatusType.ACTIVE:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="permission already granted to role")
        if existing is not None:
            existing.soft_delete(actor_user.actor_uuid)
            session.flush()

        now = utcnow()
        if dto.valid_until is not None and as_utc(dto.valid_until) <= now:  # type: ignore[operator]
            raise unprocessable("valid_until must be in the future")

        grant = RolePermission(
            role_id=role.id,
            permission_id=permission.id,
            grant_type=dto.grant_type,
            condition_type=dto.condition_type,
            status=StatusType.ACTIVE,
            valid_from=now,
            valid_until=dto.valid_until,
            max_usage_count=dto.max_usage_count,
            time_restriction=dto.time_restriction or TimeRestriction.unrestricted(),
        )
        session.add(grant)
        flush_or_conflict(session, "permission already granted to role")
        publish(
            "rbac.permission.granted",
            actor_user,
            {"role_id": str(role.id), "permission_id": str(permission.id), "permission": permission.name},
        )
        commit_or_conflict(session, "permission already granted to role")
        session.refresh(grant)
        return self._to_role_permission_read(grant, permission)

    def revoke_permission(
        self,
        session: Session,
        actor_user: ActorUser,
        role_id: uuid.UUID,
        permission_id: uuid.UUID,
    ) -> None:
        bind(session, actor_user)
        grant = session.scalar(
            select(RolePermission).where(
                RolePermission.role_id == role_id,
                RolePermission.permission_id == permission_id,
                RolePermission.deleted_at.is_(None),
            )
        )
        if grant is None:
            raise not_found("role permission")
        _retire_grant(grant, StatusType.REVOKED)
        grant.soft_delete(actor_user.actor_uuid)
        publish(
            "rbac.permission.revoked",
            actor_user,
            {"role_id": str(role_id), "permission_id": str(permission_id)},
        )
        commit_or_conflict(session, "role permission could not be revoked")

    def get_role_permissions(
        self,
        session: Session,
        role_id: uuid.UUID,
        *,
        include_inherited: bool = False,
    ) -> list[RolePermissionRead]:
        role = self._get_live_role(session, role_id)
        role_ids = [role.id]
        if include_inherited:
            role_ids = sorted(effective_permission_resolver.expand(session, [role.id], {}), key=str)

        rows = session.execute(
            select(RolePermission, Permission)
            .join(Permission, Permission.id == RolePermission.permission_id)
            .where(
                RolePermission.role_id.in_(role_ids),
                RolePermission.deleted_at.is_(None),
                Permission.deleted_at.is_(None),
            )
            .order_by(Permission.name.asc())
        ).all()
        return [self._to_role_permission_read(grant, permission) for grant, permission in rows]

    # user roles

    def assign_role(
        self,
        session: Session,
        actor_user: ActorUser,
        profile_id: uuid.UUID,
        dto: AssignRoleRequest,
    ) -> UserRoleRead:
        bind(session, actor_user)
        profile = self._get_live_profile(session, profile_id)
        role = self._get_live_role(session, dto.role_id)
        if not role.is_active:
            raise unprocessable("role is inactive")

        now = utcnow()
        valid_from = as_utc(dto.valid_from) or now
        valid_until = as_utc(dto.valid_until)
        if valid_until is not None and valid_until <= valid_from:
            raise unprocessable("valid_until must be after valid_from")

        assignment = self._create_assignment(
            session,
            actor_user,
            profile=profile,
            role=role,
            is_primary=dto.is_primary,
            assignment_type=dto.assignment_type,
            valid_from=valid_from,
            valid_until=valid_until,
            requires_approval=dto.requires_approval,
            time_restriction=dto.time_restriction,
        )
        commit_or_conflict(session, "role already assigned")
        session.refresh(assignment)
        return self._to_user_role_read(assignment)

    def assign_temporary_role(
        self,
        session: Session,
        actor_user: ActorUser,
        profile_id: uuid.UUID,
        dto: TemporaryRoleRequest,
    ) -> UserRoleRead:
        """Assign a role that lapses at ``valid_until``; non-admins cannot hand out roles above their own priority."""

        bind(session, actor_user)
        profile = self._get_live_profile(session, profile_id)
        role = self._get_live_role(session, dto.role_id)
        if not role.is_active:
            raise unprocessable("role is inactive")

        now = utcnow()
        valid_from = as_utc(dto.valid_from) or now
        valid_until = as_utc(dto.valid_until)
        if valid_until is None or valid_until <= now:
            raise unprocessable("expiration date must be in the future")
        if valid_until <= valid_from:
            raise unprocessable("valid_until must be after valid_from")

        if not actor_user.is_admin and role.priority > self._actor_max_priority(session, actor_user):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="cannot assign a role above the assigner's own level",
            )

        assignment = self._create_assignment(
            session,
            actor_user,
            profile=profile,
            role=role,
            is_primary=False,
            assignment_type=AssignmentType.TEMPORARY,
            valid_from=valid_from,
            valid_until=valid_until,
            requires_approval=dto.requires_approval,
            time_restriction=None,
            reason=dto.reason,
        )
        commit_or_conflict(session, "role already assigned")
        session.refresh(assignment)
        return self._to_user_role_read(assignment)

    def assign_default_role(self, session: Session, actor_user: ActorUser, profile: Profile) -> UserRole | None:
        """Give a freshly created profile the configured signup role; the caller commits."""

        slug = get_settings().default_signup_role
        role = session.scalar(
            select(Role).where(
                or_(Role.slug == slug, Role.role_type == slug),
                Role.deleted_at.is_(None),
                Role.is_active.is_(True),
            ).order_by(Role.is_system.desc())
        )
        if role is None:
            logger.warning("rbac.default_role_missing", extra={"role": slug, "user_id": str(profile.id)})
            return None
        return self._create_assignment(
            session,
            actor_user,
            profile=profile,
            role=role,
            is_primary=True,
            assignment_type=AssignmentType.AUTOMATIC,
            valid_from=utcnow(),
            valid_until=None,
            requires_approval=False,
            time_restriction=None,
            system_assigned=True,
        )

    def approve_user_role(self, session: Session, actor_user: ActorUser, user_role_id: uuid.UUID) -> UserRoleRead:
        bind(session, actor_user)
        assignment = session.scalar(
            select(UserRole).where(UserRole.id == user_role_id, UserRole.deleted_at.is_(None))
        )
        if assignment is None:
            raise not_found("user role")
        if not assignment.requires_approval or assignment.status != StatusType.PENDING:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="user role is not awaiting approval")
        if actor_user.profile_id is not None and assignment.user_id == actor_user.profile_id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="cannot approve own role assignment")

        assignment.status = StatusType.ACTIVE
        assignment.approved_at = utcnow()
        assignment.approved_by = actor_user.actor_uuid
        publish(
            "rbac.role.approved",
            actor_user,
            {"user_role_id": str(assignment.id), "user_id": str(assignment.user_id), "role_id": str(assignment.role_id)},
        )
        commit_or_conflict(session, "user role could not be approved")
        session.refresh(assignment)
        return self._to_user_role_read(assignment)

    def revoke_role(
        self,
        session: Session,
        actor_user: ActorUser,
        profile_id: uuid.UUID,
        role_id: uuid.UUID,
        *,
        reason: str | None = None,
    ) -> None:
        bind(session, actor_user)
        assignment = session.scalar(
            select(UserRole).where(
                UserRole.user_id == profile_id,
                UserRole.role_id == role_id,
                UserRole.deleted_at.is_(None),
            )
        )
        if assignment is None:
            raise not_found("user role")

        _retire_grant(assignment, StatusType.REVOKED, reason=reason)
        assignment.is_primary = False
        assignment.soft_delete(actor_user.actor_uuid)
        self._revoke_dependent_delegations(session, actor_user, profile_id, role_id)
        publish(
            "rbac.role.revoked",
            actor_user,
            {"user_id": str(profile_id), "role_id": str(role_id), "reason": reason},
        )
        commit_or_conflict(session, "user role could not be revoked")

    def get_user_roles(
        self,
        session: Session,
        profile_id: uuid.UUID,
        *,
        include_inactive: bool = False,
    ) -> list[UserRoleRead]:
        self._get_live_profile(session, profile_id)
        rows = session.scalars(
            select(UserRole)
            .where(UserRole.user_id == profile_id, UserRole.deleted_at.is_(None))
            .order_by(UserRole.is_primary.desc(), UserRole.created_at.asc())
        ).all()
        now = utcnow()
        reads = [self._to_user_role_read(row, at=now) for row in rows]
        if include_inactive:
            return reads
        return [read for read in reads if read.is_effective]

    def check_user_role(self, session: Session, profile_id: uuid.UUID, role: str) -> RoleCheckRead:
        """Whether the user currently holds ``role`` (slug or role type), directly, inherited or delegated."""

        effective = effective_permission_resolver.resolve(session, profile_id)
        has_role = role in effective.role_slugs or role in effective.role_types
        return RoleCheckRead(user_id=profile_id, role=role, has_role=has_role)

    def get_users_by_role(
        self,
        session: Session,
        role_id: uuid.UUID,
        *,
        include_inactive: bool = False,
    ) -> list[UserRoleRead]:
        self._get_live_role(session, role_id)
        rows = session.scalars(
            select(UserRole)
            .join(Profile, Profile.id == UserRole.user_id)
            .where(
                UserRole.role_id == role_id,
                UserRole.deleted_at.is_(None),
                Profile.deleted_at.is_(None),
            )
            .order_by(UserRole.created_at.asc())
        ).all()
        now = utcnow()
        reads = [self._to_user_role_read(row, at=now) for row in rows]
        if include_inactive:
            return reads
        return [read for read in reads if read.is_effective]

    def check_role_conflicts(
        self,
        session: Session,
        actor_user: ActorUser,
        profile_id: uuid.UUID,
        role_id: uuid.UUID,
    ) -> RoleConflictReport:
        """Report whether assigning ``role_id`` would overlap the user's role chain or pair conflicting permissions."""

        self._get_live_profile(session, profile_id)
        role = self._get_live_role(session, role_id)
        effective = effective_permission_resolver.resolve(session, profile_id)

        chain = effective_permission_resolver.expand(session, [role.id], {})
        overlapping = sorted(
            (held for held in effective.role_ids if held in chain or role.id in self._ancestors(session, held)),
            key=str,
        )

        candidate_names = set(
            session.scalars(
                select(Permission.name)
                .join(RolePermission, RolePermission.permission_id == Permission.id)
                .where(
                    RolePermission.role_id.in_(chain),
                    RolePermission.deleted_at.is_(None),
                    Permission.deleted_at.is_(None),
                )
            ).all()
        )
        combined = candidate_names | set(effective.permissions)
        conflicts: list[RoleConflictRead] = []
        if combined:
            for permission in session.scalars(
                select(Permission).where(Permission.name.in_(combined), Permission.deleted_at.is_(None))
            ):
                for other in permission.conflicting_permissions:
                    if other not in combined or (permission.name not in candidate_names and other not in candidate_names):
                        continue
                    conflicts.append(
                        RoleConflictRead(
                            permission=permission.name,
                            conflicts_with=other,
                            sources=effective.sources.get(permission.name, []) + effective.sources.get(other, []),
                        )
                    )

        report = RoleConflictReport(
            user_id=profile_id,
            role_id=role.id,
            has_conflicts=bool(overlapping or conflicts),
            overlapping_role_ids=overlapping,
            permission_conflicts=conflicts,
        )
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type="rbac.user_role",
            entity_id=str(profile_id),
            action="rbac.role_conflict_check",
            before=None,
            after=report.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        return report

    def get_role_assignment_history(
        self,
        session: Session,
        profile_id: uuid.UUID,
        *,
        limit: int = 100,
    ) -> list[RoleAssignmentHistoryRead]:
        record_ids = session.scalars(select(UserRole.id).where(UserRole.user_id == profile_id)).all()
        if not record_ids:
            return []
        rows = session.scalars(
            select(AuditLog)
            .where(AuditLog.table_name == "user_roles", AuditLog.record_id.in_(record_ids))
            .order_by(AuditLog.performed_at.desc(), AuditLog.created_at.desc())
            .limit(limit)
        ).all()
        history: list[RoleAssignmentHistoryRead] = []
        for row in rows:
            data = row.new_data or row.old_data or {}
            role_id = data.get("role_id")
            history.append(
                RoleAssignmentHistoryRead(
                    audit_id=row.id,
                    record_id=row.record_id,
                    action=str(row.action),
                    role_id=uuid.UUID(role_id) if role_id else None,
                    status=data.get("status"),
                    changed_fields=list(row.changed_fields or []),
                    performed_by=row.performed_by,
                    performed_at=row.performed_at,
                )
            )
        return history

    def get_effective_permissions(
        self,
        session: Session,
        profile_id: uuid.UUID,
        *,
        at: datetime | None = None,
    ) -> EffectivePermissionsRead:
        self._get_live_profile(session, profile_id)
        effective = effective_permission_resolver.resolve(session, profile_id, at)
        return EffectivePermissionsRead(
            user_id=profile_id,
            at=effective.at,
            permissions=sorted(effective.permissions),
            role_types=sorted(effective.role_types),
            sources={name: sorted(set(values)) for name, values in sorted(effective.sources.items())},
        )

    # delegations

    def delegate_role(self, session: Session, actor_user: ActorUser, dto: DelegateRoleRequest) -> DelegationRead:
        bind(session, actor_user)
        if actor_user.profile_id is None:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="delegator has no profile")
        if dto.delegate_id == actor_user.profile_id:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="self-delegation is not allowed")

        self._get_live_profile(session, dto.delegate_id)
        role = self._get_live_role(session, dto.role_id)
        if not self._holds_role_directly(session, actor_user.profile_id, role.id):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="delegator does not hold the role")

        now = utcnow()
        starts_at = as_utc(dto.starts_at) or now
        ends_at = as_utc(dto.ends_at)
        if ends_at is not None and ends_at <= starts_at:
            raise unprocessable("ends_at must be after starts_at")

        delegation = RoleDelegation(
            delegator_id=actor_user.profile_id,
            delegate_id=dto.delegate_id,
            role_id=role.id,
            status=DelegationStatus.PENDING if dto.requires_approval else DelegationStatus.ACTIVE,
            delegation_type=dto.delegation_type,
            is_active=True,
            starts_at=starts_at,
            ends_at=ends_at,
            requires_approval=dto.requires_approval,
            delegated_permissions=list(dto.delegated_permissions),
            excluded_permissions=list(dto.excluded_permissions),
            max_usage_count=dto.max_usage_count,
            auto_revoke_conditions=dto.auto_revoke_conditions,
            time_restriction=dto.time_restriction or TimeRestriction.unrestricted(),
        )
        session.add(delegation)
        flush_or_conflict(session, "delegation already exists")
        publish(
            "rbac.delegation.created",
            actor_user,
            {
                "delegation_id": str(delegation.id),
                "delegator_id": str(delegation.delegator_id),
                "delegate_id": str(delegation.delegate_id),
                "role_id": str(role.id),
            },
        )
        commit_or_conflict(session, "delegation already exists")
        session.refresh(delegation)
        return DelegationRead.model_validate(delegation)

    def approve_delegation(self, session: Session, actor_user: ActorUser, delegation_id: uuid.UUID) -> DelegationRead:
        bind(session, actor_user)
        delegation = self._get_live_delegation(session, delegation_id)
        if delegation.status != DelegationStatus.PENDING:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="delegation is not awaiting approval")
        if actor_user.profile_id is not None and actor_user.profile_id in {delegation.delegator_id, delegation.delegate_id}:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="delegation parties cannot approve it")

        delegation.status = DelegationStatus.ACTIVE
        delegation.approved_at = utcnow()
        delegation.approved_by = actor_user.actor_uuid
        publish("rbac.delegation.approved", actor_user, {"delegation_id": str(delegation.id)})
        commit_or_conflict(session, "delegation could not be approved")
        session.refresh(delegation)
        return DelegationRead.model_validate(delegation)

    def revoke_delegation(
        self,
        session: Session,
        actor_user: ActorUser,
        delegation_id: uuid.UUID,
        reason: str,
    ) -> DelegationRead:
        bind(session, actor_user)
        delegation = self._get_live_delegation(session, delegation_id)
        if delegation.status not in {DelegationStatus.ACTIVE, DelegationStatus.PENDING}:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="delegation is not active")
        if not actor_user.is_admin and actor_user.profile_id != delegation.delegator_id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="only the delegator can revoke")

        _retire_delegation(delegation, DelegationStatus.REVOKED, actor_id=actor_user.actor_uuid, reason=reason)
        publish("rbac.delegation.revoked", actor_user, {"delegation_id": str(delegation.id), "reason": reason})
        commit_or_conflict(session, "delegation could not be revoked")
        session.refresh(delegation)
        return DelegationRead.model_validate(delegation)

    def list_delegations(self, session: Session, profile_id: uuid.UUID) -> list[DelegationRead]:
        rows = session.scalars(
            select(RoleDelegation)
            .where(
                or_(RoleDelegation.delegator_id == profile_id, RoleDelegation.delegate_id == profile_id),
                RoleDelegation.deleted_at.is_(None),
            )
            .order_by(RoleDelegation.created_at.desc())
        ).all()
        return [DelegationRead.model_validate(row) for row in rows]

    # housekeeping

    def expire_lapsed_grants(self, session: Session, *, at: datetime | None = None) -> ExpirySweepRead:
        """Mark user roles past ``valid_until`` and delegations past ``ends_at`` as expired."""

        bind_actor(session, SYSTEM_ACTOR_ID, is_admin=True)
        moment = as_utc(at) or utcnow()

        expired_roles = 0
        for assignment in session.scalars(
            select(UserRole).where(
                UserRole.deleted_at.is_(None),
                UserRole.valid_until.is_not(None),
                UserRole.status.in_([StatusType.ACTIVE, StatusType.PENDING]),
            )
        ):
            if as_utc(assignment.valid_until) <= moment:  # type: ignore[operator]
                _retire_grant(assignment, StatusType.EXPIRED, reason="validity window ended")
                assignment.is_primary = False
                expired_roles += 1

        expired_delegations = 0
        for delegation in session.scalars(
            select(RoleDelegation).where(
                RoleDelegation.deleted_at.is_(None),
                RoleDelegation.ends_at.is_not(None),
                RoleDelegation.status.in_([DelegationStatus.ACTIVE, DelegationStatus.PENDING]),
            )
        ):
            if as_utc(delegation.ends_at) <= moment:  # type: ignore[operator]
                _retire_delegation(delegation, DelegationStatus.EXPIRED)
                expired_delegations += 1

        session.commit()
        logger.info(
            "rbac.grants_expired",
            extra={"user_roles": expired_roles, "delegations": expired_delegations},
        )
        return ExpirySweepRead(user_roles_expired=expired_roles, delegations_expired=expired_delegations)

    def initialize_default_roles(self, session: Session) -> SeedResultRead:
        created = initialize_default_roles(session)
        session.commit()
        return SeedResultRead(**created)

    # helpers

    def _create_assignment(
        self,
        session: Session,
        actor_user: ActorUser,
        *,
        profile: Profile,
        role: Role,
        is_primary: bool,
        assignment_type: AssignmentType,
        valid_from: datetime,
        valid_until: datetime | None,
        requires_approval: bool,
        time_restriction: TimeRestriction | None,
        system_assigned: bool = False,
        reason: str | None = None,
    ) -> UserRole:
        existing = session.scalar(
            select(UserRole).where(
                UserRole.user_id == profile.id,
                UserRole.role_id == role.id,
                UserRole.deleted_at.is_(None),
            )
        )
        if existing is not None:
            if existing.status in {StatusType.ACTIVE, StatusType.PENDING}:
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="role already assigned")
            existing.soft_delete(actor_user.actor_uuid)

        if role.max_users is not None:
            holders = session.scalars(
                select(UserRole).where(
                    UserRole.role_id == role.id,
                    UserRole.deleted_at.is_(None),
                    UserRole.status == StatusType.ACTIVE,
                )
            ).all()
            if len(holders) >= role.max_users:
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="role user limit reached")

        if is_primary:
            for current in session.scalars(
                select(UserRole).where(
                    UserRole.user_id == profile.id,
                    UserRole.is_primary.is_(True),
                    UserRole.deleted_at.is_(None),
                )
            ):
                current.is_primary = False
        session.flush()

        metadata = {"reason": reason} if reason else {}
        assignment = UserRole(
            user_id=profile.id,
            role_id=role.id,
            is_primary=is_primary,
            is_system_assigned=system_assigned,
            assignment_type=assignment_type,
            status=StatusType.PENDING if requires_approval else StatusType.ACTIVE,
            valid_from=valid_from,
            valid_until=valid_until,
            requires_approval=requires_approval,
            time_restriction=time_restriction or TimeRestriction.unrestricted(),
            grant_metadata=metadata,
        )
        session.add(assignment)
        flush_or_conflict(session, "role already assigned")
        publish(
            "rbac.role.assigned",
            actor_user,
            {
                "user_role_id": str(assignment.id),
                "user_id": str(profile.id),
                "role_id": str(role.id),
                "role": role.slug,
                "assignment_type": str(assignment_type),
                "valid_until": valid_until.isoformat() if valid_until else None,
            },
        )
        return assignment

    def _revoke_dependent_delegations(
        self,
        session: Session,
        actor_user: ActorUser,
        profile_id: uuid.UUID,
        role_id: uuid.UUID,
    ) -> None:
        for delegation in session.scalars(
            select(RoleDelegation).where(
                RoleDelegation.delegator_id == profile_id,
                RoleDelegation.role_id == role_id,
                RoleDelegation.deleted_at.is_(None),
                RoleDelegation.status.in_([DelegationStatus.ACTIVE, DelegationStatus.PENDING]),
            )
        ):
            if delegation.auto_revoke_conditions.on_delegator_role_change:
                _retire_delegation(
                    delegation,
                    DelegationStatus.REVOKED,
                    actor_id=actor_user.actor_uuid,
                    reason="delegator role revoked",
                )

    def _holds_role_directly(self, session: Session, profile_id: uuid.UUID, role_id: uuid.UUID) -> bool:
        now = utcnow()
        held = [
            assignment.role_id
            for assignment in session.scalars(
                select(UserRole).where(UserRole.user_id == profile_id, UserRole.deleted_at.is_(None))
            )
            if assignment.is_effective(now)
        ]
        return role_id in effective_permission_resolver.expand(session, held, {})

    def _actor_max_priority(self, session: Session, actor_user: ActorUser) -> int:
        if actor_user.profile_id is None:
            return 0
        effective = effective_permission_resolver.resolve(session, actor_user.profile_id)
        if not effective.role_ids:
            return 0
        priorities = session.scalars(select(Role.priority).where(Role.id.in_(effective.role_ids))).all()
        return max(priorities, default=0)

    def _ancestors(self, session: Session, role_id: uuid.UUID) -> set[uuid.UUID]:
        seen: set[uuid.UUID] = set()
        current = session.get(Role, role_id)
        while current is not None and current.parent_role_id is not None and len(seen) < MAX_ROLE_DEPTH:
            if current.parent_role_id in seen:
                break
            seen.add(current.parent_role_id)
            current = session.get(Role, current.parent_role_id)
        return seen

    def _assert_no_cycle(self, session: Session, role_id: uuid.UUID, parent_id: uuid.UUID) -> None:
        if parent_id == role_id:
            raise unprocessable("role cannot be its own parent")
        self._get_live_role(session, parent_id, label="parent role")
        if role_id in self._ancestors(session, parent_id):
            raise unprocessable("role hierarchy cycle")

    def _clear_other_defaults(self, session: Session, role: Role) -> None:
        for other in session.scalars(
            select(Role).where(Role.is_default.is_(True), Role.deleted_at.is_(None))
        ):
            if other is not role:
                other.is_default = False

    def _get_live_role(self, session: Session, role_id: uuid.UUID, *, label: str = "role") -> Role:
        role = session.scalar(select(Role).where(Role.id == role_id, Role.deleted_at.is_(None)))
        if role is None:
            raise not_found(label)
        return role

    def _get_live_permission(self, session: Session, permission_id: uuid.UUID) -> Permission:
        permission = session.scalar(
            select(Permission).where(Permission.id == permission_id, Permission.deleted_at.is_(None))
        )
        if permission is None:
            raise not_found("permission")
        return permission

    def _get_live_profile(self, session: Session, profile_id: uuid.UUID) -> Profile:
        profile = session.scalar(select(Profile).where(Profile.id == profile_id, Profile.deleted_at.is_(None)))
        if profile is None:
            raise not_found("user")
        return profile

    def _get_live_delegation(self, session: Session, delegation_id: uuid.UUID) -> RoleDelegation:
        delegation = session.scalar(
            select(RoleDelegation).where(RoleDelegation.id == delegation_id, RoleDelegation.deleted_at.is_(None))
        )
        if delegation is None:
            raise not_found("delegation")
        return delegation

    def _to_role_permission_read(self, grant: RolePermission, permission: Permission) -> RolePermissionRead:
        return RolePermissionRead(
            id=grant.id,
            role_id=grant.role_id,
            permission_id=permission.id,
            permission_name=permission.name,
            grant_type=grant.grant_type,
            condition_type=grant.condition_type,
            status=grant.status,
            valid_from=grant.valid_from,
            valid_until=grant.valid_until,
            max_usage_count=grant.max_usage_count,
            current_usage_count=grant.current_usage_count,
            created_at=grant.created_at,
        )

    def _to_user_role_read(self, assignment: UserRole, *, at: datetime | None = None) -> UserRoleRead:
        role = assignment.role
        return UserRoleRead(
            id=assignment.id,
            user_id=assignment.user_id,
            role_id=assignment.role_id,
            role_name=role.name,
            role_type=role.role_type,
            status=assignment.status,
            is_primary=assignment.is_primary,
            assignment_type=assignment.assignment_type,
            valid_from=assignment.valid_from,
            valid_until=assignment.valid_until,
            requires_approval=assignment.requires_approval,
            approved_at=assignment.approved_at,
            approved_by=assignment.approved_by,
            compliance_status=assignment.compliance_status,
            is_effective=assignment.is_effective(at or utcnow()),
            version=assignment.version,
            created_at=assignment.created_at,
        )


rbac_service = RbacService()
