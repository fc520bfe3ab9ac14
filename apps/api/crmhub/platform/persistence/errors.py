from __future__ import annotations


class PersistenceError(Exception):
    """Base error for persistence rules enforced at flush time."""


class HardDeleteForbiddenError(PersistenceError):
    """Raised when a soft-deletable row is physically deleted through the ORM."""

    def __init__(self, table_name: str, record_id: str) -> None:
        self.table_name = table_name
        self.record_id = record_id
        super().__init__(f"Hard delete is not allowed on '{table_name}' ({record_id}); use soft delete")


class AuditLogImmutableError(PersistenceError):
    """Raised when an audit row is updated or deleted."""

    def __init__(self, record_id: str, operation: str) -> None:
        self.record_id = record_id
        self.operation = operation
        super().__init__(f"Audit log rows are append-only ({operation} on {record_id})")


class VersionConflictError(PersistenceError):
    def __init__(self, table_name: str, record_id: str, expected: int, actual: int) -> None:
        self.table_name = table_name
        self.record_id = record_id
        self.expected = expected
        self.actual = actual
        super().__init__(f"version conflict on '{table_name}' ({record_id}): expected {expected}, found {actual}")
