from __future__ import annotations


class AuthorizationError(Exception):
    """Raised by the row and field policies; services turn it into a 403."""


class RowAccessDeniedError(AuthorizationError):
    def __init__(self, resource: str, policy: str, action: str, record_id: str | None = None) -> None:
        self.resource = resource
        self.policy = policy
        self.action = action
        self.record_id = record_id
        target = f"{resource} row {record_id}" if record_id else resource
        super().__init__(f"{policy} policy does not allow {action} on {target}")


class ForbiddenFieldError(AuthorizationError):
    """The payload names fields the caller may not write (read-only or sensitive without a grant)."""

    def __init__(self, resource: str, fields: list[str]) -> None:
        self.resource = resource
        self.fields = sorted(set(fields))
        super().__init__(f"{resource}: fields not writable: {', '.join(self.fields)}")
