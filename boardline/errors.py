from __future__ import annotations

from typing import Any, Optional


class BoardlineError(Exception):
    """Base for every typed failure surfaced by the mutation gate."""

    code = "internal_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidIdentifier(BoardlineError):
    code = "invalid_identifier"
    status_code = 400


class NotFound(BoardlineError):
    code = "not_found"
    status_code = 404


class Forbidden(BoardlineError):
    code = "forbidden"
    status_code = 403


class InvalidOperation(BoardlineError):
    code = "invalid_operation"
    status_code = 400


class CrossWorkspaceNotAllowed(InvalidOperation):
    code = "cross_workspace_not_allowed"


class Conflict(BoardlineError):
    """A concurrent commit touched the same ordering; retry with a fresh read."""

    code = "conflict"
    status_code = 409


class InconsistentHierarchy(BoardlineError):
    """The stored hierarchy disagrees with itself or with the claimed parent."""

    code = "inconsistent_hierarchy"
    status_code = 409


class InternalError(BoardlineError):
    code = "internal_error"
    status_code = 500
