"""Error taxonomy of the permission engine.

Every expected failure is a ``PermissionEngineError`` carrying a stable ``code``
and an HTTP-equivalent ``status_code`` so transports can map it without knowing
the class tree. ``PermissionGraphIntegrityError`` is deliberately outside that
tree: it signals a corrupt store and must surface as a defect.
"""

from __future__ import annotations

from typing import Any


class PermissionEngineError(Exception):
    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(self, message: str, **details: Any) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class NotFoundError(PermissionEngineError):
    code = "NOT_FOUND"
    status_code = 404


class ProjectNotFoundError(NotFoundError):
    code = "PROJECT_NOT_FOUND"

    def __init__(self, project_id: str | None = None) -> None:
        super().__init__("project not found", project_id=project_id)


class TeamNotFoundError(NotFoundError):
    code = "TEAM_NOT_FOUND"

    def __init__(self, team_id: str) -> None:
        self.team_id = team_id
        super().__init__(f"team not found: {team_id}", team_id=team_id)


class UserNotFoundError(NotFoundError):
    code = "USER_NOT_FOUND"

    def __init__(self, user_id: str | None = None, team_id: str | None = None) -> None:
        super().__init__("user not found", user_id=user_id, team_id=team_id)


class PermissionNotFoundError(NotFoundError):
    code = "PERMISSION_NOT_FOUND"

    def __init__(self, permission_id: str) -> None:
        self.permission_id = permission_id
        super().__init__(f"permission not found: {permission_id}", permission_id=permission_id)


class PermissionScopeMismatchError(PermissionEngineError):
    code = "PERMISSION_SCOPE_MISMATCH"
    status_code = 400

    def __init__(self, permission_id: str, found_scope: str, expected_scope: str) -> None:
        self.permission_id = permission_id
        self.found_scope = found_scope
        self.expected_scope = expected_scope
        super().__init__(
            f"permission {permission_id} exists in {found_scope} scope, expected {expected_scope}",
            permission_id=permission_id,
            found_scope=found_scope,
            expected_scope=expected_scope,
        )


class ConflictError(PermissionEngineError):
    code = "PERMISSION_ID_CONFLICT"
    status_code = 409


class PermissionGraphIntegrityError(RuntimeError):
    def __init__(self, message: str, **details: Any) -> None:
        self.details = details
        super().__init__(message)


def error_payload(exc: BaseException) -> dict[str, Any]:
    if isinstance(exc, PermissionEngineError):
        return {
            "code": exc.code,
            "message": exc.message,
            "status_code": exc.status_code,
            "details": dict(exc.details),
        }
    return {
        "code": "INTERNAL_ERROR",
        "message": "an internal error occurred",
        "status_code": 500,
        "details": {},
    }
