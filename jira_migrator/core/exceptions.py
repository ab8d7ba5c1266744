"""Custom exceptions for application-specific error handling."""

from __future__ import annotations

from typing import Optional, Dict, Any


class MigratorException(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 400,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code
        self.headers = headers
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class NotFoundError(MigratorException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str = "not_found", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="NOT_FOUND", details=details, status_code=404)


# ===== JIRA EXCEPTIONS =====


class JiraException(MigratorException):
    """Base exception for Jira-related errors."""


class JiraUnauthorizedError(JiraException):
    """Raised when Jira rejects the supplied credentials."""

    def __init__(self, message: str = "Invalid Jira credentials"):
        super().__init__(message, error_code="JIRA_INVALID_CREDENTIALS", status_code=401)


# ===== IMPORT EXCEPTIONS =====


class ImportException(MigratorException):
    """Base exception for project import errors."""


class AlreadyImportingError(ImportException):
    """Raised when the actor already has an unfinished import."""

    def __init__(self, actor_id: str):
        super().__init__(
            "already importing",
            error_code="ALREADY_IMPORTING",
            details={"actor_id": actor_id},
            status_code=409,
        )


class ProjectConflictError(ImportException):
    """Raised when the target workspace already has a project with the same identifier."""

    def __init__(self, project_key: str):
        super().__init__(
            f"Project {project_key} already exists in target workspace",
            error_code="PROJECT_CONFLICT",
            details={"project_key": project_key},
            status_code=409,
        )


class TargetWorkspaceNotFoundError(ImportException):
    """Raised when the workspace does not exist or the actor is not its admin."""

    def __init__(self, workspace_id: str):
        super().__init__(
            "Target workspace not found or actor is not an admin",
            error_code="TARGET_WORKSPACE_NOT_FOUND",
            details={"workspace_id": workspace_id},
            status_code=403,
        )


class ImportCancelled(ImportException):
    """Terminal state of an import stopped by an operator."""

    def __init__(self, message: str = "import canceled"):
        super().__init__(message, error_code="IMPORT_CANCELED", status_code=409)


class ImportFetchError(ImportException):
    """Raised when project information cannot be fetched from Jira."""

    def __init__(self, message: str = "get project info error"):
        super().__init__(message, error_code="IMPORT_FETCH_ERROR", status_code=502)


class ImportSaveError(ImportException):
    """Raised when the staged project cannot be committed to the database."""

    def __init__(self, message: str = "save project to database error"):
        super().__init__(message, error_code="IMPORT_SAVE_ERROR", status_code=500)


class MappingError(ImportException):
    """Raised when one Jira entity cannot be translated."""

    def __init__(self, message: str, *, key: Optional[str] = None):
        details = {"key": key} if key else {}
        super().__init__(message, error_code="MAPPING_ERROR", details=details, status_code=422)


# ===== AUTHENTICATION/AUTHORIZATION EXCEPTIONS =====


class AuthenticationException(MigratorException):
    """Base exception for authentication errors."""


class ExpiredTokenError(AuthenticationException):
    """Raised when token has expired."""

    def __init__(self, message: str = "Token has expired"):
        super().__init__(message, error_code="EXPIRED_TOKEN", status_code=401)


class InsufficientPermissionsError(AuthenticationException):
    """Raised when user lacks required permissions."""

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, error_code="INSUFFICIENT_PERMISSIONS", status_code=403)
