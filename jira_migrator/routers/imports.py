"""Jira project import endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from jira_migrator.core.deps import get_current_user, get_file_storage, get_import_registry, require_admin
from jira_migrator.db.session import get_db
from jira_migrator.integrations.jira.schemas import (
    ImportStartResponse,
    ImportStatusOut,
    JiraCredentials,
    JiraImportRequest,
    JiraInfoOut,
)
from jira_migrator.models.user import User
from jira_migrator.services.issues_import import service
from jira_migrator.services.issues_import.registry import ImportRegistry
from jira_migrator.services.storage import FileStorage

router = APIRouter()


@router.post("/info/", response_model=JiraInfoOut)
def jira_info(payload: JiraCredentials, _: User = Depends(get_current_user)) -> JiraInfoOut:
    return service.get_jira_info(payload.username, payload.token, payload.jira_url)


@router.post("/start/{project_key}/", response_model=ImportStartResponse, status_code=status.HTTP_202_ACCEPTED)
def start_import(
    project_key: str,
    payload: JiraImportRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    registry: ImportRegistry = Depends(get_import_registry),
    storage: FileStorage = Depends(get_file_storage),
) -> ImportStartResponse:
    context = service.start_import(db, registry, user, project_key, payload, storage=storage)
    return ImportStartResponse(id=context.id, project_key=context.project_key)


@router.get("/status/", response_model=list[ImportStatusOut])
def my_imports(
    user: User = Depends(get_current_user),
    registry: ImportRegistry = Depends(get_import_registry),
) -> list[ImportStatusOut]:
    return registry.get_user_imports(user.id)


@router.get("/status/{import_id}/", response_model=ImportStatusOut)
def import_status(
    import_id: str,
    user: User = Depends(get_current_user),
    registry: ImportRegistry = Depends(get_import_registry),
) -> ImportStatusOut:
    return registry.get_user_import_status(import_id, user.id)


@router.post("/cancel/{import_id}/", status_code=status.HTTP_204_NO_CONTENT)
def cancel_import(
    import_id: str,
    user: User = Depends(get_current_user),
    registry: ImportRegistry = Depends(get_import_registry),
) -> Response:
    registry.cancel_import(import_id, user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/active/", response_model=list[ImportStatusOut])
def active_imports(
    _: User = Depends(require_admin),
    registry: ImportRegistry = Depends(get_import_registry),
) -> list[ImportStatusOut]:
    return registry.get_active_imports()


@router.post("/workspaces/{workspace_id}/cancel/")
def cancel_workspace_imports(
    workspace_id: UUID,
    _: User = Depends(require_admin),
    registry: ImportRegistry = Depends(get_import_registry),
) -> dict[str, int]:
    return {"cancelled": registry.cancel_workspace_imports(workspace_id)}
