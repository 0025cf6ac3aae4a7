"""
HTTP API for the study content repository.

The caller's workspace is passed as the `user` query parameter on inbox
routes. Domain errors map to status codes through RepositoryError.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    AssignRequest,
    AuditRequest,
    DatasetSubmitRequest,
    HealthResponse,
    MoveToSharedRequest,
    ReconcileRequest,
    SchoolCreateRequest,
    WorkspaceCreateRequest,
)
from ..core.auditor import content_auditor
from ..core.catalog import get_merged_catalog
from ..core.config import VERSION, debug_enabled, validate_store_config
from ..core.errors import InvalidInputError, RepositoryError
from ..core.inbox import InboxWorkflow
from ..core.maintenance import reconcile_catalogs
from ..core.store import FileStore
from ..util.logging import logger


@dataclass
class Repository:
    """Services shared by every request of one app instance."""
    store: FileStore
    workflow: InboxWorkflow


def get_repository(request: Request) -> Repository:
    return request.app.state.repository


router = APIRouter(prefix="/api")


@router.get("/health", response_model=HealthResponse, response_model_by_alias=True)
def health_check_endpoint(repo: Repository = Depends(get_repository)):
    """Check system health."""
    return HealthResponse(
        ok=True,
        mode="disk",
        version=VERSION,
        content_dir=str(repo.store.content_dir),
        timestamp=datetime.now(timezone.utc),
        config_issues=validate_store_config()
    )


# Workspaces

@router.post("/workspaces")
def create_workspace_endpoint(request: WorkspaceCreateRequest, repo: Repository = Depends(get_repository)):
    """Create a workspace with empty catalogs."""
    meta = repo.store.create_workspace(
        request.id,
        request.display_name,
        school_id=request.school_id,
        enabled_subject_ids=request.enabled_subject_ids
    )
    return {"ok": True, "workspace": meta.to_dict()}


@router.get("/workspaces")
def list_workspaces_endpoint(repo: Repository = Depends(get_repository)):
    """List active workspaces."""
    return {"ok": True, "workspaces": [m.to_dict() for m in repo.store.list_workspaces()]}


@router.post("/workspaces/{workspace_id}/deactivate")
def deactivate_workspace_endpoint(workspace_id: str, repo: Repository = Depends(get_repository)):
    """Soft-delete a workspace."""
    meta = repo.store.deactivate_workspace(workspace_id)
    return {"ok": True, "workspace": meta.to_dict()}


@router.get("/workspaces/{workspace_id}/context")
def workspace_context_endpoint(workspace_id: str, repo: Repository = Depends(get_repository)):
    """Workspace, school and the subjects the workspace can access."""
    context = repo.store.get_workspace_context(workspace_id)
    return {"ok": True, **context.to_dict()}


@router.get("/workspaces/{workspace_id}/topics")
def list_topics_endpoint(workspace_id: str, type: str = Query("flashcard"), scope: str = Query("merged"),
                         repo: Repository = Depends(get_repository)):
    """Catalog entries for one content type; merged with shared entries by default."""
    if scope == "merged":
        entries = get_merged_catalog(repo.store, workspace_id, type)
    elif scope == "personal":
        entries = repo.store.list_catalog(workspace_id, type)
    else:
        raise InvalidInputError("scope must be merged or personal")
    return {"ok": True, "type": type, "scope": scope, "topics": [e.to_dict() for e in entries]}


@router.get("/workspaces/{workspace_id}/datasets/{file_name}")
def get_dataset_endpoint(workspace_id: str, file_name: str, repo: Repository = Depends(get_repository)):
    """Dataset body, personal copy first."""
    return repo.store.get_dataset(workspace_id, file_name)


@router.post("/workspaces/{workspace_id}/datasets")
def submit_dataset_endpoint(workspace_id: str, request: DatasetSubmitRequest, repo: Repository = Depends(get_repository)):
    """Audit, store and open an inbox record for a dataset."""
    result = repo.workflow.submit(workspace_id, request.type, request.subject, request.name, request.data)
    return result.to_dict()


@router.post("/audit")
def audit_endpoint(request: AuditRequest):
    """Dry-run audit; nothing is stored."""
    report = content_auditor.audit(request.type, request.data)
    return {"ok": True, "audit": report.to_dict()}


# Schools

@router.post("/schools")
def create_school_endpoint(request: SchoolCreateRequest, repo: Repository = Depends(get_repository)):
    """Register a school and its subjects."""
    school = repo.store.create_school(
        request.id,
        [s.model_dump() for s in request.subjects],
        name=request.name
    )
    return {"ok": True, "school": school.to_dict()}


@router.get("/schools/{school_id}")
def get_school_endpoint(school_id: str, repo: Repository = Depends(get_repository)):
    """School subject registry."""
    return {"ok": True, "school": repo.store.get_school(school_id).to_dict()}


# Inbox

@router.get("/inbox")
def list_inbox_endpoint(status: Optional[str] = None, repo: Repository = Depends(get_repository)):
    """All inbox records, newest first."""
    records = repo.workflow.list_inbox(status)
    return {"ok": True, "records": [r.to_dict() for r in records]}


@router.get("/inbox/{record_id}")
def inbox_detail_endpoint(record_id: str, user: str = Query(...), repo: Repository = Depends(get_repository)):
    """Record and dataset body for the owning workspace."""
    detail = repo.workflow.get_detail(record_id, user)
    return {"ok": True, "record": detail["record"].to_dict(), "body": detail["body"]}


@router.post("/inbox/{record_id}/move-to-user")
def move_to_user_endpoint(record_id: str, user: str = Query(...), repo: Repository = Depends(get_repository)):
    """Keep a submission as personal content."""
    record = repo.workflow.move_to_user(record_id, user)
    return {"ok": True, "record": record.to_dict()}


@router.post("/inbox/{record_id}/move-to-shared")
def move_to_shared_endpoint(record_id: str, request: Optional[MoveToSharedRequest] = None, user: str = Query(...),
                            repo: Repository = Depends(get_repository)):
    """Publish a submission to the shared catalog."""
    request = request or MoveToSharedRequest()
    record = repo.workflow.move_to_shared(
        record_id,
        user,
        create_subject_if_missing=request.create_subject_if_missing,
        target_subject_id=request.target_subject_id
    )
    return {"ok": True, "record": record.to_dict()}


@router.post("/inbox/{record_id}/reject")
def reject_endpoint(record_id: str, user: str = Query(...), repo: Repository = Depends(get_repository)):
    """Reject a submission."""
    record = repo.workflow.reject(record_id, user)
    return {"ok": True, "record": record.to_dict()}


@router.post("/inbox/{record_id}/assign")
def assign_endpoint(record_id: str, request: AssignRequest, user: str = Query(...),
                    repo: Repository = Depends(get_repository)):
    """Route a submission to an explicit scope and subject."""
    record = repo.workflow.assign(
        record_id,
        user,
        target_scope=request.target_scope,
        target_subject_id=request.target_subject_id,
        target_tenant_id=request.target_user_id,
        target_school_id=request.target_school_id,
        create_subject_if_missing=request.create_subject_if_missing
    )
    return {"ok": True, "record": record.to_dict()}


# Maintenance

@router.post("/admin/reconcile")
def reconcile_endpoint(request: Optional[ReconcileRequest] = None, repo: Repository = Depends(get_repository)):
    """Find, and optionally repair, drift between dataset bodies and catalog indexes."""
    request = request or ReconcileRequest()
    report = reconcile_catalogs(repo.store, apply=request.apply)
    return {"ok": not report.errors, "report": report.to_dict()}


# Error handling

async def repository_error_handler(request: Request, exc: RepositoryError):
    """Render domain errors with their mapped status code."""
    if exc.status_code >= 500:
        logger.error(f"{exc.kind} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and parameters are InvalidInput."""
    errors = [f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in exc.errors()]
    return JSONResponse(status_code=400, content={"ok": False, "kind": "InvalidInput", "errors": errors})


async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions."""
    logging.error(f"Unhandled exception: {exc}")
    content = {"ok": False, "kind": "Internal", "errors": ["Internal server error"]}
    if debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(status_code=500, content=content)


def create_app(content_dir: Optional[str] = None) -> FastAPI:
    """Build an app bound to one content directory."""
    app = FastAPI(
        title="Study Content Repository API",
        version=VERSION,
        description="Multi-tenant study content repository with content audit and inbox moderation",
        docs_url="/docs" if debug_enabled() else None,
        redoc_url="/redoc" if debug_enabled() else None
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = FileStore(content_dir)
    app.state.repository = Repository(store=store, workflow=InboxWorkflow(store))

    app.include_router(router)
    app.add_exception_handler(RepositoryError, repository_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    return app


# Initialize the FastAPI application
app = create_app()
