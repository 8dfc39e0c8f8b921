"""Admin / Audit API router — read-only views of the audit trail and the login ledger."""

from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from dyncrud.core.security import Identity, require_admin
from dyncrud.db.session import get_audit_db, get_db
from dyncrud.schemas.schemas import AuditSessionOut, CrudAuditRecordOut, LoginAttemptOut
from dyncrud.services.audit_service import AuditRecorder
from dyncrud.services.ledger_service import LoginLedger

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/audit/crud")
def get_crud_audit(
    table_name: Optional[str] = Query(None),
    operation: Optional[str] = Query(None),
    actor: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_audit_db),
    identity: Identity = Depends(require_admin),
):
    """Query dynamic CRUD audit records (admin only)."""
    result = AuditRecorder.query_records(db, table_name, operation, actor, status, page, page_size)
    return {
        "records": [CrudAuditRecordOut.model_validate(r) for r in result["records"]],
        "total": result["total"],
        "page": result["page"],
    }


@router.get("/audit/logins")
def get_login_attempts(
    username: Optional[str] = Query(None),
    success: Optional[bool] = Query(None),
    ip: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_admin),
):
    """Query login attempts (admin only)."""
    result = LoginLedger.query_attempts(db, username, success, ip, page, page_size)
    return {
        "records": [LoginAttemptOut.model_validate(r) for r in result["records"]],
        "total": result["total"],
        "page": result["page"],
    }


@router.get("/audit/sessions")
def get_sessions(
    user_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_admin),
):
    """Query recorded sessions (admin only). Token hashes are not returned."""
    result = LoginLedger.query_sessions(db, user_id, page, page_size)
    return {
        "records": [AuditSessionOut.model_validate(r) for r in result["records"]],
        "total": result["total"],
        "page": result["page"],
    }


@router.get("/security-stats")
def security_stats(request: Request, identity: Identity = Depends(require_admin)):
    """Counters for the security dashboard."""
    return request.app.state.ledger.security_stats()
