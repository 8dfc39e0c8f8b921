"""Audit recorder — append-only trail of every attempted dynamic CRUD operation."""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session, sessionmaker

from dyncrud.core.config import settings
from dyncrud.core.exceptions import AuditWriteError
from dyncrud.models.audit_log import AuditStatus, CrudAuditRecord
from dyncrud.services.alert_service import escalate_audit_failure

logger = logging.getLogger("dyncrud.audit")

FailureHook = Callable[[Dict[str, Any], BaseException, bool], None]


def truncate_detail(detail: Optional[str], limit: Optional[int] = None) -> Optional[str]:
    """Bound a detail message to the audit column width."""
    if detail is None:
        return None
    limit = limit or settings.AUDIT_DETAIL_MAX_LENGTH
    detail = " ".join(str(detail).split())
    return detail if len(detail) <= limit else detail[: limit - 3] + "..."


def persist_audit_entry(session_factory: sessionmaker, entry: Dict[str, Any]) -> int:
    """Insert one audit row in its own transaction and return its id."""
    db: Session = session_factory()
    try:
        record = CrudAuditRecord(**entry)
        db.add(record)
        db.commit()
        return record.id
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


class AuditRecorder:
    """Writes audit records through an independent session and pool.

    The write is never part of the caller's transaction. The caller waits at
    most ``timeout`` seconds; a slow or failed write is escalated through
    ``on_failure`` and ``record`` returns False instead of raising.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        timeout: Optional[float] = None,
        workers: Optional[int] = None,
        on_failure: Optional[FailureHook] = None,
    ):
        if session_factory is None:
            from dyncrud.db.session import AuditSessionLocal
            session_factory = AuditSessionLocal
        self._session_factory = session_factory
        self._timeout = timeout if timeout is not None else settings.AUDIT_TIMEOUT_SECONDS
        self._pool = ThreadPoolExecutor(
            max_workers=workers or settings.AUDIT_WORKERS,
            thread_name_prefix="audit-writer",
        )
        self._on_failure = on_failure or escalate_audit_failure

    def record(
        self,
        table_name: str,
        operation: str,
        actor: str,
        status: AuditStatus,
        detail: Optional[str] = None,
        *,
        error_code: Optional[str] = None,
        request_id: Optional[str] = None,
        client_ip: Optional[str] = None,
        replay: bool = True,
    ) -> bool:
        """Persist one audit record. Returns True once it is durable.

        ``replay=False`` escalates a failed write without queueing it for
        replay; used for records whose outcome is not final yet.
        """
        entry = {
            "table_name": (table_name or "")[:128],
            "operation": str(getattr(operation, "value", operation)),
            "actor": (actor or "<anonymous>")[:255],
            "status": AuditStatus(status).value,
            "detail": truncate_detail(detail),
            "error_code": error_code,
            "request_id": request_id,
            "client_ip": client_ip,
            "created_at": datetime.now(timezone.utc).replace(tzinfo=None),
        }
        future = self._pool.submit(persist_audit_entry, self._session_factory, entry)
        try:
            record_id = future.result(timeout=self._timeout)
        except FutureTimeout:
            # The write may still land; only replay it if it finally fails.
            self._on_failure(
                entry, AuditWriteError(f"Audit write exceeded {self._timeout}s"), False
            )
            future.add_done_callback(lambda f: self._late_result(entry, f, replay))
            return False
        except Exception as e:
            self._on_failure(entry, e, replay)
            return False

        logger.debug(
            "audit #%s %s %s by %s -> %s",
            record_id, entry["operation"], entry["table_name"], entry["actor"], entry["status"],
        )
        return True

    def _late_result(self, entry: Dict[str, Any], future: Future, replay: bool) -> None:
        error = future.exception()
        if error is not None:
            self._on_failure(entry, error, replay)
        else:
            logger.warning("Late audit write completed for %s %s", entry["operation"], entry["table_name"])

    def shutdown(self) -> None:
        self._pool.shutdown(wait=True)

    @staticmethod
    def query_records(
        db: Session,
        table_name: Optional[str] = None,
        operation: Optional[str] = None,
        actor: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Dict[str, Any]:
        """Query audit records with filters and pagination (read-only)."""
        query = db.query(CrudAuditRecord)

        if table_name:
            query = query.filter(CrudAuditRecord.table_name == table_name)
        if operation:
            query = query.filter(CrudAuditRecord.operation == operation.upper())
        if actor:
            query = query.filter(CrudAuditRecord.actor == actor)
        if status:
            query = query.filter(CrudAuditRecord.status == status.upper())

        total = query.count()
        records = (
            query.order_by(CrudAuditRecord.created_at.desc(), CrudAuditRecord.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )

        return {
            "records": records,
            "total": total,
            "page": page,
            "page_size": page_size,
        }
