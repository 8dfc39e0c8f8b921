"""CRUD executor — validation, statement execution and audit as one coordinated unit."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session, sessionmaker

from dyncrud.core.config import settings
from dyncrud.core.exceptions import (
    AuditWriteError,
    ConstraintViolationError,
    StorageError,
    TableNotAvailableError,
    TransientStorageError,
    ValidationError,
)
from dyncrud.executor.types import (
    CrudError,
    CrudRequest,
    CrudResult,
    Operation,
    ResultCode,
)
from dyncrud.models.audit_log import AuditStatus
from dyncrud.services.alert_service import raise_alert
from dyncrud.services.audit_service import AuditRecorder
from dyncrud.services.catalog_service import TableCatalog, TableDescriptor
from dyncrud.services.statement_builder import ParameterizedStatement, StatementBuilder

logger = logging.getLogger("dyncrud.executor")

_CONSTRAINT_REASONS = (
    (("duplicate", "unique"), "duplicate key"),
    (("foreign key",), "foreign key violation"),
    (("not null", "cannot be null"), "not null violation"),
    (("check constraint",), "check constraint violation"),
)


def classify_storage_error(error: sa_exc.SQLAlchemyError) -> StorageError:
    """Translate a SQLAlchemy/driver error into the platform taxonomy.

    The returned error carries a sanitized message only; the driver text is
    logged at debug level.
    """
    logger.debug("Storage error: %r", error)

    if isinstance(error, sa_exc.IntegrityError):
        text = str(error.orig or "").lower()
        for needles, reason in _CONSTRAINT_REASONS:
            if any(n in text for n in needles):
                return ConstraintViolationError(reason)
        return ConstraintViolationError("constraint violation")

    if isinstance(error, (sa_exc.OperationalError, sa_exc.TimeoutError)):
        return TransientStorageError("Storage temporarily unavailable")
    if isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated:
        return TransientStorageError("Storage connection lost")
    return StorageError("Storage operation failed")


@dataclass
class _Outcome:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    row: Optional[Dict[str, Any]] = None
    affected: int = 0
    total: Optional[int] = None
    found: bool = True


class _RowNotFound(Exception):
    pass


class _CommitAfterAudit(StorageError):
    """Commit failed after the SUCCESS audit record was already written."""


class CrudExecutor:
    """Runs one CrudRequest end to end and records exactly one audit record.

    The primary statement runs in a session opened per request and closed on
    every path. The audit record is written by the recorder through its own
    connection after the business transaction is settled, or just before the
    commit when the fail-closed policy is enabled.
    """

    def __init__(
        self,
        catalog: TableCatalog,
        builder: Optional[StatementBuilder] = None,
        recorder: Optional[AuditRecorder] = None,
        session_factory: Optional[sessionmaker] = None,
        retry_backoff_ms: Optional[int] = None,
        fail_closed: Optional[bool] = None,
    ):
        if session_factory is None:
            from dyncrud.db.session import SessionLocal
            session_factory = SessionLocal
        self.catalog = catalog
        self.builder = builder or StatementBuilder()
        self.recorder = recorder or AuditRecorder()
        self._session_factory = session_factory
        backoff = settings.CRUD_RETRY_BACKOFF_MS if retry_backoff_ms is None else retry_backoff_ms
        self._retry_delay = backoff / 1000.0
        self._fail_closed = settings.AUDIT_FAIL_CLOSED if fail_closed is None else fail_closed

    def execute(self, request: CrudRequest) -> CrudResult:
        """Execute ``request``. Never raises for expected outcomes."""
        operation = Operation(request.operation)

        # The gate has authenticated the caller already; refuse anyway without an actor
        if not request.actor or not str(request.actor).strip():
            return self._finish(
                request,
                AuditStatus.DENIED,
                CrudError(ResultCode.ACCESS_DENIED, "Access denied"),
                detail="missing actor",
            )

        try:
            descriptor = self.catalog.describe(request.table_name)
        except TableNotAvailableError as e:
            return self._finish(
                request,
                AuditStatus.DENIED,
                CrudError(ResultCode.TABLE_NOT_AVAILABLE, e.message),
                detail=f"table not in catalog: {request.table_name!r}",
            )

        try:
            statement = self.builder.build(request, descriptor)
        except ValidationError as e:
            return self._finish(
                request,
                AuditStatus.DENIED,
                CrudError(ResultCode.VALIDATION_FAILED, e.message, list(e.errors)),
                detail="validation failed: " + ", ".join(
                    f"{err.field or '-'}:{err.code}" for err in e.errors
                ),
                table_name=descriptor.name,
            )

        try:
            outcome = self._execute_with_retry(request, statement)
        except _RowNotFound:
            return self._finish(
                request,
                AuditStatus.FAILURE,
                CrudError(ResultCode.ROW_NOT_FOUND, "Row not found"),
                detail=f"no row with {descriptor.primary_key_column}={statement.key_value!r}",
                table_name=descriptor.name,
            )
        except AuditWriteError as e:
            return self._finish(
                request,
                AuditStatus.FAILURE,
                CrudError(ResultCode.AUDIT_UNAVAILABLE, e.message),
                detail="rolled back: audit store unavailable",
                table_name=descriptor.name,
            )
        except _CommitAfterAudit as e:
            # The pre-commit record stands; the mismatch alert is the evidence
            logger.error("Commit failed after audit for %s on %s", operation.value, descriptor.name)
            return CrudResult(
                status=AuditStatus.FAILURE,
                operation=operation,
                table_name=descriptor.name,
                error=CrudError(ResultCode.STORAGE_FAILURE, e.message),
            )
        except StorageError as e:
            return self._finish(
                request,
                AuditStatus.FAILURE,
                CrudError(ResultCode(e.code), e.message),
                detail=e.message,
                table_name=descriptor.name,
            )
        except Exception:
            logger.exception("Unexpected error executing %s on %s", operation.value, descriptor.name)
            return self._finish(
                request,
                AuditStatus.FAILURE,
                CrudError(ResultCode.STORAGE_FAILURE, "Storage operation failed"),
                detail="unexpected executor error",
                table_name=descriptor.name,
            )

        result = CrudResult(
            status=AuditStatus.SUCCESS,
            operation=operation,
            table_name=descriptor.name,
            rows=outcome.rows,
            row=outcome.row,
            affected=outcome.affected,
            total=outcome.total,
        )
        if self._fail_closed and operation.is_mutation:
            # Already audited before the commit
            return result
        result.audited = self._audit(
            request, AuditStatus.SUCCESS, _success_detail(operation, outcome), None, descriptor.name
        )
        return result

    # ---- execution ----

    def _execute_with_retry(self, request: CrudRequest, statement: ParameterizedStatement) -> _Outcome:
        """Run the statement, retrying a transient failure once after a backoff."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._run_statement(request, statement)
            except TransientStorageError as e:
                if attempt > 1:
                    raise
                logger.warning(
                    "Transient failure on %s %s (%s), retrying in %.0fms",
                    statement.operation.value, statement.descriptor.name, e.message,
                    self._retry_delay * 1000,
                )
                time.sleep(self._retry_delay * attempt)

    def _run_statement(self, request: CrudRequest, statement: ParameterizedStatement) -> _Outcome:
        db: Session = self._session_factory()
        try:
            outcome = self._dispatch(db, statement)
            if not outcome.found:
                db.rollback()
                raise _RowNotFound()
            if statement.operation.is_mutation:
                if self._fail_closed:
                    self._audit_before_commit(db, request, statement, outcome)
                self._commit(db, request, statement)
            else:
                db.rollback()
            return outcome
        except sa_exc.SQLAlchemyError as e:
            db.rollback()
            raise classify_storage_error(e) from e
        finally:
            db.close()

    def _commit(self, db: Session, request: CrudRequest, statement: ParameterizedStatement) -> None:
        try:
            db.commit()
        except sa_exc.SQLAlchemyError as e:
            if self._fail_closed:
                raise_alert(
                    "audit_commit_mismatch",
                    {
                        "table_name": statement.descriptor.name,
                        "operation": statement.operation.value,
                        "actor": request.actor,
                        "request_id": request.request_id,
                    },
                    e,
                )
                raise _CommitAfterAudit("Storage operation failed") from e
            raise

    def _audit_before_commit(
        self,
        db: Session,
        request: CrudRequest,
        statement: ParameterizedStatement,
        outcome: _Outcome,
    ) -> None:
        ok = self.recorder.record(
            statement.descriptor.name,
            statement.operation.value,
            request.actor,
            AuditStatus.SUCCESS,
            _success_detail(statement.operation, outcome),
            request_id=request.request_id,
            client_ip=request.client_ip,
            replay=False,
        )
        if not ok:
            db.rollback()
            raise AuditWriteError("Audit store unavailable; operation rolled back")

    def _dispatch(self, db: Session, statement: ParameterizedStatement) -> _Outcome:
        op = statement.operation
        descriptor = statement.descriptor

        if op == Operation.LIST:
            rows = [dict(r._mapping) for r in db.execute(statement.statement)]
            total = db.execute(statement.count_statement).scalar_one()
            return _Outcome(rows=rows, total=total, affected=len(rows))

        if op == Operation.READ:
            row = _first(db, statement.statement)
            return _Outcome(row=row, affected=int(row is not None), found=row is not None)

        if op == Operation.CREATE:
            result = db.execute(statement.statement)
            key = statement.key_value
            if key is None and result.inserted_primary_key:
                key = result.inserted_primary_key[0]
            row = _select_by_key(db, descriptor, key) if key is not None else None
            return _Outcome(row=row or dict(statement.values), affected=result.rowcount or 1)

        if op == Operation.UPDATE:
            result = db.execute(statement.statement)
            if result.rowcount == 0:
                return _Outcome(found=False)
            return _Outcome(
                row=_select_by_key(db, descriptor, statement.key_value),
                affected=result.rowcount,
            )

        result = db.execute(statement.statement)
        return _Outcome(affected=result.rowcount, found=result.rowcount > 0)

    # ---- audit ----

    def _finish(
        self,
        request: CrudRequest,
        status: AuditStatus,
        error: CrudError,
        detail: str,
        table_name: Optional[str] = None,
    ) -> CrudResult:
        operation = Operation(request.operation)
        log = logger.info if status == AuditStatus.DENIED else logger.warning
        log(
            "%s %s on %s by %s: %s",
            status.value, operation.value, table_name or "<unlisted>", request.actor or "<none>", error.code.value,
        )
        audited = self._audit(request, status, detail, error.code.value, table_name or request.table_name)
        return CrudResult(
            status=status,
            operation=operation,
            table_name=table_name or "",
            error=error,
            audited=audited,
        )

    def _audit(
        self,
        request: CrudRequest,
        status: AuditStatus,
        detail: Optional[str],
        error_code: Optional[str],
        table_name: str,
    ) -> bool:
        return self.recorder.record(
            table_name,
            Operation(request.operation).value,
            request.actor,
            status,
            detail,
            error_code=error_code,
            request_id=request.request_id,
            client_ip=request.client_ip,
        )


def _first(db: Session, stmt) -> Optional[Dict[str, Any]]:
    row = db.execute(stmt).first()
    return dict(row._mapping) if row is not None else None


def _select_by_key(db: Session, descriptor: TableDescriptor, key: Any) -> Optional[Dict[str, Any]]:
    table = descriptor.table
    return _first(db, sa.select(*table.c).where(table.c[descriptor.primary_key_column] == key))


def _success_detail(operation: Operation, outcome: _Outcome) -> str:
    if operation == Operation.LIST:
        return f"{len(outcome.rows)} of {outcome.total} row(s)"
    if operation == Operation.DELETE:
        return f"{outcome.affected} row(s) deleted"
    return f"{outcome.affected} row(s)"
