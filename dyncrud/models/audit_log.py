"""Dynamic CRUD audit model — append-only."""

import enum

from sqlalchemy import Column, Integer, String, DateTime, Index, func
from dyncrud.db.base import Base


class AuditStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    DENIED = "DENIED"
    FAILURE = "FAILURE"


class CrudAuditRecord(Base):
    """One row per attempted dynamic CRUD operation.

    This table is APPEND-ONLY: the application never updates or deletes rows,
    and it can never be registered in the table catalog. Retention is an
    operational concern.
    """
    __tablename__ = "audit_dynamic_crud"
    __table_args__ = (
        Index("idx_audit_dynamic_crud_table_created", "table_name", "created_at"),
        Index("idx_audit_dynamic_crud_op_created", "operation", "created_at"),
        Index("idx_audit_dynamic_crud_status_created", "status", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    table_name = Column(String(128), nullable=False, index=True)
    operation = Column(String(16), nullable=False, index=True)  # LIST, READ, CREATE, UPDATE, DELETE
    actor = Column(String(255), nullable=False, index=True)
    status = Column(String(16), nullable=False)  # SUCCESS, DENIED, FAILURE
    detail = Column(String(500), nullable=True)
    error_code = Column(String(64), nullable=True)
    request_id = Column(String(64), nullable=True)
    client_ip = Column(String(45), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)
