"""Session model — sessions opened by successful logins."""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, func
from dyncrud.db.base import Base


class AuditSession(Base):
    """Active session record. Stores a one-way hash of the token, never the token."""
    __tablename__ = "audit_sessions"
    __table_args__ = (
        Index("idx_audit_sessions_user_created", "user_id", "created_at"),
        Index("idx_audit_sessions_ip_created", "ip_address", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    token_hash = Column(String(64), nullable=False, index=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)
