"""Login attempt model — append-only security ledger."""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Index, func
from dyncrud.db.base import Base


class LoginAttempt(Base):
    """Every authentication attempt, successful or not.

    ``failure_reason`` is set if and only if ``success`` is false.
    """
    __tablename__ = "audit_login_attempts"
    __table_args__ = (
        Index("idx_audit_login_attempts_username_created", "username", "created_at"),
        Index("idx_audit_login_attempts_ip_created", "ip_address", "created_at"),
        Index("idx_audit_login_attempts_success_created", "success", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), nullable=False, index=True)
    success = Column(Boolean, nullable=False)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
    failure_reason = Column(String(500), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)
