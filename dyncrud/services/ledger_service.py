"""Login/session ledger — append-only record of authentication attempts and sessions."""

import hashlib
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from dyncrud.core.config import settings
from dyncrud.core.exceptions import AuditWriteError, ResourceNotFoundError
from dyncrud.models.audit_session import AuditSession
from dyncrud.models.login_attempt import LoginAttempt
from dyncrud.models.user import User
from dyncrud.services.alert_service import escalate_ledger_failure

logger = logging.getLogger("dyncrud.ledger")

_TOKEN_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


def hash_token(raw_token: str) -> str:
    """One-way SHA-256 digest of a session token (hex)."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _clip(value: Optional[str], length: int) -> Optional[str]:
    return value[:length] if value else value


class LoginLedger:
    """Writes login attempts and sessions, each in its own committed transaction.

    A write that fails twice is escalated and the error propagates: an
    attempt is never dropped silently.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        on_failure: Optional[Callable[[Dict[str, Any], BaseException], None]] = None,
    ):
        if session_factory is None:
            from dyncrud.db.session import SessionLocal
            session_factory = SessionLocal
        self._session_factory = session_factory
        self._on_failure = on_failure or escalate_ledger_failure

    def record_attempt(
        self,
        username: str,
        success: bool,
        ip: Optional[str],
        user_agent: Optional[str],
        failure_reason: Optional[str] = None,
    ) -> int:
        """Record one authentication attempt and return its id.

        ``failure_reason`` is kept only for failed attempts.
        """
        if success and failure_reason:
            logger.warning("Dropping failure reason %r on a successful login for %s", failure_reason, username)
            failure_reason = None
        elif not success and not failure_reason:
            failure_reason = "unspecified"

        entry = {
            "username": _clip(username or "", 255),
            "success": bool(success),
            "ip_address": _clip(ip, 45),
            "user_agent": _clip(user_agent, 500),
            "failure_reason": _clip(failure_reason, 500),
            "created_at": _utcnow(),
        }
        return self._write(LoginAttempt, entry)

    def record_session(
        self,
        user_id: int,
        token_hash: str,
        ip: Optional[str],
        user_agent: Optional[str],
    ) -> int:
        """Record a session opened by a successful login and return its id.

        Raises:
            ResourceNotFoundError: if ``user_id`` does not reference an account.
            ValueError: if ``token_hash`` is not a SHA-256 hex digest.
        """
        if not isinstance(token_hash, str) or not _TOKEN_HASH_RE.match(token_hash):
            raise ValueError("token_hash must be a SHA-256 hex digest")

        entry = {
            "user_id": user_id,
            "token_hash": token_hash,
            "ip_address": _clip(ip, 45),
            "user_agent": _clip(user_agent, 500),
            "created_at": _utcnow(),
        }
        return self._write(AuditSession, entry, require_user=True)

    def _write(self, model, entry: Dict[str, Any], require_user: bool = False) -> int:
        attempts = 2
        for attempt in range(1, attempts + 1):
            db: Session = self._session_factory()
            try:
                if require_user and db.get(User, entry["user_id"]) is None:
                    raise ResourceNotFoundError(f"User {entry['user_id']} not found")
                record = model(**entry)
                db.add(record)
                db.commit()
                return record.id
            except SQLAlchemyError as e:
                db.rollback()
                if attempt < attempts:
                    logger.warning("Ledger write to %s failed, retrying: %s", model.__tablename__, e)
                    continue
                self._on_failure({"table": model.__tablename__, **entry}, e)
                raise AuditWriteError("Login ledger unavailable") from e
            finally:
                db.close()

    def count_failures(
        self,
        username: Optional[str] = None,
        ip: Optional[str] = None,
        window_seconds: Optional[int] = None,
    ) -> int:
        """Count failed attempts for a username and/or IP inside a time window."""
        window = window_seconds or settings.LOGIN_FAILURE_WINDOW_SECONDS
        since = _utcnow() - timedelta(seconds=window)
        db: Session = self._session_factory()
        try:
            query = db.query(func.count(LoginAttempt.id)).filter(
                LoginAttempt.success.is_(False),
                LoginAttempt.created_at >= since,
            )
            if username:
                query = query.filter(LoginAttempt.username == username)
            if ip:
                query = query.filter(LoginAttempt.ip_address == ip)
            return query.scalar() or 0
        finally:
            db.close()

    def security_stats(self) -> Dict[str, int]:
        """Counters for the security dashboard."""
        now = _utcnow()
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        db: Session = self._session_factory()
        try:
            return {
                "total_users": db.query(func.count(User.id)).scalar() or 0,
                "sessions_last_24h": db.query(func.count(AuditSession.id))
                .filter(AuditSession.created_at >= now - timedelta(hours=24))
                .scalar() or 0,
                "login_attempts_today": db.query(func.count(LoginAttempt.id))
                .filter(LoginAttempt.created_at >= today)
                .scalar() or 0,
                "failed_logins_today": db.query(func.count(LoginAttempt.id))
                .filter(LoginAttempt.created_at >= today, LoginAttempt.success.is_(False))
                .scalar() or 0,
            }
        finally:
            db.close()

    @staticmethod
    def query_attempts(
        db: Session,
        username: Optional[str] = None,
        success: Optional[bool] = None,
        ip: Optional[str] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Dict[str, Any]:
        query = db.query(LoginAttempt)
        if username:
            query = query.filter(LoginAttempt.username == username)
        if success is not None:
            query = query.filter(LoginAttempt.success.is_(success))
        if ip:
            query = query.filter(LoginAttempt.ip_address == ip)

        total = query.count()
        records = (
            query.order_by(LoginAttempt.created_at.desc(), LoginAttempt.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return {"records": records, "total": total, "page": page, "page_size": page_size}

    @staticmethod
    def query_sessions(
        db: Session,
        user_id: Optional[int] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Dict[str, Any]:
        query = db.query(AuditSession)
        if user_id is not None:
            query = query.filter(AuditSession.user_id == user_id)

        total = query.count()
        records = (
            query.order_by(AuditSession.created_at.desc(), AuditSession.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return {"records": records, "total": total, "page": page, "page_size": page_size}
