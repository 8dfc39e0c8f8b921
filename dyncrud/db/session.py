"""Database engines, session factories, and dependency injection.

Two engines are created: one for the business tables touched by the dynamic
CRUD executor and one for the audit store. The audit engine always has its own
pool so a stalled business transaction never holds the connection an audit
write needs.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from typing import Any, Dict, Generator

from dyncrud.core.config import settings


def engine_options(url: str, pool_size: int) -> Dict[str, Any]:
    """Build create_engine() keyword arguments for the given URL."""
    options: Dict[str, Any] = {
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "echo": settings.DEBUG,
    }
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        return options

    options.update(pool_size=pool_size, max_overflow=pool_size * 2, pool_timeout=30)
    if url.startswith("mysql+pymysql"):
        # Statement timeouts surface as OperationalError (treated as transient)
        options["connect_args"] = {
            "read_timeout": settings.DB_STATEMENT_TIMEOUT_SECONDS,
            "write_timeout": settings.DB_STATEMENT_TIMEOUT_SECONDS,
        }
    return options


def make_engine(url: str, pool_size: int) -> Engine:
    return create_engine(url, **engine_options(url, pool_size))


# Business tables
engine = make_engine(settings.DATABASE_URL, settings.DB_POOL_SIZE)

# Audit store: separate pool, optionally a separate database
audit_engine = make_engine(
    settings.AUDIT_DATABASE_URL or settings.DATABASE_URL,
    max(settings.DB_POOL_SIZE // 4, 2),
)

# Session factories
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
AuditSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, expire_on_commit=False, bind=audit_engine
)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency that provides a DB session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_audit_db() -> Generator[Session, None, None]:
    """Read-only access to the audit store for monitoring endpoints."""
    db = AuditSessionLocal()
    try:
        yield db
    finally:
        db.close()
