"""Pytest configuration for the dynamic CRUD test suite."""

import json
import os
import tempfile
from pathlib import Path

import pytest
import sqlalchemy as sa

_TMP = Path(tempfile.mkdtemp(prefix="dyncrud-tests-"))

TEST_CATALOG = {
    "tables": [
        {
            "name": "widgets",
            "primary_key": "id",
            "columns": {
                "id": {"type": "integer", "nullable": False, "generated": True},
                "name": {"type": "string", "nullable": False, "max_length": 100},
                "qty": {"type": "integer", "nullable": False},
                "note": {"type": "text"},
                "api_key": {"type": "string", "max_length": 64},
            },
        }
    ]
}


def _ensure_test_env() -> None:
    """Point every external dependency at something local before dyncrud is imported."""
    (_TMP / "catalog.json").write_text(json.dumps(TEST_CATALOG), encoding="utf-8")
    os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'business.db'}"
    os.environ["AUDIT_DATABASE_URL"] = f"sqlite:///{_TMP / 'audit.db'}"
    os.environ["CATALOG_SOURCE"] = "file"
    os.environ["CATALOG_FILE"] = str(_TMP / "catalog.json")
    os.environ["RATE_LIMIT_ENABLED"] = "false"
    os.environ["JWT_SECRET"] = "test-secret"
    os.environ["REDIS_URL"] = "redis://127.0.0.1:1/0"
    os.environ["CELERY_BROKER_URL"] = "memory://"
    os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
    os.environ["CRUD_RETRY_BACKOFF_MS"] = "0"
    os.environ["CRUD_REQUIRED_ROLE"] = "admin"
    os.environ["AUDIT_FAIL_CLOSED"] = "false"


_ensure_test_env()

widgets_metadata = sa.MetaData()
widgets_table = sa.Table(
    "widgets",
    widgets_metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("name", sa.String(100), nullable=False, unique=True),
    sa.Column("qty", sa.Integer, nullable=False),
    sa.Column("note", sa.Text, nullable=True),
    sa.Column("api_key", sa.String(64), nullable=True),
)


@pytest.fixture()
def databases():
    """Fresh business and audit schemas for every test."""
    from dyncrud.db.base import Base
    from dyncrud.db.session import audit_engine, engine
    from dyncrud.models import CrudAuditRecord

    widgets_metadata.drop_all(engine)
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    widgets_metadata.create_all(engine)

    CrudAuditRecord.__table__.drop(audit_engine, checkfirst=True)
    CrudAuditRecord.__table__.create(audit_engine)
    yield engine, audit_engine


@pytest.fixture()
def statements(databases):
    """SQL statements that reach the business database during a test."""
    engine, _ = databases
    seen = []

    def capture(conn, cursor, statement, parameters, context, executemany):
        seen.append(statement)

    sa.event.listen(engine, "before_cursor_execute", capture)
    yield seen
    sa.event.remove(engine, "before_cursor_execute", capture)


@pytest.fixture()
def catalog():
    from dyncrud.services.catalog_service import TableCatalog
    return TableCatalog.from_settings()


@pytest.fixture()
def audit_failures():
    """(entry, error, replay) tuples handed to the audit escalation hook."""
    return []


@pytest.fixture()
def recorder(databases, audit_failures):
    from dyncrud.db.session import AuditSessionLocal
    from dyncrud.services.audit_service import AuditRecorder

    rec = AuditRecorder(
        session_factory=AuditSessionLocal,
        timeout=5,
        workers=2,
        on_failure=lambda entry, error, replay: audit_failures.append((entry, error, replay)),
    )
    yield rec
    rec.shutdown()


@pytest.fixture()
def executor(catalog, recorder):
    from dyncrud.db.session import SessionLocal
    from dyncrud.executor.crud_executor import CrudExecutor
    from dyncrud.services.statement_builder import StatementBuilder

    return CrudExecutor(
        catalog,
        StatementBuilder(default_page_size=10, max_page_size=50),
        recorder,
        session_factory=SessionLocal,
        retry_backoff_ms=0,
        fail_closed=False,
    )


@pytest.fixture()
def ledger_failures():
    return []


@pytest.fixture()
def ledger(databases, ledger_failures):
    from dyncrud.db.session import SessionLocal
    from dyncrud.services.ledger_service import LoginLedger

    return LoginLedger(
        session_factory=SessionLocal,
        on_failure=lambda entry, error: ledger_failures.append((entry, error)),
    )


@pytest.fixture()
def audit_records(databases):
    """Callable returning every audit row, oldest first."""
    from dyncrud.db.session import AuditSessionLocal
    from dyncrud.models import CrudAuditRecord

    def fetch():
        db = AuditSessionLocal()
        try:
            return db.query(CrudAuditRecord).order_by(CrudAuditRecord.id).all()
        finally:
            db.close()

    return fetch


@pytest.fixture()
def seeded_users(databases):
    """Seed roles plus one active admin, one member and one deactivated admin."""
    from dyncrud.db.seeds.seed_roles import seed_roles
    from dyncrud.db.session import SessionLocal
    from dyncrud.services.auth_service import auth_service

    db = SessionLocal()
    try:
        seed_roles(db)
        admin = auth_service.create_user(db, "admin@example.com", "admin-pass", "Ada Admin", "admin")
        member = auth_service.create_user(db, "member@example.com", "member-pass", "Max Member", "member")
        inactive = auth_service.create_user(db, "gone@example.com", "gone-pass", "Gina Gone", "admin")
        inactive.is_active = False
        db.commit()
        return {"admin": admin.id, "member": member.id, "inactive": inactive.id}
    finally:
        db.close()


def make_token(role: str = "admin", subject: str = "1", email: str = "admin@example.com") -> str:
    from dyncrud.core.security import create_access_token
    return create_access_token({"sub": subject, "email": email, "role": role})


def bearer(role: str = "admin", **kwargs) -> dict:
    return {"Authorization": f"Bearer {make_token(role, **kwargs)}"}


@pytest.fixture()
def client(executor, ledger):
    """TestClient with the executor and ledger bound to the test databases."""
    from fastapi.testclient import TestClient
    from dyncrud.main import app

    with TestClient(app) as test_client:
        app.state.executor = executor
        app.state.catalog = executor.catalog
        app.state.ledger = ledger
        yield test_client


@pytest.fixture()
def auth_headers():
    """Factory for ``Authorization`` headers: ``auth_headers("member")``."""
    return bearer
