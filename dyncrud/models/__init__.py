"""Models package — import all models so metadata.create_all can discover them."""

from dyncrud.models.role import Role
from dyncrud.models.user import User
from dyncrud.models.audit_log import AuditStatus, CrudAuditRecord
from dyncrud.models.login_attempt import LoginAttempt
from dyncrud.models.audit_session import AuditSession

__all__ = [
    "Role", "User", "AuditStatus", "CrudAuditRecord",
    "LoginAttempt", "AuditSession",
]

# Tables the dynamic CRUD catalog may never expose
PROTECTED_TABLES = frozenset({
    Role.__tablename__,
    User.__tablename__,
    CrudAuditRecord.__tablename__,
    LoginAttempt.__tablename__,
    AuditSession.__tablename__,
})
