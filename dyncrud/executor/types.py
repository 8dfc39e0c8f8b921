"""Request and result types for the dynamic CRUD executor."""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dyncrud.core.exceptions import FieldError
from dyncrud.models.audit_log import AuditStatus


class Operation(str, enum.Enum):
    LIST = "LIST"
    READ = "READ"
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @property
    def is_mutation(self) -> bool:
        return self in (Operation.CREATE, Operation.UPDATE, Operation.DELETE)


class FilterOperator(str, enum.Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GE = "ge"
    LT = "lt"
    LE = "le"
    LIKE = "like"


class SortDirection(str, enum.Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class Filter:
    column: str
    operator: str  # validated against FilterOperator by the builder
    value: Any


@dataclass(frozen=True)
class Sort:
    column: str
    direction: str = SortDirection.ASC.value


@dataclass(frozen=True)
class Page:
    offset: int = 0
    limit: Optional[int] = None  # None means the configured default page size


@dataclass
class CrudRequest:
    """One inbound dynamic CRUD call. Never persisted as-is."""

    table_name: str
    operation: Operation
    actor: str
    key: Any = None
    payload: Dict[str, Any] = field(default_factory=dict)
    filters: List[Filter] = field(default_factory=list)
    sort: Optional[Sort] = None
    page: Page = field(default_factory=Page)
    request_id: Optional[str] = None
    client_ip: Optional[str] = None


class ResultCode(str, enum.Enum):
    TABLE_NOT_AVAILABLE = "TABLE_NOT_AVAILABLE"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    ACCESS_DENIED = "ACCESS_DENIED"
    CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"
    TRANSIENT_FAILURE = "TRANSIENT_FAILURE"
    STORAGE_FAILURE = "STORAGE_FAILURE"
    ROW_NOT_FOUND = "ROW_NOT_FOUND"
    AUDIT_UNAVAILABLE = "AUDIT_UNAVAILABLE"


# HTTP status per result code
HTTP_STATUS = {
    ResultCode.TABLE_NOT_AVAILABLE: 404,
    ResultCode.ROW_NOT_FOUND: 404,
    ResultCode.VALIDATION_FAILED: 422,
    ResultCode.ACCESS_DENIED: 401,
    ResultCode.CONSTRAINT_VIOLATION: 409,
    ResultCode.TRANSIENT_FAILURE: 503,
    ResultCode.AUDIT_UNAVAILABLE: 503,
    ResultCode.STORAGE_FAILURE: 500,
}


@dataclass
class CrudError:
    code: ResultCode
    message: str
    fields: List[FieldError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "fields": [f.to_dict() for f in self.fields],
        }


@dataclass
class CrudResult:
    status: AuditStatus
    operation: Operation
    table_name: str
    rows: List[Dict[str, Any]] = field(default_factory=list)
    row: Optional[Dict[str, Any]] = None
    affected: int = 0
    total: Optional[int] = None
    error: Optional[CrudError] = None
    audited: bool = True

    @property
    def ok(self) -> bool:
        return self.status == AuditStatus.SUCCESS

    @property
    def http_status(self) -> int:
        if self.error is None:
            return 201 if self.operation == Operation.CREATE else 200
        return HTTP_STATUS.get(self.error.code, 500)
