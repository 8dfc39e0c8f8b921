"""Pydantic schemas for API request/response serialization."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime


# ---- Auth ----
class LoginRequest(BaseModel):
    email: str
    password: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Optional[Dict[str, Any]] = None


# ---- User ----
class UserOut(BaseModel):
    id: int
    email: str
    full_name: str
    role: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---- Dynamic CRUD ----
class FilterIn(BaseModel):
    column: str
    operator: str = "eq"
    value: Any = None

class SortIn(BaseModel):
    column: str
    direction: str = "asc"

class CrudEnvelope(BaseModel):
    """One operation sent through the exploration gateway."""
    operation: str = Field(..., pattern="(?i)^(list|read|create|update|delete)$")
    table: str = Field(..., min_length=1, max_length=128)
    key: Optional[Any] = None
    payload: Dict[str, Any] = {}
    filters: List[FilterIn] = []
    sort: Optional[SortIn] = None
    offset: int = 0
    limit: Optional[int] = None


# ---- Audit ----
class CrudAuditRecordOut(BaseModel):
    id: int
    table_name: str
    operation: str
    actor: str
    status: str
    detail: Optional[str] = None
    error_code: Optional[str] = None
    request_id: Optional[str] = None
    client_ip: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class LoginAttemptOut(BaseModel):
    id: int
    username: str
    success: bool
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class AuditSessionOut(BaseModel):
    id: int
    user_id: int
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

