"""JWT authentication and RBAC authorization helpers.

Stage A of the security gate (``AuthenticationMiddleware``) verifies the
bearer token and attaches an ``Identity`` to ``request.state``; the
dependencies below only consume that verified identity.
"""

import bcrypt
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Request
from jose import JWTError, jwt

from dyncrud.core.config import settings
from dyncrud.core.exceptions import AccessDeniedError, AuthenticationError
from dyncrud.core.gate import GateContext

logger = logging.getLogger("dyncrud.security")

ROLE_LEVELS = {
    "viewer": 20,
    "member": 40,
    "team_lead": 60,
    "admin": 80,
    "super_admin": 100,
}


@dataclass(frozen=True)
class Identity:
    """A caller as seen by the application after stage A."""

    subject: str
    role: str
    authenticated: bool
    email: Optional[str] = None
    anonymous: bool = False
    claims: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def actor(self) -> str:
        """Identity string written to audit records."""
        return self.email or self.subject

    @property
    def level(self) -> int:
        return ROLE_LEVELS.get(self.role, 0)


ANONYMOUS = Identity(subject="anonymous", role="anonymous", authenticated=False, anonymous=True)

BCRYPT_MAX_BYTES = 72


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    pwd_bytes = password.encode("utf-8")
    if len(pwd_bytes) > BCRYPT_MAX_BYTES:
        raise ValueError(f"Password longer than {BCRYPT_MAX_BYTES} bytes")
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(pwd_bytes, salt)
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash.

    bcrypt only covers 72 bytes, so a longer password can never match.
    """
    pwd_bytes = plain_password.encode("utf-8")
    if len(pwd_bytes) > BCRYPT_MAX_BYTES:
        return False
    hashed_bytes = hashed_password.encode("utf-8")
    return bcrypt.checkpw(pwd_bytes, hashed_bytes)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_EXPIRY_MINUTES)
    )
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_access_token(token: str) -> Identity:
    """Decode and validate an access token into an authenticated identity.

    Raises:
        AuthenticationError: if the token is malformed, expired, or not an access token.
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise AuthenticationError("Invalid or expired token")
    if payload.get("type") != "access" or not payload.get("sub"):
        raise AuthenticationError("Invalid token payload")
    return Identity(
        subject=str(payload["sub"]),
        email=payload.get("email"),
        role=payload.get("role", "viewer"),
        authenticated=True,
        claims=payload,
    )


def role_allows(role: str, min_role: Optional[str]) -> bool:
    """An unknown ``min_role`` is never satisfied."""
    if not min_role:
        return True
    if min_role not in ROLE_LEVELS:
        logger.error("Unknown required role %r; denying", min_role)
        return False
    return ROLE_LEVELS.get(role, 0) >= ROLE_LEVELS.get(min_role, 0)


def get_current_identity(request: Request) -> Identity:
    """Dependency returning the authenticated identity attached by stage A."""
    identity = getattr(request.state, "identity", None)
    if identity is None or not identity.authenticated or identity.anonymous:
        raise AuthenticationError("Not authenticated")
    return identity


def require_dispatch_identity(request: Request) -> Identity:
    """Stage B: re-check the identity immediately before executor dispatch.

    Runs before any catalog lookup, so unauthenticated traffic never reaches
    the catalog or the statement builder.
    """
    gate = getattr(request.state, "gate", None)
    if gate is None:
        gate = request.state.gate = GateContext()
    identity = getattr(request.state, "identity", None)

    if identity is None or not identity.authenticated or identity.anonymous:
        gate.reject("no authenticated identity at dispatch")
        logger.info("Dispatch denied on %s: no authenticated identity", request.url.path)
        raise AccessDeniedError("Authentication required", status_code=401)

    if not role_allows(identity.role, settings.CRUD_REQUIRED_ROLE):
        gate.reject(f"role '{identity.role}' below '{settings.CRUD_REQUIRED_ROLE}'")
        logger.info("Dispatch denied on %s: role %s for %s", request.url.path, identity.role, identity.actor)
        raise AccessDeniedError("Insufficient permissions")

    gate.dispatch()
    return identity


class RequireRole:
    """Dependency that checks if the user has a required role level."""

    def __init__(self, min_role: str):
        if min_role not in ROLE_LEVELS:
            raise ValueError(f"Unknown role '{min_role}'")
        self.min_role = min_role
        self.min_level = ROLE_LEVELS[min_role]

    def __call__(self, request: Request) -> Identity:
        identity = get_current_identity(request)
        if identity.level < self.min_level:
            raise AccessDeniedError(
                f"Role '{identity.role}' insufficient. Requires level {self.min_level}+."
            )
        return identity


require_admin = RequireRole("admin")
