"""Auth API router — login (recorded in the ledger) and me."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from dyncrud.core.config import settings
from dyncrud.core.rate_limiter import limiter
from dyncrud.core.security import Identity, get_current_identity
from dyncrud.db.session import get_db
from dyncrud.schemas.schemas import LoginRequest, TokenResponse, UserOut
from dyncrud.services.auth_service import auth_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
def login(body: LoginRequest, request: Request, db: Session = Depends(get_db)):
    """Authenticate and return a JWT access token."""
    return auth_service.authenticate(
        db,
        request.app.state.ledger,
        body.email,
        body.password,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


@router.get("/me", response_model=UserOut)
def get_me(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    """Get current user profile."""
    user = auth_service.get_user(db, int(identity.subject))
    return UserOut(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        role=user.role.name if user.role else None,
        is_active=user.is_active,
        created_at=user.created_at,
    )
