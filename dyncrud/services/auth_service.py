"""Auth service — JWT login recorded in the login ledger, user management."""

import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from dyncrud.models.user import User
from dyncrud.models.role import Role
from dyncrud.core.security import hash_password, verify_password, create_access_token
from dyncrud.core.exceptions import AuthenticationError, ResourceNotFoundError
from dyncrud.services.ledger_service import LoginLedger, hash_token

logger = logging.getLogger("dyncrud.security")


class AuthService:
    """Handles authentication and user management."""

    @staticmethod
    def authenticate(
        db: Session,
        ledger: LoginLedger,
        email: str,
        password: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Authenticate a user and return an access token.

        Every attempt is written to the ledger before the outcome is returned.

        Raises:
            AuthenticationError: If credentials are invalid.
            AuditWriteError: If the ledger cannot record the attempt.
        """
        user = db.query(User).filter(User.email == email).first()
        failure = None
        if not user:
            failure = "unknown user"
        elif not verify_password(password, user.hashed_password):
            failure = "invalid password"
        elif not user.is_active:
            failure = "account deactivated"

        if failure:
            ledger.record_attempt(email, False, ip, user_agent, failure)
            logger.info("Login failed for %s from %s: %s", email, ip, failure)
            if failure == "account deactivated":
                raise AuthenticationError("Account is deactivated")
            raise AuthenticationError("Invalid email or password")

        ledger.record_attempt(email, True, ip, user_agent)

        role_name = user.role.name if user.role else "viewer"
        token_data = {
            "sub": str(user.id),
            "email": user.email,
            "role": role_name,
            "role_level": user.role.level if user.role else 20,
        }
        access_token = create_access_token(token_data)
        ledger.record_session(user.id, hash_token(access_token), ip, user_agent)

        # Update last login
        user.last_login_at = datetime.now(timezone.utc).replace(tzinfo=None)
        db.commit()

        return {
            "access_token": access_token,
            "token_type": "bearer",
            "user": {
                "id": user.id,
                "email": user.email,
                "full_name": user.full_name,
                "role": role_name,
            },
        }

    @staticmethod
    def create_user(
        db: Session,
        email: str,
        password: str,
        full_name: str,
        role_name: str = "member",
    ) -> User:
        """Create a new user."""
        role = db.query(Role).filter(Role.name == role_name).first()
        if not role:
            raise ResourceNotFoundError(f"Role '{role_name}' not found")

        user = User(
            email=email,
            hashed_password=hash_password(password),
            full_name=full_name,
            role_id=role.id,
            is_active=True,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    @staticmethod
    def get_user(db: Session, user_id: int) -> User:
        """Get a user by id."""
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise ResourceNotFoundError(f"User {user_id} not found")
        return user


auth_service = AuthService()
