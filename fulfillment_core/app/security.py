"""
Security Module for the Purchase-Order Lifecycle Back Office
============================================================
- Secret key management
- Password policy and bcrypt hashing
- JWT access tokens
- Login rate limiting
- Role-based access control with fine-grained permissions
"""

import os
import re
import secrets
import hashlib
import logging
import warnings
from datetime import datetime, timedelta
from typing import Optional, List, Set, Dict

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, ExpiredSignatureError, jwt
import bcrypt
from sqlalchemy.orm import Session

from .db import SessionLocal

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

def get_secret_key() -> str:
    """
    Get secret key from environment with validation.
    A missing key is fatal in production.
    """
    secret = os.getenv("FULFILLMENT_SECRET_KEY")

    if not secret:
        env = os.getenv("ENVIRONMENT", "development")
        if env == "production":
            raise RuntimeError(
                "FULFILLMENT_SECRET_KEY environment variable must be set in production. "
                "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
            )
        warnings.warn(
            "Using the development secret key. Set FULFILLMENT_SECRET_KEY for production.",
            RuntimeWarning
        )
        # Deterministic in development so tokens survive hot-reload
        secret = hashlib.sha256(b"fulfillment-dev-insecure-key").hexdigest()

    if len(secret) < 32:
        raise RuntimeError("FULFILLMENT_SECRET_KEY must be at least 32 characters")

    return secret


SECRET_KEY = get_secret_key()
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("TOKEN_EXPIRE_MINUTES", "60"))


# =============================================================================
# PASSWORD SECURITY
# =============================================================================

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


class PasswordPolicy:
    """Password strength validation"""

    @staticmethod
    def validate(password: str) -> tuple[bool, List[str]]:
        """
        Returns:
            (is_valid, list_of_errors)
        """
        errors = []

        if len(password) < MIN_PASSWORD_LENGTH:
            errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        if len(password) > MAX_PASSWORD_LENGTH:
            errors.append(f"Password must not exceed {MAX_PASSWORD_LENGTH} characters")

        if not re.search(r'[a-z]', password):
            errors.append("Password must contain at least one lowercase letter")

        if not re.search(r'[A-Z]', password):
            errors.append("Password must contain at least one uppercase letter")

        if not re.search(r'\d', password):
            errors.append("Password must contain at least one digit")

        common_passwords = {'password', 'password123', '12345678', 'qwerty123'}
        if password.lower() in common_passwords:
            errors.append("Password is too common")

        return len(errors) == 0, errors


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=12)).decode('utf-8')


# =============================================================================
# TOKEN MANAGEMENT
# =============================================================================

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()

    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({
        "exp": expire,
        "iat": now,
        "jti": secrets.token_urlsafe(16),
        "type": "access"
    })

    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"}
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"}
        )


# =============================================================================
# ROLE-BASED ACCESS CONTROL (RBAC)
# =============================================================================

class Permission:
    """Fine-grained permissions for lifecycle operations"""

    # Purchase orders
    ORDER_VIEW = "order:view"
    ORDER_CREATE = "order:create"
    ORDER_UPDATE = "order:update"
    ORDER_CLOSE = "order:close"
    ORDER_DELETE = "order:delete"

    # Dispatch, documents and delivery
    DISPATCH_VIEW = "dispatch:view"
    DISPATCH_CREATE = "dispatch:create"
    DISPATCH_UPDATE = "dispatch:update"
    DISPATCH_DELETE = "dispatch:delete"

    # Pre-commissioning, commissioning, warranty
    SERVICE_VIEW = "service:view"
    SERVICE_CREATE = "service:create"
    SERVICE_UPDATE = "service:update"
    SERVICE_DELETE = "service:delete"

    USER_CREATE = "user:create"


ROLE_PERMISSIONS: Dict[str, Set[str]] = {
    "Admin": {
        Permission.ORDER_VIEW, Permission.ORDER_CREATE, Permission.ORDER_UPDATE, Permission.ORDER_CLOSE, Permission.ORDER_DELETE,
        Permission.DISPATCH_VIEW, Permission.DISPATCH_CREATE, Permission.DISPATCH_UPDATE, Permission.DISPATCH_DELETE,
        Permission.SERVICE_VIEW, Permission.SERVICE_CREATE, Permission.SERVICE_UPDATE, Permission.SERVICE_DELETE,
        Permission.USER_CREATE,
    },

    "Operations Manager": {
        Permission.ORDER_VIEW, Permission.ORDER_CREATE, Permission.ORDER_UPDATE, Permission.ORDER_CLOSE, Permission.ORDER_DELETE,
        Permission.DISPATCH_VIEW, Permission.DISPATCH_CREATE, Permission.DISPATCH_UPDATE, Permission.DISPATCH_DELETE,
        Permission.SERVICE_VIEW, Permission.SERVICE_CREATE, Permission.SERVICE_UPDATE, Permission.SERVICE_DELETE,
    },

    "Dispatch Operator": {
        Permission.ORDER_VIEW,
        Permission.DISPATCH_VIEW, Permission.DISPATCH_CREATE, Permission.DISPATCH_UPDATE,
        Permission.SERVICE_VIEW,
    },

    "Service Engineer": {
        Permission.ORDER_VIEW,
        Permission.DISPATCH_VIEW,
        Permission.SERVICE_VIEW, Permission.SERVICE_CREATE, Permission.SERVICE_UPDATE,
    },

    "Viewer": {
        Permission.ORDER_VIEW,
        Permission.DISPATCH_VIEW,
        Permission.SERVICE_VIEW,
    },
}


def get_role_permissions(role: str) -> Set[str]:
    return ROLE_PERMISSIONS.get(role, set())


# =============================================================================
# DEPENDENCY INJECTION
# =============================================================================

def get_db():
    """Database session dependency"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
):
    """
    Get current authenticated user from JWT token.
    """
    from . import models

    payload = decode_token(token)

    username = payload.get("sub")
    if username is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"}
        )

    user = db.query(models.User).filter(models.User.username == username).first()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"}
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is disabled"
        )

    return user


def require_permission(*required_permissions: str):
    """
    Dependency that requires user to have specific permissions.
    """
    def permission_checker(current_user=Depends(get_current_user)):
        user_permissions = get_role_permissions(current_user.role)

        missing = set(required_permissions) - user_permissions
        if missing:
            logger.warning("user %s denied: missing %s", current_user.username, ", ".join(sorted(missing)))
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(sorted(missing))}"
            )

        return current_user

    return permission_checker


# =============================================================================
# RATE LIMITING
# =============================================================================

class RateLimiter:
    """
    Simple in-memory rate limiter for login attempts.
    Per process only.
    """

    _attempts: Dict[str, List[datetime]] = {}

    @classmethod
    def check_rate_limit(
        cls,
        key: str,
        max_attempts: int = 5,
        window_seconds: int = 300
    ) -> tuple[bool, int]:
        """
        Returns:
            (is_allowed, remaining_attempts)
        """
        window_start = datetime.utcnow() - timedelta(seconds=window_seconds)
        cls._attempts[key] = [t for t in cls._attempts.get(key, []) if t > window_start]

        attempts = len(cls._attempts[key])
        if attempts >= max_attempts:
            return False, 0
        return True, max_attempts - attempts

    @classmethod
    def record_attempt(cls, key: str):
        cls._attempts.setdefault(key, []).append(datetime.utcnow())

    @classmethod
    def reset(cls, key: str):
        cls._attempts.pop(key, None)
