import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from . import models, schemas
from .security import (
    get_db, verify_password, get_password_hash, create_access_token,
    require_permission, Permission, PasswordPolicy, RateLimiter, ROLE_PERMISSIONS,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=schemas.Token)
async def login(request: Request, db: Session = Depends(get_db)):
    """Accept either form-encoded (OAuth2) login or JSON {username,password}."""
    ctype = (request.headers.get("content-type") or "").lower()

    if "application/json" in ctype:
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Malformed JSON body")
        username = body.get("username") if isinstance(body, dict) else None
        password = body.get("password") if isinstance(body, dict) else None
    else:
        form = await request.form()
        username = form.get("username")
        password = form.get("password")

    if not username or not password:
        raise HTTPException(status_code=400, detail="Missing username or password")

    allowed, _ = RateLimiter.check_rate_limit(f"login:{username}")
    if not allowed:
        logger.warning("login rate limit hit for %s", username)
        raise HTTPException(status_code=429, detail="Too many login attempts, try again later")

    user = db.query(models.User).filter(models.User.username == username).first()
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        RateLimiter.record_attempt(f"login:{username}")
        logger.info("failed login for %s", username)
        raise HTTPException(status_code=400, detail="Incorrect username or password")

    RateLimiter.reset(f"login:{username}")
    access_token = create_access_token({"sub": user.username, "role": user.role})
    return {"access_token": access_token, "token_type": "bearer", "role": user.role}


@router.post("/register", response_model=schemas.UserOut, status_code=status.HTTP_201_CREATED)
def register(
    user_in: schemas.UserCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.USER_CREATE))
):
    if user_in.role not in ROLE_PERMISSIONS:
        raise HTTPException(status_code=400, detail=f"Unknown role {user_in.role}")
    valid, errors = PasswordPolicy.validate(user_in.password)
    if not valid:
        raise HTTPException(status_code=400, detail="; ".join(errors))

    existing = db.query(models.User).filter(
        (models.User.username == user_in.username) | (models.User.email == user_in.email)
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="User with that username or email already exists")

    user = models.User(
        full_name=user_in.full_name,
        email=user_in.email,
        username=user_in.username,
        password_hash=get_password_hash(user_in.password),
        role=user_in.role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("user %s (%s) created by %s", user.username, user.role, current_user.username)
    return user
