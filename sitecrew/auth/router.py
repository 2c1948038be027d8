import uuid
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import User
from ..schemas.auth import LoginRequest, MeResponse, RefreshRequest, TokenResponse
from ..services.permissions import get_employee_for_user
from .security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    verify_password,
)


router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger(__name__)


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    q = db.query(User).filter((User.username == req.identifier) | (User.email == req.identifier))
    user = q.first()
    if not user or not verify_password(req.password, user.password_hash):
        logger.info("login_failed", identifier=req.identifier)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="User not active")
    access = create_access_token(str(user.id), roles=[r.name for r in user.roles])
    refresh = create_refresh_token(str(user.id))
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    return TokenResponse(access_token=access, refresh_token=refresh)


@router.post("/refresh", response_model=TokenResponse)
def refresh(req: RefreshRequest, db: Session = Depends(get_db)):
    payload = decode_token(req.refresh_token)
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=400, detail="Invalid refresh token")
    user_id = payload["sub"]
    user = db.query(User).filter(User.id == _parse_uuid(user_id)).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="User not active")
    access = create_access_token(user_id, roles=[r.name for r in user.roles])
    refresh_token = create_refresh_token(user_id)
    return TokenResponse(access_token=access, refresh_token=refresh_token)


def _parse_uuid(value: str):
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid subject")


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    employee = get_employee_for_user(db, user)
    return MeResponse(
        id=str(user.id),
        username=user.username,
        email=user.email,
        roles=[r.name for r in user.roles],
        employee_id=str(employee.id) if employee else None,
        employee_name=employee.full_name if employee else None,
    )
