# backend/community_messaging/api/routes/auth.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from community_messaging.core.security import create_access_token, get_current_user, verify_password
from community_messaging.crud.users import create_user, get_by_email, get_by_username
from community_messaging.db.session import get_db
from community_messaging.models.user import User
from community_messaging.schemas.auth import LoginIn, RegisterIn, TokenOut, UserOut
from community_messaging.security.csrf import generate_csrf_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    # Don't reveal which field collided
    if get_by_email(db, payload.email) or get_by_username(db, payload.username):
        raise HTTPException(status_code=400, detail="Invalid credentials")

    u = create_user(db, payload.username, payload.email, payload.password)
    logger.info("Registered user %s", u.id)
    return u


@router.post("/login", response_model=TokenOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    u = get_by_email(db, payload.email)
    if not u or not verify_password(payload.password, u.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    return TokenOut(access_token=create_access_token(subject=str(u.id), extra={"role": u.role}))


@router.get("/me", response_model=UserOut)
def me(current_user: User = Depends(get_current_user)):
    return current_user


@router.get("/csrf-token")
def get_csrf_token():
    """
    CSRF token for state-changing requests.
    Send it back in the X-CSRF-Token header on POST/PUT/DELETE.
    """
    return {"csrf_token": generate_csrf_token()}
