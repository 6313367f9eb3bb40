"""
User authentication routes (JWT bearer).
Login accepts an email or a username and is rate limited per client IP.
"""
from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.user import User
from app.schemas.auth import LoginRequest, RegisterRequest, TokenResponse
from app.services.auth.jwt import get_current_user
from app.services.auth.login_rate_limit import (
    check_login_rate_limit,
    get_client_ip,
    reset_login_attempts,
)
from app.services.users.service import UserService

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest = Body(...), db: Session = Depends(get_db)):
    user, token = UserService(db).register(body.name, body.username, body.email, body.password)
    return {"access_token": token, "token_type": "bearer", "user": user.as_dict()}


@router.post("/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest = Body(...), db: Session = Depends(get_db)):
    client_ip = get_client_ip(request)
    if not check_login_rate_limit(client_ip):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts. Try again later.",
        )
    user, token = UserService(db).authenticate(body.login, body.password)
    reset_login_attempts(client_ip)
    return {"access_token": token, "token_type": "bearer", "user": user.as_dict()}


@router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    return {"user": current_user.as_dict()}
