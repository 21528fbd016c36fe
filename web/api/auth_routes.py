"""Auth API routes: operator login and current user."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

import config
from tourney.models import User
from tourney.models.base import async_session_factory
from web.auth import (
    create_access_token,
    get_user_by_username,
    hash_password,
    require_user,
    verify_password,
)

logger = logging.getLogger("tourney.api.auth")

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    username: str
    role: str


class UserResponse(BaseModel):
    username: str
    role: str


async def _bootstrap_admin() -> User:
    async with async_session_factory() as session:
        user = User(
            username=config.INITIAL_ADMIN_USERNAME,
            password_hash=hash_password(config.INITIAL_ADMIN_PASSWORD),
            role="admin",
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
    logger.info("Bootstrapped admin account %s", user.username)
    return user


@router.post("/login", response_model=LoginResponse)
async def login(body: LoginRequest):
    """Authenticate and return JWT. The first login with INITIAL_ADMIN_PASSWORD creates the admin."""
    user = await get_user_by_username(body.username)
    if not user:
        if not (
            config.INITIAL_ADMIN_PASSWORD
            and body.username == config.INITIAL_ADMIN_USERNAME
            and body.password == config.INITIAL_ADMIN_PASSWORD
        ):
            raise HTTPException(status_code=401, detail="Invalid username or password")
        user = await _bootstrap_admin()
    elif not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    token = create_access_token(user.username, user.role)
    return LoginResponse(access_token=token, username=user.username, role=user.role)


@router.get("/me", response_model=UserResponse)
async def get_me(user: User = Depends(require_user)):
    """Get current authenticated user."""
    return UserResponse(username=user.username, role=user.role)
