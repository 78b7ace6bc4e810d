# routers/auth.py — Registration, login and profile endpoints
import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, UserRegister, UserLogin, ProfileUpdate, PasswordChange,
    TokenIssuer, get_current_user, get_token_issuer, CurrentUser,
)
from database import get_db_session
from schemas import UserOut, UserSummaryOut, user_to_out, user_to_summary

logger = logging.getLogger("taskboard.auth")

router = APIRouter(prefix="/auth", tags=["Authentication"])


class TokenResponse(BaseModel):
    token: str
    user: UserOut


class ProfileResponse(BaseModel):
    message: str
    user: UserOut


class MessageResponse(BaseModel):
    message: str


# ============================================================
# SESSIONS
# ============================================================

@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db_session),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    """Register a new user account and open a session"""
    user = await AuthService.register_user(user_data, db)
    return TokenResponse(token=issuer.issue(user), user=user_to_out(user))


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db_session),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    """Login by username or email"""
    user = await AuthService.authenticate_user(credentials.login, credentials.password, db)
    logger.info(f"🔓 Login: {user.username}")
    return TokenResponse(token=issuer.issue(user), user=user_to_out(user))


# ============================================================
# PROFILE
# ============================================================

@router.get("/me", response_model=UserOut)
async def get_me(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Get current user's profile"""
    return user_to_out(await AuthService.get_user(user.id, db))


@router.patch("/profile", response_model=ProfileResponse)
async def update_profile(
    data: ProfileUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    updated = await AuthService.update_profile(user.id, data, db)
    return ProfileResponse(message="Profile updated successfully", user=user_to_out(updated))


@router.patch("/change-password", response_model=MessageResponse)
async def change_password(
    data: PasswordChange,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await AuthService.change_password(user.id, data.current_password, data.new_password, db)
    return MessageResponse(message="Password changed successfully")


@router.patch("/deactivate", response_model=MessageResponse)
async def deactivate(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Deactivate own account; login is refused afterwards"""
    await AuthService.deactivate(user.id, db)
    return MessageResponse(message="Account deactivated successfully")


# ============================================================
# DIRECTORY
# ============================================================

@router.get("/users", response_model=List[UserSummaryOut])
async def list_users(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Active users, for picking assignees"""
    return [user_to_summary(u) for u in await AuthService.list_active(db)]
