# auth.py — Credential store and session tokens for the Taskboard API
# Features:
# - bcrypt password hashing, hash never leaves this module
# - Password policy (8+ chars, upper, lower, digit, symbol)
# - Login by username or email
# - Signed 24h JWT sessions carrying id, username, email, role
# - Profile edits with uniqueness re-checks, password change, deactivation

import re
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

import bcrypt
from email_validator import validate_email, EmailNotValidError
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import (
    AuthenticationError, DuplicateError, InvalidCredentialsError,
    InvalidTokenError, NotFoundError, ValidationError,
)
from models import User, UserRole, utcnow
from schemas import CamelModel

logger = logging.getLogger("taskboard.auth")

# ============================================================
# CONFIGURATION
# ============================================================

ALGORITHM = "HS256"
DEFAULT_BCRYPT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72  # bcrypt ignores (or rejects) anything longer
USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]{3,30}$")
PASSWORD_SYMBOLS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")
MAX_LOGIN_LENGTH = 254  # longest valid email address
MAX_NAME_LENGTH = 50

security = HTTPBearer(auto_error=False)


# ============================================================
# VALIDATION HELPERS
# ============================================================

def check_password_policy(password: str) -> str:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password cannot exceed {MAX_PASSWORD_BYTES} bytes")
    if not any(c.isupper() for c in password):
        raise ValueError("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in password):
        raise ValueError("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in password):
        raise ValueError("Password must contain at least one number")
    if not PASSWORD_SYMBOLS.search(password):
        raise ValueError("Password must contain at least one special symbol")
    return password


def check_username(username: str) -> str:
    username = username.strip()
    if not USERNAME_PATTERN.match(username):
        if not 3 <= len(username) <= 30:
            raise ValueError("Username must be between 3 and 30 characters")
        raise ValueError("Username can only contain letters, numbers, and underscores")
    return username


def is_email_shaped(login: str) -> bool:
    """A login identifier with a valid email shape is looked up as an email."""
    if "@" not in login:
        return False
    try:
        validate_email(login, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def _clean_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserRegister(CamelModel):
    username: str
    email: EmailStr
    password: str
    first_name: Optional[str] = Field(None, max_length=MAX_NAME_LENGTH)
    last_name: Optional[str] = Field(None, max_length=MAX_NAME_LENGTH)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        return check_username(v)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return check_password_policy(v)


class UserLogin(BaseModel):
    login: str = Field(..., min_length=1, max_length=MAX_LOGIN_LENGTH)
    password: str = Field(..., min_length=1)


class ProfileUpdate(CamelModel):
    first_name: Optional[str] = Field(None, max_length=MAX_NAME_LENGTH)
    last_name: Optional[str] = Field(None, max_length=MAX_NAME_LENGTH)
    email: Optional[EmailStr] = None
    username: Optional[str] = None

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: Optional[str]) -> Optional[str]:
        return check_username(v) if v is not None else v

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v is not None else v


class PasswordChange(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: str


class CurrentUser(BaseModel):
    """Identity claims of the authenticated caller"""
    id: str
    username: str
    email: str
    role: str


# ============================================================
# SESSION ISSUER
# ============================================================

class TokenIssuer:
    """Signs and verifies session tokens with the server-held secret."""

    def __init__(self, secret_key: str, expire_hours: int = 24, algorithm: str = ALGORITHM):
        self._secret_key = secret_key
        self.expire_hours = expire_hours
        self.algorithm = algorithm

    def issue(self, user: User, expires_delta: Optional[timedelta] = None) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "sub": user.id,
            "username": user.username,
            "email": user.email,
            "role": user.role.value if isinstance(user.role, UserRole) else user.role,
            "iat": now,
            "exp": now + (expires_delta or timedelta(hours=self.expire_hours)),
        }
        return jwt.encode(claims, self._secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, self._secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise InvalidTokenError("Token expired")
        except JWTError:
            raise InvalidTokenError("Invalid or expired token")


# ============================================================
# CREDENTIAL STORE
# ============================================================

class AuthService:
    """User accounts: registration, login and profile maintenance"""

    # set from Settings.bcrypt_rounds in create_app()
    bcrypt_rounds = DEFAULT_BCRYPT_ROUNDS

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=AuthService.bcrypt_rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # over-long candidate passwords can never match
            return False

    @staticmethod
    async def _find_conflict(
        db: AsyncSession, username: Optional[str], email: Optional[str],
        exclude_id: Optional[str] = None,
    ) -> Optional[User]:
        clauses = []
        if username is not None:
            clauses.append(User.username == username)
        if email is not None:
            clauses.append(User.email == email)
        if not clauses:
            return None
        stmt = select(User).where(or_(*clauses))
        if exclude_id:
            stmt = stmt.where(User.id != exclude_id)
        result = await db.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    @staticmethod
    async def register_user(data: UserRegister, db: AsyncSession) -> User:
        if await AuthService._find_conflict(db, data.username, data.email):
            raise DuplicateError("User with this email or username already exists")

        user = User(
            username=data.username,
            email=data.email,
            password_hash=AuthService.hash_password(data.password),
            first_name=_clean_name(data.first_name),
            last_name=_clean_name(data.last_name),
            role=UserRole.USER,
            is_active=True,
        )
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            # lost a race against a concurrent registration
            await db.rollback()
            raise DuplicateError("User with this email or username already exists")
        await db.refresh(user)

        logger.info(f"👤 Registered user {user.username} ({user.id})")
        return user

    @staticmethod
    async def authenticate_user(login: str, password: str, db: AsyncSession) -> User:
        login = login.strip()
        if is_email_shaped(login):
            stmt = select(User).where(User.email == login.lower())
        else:
            stmt = select(User).where(User.username == login)
        result = await db.execute(stmt)
        user = result.scalar_one_or_none()

        if not user:
            logger.warning(f"Failed login for unknown identifier {login!r}")
            raise InvalidCredentialsError("Invalid credentials")

        if not user.is_active:
            raise InvalidCredentialsError("Account is deactivated")

        if not AuthService.verify_password(password, user.password_hash):
            logger.warning(f"Failed login for {user.username}: wrong password")
            raise InvalidCredentialsError("Invalid credentials")

        user.last_login_at = utcnow()
        await db.commit()
        await db.refresh(user)
        return user

    @staticmethod
    async def get_user(user_id: str, db: AsyncSession) -> User:
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if not user:
            raise NotFoundError("User not found")
        return user

    @staticmethod
    async def update_profile(user_id: str, data: ProfileUpdate, db: AsyncSession) -> User:
        user = await AuthService.get_user(user_id, db)
        changes = data.model_dump(exclude_unset=True)

        if "username" in changes and changes["username"] is None:
            raise ValidationError("Username cannot be empty")
        if "email" in changes and changes["email"] is None:
            raise ValidationError("Email cannot be empty")

        new_username = changes.get("username")
        new_email = changes.get("email")
        if new_username == user.username:
            new_username = None
        if new_email == user.email:
            new_email = None
        if await AuthService._find_conflict(db, new_username, new_email, exclude_id=user.id):
            raise DuplicateError("Username or email is already taken")

        if new_username is not None:
            user.username = new_username
        if new_email is not None:
            user.email = new_email
        if "first_name" in changes:
            user.first_name = _clean_name(changes["first_name"])
        if "last_name" in changes:
            user.last_name = _clean_name(changes["last_name"])

        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise DuplicateError("Username or email is already taken")
        await db.refresh(user)
        return user

    @staticmethod
    async def change_password(
        user_id: str, current_password: str, new_password: str, db: AsyncSession,
    ) -> None:
        user = await AuthService.get_user(user_id, db)

        if not AuthService.verify_password(current_password, user.password_hash):
            raise InvalidCredentialsError("Current password is incorrect")

        try:
            check_password_policy(new_password)
        except ValueError as e:
            raise ValidationError(str(e))

        user.password_hash = AuthService.hash_password(new_password)
        await db.commit()
        logger.info(f"🔑 Password changed for {user.username}")

    @staticmethod
    async def deactivate(user_id: str, db: AsyncSession) -> None:
        user = await AuthService.get_user(user_id, db)
        user.is_active = False
        await db.commit()
        logger.info(f"🚫 Deactivated user {user.username}")

    @staticmethod
    async def list_active(db: AsyncSession) -> List[User]:
        stmt = select(User).where(User.is_active.is_(True)).order_by(User.username.asc())
        result = await db.execute(stmt)
        return list(result.scalars().all())


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

def get_token_issuer(request: Request) -> TokenIssuer:
    return request.app.state.tokens


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> CurrentUser:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Access denied: No token provided")

    payload = issuer.verify(credentials.credentials)

    user_id = payload.get("sub")
    if not user_id:
        raise InvalidTokenError("Invalid or expired token")

    return CurrentUser(
        id=user_id,
        username=payload.get("username", ""),
        email=payload.get("email", ""),
        role=payload.get("role", UserRole.USER.value),
    )
