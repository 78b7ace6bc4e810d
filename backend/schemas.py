# schemas.py — Shared wire schemas (camelCase JSON) and user projections
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from models import User, UserRole, as_utc


class CamelModel(BaseModel):
    """snake_case in Python, camelCase on the wire; accepts either on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserSummaryOut(CamelModel):
    id: str
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: str


class UserOut(UserSummaryOut):
    role: str
    is_active: bool
    last_login: Optional[str] = None
    created_at: str
    updated_at: str


def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return as_utc(dt).isoformat() if isinstance(dt, datetime) else str(dt)


def user_to_summary(u: User) -> UserSummaryOut:
    return UserSummaryOut(
        id=u.id,
        username=u.username,
        email=u.email,
        first_name=u.first_name,
        last_name=u.last_name,
        full_name=u.full_name,
    )


def user_to_out(u: User) -> UserOut:
    return UserOut(
        id=u.id,
        username=u.username,
        email=u.email,
        first_name=u.first_name,
        last_name=u.last_name,
        full_name=u.full_name,
        role=u.role.value if isinstance(u.role, UserRole) else u.role,
        is_active=bool(u.is_active),
        last_login=_ts(u.last_login_at),
        created_at=_ts(u.created_at) or "",
        updated_at=_ts(u.updated_at) or "",
    )
