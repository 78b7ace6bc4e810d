# models.py — Database models for the Taskboard API
# - UUID string primary keys
# - Users are referenced by tasks and comments, never owned
# - Tasks own their comments (cascade delete, ordered by position)
# - Sequential public task references (TASK-000001)

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Table, Text, Index,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

REFERENCE_PREFIX = "TASK"


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def as_utc(dt: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if dt is None:
        return dt
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_reference(number: int) -> str:
    return f"{REFERENCE_PREFIX}-{number:06d}"


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    USER = "user"
    ADMIN = "admin"


class TaskStatus(str, PyEnum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    OVERDUE = "Overdue"


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    username = Column(String(30), unique=True, nullable=False, index=True)
    email = Column(String, unique=True, nullable=False, index=True)  # always lowercase
    password_hash = Column(String, nullable=False)
    first_name = Column(String(50), nullable=True)
    last_name = Column(String(50), nullable=True)
    role = Column(SQLEnum(UserRole), default=UserRole.USER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def full_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.username

    def __repr__(self):
        return f"<User {self.username}>"


# ============================================================
# TASKS
# ============================================================

task_assignees = Table(
    "task_assignees",
    Base.metadata,
    Column("task_id", String, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", String, ForeignKey("users.id"), primary_key=True, index=True),
)


class Task(Base):
    """A task with its assignees and comment thread"""
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    ref_number = Column(Integer, unique=True, nullable=False)
    reference = Column(String, unique=True, nullable=False, index=True)  # e.g. "TASK-000042"

    title = Column(String(60), nullable=False)
    description = Column(String(255), nullable=False, default="")
    deadline = Column(DateTime(timezone=True), nullable=False)
    status = Column(SQLEnum(TaskStatus), default=TaskStatus.PENDING, nullable=False, index=True)

    creator_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    creator = relationship("User", foreign_keys=[creator_id])
    assignees = relationship("User", secondary=task_assignees, order_by="User.username")
    comments = relationship(
        "TaskComment",
        back_populates="task",
        order_by="TaskComment.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Task {self.reference}>"


class TaskComment(Base):
    """Comment on a task; replies point at a parent in the same task"""
    __tablename__ = "task_comments"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(String, ForeignKey("users.id"), nullable=False)
    parent_id = Column(String, nullable=True, index=True)
    content = Column(Text, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    # Relationships
    task = relationship("Task", back_populates="comments")
    author = relationship("User")

    __table_args__ = (
        Index("idx_comment_task_position", "task_id", "position"),
    )
