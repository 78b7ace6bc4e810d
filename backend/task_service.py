# task_service.py — Task store: tasks, assignment, status and comment threads
# Features:
# - Sequential TASK-NNNNNN references, unique index + bounded retry on collision
# - Overdue derived from the deadline on every read and normalized on every write
# - All-or-nothing assignment by username or email
# - Threaded comments (parent must live in the same task, no orphaned replies)

import uuid
import logging
from collections import defaultdict
from datetime import datetime
from typing import Annotated, Optional, List, Dict, Iterable

from pydantic import AfterValidator, Field
from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

import permissions
from errors import (
    AuthorizationError, DuplicateError, HasRepliesError, MalformedIdError,
    NotFoundError, ValidationError,
)
from models import (
    Task, TaskComment, TaskStatus, User, task_assignees,
    as_utc, format_reference, utcnow,
)
from schemas import CamelModel

logger = logging.getLogger("taskboard.tasks")

MAX_TITLE_LENGTH = 60
MAX_DESCRIPTION_LENGTH = 255
MAX_COMMENT_LENGTH = 1000
REF_ALLOCATION_ATTEMPTS = 5


# ============================================================
# INPUT SCHEMAS
# ============================================================

def _clean_title(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Task title is required")
    if len(v) > MAX_TITLE_LENGTH:
        raise ValueError(f"Title cannot exceed {MAX_TITLE_LENGTH} characters")
    return v


def _clean_description(v: str) -> str:
    v = v.strip()
    if len(v) > MAX_DESCRIPTION_LENGTH:
        raise ValueError(f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters")
    return v


def _clean_content(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Comment content is required")
    if len(v) > MAX_COMMENT_LENGTH:
        raise ValueError(f"Comment cannot exceed {MAX_COMMENT_LENGTH} characters")
    return v


Title = Annotated[str, AfterValidator(_clean_title)]
Description = Annotated[str, AfterValidator(_clean_description)]
CommentContent = Annotated[str, AfterValidator(_clean_content)]


class TaskCreate(CamelModel):
    title: Title
    description: Optional[Description] = None
    deadline: datetime
    assigned_to: List[str] = Field(default_factory=list)


class TaskUpdate(CamelModel):
    title: Optional[Title] = None
    description: Optional[Description] = None
    deadline: Optional[datetime] = None
    status: Optional[TaskStatus] = None
    assigned_to: Optional[List[str]] = None


class StatusUpdate(CamelModel):
    status: TaskStatus


class CommentCreate(CamelModel):
    content: CommentContent
    parent_comment_id: Optional[str] = None


class CommentUpdate(CamelModel):
    content: CommentContent


# ============================================================
# PURE HELPERS
# ============================================================

def parse_id(value: Optional[str], message: str = "Invalid ID format") -> str:
    """Normalize a UUID-shaped id or raise MalformedIdError."""
    try:
        return str(uuid.UUID(str(value)))
    except (ValueError, TypeError):
        raise MalformedIdError(message)


def is_past_deadline(task: Task, now: Optional[datetime] = None) -> bool:
    return as_utc(task.deadline) < (now or utcnow())


def effective_status(task: Task, now: Optional[datetime] = None) -> TaskStatus:
    """Status as every reader sees it: past-deadline work is Overdue unless Completed."""
    status = TaskStatus(task.status)
    if status != TaskStatus.COMPLETED and is_past_deadline(task, now):
        return TaskStatus.OVERDUE
    return status


def apply_overdue(task: Task, now: Optional[datetime] = None) -> None:
    task.status = effective_status(task, now)


def build_reply_index(comments: Iterable[TaskComment]) -> Dict[str, List[TaskComment]]:
    """parent comment id -> replies, in thread order"""
    index: Dict[str, List[TaskComment]] = defaultdict(list)
    for c in comments:
        if c.parent_id:
            index[c.parent_id].append(c)
    return index


# ============================================================
# TASK STORE
# ============================================================

class TaskService:
    """Task operations, always evaluated on behalf of an acting user"""

    @staticmethod
    def _with_relations(stmt):
        return stmt.options(
            selectinload(Task.creator),
            selectinload(Task.assignees),
            selectinload(Task.comments).selectinload(TaskComment.author),
        )

    @staticmethod
    async def _reload(db: AsyncSession, task_id: str) -> Task:
        stmt = TaskService._with_relations(select(Task).where(Task.id == task_id))
        result = await db.execute(stmt.execution_options(populate_existing=True))
        return result.scalar_one()

    @staticmethod
    async def get_visible_task(db: AsyncSession, task_id: str, user_id: str) -> Task:
        """Load a task the user can read; anything else is reported as not found."""
        task_id = parse_id(task_id, "Invalid task ID format")
        stmt = TaskService._with_relations(select(Task).where(Task.id == task_id))
        result = await db.execute(stmt)
        task = result.scalar_one_or_none()
        if not task or not permissions.can_read(task, user_id):
            raise NotFoundError("Task not found or not authorized")
        return task

    @staticmethod
    async def resolve_assignees(db: AsyncSession, identifiers: Iterable[str]) -> List[User]:
        """Map usernames/emails to users; one unknown identifier fails the lot."""
        users: List[User] = []
        seen = set()
        for raw in identifiers:
            identifier = (raw or "").strip()
            if not identifier:
                continue
            stmt = select(User).where(
                or_(User.username == identifier, User.email == identifier.lower())
            )
            result = await db.execute(stmt)
            user = result.scalars().first()
            if not user:
                raise ValidationError(f"User not found: {identifier}")
            if user.id not in seen:
                seen.add(user.id)
                users.append(user)
        return users

    @staticmethod
    async def _next_ref_number(db: AsyncSession) -> int:
        result = await db.execute(select(func.coalesce(func.max(Task.ref_number), 0)))
        return (result.scalar() or 0) + 1

    @staticmethod
    async def create_task(db: AsyncSession, data: TaskCreate, creator_id: str) -> Task:
        now = utcnow()
        deadline = as_utc(data.deadline)
        if deadline <= now:
            raise ValidationError("Deadline must be in the future")

        creator = await db.get(User, creator_id)
        if not creator:
            raise NotFoundError("User not found")

        assignees = await TaskService.resolve_assignees(db, data.assigned_to)

        for attempt in range(1, REF_ALLOCATION_ATTEMPTS + 1):
            number = await TaskService._next_ref_number(db)
            task = Task(
                ref_number=number,
                reference=format_reference(number),
                title=data.title,
                description=data.description or "",
                deadline=deadline,
                status=TaskStatus.PENDING,
                creator_id=creator_id,
                assignees=list(assignees),
            )
            db.add(task)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.warning(
                    f"Task reference {format_reference(number)} already taken "
                    f"(attempt {attempt}/{REF_ALLOCATION_ATTEMPTS})"
                )
                continue

            logger.info(f"✅ Task {task.reference} created by {creator_id} ({len(assignees)} assignees)")
            return await TaskService._reload(db, task.id)

        raise DuplicateError("Could not allocate a task reference, please retry")

    @staticmethod
    async def list_tasks(db: AsyncSession, user_id: str) -> List[Task]:
        assigned = select(task_assignees.c.task_id).where(task_assignees.c.user_id == user_id)
        stmt = TaskService._with_relations(
            select(Task)
            .where(or_(Task.creator_id == user_id, Task.id.in_(assigned)))
            .order_by(Task.created_at.desc(), Task.ref_number.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().unique().all())

    @staticmethod
    async def update_task(db: AsyncSession, task_id: str, user_id: str, data: TaskUpdate) -> Task:
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("No valid fields to update")

        task = await TaskService.get_visible_task(db, task_id, user_id)

        denied = permissions.forbidden_fields(task, user_id, changes.keys())
        if denied:
            raise AuthorizationError(
                f"Only task owner can update {permissions.FIELD_LABELS[denied[0]]}"
            )

        now = utcnow()

        if "title" in changes:
            if changes["title"] is None:
                raise ValidationError("Task title cannot be empty")
            task.title = changes["title"]

        if "description" in changes:
            task.description = changes["description"] or ""

        if "deadline" in changes:
            if changes["deadline"] is None:
                raise ValidationError("Deadline is required")
            deadline = as_utc(changes["deadline"])
            if deadline <= now:
                raise ValidationError("Deadline must be in the future")
            task.deadline = deadline

        if "assigned_to" in changes:
            task.assignees = await TaskService.resolve_assignees(db, changes["assigned_to"] or [])

        if "status" in changes:
            status = changes["status"]
            if status is None:
                raise ValidationError(
                    "Valid status is required: Pending, In Progress, Completed, or Overdue"
                )
            if status == TaskStatus.OVERDUE:
                if TaskStatus(task.status) == TaskStatus.COMPLETED:
                    raise ValidationError("Completed tasks cannot be marked as overdue")
                if not is_past_deadline(task, now):
                    raise ValidationError("Only tasks past their deadline can be marked as overdue")
            task.status = status

        apply_overdue(task, now)
        task.updated_at = now
        await db.commit()
        return await TaskService._reload(db, task.id)

    @staticmethod
    async def delete_task(db: AsyncSession, task_id: str, user_id: str) -> None:
        task = await TaskService.get_visible_task(db, task_id, user_id)
        if not permissions.can_delete_task(task, user_id):
            raise NotFoundError("Task not found or not authorized")

        reference = task.reference
        await db.delete(task)
        await db.commit()
        logger.info(f"🗑️ Task {reference} deleted by {user_id}")

    # --------------------------------------------------------
    # Comments
    # --------------------------------------------------------

    @staticmethod
    def _find_comment(task: Task, comment_id: str) -> Optional[TaskComment]:
        for c in task.comments:
            if c.id == comment_id:
                return c
        return None

    @staticmethod
    async def add_comment(db: AsyncSession, task_id: str, user_id: str, data: CommentCreate) -> Task:
        task = await TaskService.get_visible_task(db, task_id, user_id)

        parent_id = None
        if data.parent_comment_id:
            parent_id = parse_id(data.parent_comment_id)
            if TaskService._find_comment(task, parent_id) is None:
                raise ValidationError("Parent comment not found")

        now = utcnow()
        task.comments.append(TaskComment(
            author_id=user_id,
            content=data.content,
            parent_id=parent_id,
            position=max((c.position for c in task.comments), default=-1) + 1,
            created_at=now,
            updated_at=now,
        ))
        apply_overdue(task, now)
        await db.commit()
        return await TaskService._reload(db, task.id)

    @staticmethod
    def _authored_comment(task: Task, comment_id: str, user_id: str, action: str) -> TaskComment:
        comment = TaskService._find_comment(task, parse_id(comment_id))
        if comment is None or not permissions.can_modify_comment(task, comment, user_id):
            raise NotFoundError(f"Comment not found or not authorized to {action}")
        return comment

    @staticmethod
    async def edit_comment(
        db: AsyncSession, task_id: str, user_id: str, comment_id: str, data: CommentUpdate,
    ) -> Task:
        task = await TaskService.get_visible_task(db, task_id, user_id)
        comment = TaskService._authored_comment(task, comment_id, user_id, "update")

        now = utcnow()
        comment.content = data.content
        comment.updated_at = now
        apply_overdue(task, now)
        await db.commit()
        return await TaskService._reload(db, task.id)

    @staticmethod
    async def delete_comment(db: AsyncSession, task_id: str, user_id: str, comment_id: str) -> Task:
        task = await TaskService.get_visible_task(db, task_id, user_id)
        comment = TaskService._authored_comment(task, comment_id, user_id, "delete")

        if build_reply_index(task.comments).get(comment.id):
            raise HasRepliesError()

        task.comments.remove(comment)
        apply_overdue(task)
        await db.commit()
        return await TaskService._reload(db, task.id)

    @staticmethod
    async def list_replies(db: AsyncSession, task_id: str, user_id: str, comment_id: str) -> List[TaskComment]:
        task = await TaskService.get_visible_task(db, task_id, user_id)
        comment = TaskService._find_comment(task, parse_id(comment_id))
        if comment is None:
            raise NotFoundError("Comment not found")
        return list(build_reply_index(task.comments).get(comment.id, []))
