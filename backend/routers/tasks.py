# routers/tasks.py — Tasks, assignment, status and threaded comments
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from models import Task, TaskComment, utcnow
from schemas import CamelModel, UserSummaryOut, user_to_summary, _ts
from task_service import (
    TaskService, TaskCreate, TaskUpdate, StatusUpdate, CommentCreate, CommentUpdate,
    effective_status,
)

router = APIRouter(prefix="/tasks", tags=["Tasks"])


# ============================================================
# SCHEMAS
# ============================================================

class CommentOut(CamelModel):
    id: str
    author: Optional[UserSummaryOut] = None
    content: str
    parent_comment_id: Optional[str] = None
    created_at: str
    updated_at: str


class TaskOut(CamelModel):
    id: str
    reference: str
    title: str
    description: str = ""
    deadline: str
    status: str
    assigned_to: List[UserSummaryOut] = []
    created_by: Optional[UserSummaryOut] = None
    comments: List[CommentOut] = []
    created_at: str
    updated_at: str


# ============================================================
# HELPERS
# ============================================================

def _comment_to_out(c: TaskComment) -> CommentOut:
    return CommentOut(
        id=c.id,
        author=user_to_summary(c.author) if c.author else None,
        content=c.content,
        parent_comment_id=c.parent_id,
        created_at=_ts(c.created_at) or "",
        updated_at=_ts(c.updated_at) or "",
    )


def _task_to_out(task: Task, now: Optional[datetime] = None) -> TaskOut:
    """Convert a fully loaded Task to TaskOut; status is the derived one."""
    return TaskOut(
        id=task.id,
        reference=task.reference,
        title=task.title,
        description=task.description or "",
        deadline=_ts(task.deadline),
        status=effective_status(task, now).value,
        assigned_to=[user_to_summary(u) for u in task.assignees],
        created_by=user_to_summary(task.creator) if task.creator else None,
        comments=[_comment_to_out(c) for c in task.comments],
        created_at=_ts(task.created_at) or "",
        updated_at=_ts(task.updated_at) or "",
    )


# ============================================================
# TASK ENDPOINTS
# ============================================================

@router.post("", response_model=TaskOut, status_code=201)
async def create_task(
    data: TaskCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a task, optionally assigned by username or email"""
    task = await TaskService.create_task(db, data, user.id)
    return _task_to_out(task)


@router.get("", response_model=List[TaskOut])
async def list_tasks(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Tasks the caller created or is assigned to, newest first"""
    tasks = await TaskService.list_tasks(db, user.id)
    now = utcnow()
    return [_task_to_out(t, now) for t in tasks]


@router.get("/{task_id}", response_model=TaskOut)
async def get_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task = await TaskService.get_visible_task(db, task_id, user.id)
    return _task_to_out(task)


@router.patch("/{task_id}", response_model=TaskOut)
async def update_task(
    task_id: str,
    data: TaskUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Update any subset of title, description, deadline, status, assignedTo"""
    task = await TaskService.update_task(db, task_id, user.id, data)
    return _task_to_out(task)


@router.patch("/{task_id}/status", response_model=TaskOut)
async def update_task_status(
    task_id: str,
    data: StatusUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Status-only shortcut used by task cards"""
    task = await TaskService.update_task(db, task_id, user.id, TaskUpdate(status=data.status))
    return _task_to_out(task)


@router.delete("/{task_id}", status_code=204)
async def delete_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a task (creator only)"""
    await TaskService.delete_task(db, task_id, user.id)
    return Response(status_code=204)


# ============================================================
# COMMENT ENDPOINTS
# ============================================================

@router.post("/{task_id}/comments", response_model=TaskOut)
async def add_comment(
    task_id: str,
    data: CommentCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Add a comment or, with parentCommentId, a reply"""
    task = await TaskService.add_comment(db, task_id, user.id, data)
    return _task_to_out(task)


@router.patch("/{task_id}/comments/{comment_id}", response_model=TaskOut)
async def update_comment(
    task_id: str,
    comment_id: str,
    data: CommentUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Edit a comment (only the author can edit)"""
    task = await TaskService.edit_comment(db, task_id, user.id, comment_id, data)
    return _task_to_out(task)


@router.delete("/{task_id}/comments/{comment_id}", response_model=TaskOut)
async def delete_comment(
    task_id: str,
    comment_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a comment (author only, once it has no replies)"""
    task = await TaskService.delete_comment(db, task_id, user.id, comment_id)
    return _task_to_out(task)


@router.get("/{task_id}/comments/{comment_id}/replies", response_model=List[CommentOut])
async def list_replies(
    task_id: str,
    comment_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    replies = await TaskService.list_replies(db, task_id, user.id, comment_id)
    return [_comment_to_out(c) for c in replies]
