# permissions.py — Who may see and change what on a task
#
#   field                                    creator   assignee   other
#   title, description, deadline, assignedTo  rw        r          -
#   status                                   rw        rw         -
#   comments (create)                        yes       yes        -
#   comments (edit/delete)                   author    author     -
#   delete task                              yes       no         -
#
# Pure functions over already-loaded Task/TaskComment objects; no I/O.
from typing import FrozenSet, Iterable, List

from models import Task, TaskComment

CREATOR_FIELDS: FrozenSet[str] = frozenset({"title", "description", "deadline", "assigned_to"})
SHARED_FIELDS: FrozenSet[str] = frozenset({"status"})
TASK_FIELDS: FrozenSet[str] = CREATOR_FIELDS | SHARED_FIELDS

FIELD_LABELS = {
    "title": "title",
    "description": "description",
    "deadline": "deadline",
    "assigned_to": "assigned users",
    "status": "status",
}


def assignee_ids(task: Task) -> FrozenSet[str]:
    return frozenset(u.id for u in (task.assignees or []))


def is_creator(task: Task, user_id: str) -> bool:
    return task.creator_id == user_id


def is_assignee(task: Task, user_id: str) -> bool:
    return user_id in assignee_ids(task)


def can_read(task: Task, user_id: str) -> bool:
    return is_creator(task, user_id) or is_assignee(task, user_id)


def writable_fields(task: Task, user_id: str) -> FrozenSet[str]:
    if is_creator(task, user_id):
        return TASK_FIELDS
    if is_assignee(task, user_id):
        return SHARED_FIELDS
    return frozenset()


def forbidden_fields(task: Task, user_id: str, fields: Iterable[str]) -> List[str]:
    """Requested fields the user may not write, in request order."""
    allowed = writable_fields(task, user_id)
    return [f for f in fields if f not in allowed]


def can_modify_comment(task: Task, comment: TaskComment, user_id: str) -> bool:
    return can_read(task, user_id) and comment.author_id == user_id


def can_delete_task(task: Task, user_id: str) -> bool:
    return is_creator(task, user_id)
