"""
Task hierarchy and task-membership operations.

Structural rules enforced here:

- A subtask's parent must exist, live in the same project, and be a
  top-level task (exactly one level of nesting).
- The creator of a task is enrolled as its PRIMARY member.
- Deleting a task removes its subtasks and every task-member row of the task
  and its subtasks, as one transaction.
- A task has at most one PRIMARY member. Promoting someone demotes the current
  PRIMARY to SECONDARY in the same transaction; the partial unique index on
  ``task_members`` turns a lost race into a ConflictError.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from database import retry_on_pool_exhaustion, transaction
from errors import ConflictError, InvalidRequestError, NotFoundError
from models import ActivityAction, Task, TaskMember, TaskMemberRole, TaskStatus, User
from auth.membership import is_project_member
from auth.permissions import Action, require_permission
from services.activity_logs import record_activity

logger = logging.getLogger(__name__)

TASK_FIELDS = ("title", "description", "status", "priority", "start_date", "end_date")
REQUIRED_TASK_FIELDS = ("title", "status", "priority")


def _change_value(value: Any) -> Any:
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, datetime):
        # SQLite hands back naive datetimes; they are stored as UTC
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    return value


def _load_parent(db: Session, parent_id: int, project_id: int) -> Task:
    """Validate a prospective parent task and return it."""
    parent = db.query(Task).filter(Task.id == parent_id).first()
    if parent is None:
        logger.info(f"Parent task {parent_id} not found")
        raise NotFoundError("Parent task not found")

    if parent.project_id != project_id:
        logger.info(f"Parent task {parent_id} is in different project: {parent.project_id} vs {project_id}")
        raise InvalidRequestError("Parent task must be in the same project")

    if parent.parent_id is not None:
        logger.info(f"Parent task {parent_id} is itself a subtask of {parent.parent_id}")
        raise InvalidRequestError("Subtasks cannot have subtasks")

    return parent


@retry_on_pool_exhaustion
def create_task(db: Session, actor_id: int, data: Dict[str, Any]) -> Task:
    """
    Create a task or, when ``parent_id`` is given, a subtask.

    Requires membership of the target project. The creator becomes the
    task's PRIMARY member.

    Raises:
        NotFoundError: project hidden from the actor, or parent task missing
        InvalidRequestError: parent in another project, or parent is a subtask
    """
    project_id = data["project_id"]
    parent_id = data.get("parent_id")
    logger.info(f"User {actor_id} creating task: {data.get('title')} in project {project_id} (parent={parent_id})")

    with transaction(db):
        require_permission(actor_id, Action.CREATE_TASK, db, project_id=project_id)

        parent = _load_parent(db, parent_id, project_id) if parent_id is not None else None

        task = Task(
            project_id=project_id,
            parent_id=parent_id,
            creator_id=actor_id,
            **{key: data[key] for key in TASK_FIELDS if data.get(key) is not None},
        )
        db.add(task)
        db.flush()

        db.add(TaskMember(task_id=task.id, user_id=actor_id, role=TaskMemberRole.PRIMARY))
        db.flush()

        if parent is not None:
            record_activity(
                db,
                ActivityAction.SUBTASK_CREATED,
                actor_id,
                project_id,
                task_id=task.id,
                metadata={"task_title": task.title, "parent_id": parent.id, "parent_title": parent.title},
            )
        else:
            record_activity(
                db,
                ActivityAction.TASK_CREATED,
                actor_id,
                project_id,
                task_id=task.id,
                metadata={"task_title": task.title, "status": task.status, "priority": task.priority},
            )

    db.refresh(task)
    logger.info(f"Task created successfully: id={task.id}")
    return task


def create_subtask(db: Session, actor_id: int, parent_id: int, data: Dict[str, Any]) -> Task:
    """Create a subtask under ``parent_id``, in the parent's project."""
    parent = require_permission(actor_id, Action.VIEW_TASK, db, task_id=parent_id)
    return create_task(db, actor_id, {**data, "project_id": parent.project_id, "parent_id": parent.id})


def get_task(db: Session, actor_id: int, task_id: int) -> Task:
    """Get a task with its members and subtasks (requires project membership)."""
    require_permission(actor_id, Action.VIEW_TASK, db, task_id=task_id)
    return (
        db.query(Task)
        .options(
            joinedload(Task.members).joinedload(TaskMember.user),
            joinedload(Task.subtasks),
        )
        .filter(Task.id == task_id)
        .first()
    )


def list_subtasks(db: Session, actor_id: int, task_id: int) -> List[Task]:
    require_permission(actor_id, Action.VIEW_TASK, db, task_id=task_id)
    return (
        db.query(Task)
        .filter(Task.parent_id == task_id)
        .order_by(Task.created_at.asc(), Task.id.asc())
        .all()
    )


@retry_on_pool_exhaustion
def update_task(db: Session, actor_id: int, task_id: int, changes: Dict[str, Any]) -> Task:
    """
    Update task fields (requires project OWNER, task creator, or task PRIMARY).

    ``project_id`` and ``parent_id`` are not updatable. Only fields whose
    value actually changes are recorded.
    """
    logger.info(f"User {actor_id} updating task {task_id}")

    with transaction(db):
        task = require_permission(actor_id, Action.UPDATE_TASK, db, task_id=task_id)

        recorded = {}
        for key, new_value in changes.items():
            if key not in TASK_FIELDS:
                raise InvalidRequestError(f"Field '{key}' cannot be updated")
            if new_value is None and key in REQUIRED_TASK_FIELDS:
                raise InvalidRequestError(f"Field '{key}' cannot be null")
            old_value = getattr(task, key)
            if _change_value(old_value) != _change_value(new_value):
                recorded[key] = {"old": _change_value(old_value), "new": _change_value(new_value)}
                setattr(task, key, new_value)
        db.flush()

        record_activity(
            db,
            ActivityAction.TASK_UPDATED,
            actor_id,
            task.project_id,
            task_id=task.id,
            metadata={"task_title": task.title, "changes": recorded},
        )

    db.refresh(task)
    logger.info(f"Task {task_id} updated successfully ({sorted(recorded)})")
    return task


@retry_on_pool_exhaustion
def update_task_status(db: Session, actor_id: int, task_id: int, status: TaskStatus) -> Task:
    """
    Set a task's status (any project member).

    Status has no state machine: every value is reachable from every other,
    including moving a COMPLETED task back to NOT_STARTED.
    """
    logger.info(f"User {actor_id} setting status of task {task_id} to {status.value}")

    with transaction(db):
        task = require_permission(actor_id, Action.UPDATE_TASK_STATUS, db, task_id=task_id)
        old_status = task.status
        task.status = status
        db.flush()
        record_activity(
            db,
            ActivityAction.TASK_STATUS_CHANGED,
            actor_id,
            task.project_id,
            task_id=task.id,
            metadata={"task_title": task.title, "old_status": old_status, "new_status": status},
        )

    db.refresh(task)
    logger.info(f"Task {task_id} status changed {old_status.value} -> {status.value}")
    return task


@retry_on_pool_exhaustion
def delete_task(db: Session, actor_id: int, task_id: int) -> Dict[str, Any]:
    """
    Delete a task with its subtasks and all their member rows (requires
    project OWNER or task creator).

    All affected ids are collected first, then removed with bulk deletes
    inside one transaction: either everything goes or nothing does.
    """
    logger.debug(f"User {actor_id} deleting task {task_id}")

    with transaction(db):
        task = require_permission(actor_id, Action.DELETE_TASK, db, task_id=task_id)
        project_id = task.project_id
        title = task.title

        subtask_ids = [row.id for row in db.query(Task.id).filter(Task.parent_id == task_id).all()]
        doomed_ids = subtask_ids + [task_id]

        removed_members = (
            db.query(TaskMember)
            .filter(TaskMember.task_id.in_(doomed_ids))
            .delete(synchronize_session=False)
        )
        if subtask_ids:
            db.query(Task).filter(Task.id.in_(subtask_ids)).delete(synchronize_session=False)
        db.query(Task).filter(Task.id == task_id).delete(synchronize_session=False)

        record_activity(
            db,
            ActivityAction.TASK_DELETED,
            actor_id,
            project_id,
            task_id=task_id,
            metadata={
                "task_title": title,
                "subtask_ids": subtask_ids,
                "removed_members": removed_members,
            },
        )

    logger.info(
        f"Task {task_id} deleted by user {actor_id} "
        f"({len(subtask_ids)} subtasks, {removed_members} member rows)"
    )
    return {"deleted_task_ids": doomed_ids, "removed_member_count": removed_members}


# ============== Task Members ==============


def demote_current_primary(db: Session, task_id: int, exclude_user_id: Optional[int] = None) -> Optional[int]:
    """
    Demote the task's PRIMARY member to SECONDARY, flushing immediately so
    the promotion that follows never sees two PRIMARY rows.

    Returns the demoted user's id, or None when there was no other PRIMARY.
    """
    current = (
        db.query(TaskMember)
        .filter(TaskMember.task_id == task_id, TaskMember.role == TaskMemberRole.PRIMARY)
        .first()
    )
    if current is None or current.user_id == exclude_user_id:
        return None

    current.role = TaskMemberRole.SECONDARY
    db.flush()
    logger.debug(f"Demoted user {current.user_id} to SECONDARY on task {task_id}")
    return current.user_id


def _flush_promotion(db: Session, task_id: int) -> None:
    try:
        db.flush()
    except IntegrityError:
        logger.info(f"Conflicting membership write on task {task_id}")
        raise ConflictError("Task membership changed concurrently, please retry")


def list_task_members(db: Session, actor_id: int, task_id: int) -> List[TaskMember]:
    require_permission(actor_id, Action.VIEW_TASK, db, task_id=task_id)
    return (
        db.query(TaskMember)
        .options(joinedload(TaskMember.user))
        .filter(TaskMember.task_id == task_id)
        .order_by(TaskMember.assigned_at.asc())
        .all()
    )


@retry_on_pool_exhaustion
def add_task_member(
    db: Session,
    actor_id: int,
    task_id: int,
    user_id: int,
    role: Optional[TaskMemberRole] = None,
) -> TaskMember:
    """
    Assign a project member to a task.

    Requires project OWNER, task creator, or task PRIMARY. Adding someone as
    PRIMARY demotes the current PRIMARY to SECONDARY.

    Raises:
        NotFoundError: task hidden from the actor, or unknown user
        InvalidRequestError: the user is not a member of the task's project
        ConflictError: the user is already assigned, or a concurrent promotion won
    """
    role = role or TaskMemberRole.SECONDARY
    logger.debug(f"User {actor_id} adding member {user_id} to task {task_id} as {role.value}")

    with transaction(db):
        task = require_permission(actor_id, Action.MANAGE_TASK_MEMBERS, db, task_id=task_id)

        user_to_add = db.query(User).filter(User.id == user_id).first()
        if not user_to_add:
            raise NotFoundError("User not found")

        if not is_project_member(user_id, task.project_id, db):
            logger.info(f"User {user_id} is not a member of project {task.project_id}")
            raise InvalidRequestError("User must be a project member before joining a task")

        existing = (
            db.query(TaskMember)
            .filter(TaskMember.task_id == task_id, TaskMember.user_id == user_id)
            .first()
        )
        if existing:
            raise ConflictError("User is already a member of this task")

        demoted_id = None
        if role == TaskMemberRole.PRIMARY:
            demoted_id = demote_current_primary(db, task_id)

        membership = TaskMember(task_id=task_id, user_id=user_id, role=role)
        db.add(membership)
        _flush_promotion(db, task_id)

        record_activity(
            db,
            ActivityAction.TASK_MEMBER_ADDED,
            actor_id,
            task.project_id,
            task_id=task_id,
            metadata={
                "member_id": user_id,
                "member_name": user_to_add.name,
                "role": role,
                "demoted_member_id": demoted_id,
            },
        )

    db.refresh(membership)
    logger.info(f"User {user_id} added to task {task_id} as {role.value} (demoted: {demoted_id})")
    return membership


@retry_on_pool_exhaustion
def update_task_member_role(
    db: Session, actor_id: int, task_id: int, user_id: int, role: TaskMemberRole
) -> TaskMember:
    """
    Change a task member's role. Promoting to PRIMARY demotes the current
    PRIMARY in the same transaction.
    """
    logger.debug(f"User {actor_id} changing role of {user_id} on task {task_id} to {role.value}")

    with transaction(db):
        task = require_permission(actor_id, Action.MANAGE_TASK_MEMBERS, db, task_id=task_id)

        membership = (
            db.query(TaskMember)
            .options(joinedload(TaskMember.user))
            .filter(TaskMember.task_id == task_id, TaskMember.user_id == user_id)
            .first()
        )
        if not membership:
            raise NotFoundError("Task member not found")

        old_role = membership.role
        demoted_id = None
        if role == TaskMemberRole.PRIMARY:
            demoted_id = demote_current_primary(db, task_id, exclude_user_id=user_id)

        membership.role = role
        _flush_promotion(db, task_id)

        record_activity(
            db,
            ActivityAction.TASK_MEMBER_ROLE_CHANGED,
            actor_id,
            task.project_id,
            task_id=task_id,
            metadata={
                "member_id": user_id,
                "member_name": membership.user.name,
                "old_role": old_role,
                "new_role": role,
                "demoted_member_id": demoted_id,
            },
        )

    db.refresh(membership)
    logger.info(f"User {user_id} role on task {task_id} changed {old_role.value} -> {role.value}")
    return membership


@retry_on_pool_exhaustion
def remove_task_member(db: Session, actor_id: int, task_id: int, user_id: int) -> None:
    """Unassign a user from a task. Removing the PRIMARY leaves the task without one."""
    logger.debug(f"User {actor_id} removing member {user_id} from task {task_id}")

    with transaction(db):
        task = require_permission(actor_id, Action.MANAGE_TASK_MEMBERS, db, task_id=task_id)

        membership = (
            db.query(TaskMember)
            .options(joinedload(TaskMember.user))
            .filter(TaskMember.task_id == task_id, TaskMember.user_id == user_id)
            .first()
        )
        if not membership:
            raise NotFoundError("Task member not found")

        metadata = {"member_id": user_id, "member_name": membership.user.name, "role": membership.role}
        db.delete(membership)
        db.flush()

        record_activity(
            db,
            ActivityAction.TASK_MEMBER_REMOVED,
            actor_id,
            task.project_id,
            task_id=task_id,
            metadata=metadata,
        )

    logger.info(f"User {user_id} removed from task {task_id}")
