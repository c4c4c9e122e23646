"""
Activity log recorder and readers.

``record_activity`` appends an entry to the session without committing, so it
always lands in the caller's transaction next to the mutation it describes.
The description is rendered once at write time and stored; reads never
re-render it.
"""

import logging
from typing import Any, Dict, Optional, Union

from sqlalchemy.orm import Session, joinedload

from errors import NotFoundError
from models import ActivityAction, ActivityLog, ProjectRole, Task
from auth.membership import get_project_role

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50

DESCRIPTION_TEMPLATES: Dict[ActivityAction, str] = {
    ActivityAction.PROJECT_CREATED: 'Created project "{project_name}"',
    ActivityAction.PROJECT_UPDATED: "Updated project",
    ActivityAction.PROJECT_DELETED: "Archived project",
    ActivityAction.MEMBER_ADDED: "Added {member_name} to project",
    ActivityAction.MEMBER_REMOVED: "Removed {member_name} from project",
    ActivityAction.MEMBER_ROLE_CHANGED: "Changed {member_name}'s role from {old_role} to {new_role}",
    ActivityAction.TASK_CREATED: 'Created task "{task_title}"',
    ActivityAction.SUBTASK_CREATED: 'Created subtask "{task_title}" under "{parent_title}"',
    ActivityAction.TASK_UPDATED: 'Updated task "{task_title}"',
    ActivityAction.TASK_DELETED: 'Deleted task "{task_title}"',
    ActivityAction.TASK_STATUS_CHANGED: "Changed status from {old_status} to {new_status}",
    ActivityAction.TASK_MEMBER_ADDED: "Assigned {member_name} to task as {role}",
    ActivityAction.TASK_MEMBER_REMOVED: "Removed {member_name} from task",
    ActivityAction.TASK_MEMBER_ROLE_CHANGED: "Changed {member_name}'s task role from {old_role} to {new_role}",
}


class _Placeholders(dict):
    """Format mapping that renders missing keys as 'unknown'."""

    def __missing__(self, key: str) -> str:
        return "unknown"


def describe_activity(action: Union[ActivityAction, str], metadata: Optional[Dict[str, Any]]) -> str:
    """
    Render the human-readable description for an action.

    Unknown actions describe themselves by name.

    Example:
        >>> describe_activity(ActivityAction.TASK_STATUS_CHANGED,
        ...                   {"old_status": "NOT_STARTED", "new_status": "IN_PROGRESS"})
        'Changed status from NOT_STARTED to IN_PROGRESS'
    """
    try:
        template = DESCRIPTION_TEMPLATES[ActivityAction(action)]
    except ValueError:
        return str(action)
    values = _Placeholders({
        key: value.value if hasattr(value, "value") else value
        for key, value in (metadata or {}).items()
    })
    return template.format_map(values)


def _jsonable(metadata: Dict[str, Any]) -> Dict[str, Any]:
    """Convert enum and datetime values so metadata stores as plain JSON."""
    converted = {}
    for key, value in metadata.items():
        if isinstance(value, dict):
            converted[key] = _jsonable(value)
        elif hasattr(value, "value"):
            converted[key] = value.value
        elif hasattr(value, "isoformat"):
            converted[key] = value.isoformat()
        else:
            converted[key] = value
    return converted


def record_activity(
    db: Session,
    action: ActivityAction,
    actor_id: int,
    project_id: int,
    task_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> ActivityLog:
    """
    Append an activity log entry to the current transaction.

    The entry is flushed (so it gets an id) but not committed: the caller's
    ``transaction()`` block commits it together with the mutation, or rolls
    both back.

    Args:
        db: Database session
        action: Kind of mutation being recorded
        actor_id: User who performed it
        project_id: Project the mutation belongs to (always set)
        task_id: Task involved, if any
        metadata: Action-specific details used for the description

    Returns:
        The pending ActivityLog row
    """
    metadata = _jsonable(metadata or {})
    entry = ActivityLog(
        action=action.value,
        description=describe_activity(action, metadata),
        log_metadata=metadata,
        user_id=actor_id,
        project_id=project_id,
        task_id=task_id,
    )
    db.add(entry)
    db.flush()

    logger.debug(f"Activity recorded: id={entry.id}, action={action.value}, project={project_id}, task={task_id}")
    return entry


def _page(query, limit: int, offset: int) -> Dict[str, Any]:
    total = query.count()
    data = (
        query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return {"data": data, "total": total, "limit": limit, "offset": offset}


def list_project_activity(
    db: Session, project_id: int, actor_id: int, limit: int = DEFAULT_LIMIT, offset: int = 0
) -> Dict[str, Any]:
    """
    List a project's activity, newest first.

    Owners see every entry; other members see only the entries they made.

    Raises:
        NotFoundError: the actor is not a member of the project
    """
    role = get_project_role(actor_id, project_id, db)
    if role is None:
        logger.info(f"User {actor_id} denied activity of project {project_id}: not a member")
        raise NotFoundError("Project not found")

    query = (
        db.query(ActivityLog)
        .options(joinedload(ActivityLog.user), joinedload(ActivityLog.task))
        .filter(ActivityLog.project_id == project_id)
    )
    if role != ProjectRole.OWNER:
        query = query.filter(ActivityLog.user_id == actor_id)

    page = _page(query, limit, offset)
    logger.info(
        f"User {actor_id} ({role.value}) retrieved {len(page['data'])} activities "
        f"for project {project_id} (total: {page['total']})"
    )
    return page


def list_task_activity(
    db: Session, task_id: int, actor_id: int, limit: int = DEFAULT_LIMIT, offset: int = 0
) -> Dict[str, Any]:
    """
    List every entry for a task, newest first, for any member of its project.

    Raises:
        NotFoundError: the task does not exist or the actor is not a project member
    """
    task = db.query(Task).filter(Task.id == task_id).first()
    if task is None or get_project_role(actor_id, task.project_id, db) is None:
        logger.info(f"User {actor_id} denied activity of task {task_id}")
        raise NotFoundError("Task not found")

    query = (
        db.query(ActivityLog)
        .options(joinedload(ActivityLog.user))
        .filter(ActivityLog.task_id == task_id)
    )
    page = _page(query, limit, offset)
    logger.info(f"Found {len(page['data'])} activities for task {task_id} (total: {page['total']})")
    return page


def list_my_activity(db: Session, actor_id: int, limit: int = DEFAULT_LIMIT, offset: int = 0) -> Dict[str, Any]:
    """List everything the actor did, across all projects, newest first."""
    query = (
        db.query(ActivityLog)
        .options(joinedload(ActivityLog.task))
        .filter(ActivityLog.user_id == actor_id)
    )
    page = _page(query, limit, offset)
    logger.info(f"User {actor_id} retrieved {len(page['data'])} of their activities (total: {page['total']})")
    return page
