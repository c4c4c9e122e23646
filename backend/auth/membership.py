"""
Membership resolution for projects and tasks.

Single source of truth for "what role does this user hold here". Every
permission check goes through these functions. They always hit the database
so a role change is visible to the very next check.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from models import ProjectMember, ProjectRole, TaskMember, TaskMemberRole

logger = logging.getLogger(__name__)


def get_project_role(user_id: int, project_id: int, db: Session) -> Optional[ProjectRole]:
    """
    Return the user's role in a project, or None when they are not a member.

    Example:
        >>> get_project_role(user.id, project.id, db)
        <ProjectRole.OWNER: 'OWNER'>
    """
    membership = (
        db.query(ProjectMember)
        .filter(ProjectMember.user_id == user_id, ProjectMember.project_id == project_id)
        .first()
    )
    if membership is None:
        logger.debug(f"User {user_id} has no membership in project {project_id}")
        return None
    return membership.role


def get_task_role(user_id: int, task_id: int, db: Session) -> Optional[TaskMemberRole]:
    """Return the user's role on a task, or None when they are not assigned."""
    membership = (
        db.query(TaskMember)
        .filter(TaskMember.task_id == task_id, TaskMember.user_id == user_id)
        .first()
    )
    if membership is None:
        logger.debug(f"User {user_id} is not assigned to task {task_id}")
        return None
    return membership.role


def is_project_member(user_id: int, project_id: int, db: Session) -> bool:
    return get_project_role(user_id, project_id, db) is not None


def is_project_owner(user_id: int, project_id: int, db: Session) -> bool:
    return get_project_role(user_id, project_id, db) == ProjectRole.OWNER


def is_task_primary(user_id: int, task_id: int, db: Session) -> bool:
    return get_task_role(user_id, task_id, db) == TaskMemberRole.PRIMARY
