"""
Project and project-membership operations.

Each mutation checks permission, writes, and records its activity entry
inside a single transaction.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from database import retry_on_pool_exhaustion, transaction
from errors import ConflictError, InvalidRequestError, NotFoundError
from models import ActivityAction, Project, ProjectMember, ProjectRole, Task, TaskMember, User
from auth.permissions import Action, require_permission
from services.activity_logs import record_activity

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_COLOR = "#3B82F6"
PROJECT_FIELDS = ("name", "description", "color", "is_archived")
REQUIRED_PROJECT_FIELDS = ("name", "color", "is_archived")


@retry_on_pool_exhaustion
def create_project(db: Session, actor_id: int, data: Dict[str, Any]) -> Project:
    """Create a project and enroll the creator as its first OWNER."""
    logger.debug(f"User {actor_id} creating project: {data.get('name')}")

    with transaction(db):
        project = Project(
            name=data["name"],
            description=data.get("description"),
            color=data.get("color") or DEFAULT_PROJECT_COLOR,
        )
        db.add(project)
        db.flush()  # Get project ID without committing

        db.add(ProjectMember(user_id=actor_id, project_id=project.id, role=ProjectRole.OWNER))
        record_activity(
            db,
            ActivityAction.PROJECT_CREATED,
            actor_id,
            project.id,
            metadata={"project_name": project.name},
        )

    db.refresh(project)
    logger.info(f"Project created: {project.name} (ID: {project.id}) by user {actor_id}")
    return project


def list_projects(db: Session, actor_id: int, include_archived: bool = False) -> List[Project]:
    """List the projects the actor belongs to, most recently updated first."""
    query = (
        db.query(Project)
        .join(ProjectMember, ProjectMember.project_id == Project.id)
        .filter(ProjectMember.user_id == actor_id)
    )
    if not include_archived:
        query = query.filter(Project.is_archived.is_(False))

    projects = query.order_by(Project.updated_at.desc(), Project.id.desc()).all()
    logger.info(f"User {actor_id} retrieved {len(projects)} projects")
    return projects


def get_project(db: Session, actor_id: int, project_id: int) -> Project:
    """Get a project with its members (requires membership)."""
    require_permission(actor_id, Action.VIEW_PROJECT, db, project_id=project_id)
    return (
        db.query(Project)
        .options(joinedload(Project.members).joinedload(ProjectMember.user))
        .filter(Project.id == project_id)
        .first()
    )


def list_top_level_tasks(db: Session, actor_id: int, project_id: int) -> List[Task]:
    """Top-level tasks of a project, newest first (requires membership)."""
    require_permission(actor_id, Action.VIEW_PROJECT, db, project_id=project_id)
    return (
        db.query(Task)
        .filter(Task.project_id == project_id, Task.parent_id.is_(None))
        .order_by(Task.created_at.desc(), Task.id.desc())
        .all()
    )


@retry_on_pool_exhaustion
def update_project(db: Session, actor_id: int, project_id: int, changes: Dict[str, Any]) -> Project:
    """Update name, description, color or archived flag (requires OWNER)."""
    logger.debug(f"User {actor_id} updating project {project_id}: {sorted(changes)}")

    with transaction(db):
        project = require_permission(actor_id, Action.UPDATE_PROJECT, db, project_id=project_id)
        for key, value in changes.items():
            if key not in PROJECT_FIELDS:
                raise InvalidRequestError(f"Field '{key}' cannot be updated")
            if value is None and key in REQUIRED_PROJECT_FIELDS:
                raise InvalidRequestError(f"Field '{key}' cannot be null")
            setattr(project, key, value)
        db.flush()
        record_activity(
            db,
            ActivityAction.PROJECT_UPDATED,
            actor_id,
            project_id,
            metadata={"changes": changes},
        )

    db.refresh(project)
    logger.info(f"Project updated: {project.name} (ID: {project_id})")
    return project


@retry_on_pool_exhaustion
def archive_project(db: Session, actor_id: int, project_id: int) -> Project:
    """
    Archive a project (requires OWNER).

    Projects are never hard-deleted: their activity history refers to them.
    Archiving is how a project is deleted.
    """
    logger.debug(f"User {actor_id} archiving project {project_id}")

    with transaction(db):
        project = require_permission(actor_id, Action.ARCHIVE_PROJECT, db, project_id=project_id)
        project.is_archived = True
        db.flush()
        record_activity(
            db,
            ActivityAction.PROJECT_DELETED,
            actor_id,
            project_id,
            metadata={"project_name": project.name},
        )

    db.refresh(project)
    logger.info(f"Project archived: {project.name} (ID: {project_id}) by user {actor_id}")
    return project


delete_project = archive_project


# ============== Project Members ==============


def list_members(db: Session, actor_id: int, project_id: int) -> List[ProjectMember]:
    """List project members in join order (requires membership)."""
    require_permission(actor_id, Action.VIEW_PROJECT, db, project_id=project_id)
    members = (
        db.query(ProjectMember)
        .options(joinedload(ProjectMember.user))
        .filter(ProjectMember.project_id == project_id)
        .order_by(ProjectMember.joined_at.asc())
        .all()
    )
    logger.info(f"Retrieved {len(members)} members for project {project_id}")
    return members


@retry_on_pool_exhaustion
def add_member(
    db: Session,
    actor_id: int,
    project_id: int,
    user_id: int,
    role: Optional[ProjectRole] = None,
) -> ProjectMember:
    """
    Add a user to a project (requires OWNER).

    Raises:
        NotFoundError: project hidden from the actor, or unknown user
        ConflictError: the user is already a member
    """
    role = role or ProjectRole.MEMBER
    logger.debug(f"User {actor_id} adding member {user_id} to project {project_id} as {role.value}")

    with transaction(db):
        require_permission(actor_id, Action.MANAGE_PROJECT_MEMBERS, db, project_id=project_id)

        user_to_add = db.query(User).filter(User.id == user_id).first()
        if not user_to_add:
            raise NotFoundError("User not found")

        existing = (
            db.query(ProjectMember)
            .filter(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
            .first()
        )
        if existing:
            raise ConflictError("User is already a member of this project")

        membership = ProjectMember(user_id=user_id, project_id=project_id, role=role)
        db.add(membership)
        try:
            db.flush()
        except IntegrityError:
            logger.info(f"Concurrent insert of membership ({user_id}, {project_id})")
            raise ConflictError("User is already a member of this project")

        record_activity(
            db,
            ActivityAction.MEMBER_ADDED,
            actor_id,
            project_id,
            metadata={"member_id": user_id, "member_name": user_to_add.name, "role": role},
        )

    db.refresh(membership)
    logger.info(f"User {user_id} added to project {project_id} with role {role.value}")
    return membership


@retry_on_pool_exhaustion
def update_member_role(
    db: Session, actor_id: int, project_id: int, user_id: int, role: ProjectRole
) -> ProjectMember:
    """
    Change another member's project role (requires OWNER, never on oneself).

    Promoting another member to OWNER is how ownership is shared or handed over.
    """
    logger.debug(f"User {actor_id} changing role of {user_id} in project {project_id} to {role.value}")

    with transaction(db):
        require_permission(
            actor_id, Action.MANAGE_PROJECT_MEMBERS, db, project_id=project_id, target_user_id=user_id
        )

        membership = (
            db.query(ProjectMember)
            .options(joinedload(ProjectMember.user))
            .filter(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
            .first()
        )
        if not membership:
            raise NotFoundError("Member not found")

        old_role = membership.role
        membership.role = role
        db.flush()
        record_activity(
            db,
            ActivityAction.MEMBER_ROLE_CHANGED,
            actor_id,
            project_id,
            metadata={
                "member_id": user_id,
                "member_name": membership.user.name,
                "old_role": old_role,
                "new_role": role,
            },
        )

    db.refresh(membership)
    logger.info(f"User {user_id} role in project {project_id} changed {old_role.value} -> {role.value}")
    return membership


@retry_on_pool_exhaustion
def remove_member(db: Session, actor_id: int, project_id: int, user_id: int) -> None:
    """
    Remove a member from a project (requires OWNER, never oneself).

    The member's assignments on every task of the project are removed in the
    same transaction, so no task membership outlives the project membership.
    """
    logger.debug(f"User {actor_id} removing member {user_id} from project {project_id}")

    with transaction(db):
        require_permission(
            actor_id, Action.MANAGE_PROJECT_MEMBERS, db, project_id=project_id, target_user_id=user_id
        )

        membership = (
            db.query(ProjectMember)
            .options(joinedload(ProjectMember.user))
            .filter(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
            .first()
        )
        if not membership:
            raise NotFoundError("Member not found")
        member_name = membership.user.name

        project_task_ids = db.query(Task.id).filter(Task.project_id == project_id)
        removed_assignments = (
            db.query(TaskMember)
            .filter(TaskMember.user_id == user_id, TaskMember.task_id.in_(project_task_ids.scalar_subquery()))
            .delete(synchronize_session=False)
        )
        db.delete(membership)
        db.flush()

        record_activity(
            db,
            ActivityAction.MEMBER_REMOVED,
            actor_id,
            project_id,
            metadata={
                "member_id": user_id,
                "member_name": member_name,
                "removed_task_assignments": removed_assignments,
            },
        )

    logger.info(
        f"User {user_id} removed from project {project_id} "
        f"({removed_assignments} task assignments removed)"
    )
