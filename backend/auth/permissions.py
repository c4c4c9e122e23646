"""
Permission engine for projects and tasks.

Decisions combine two independent axes:

1. Project role (OWNER / MEMBER): coarse, administrative. A project OWNER
   overrides every task-level restriction.
2. Task role (PRIMARY / SECONDARY) plus task authorship: fine, operational.
   The creator of a task keeps edit rights on it regardless of later role
   changes.

Actors that cannot even view a resource get a "hidden" denial, which callers
surface as not-found so that project existence does not leak to outsiders.
Only actors with view access see a forbidden denial.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

from sqlalchemy.orm import Session

from errors import ForbiddenError, NotFoundError
from models import Project, ProjectRole, Task
from auth.membership import get_project_role, is_task_primary

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    VIEW_PROJECT = "view_project"
    UPDATE_PROJECT = "update_project"
    ARCHIVE_PROJECT = "archive_project"
    MANAGE_PROJECT_MEMBERS = "manage_project_members"
    CREATE_TASK = "create_task"
    VIEW_TASK = "view_task"
    UPDATE_TASK = "update_task"
    UPDATE_TASK_STATUS = "update_task_status"
    DELETE_TASK = "delete_task"
    MANAGE_TASK_MEMBERS = "manage_task_members"


PROJECT_ACTIONS = frozenset({
    Action.VIEW_PROJECT,
    Action.UPDATE_PROJECT,
    Action.ARCHIVE_PROJECT,
    Action.MANAGE_PROJECT_MEMBERS,
    Action.CREATE_TASK,
})


@dataclass(frozen=True)
class Decision:
    """Outcome of an authorization check."""

    allowed: bool
    reason: Optional[str] = None
    hidden: bool = False


ALLOW = Decision(allowed=True)


def _deny(reason: str) -> Decision:
    return Decision(allowed=False, reason=reason)


def _hide(reason: str) -> Decision:
    return Decision(allowed=False, reason=reason, hidden=True)


@dataclass
class _Context:
    actor_id: int
    project_role: ProjectRole
    db: Session
    task: Optional[Task] = None
    target_user_id: Optional[int] = None

    @property
    def is_owner(self) -> bool:
        return self.project_role == ProjectRole.OWNER

    @property
    def is_creator(self) -> bool:
        return self.task is not None and self.task.creator_id == self.actor_id

    @property
    def is_primary(self) -> bool:
        return self.task is not None and is_task_primary(self.actor_id, self.task.id, self.db)


def _any_member(ctx: _Context) -> Decision:
    return ALLOW


def _owner_only(ctx: _Context) -> Decision:
    if ctx.is_owner:
        return ALLOW
    return _deny("Only project owner can perform this action")


def _owner_managing_others(ctx: _Context) -> Decision:
    if not ctx.is_owner:
        return _deny("Only project owner can perform this action")
    if ctx.target_user_id is not None and ctx.target_user_id == ctx.actor_id:
        return _deny("Cannot change or remove your own project membership")
    return ALLOW


def _task_editor(ctx: _Context) -> Decision:
    if ctx.is_owner or ctx.is_creator or ctx.is_primary:
        return ALLOW
    return _deny("Only the project owner, the task creator or the task's primary member can do this")


def _task_deleter(ctx: _Context) -> Decision:
    if ctx.is_owner or ctx.is_creator:
        return ALLOW
    return _deny("Only the project owner or the task creator can delete this task")


RULES: Dict[Action, Callable[[_Context], Decision]] = {
    Action.VIEW_PROJECT: _any_member,
    Action.UPDATE_PROJECT: _owner_only,
    Action.ARCHIVE_PROJECT: _owner_only,
    Action.MANAGE_PROJECT_MEMBERS: _owner_managing_others,
    Action.CREATE_TASK: _any_member,
    Action.VIEW_TASK: _any_member,
    Action.UPDATE_TASK: _task_editor,
    # No state machine on status: any project member may set any value
    Action.UPDATE_TASK_STATUS: _any_member,
    Action.DELETE_TASK: _task_deleter,
    Action.MANAGE_TASK_MEMBERS: _task_editor,
}


def _resolve(
    actor_id: int,
    action: Action,
    db: Session,
    project_id: Optional[int],
    task_id: Optional[int],
) -> "tuple[Optional[Union[Project, Task]], Optional[ProjectRole], Optional[Decision]]":
    """Load the resource and the actor's project role, or a hidden denial."""
    if action in PROJECT_ACTIONS:
        if project_id is None:
            raise ValueError(f"{action.value} requires project_id")
        project = db.query(Project).filter(Project.id == project_id).first()
        if project is None:
            return None, None, _hide("Project not found")
        role = get_project_role(actor_id, project_id, db)
        if role is None:
            return project, None, _hide("Project not found")
        return project, role, None

    if task_id is None:
        raise ValueError(f"{action.value} requires task_id")
    task = db.query(Task).filter(Task.id == task_id).first()
    if task is None:
        return None, None, _hide("Task not found")
    role = get_project_role(actor_id, task.project_id, db)
    if role is None:
        return task, None, _hide("Task not found")
    return task, role, None


def _evaluate(
    actor_id: int,
    action: Action,
    db: Session,
    project_id: Optional[int],
    task_id: Optional[int],
    target_user_id: Optional[int],
) -> "tuple[Optional[Union[Project, Task]], Decision]":
    resource, role, denial = _resolve(actor_id, action, db, project_id, task_id)
    if denial is not None:
        logger.info(f"User {actor_id} cannot see resource for {action.value}: {denial.reason}")
        return resource, denial

    ctx = _Context(
        actor_id=actor_id,
        project_role=role,
        db=db,
        task=resource if isinstance(resource, Task) else None,
        target_user_id=target_user_id,
    )
    decision = RULES[action](ctx)

    if decision.allowed:
        logger.debug(f"User {actor_id} allowed {action.value} (project role {role.value})")
    else:
        logger.info(f"User {actor_id} denied {action.value} (project role {role.value}): {decision.reason}")
    return resource, decision


def authorize(
    actor_id: int,
    action: Action,
    db: Session,
    project_id: Optional[int] = None,
    task_id: Optional[int] = None,
    target_user_id: Optional[int] = None,
) -> Decision:
    """
    Decide whether an actor may perform an action on a project or task.

    Args:
        actor_id: Authenticated user id
        action: Intended action
        db: Database session
        project_id: Target project (project-scoped actions, including CREATE_TASK)
        task_id: Target task (task-scoped actions)
        target_user_id: Member being re-roled or removed (MANAGE_PROJECT_MEMBERS)

    Returns:
        ALLOW, or a denial whose ``hidden`` flag says whether the actor may
        even know the resource exists.

    Example:
        >>> decision = authorize(user.id, Action.DELETE_TASK, db, task_id=42)
        >>> if not decision.allowed:
        ...     print(decision.reason)
    """
    logger.debug(
        f"Authorizing user {actor_id} for {action.value} "
        f"(project={project_id}, task={task_id}, target={target_user_id})"
    )
    _, decision = _evaluate(actor_id, action, db, project_id, task_id, target_user_id)
    return decision


def require_permission(
    actor_id: int,
    action: Action,
    db: Session,
    project_id: Optional[int] = None,
    task_id: Optional[int] = None,
    target_user_id: Optional[int] = None,
) -> Union[Project, Task]:
    """
    Require permission for an action, or raise.

    Returns the resolved Project (project-scoped actions) or Task (task-scoped
    actions) so callers do not have to load it again.

    Raises:
        NotFoundError: resource missing, or the actor cannot view it
        ForbiddenError: resource visible but the action is denied
    """
    resource, decision = _evaluate(actor_id, action, db, project_id, task_id, target_user_id)
    if decision.allowed:
        return resource
    if decision.hidden:
        raise NotFoundError(decision.reason)
    raise ForbiddenError(decision.reason)
