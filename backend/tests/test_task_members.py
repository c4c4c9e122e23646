"""
Tests for task membership (services/tasks.py) and its link to project membership.

Tests cover:
- Single PRIMARY per task, with automatic demotion on promotion
- Task members must belong to the task's project
- Duplicate assignment and lost promotion races reported as conflicts
- Removing a project member removes their task assignments
"""

import logging
import pytest
from sqlalchemy.orm import Session

import models
from errors import ConflictError, ForbiddenError, InvalidRequestError, NotFoundError
from services import projects as project_service
from services import tasks as task_service
from tests.conftest import task_roles

PRIMARY = models.TaskMemberRole.PRIMARY
SECONDARY = models.TaskMemberRole.SECONDARY

logger = logging.getLogger(__name__)


# ============== Assignment (5 tests) ==============


def test_add_member_defaults_to_secondary(
    test_db: Session, task: models.Task, owner_user: models.User, member_user: models.User
):
    """Test that a new task member is SECONDARY unless told otherwise."""
    membership = task_service.add_task_member(test_db, owner_user.id, task.id, member_user.id)

    assert membership.role == SECONDARY
    assert task_roles(test_db, task.id) == {owner_user.id: PRIMARY, member_user.id: SECONDARY}
    logger.info("✓ New task member defaults to SECONDARY")


def test_add_primary_demotes_current_primary(
    test_db: Session, task: models.Task, owner_user: models.User, member_user: models.User
):
    """Test that assigning a new PRIMARY demotes the existing one in the same operation."""
    task_service.add_task_member(test_db, owner_user.id, task.id, member_user.id, PRIMARY)

    assert task_roles(test_db, task.id) == {owner_user.id: SECONDARY, member_user.id: PRIMARY}

    entry = (
        test_db.query(models.ActivityLog)
        .filter(models.ActivityLog.action == models.ActivityAction.TASK_MEMBER_ADDED.value)
        .one()
    )
    assert entry.log_metadata["demoted_member_id"] == owner_user.id
    assert entry.description == "Assigned Max Member to task as PRIMARY"
    logger.info("✓ Previous PRIMARY demoted to SECONDARY")


def test_non_project_member_cannot_join_task(
    test_db: Session, task: models.Task, owner_user: models.User, outsider_user: models.User
):
    """Test that only members of the task's project can be assigned."""
    with pytest.raises(InvalidRequestError) as exc_info:
        task_service.add_task_member(test_db, owner_user.id, task.id, outsider_user.id)

    assert exc_info.value.detail == "User must be a project member before joining a task"
    assert outsider_user.id not in task_roles(test_db, task.id)
    logger.info("✓ Non-project member rejected from task")


def test_duplicate_assignment_conflicts(
    test_db: Session, task: models.Task, owner_user: models.User, member_user: models.User
):
    """Test that assigning the same user twice is a conflict."""
    task_service.add_task_member(test_db, owner_user.id, task.id, member_user.id)

    with pytest.raises(ConflictError):
        task_service.add_task_member(test_db, owner_user.id, task.id, member_user.id, PRIMARY)

    assert task_roles(test_db, task.id) == {owner_user.id: PRIMARY, member_user.id: SECONDARY}
    logger.info("✓ Duplicate assignment rejected without side effects")


def test_unknown_user_not_found(test_db: Session, task: models.Task, owner_user: models.User):
    """Test that assigning a user id that does not exist is reported as not found."""
    with pytest.raises(NotFoundError) as exc_info:
        task_service.add_task_member(test_db, owner_user.id, task.id, 9999)

    assert exc_info.value.detail == "User not found"
    logger.info("✓ Unknown user reported as not found")


# ============== Role Changes (4 tests) ==============


def test_promote_secondary_demotes_primary(
    test_db: Session,
    task: models.Task,
    owner_user: models.User,
    member_user: models.User,
    another_member: models.User,
):
    """Test that promoting a SECONDARY leaves exactly one PRIMARY."""
    task_service.add_task_member(test_db, owner_user.id, task.id, member_user.id)
    task_service.add_task_member(test_db, owner_user.id, task.id, another_member.id)

    task_service.update_task_member_role(test_db, owner_user.id, task.id, another_member.id, PRIMARY)

    roles = task_roles(test_db, task.id)
    assert list(roles.values()).count(PRIMARY) == 1
    assert roles[another_member.id] == PRIMARY
    assert roles[owner_user.id] == SECONDARY
    logger.info("✓ Promotion keeps a single PRIMARY")


def test_re_promoting_current_primary_is_noop(
    test_db: Session, task: models.Task, owner_user: models.User
):
    """Test that setting PRIMARY on the current PRIMARY demotes nobody."""
    task_service.update_task_member_role(test_db, owner_user.id, task.id, owner_user.id, PRIMARY)

    assert task_roles(test_db, task.id) == {owner_user.id: PRIMARY}
    logger.info("✓ Re-promoting the PRIMARY changes nothing")


def test_update_role_of_non_member_not_found(
    test_db: Session, task: models.Task, owner_user: models.User, member_user: models.User
):
    """Test that changing the role of someone not on the task is not found."""
    with pytest.raises(NotFoundError) as exc_info:
        task_service.update_task_member_role(test_db, owner_user.id, task.id, member_user.id, PRIMARY)

    assert exc_info.value.detail == "Task member not found"
    logger.info("✓ Role change for non-member reported as not found")


def test_secondary_cannot_manage_members(
    test_db: Session,
    task: models.Task,
    owner_user: models.User,
    member_user: models.User,
    another_member: models.User,
):
    """Test that a SECONDARY member cannot assign others."""
    task_service.add_task_member(test_db, owner_user.id, task.id, member_user.id)

    with pytest.raises(ForbiddenError):
        task_service.add_task_member(test_db, member_user.id, task.id, another_member.id)

    assert another_member.id not in task_roles(test_db, task.id)
    logger.info("✓ SECONDARY cannot manage task members")


# ============== Promotion Races (2 tests) ==============


def test_lost_add_race_reports_conflict(
    test_db: Session, task: models.Task, owner_user: models.User, member_user: models.User, monkeypatch
):
    """
    Test that a second PRIMARY slipping past demotion is stopped by the
    single-primary index and leaves the task unchanged.
    """
    monkeypatch.setattr(task_service, "demote_current_primary", lambda *args, **kwargs: None)

    with pytest.raises(ConflictError):
        task_service.add_task_member(test_db, owner_user.id, task.id, member_user.id, PRIMARY)

    assert task_roles(test_db, task.id) == {owner_user.id: PRIMARY}
    assert test_db.query(models.ActivityLog).filter(
        models.ActivityLog.action == models.ActivityAction.TASK_MEMBER_ADDED.value
    ).count() == 0
    logger.info("✓ Lost add race surfaced as ConflictError with no partial writes")


def test_lost_promotion_race_reports_conflict(
    test_db: Session, task: models.Task, owner_user: models.User, member_user: models.User, monkeypatch
):
    """Test that a concurrent promotion on role update is reported as a conflict."""
    task_service.add_task_member(test_db, owner_user.id, task.id, member_user.id)
    monkeypatch.setattr(task_service, "demote_current_primary", lambda *args, **kwargs: None)

    with pytest.raises(ConflictError):
        task_service.update_task_member_role(test_db, owner_user.id, task.id, member_user.id, PRIMARY)

    assert task_roles(test_db, task.id) == {owner_user.id: PRIMARY, member_user.id: SECONDARY}
    logger.info("✓ Lost promotion race surfaced as ConflictError")


# ============== Removal (3 tests) ==============


def test_removing_primary_leaves_no_primary(
    test_db: Session, task: models.Task, owner_user: models.User, member_user: models.User
):
    """Test that removing the PRIMARY is allowed and promotes nobody."""
    task_service.add_task_member(test_db, owner_user.id, task.id, member_user.id)

    task_service.remove_task_member(test_db, owner_user.id, task.id, owner_user.id)

    assert task_roles(test_db, task.id) == {member_user.id: SECONDARY}
    logger.info("✓ Task left without PRIMARY after removal")


def test_remove_unassigned_user_not_found(
    test_db: Session, task: models.Task, owner_user: models.User, member_user: models.User
):
    """Test that removing someone who is not on the task is not found."""
    with pytest.raises(NotFoundError):
        task_service.remove_task_member(test_db, owner_user.id, task.id, member_user.id)
    logger.info("✓ Removing an unassigned user reported as not found")


def test_leaving_project_removes_task_assignments(
    test_db: Session,
    project: models.Project,
    other_project: models.Project,
    task: models.Task,
    owner_user: models.User,
    member_user: models.User,
):
    """Test that removing a project member also removes all of their task memberships in that project."""
    own_task = task_service.create_task(test_db, member_user.id, {"title": "Own task", "project_id": project.id})
    task_service.add_task_member(test_db, owner_user.id, task.id, member_user.id)

    project_service.add_member(test_db, owner_user.id, other_project.id, member_user.id)
    elsewhere = task_service.create_task(
        test_db, member_user.id, {"title": "Elsewhere", "project_id": other_project.id}
    )

    project_service.remove_member(test_db, owner_user.id, project.id, member_user.id)

    assert member_user.id not in task_roles(test_db, task.id)
    assert task_roles(test_db, own_task.id) == {}
    assert task_roles(test_db, elsewhere.id) == {member_user.id: PRIMARY}

    entry = (
        test_db.query(models.ActivityLog)
        .filter(models.ActivityLog.action == models.ActivityAction.MEMBER_REMOVED.value)
        .one()
    )
    assert entry.log_metadata["removed_task_assignments"] == 2
    logger.info("✓ Project removal cleared task assignments in that project only")
