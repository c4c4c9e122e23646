from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db
from auth.dependencies import get_current_user
from services import projects as project_service

router = APIRouter(prefix="/api/projects", tags=["projects"])


# ============== Projects ==============

@router.get("", response_model=List[schemas.Project])
def list_projects(
    include_archived: bool = Query(False),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List projects the current user is a member of."""
    return project_service.list_projects(db, current_user.id, include_archived=include_archived)


@router.post("", response_model=schemas.Project, status_code=status.HTTP_201_CREATED)
def create_project(
    project: schemas.ProjectCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a new project with the creator as OWNER."""
    return project_service.create_project(db, current_user.id, project.model_dump())


@router.get("/{project_id}", response_model=schemas.ProjectWithMembers)
def get_project(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get project with members and top-level tasks (requires membership)."""
    project = project_service.get_project(db, current_user.id, project_id)
    tasks = project_service.list_top_level_tasks(db, current_user.id, project_id)
    return {
        **schemas.Project.model_validate(project).model_dump(),
        "members": project.members,
        "tasks": tasks,
    }


@router.put("/{project_id}", response_model=schemas.Project)
def update_project(
    project_id: int,
    project_update: schemas.ProjectUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update project (requires OWNER)."""
    changes = project_update.model_dump(exclude_unset=True)
    return project_service.update_project(db, current_user.id, project_id, changes)


@router.post("/{project_id}/archive", response_model=schemas.Project)
def archive_project(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Archive project (requires OWNER)."""
    return project_service.archive_project(db, current_user.id, project_id)


@router.delete("/{project_id}", response_model=schemas.MessageResponse)
def delete_project(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete project (soft delete by archiving, requires OWNER)."""
    project_service.delete_project(db, current_user.id, project_id)
    return {"message": "Project archived successfully"}


@router.get("/{project_id}/tasks", response_model=List[schemas.TaskSummary])
def list_project_tasks(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List top-level tasks of a project (requires membership)."""
    return project_service.list_top_level_tasks(db, current_user.id, project_id)


# ============== Project Members ==============

@router.get("/{project_id}/members", response_model=List[schemas.ProjectMemberResponse])
def list_project_members(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return project_service.list_members(db, current_user.id, project_id)


@router.post(
    "/{project_id}/members",
    response_model=schemas.ProjectMemberResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_project_member(
    project_id: int,
    member_data: schemas.ProjectMemberCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Add a member to a project (requires OWNER)."""
    return project_service.add_member(db, current_user.id, project_id, member_data.user_id, member_data.role)


@router.put("/{project_id}/members/{user_id}", response_model=schemas.ProjectMemberResponse)
def update_project_member(
    project_id: int,
    user_id: int,
    member_update: schemas.ProjectMemberUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Change a member's role (requires OWNER, not on yourself)."""
    return project_service.update_member_role(db, current_user.id, project_id, user_id, member_update.role)


@router.delete("/{project_id}/members/{user_id}", response_model=schemas.MessageResponse)
def remove_project_member(
    project_id: int,
    user_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Remove a member and their task assignments (requires OWNER, not yourself)."""
    project_service.remove_member(db, current_user.id, project_id, user_id)
    return {"message": "Member removed successfully"}
