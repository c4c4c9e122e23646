from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db
from auth.dependencies import get_current_user
from services import tasks as task_service

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


# ============== Tasks ==============

@router.post("", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
def create_task(
    task: schemas.TaskCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a task, or a subtask when parent_id is set (requires project membership)."""
    return task_service.create_task(db, current_user.id, task.model_dump())


@router.get("/{task_id}", response_model=schemas.Task)
def get_task(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return task_service.get_task(db, current_user.id, task_id)


@router.put("/{task_id}", response_model=schemas.Task)
def update_task(
    task_id: int,
    task_update: schemas.TaskUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update task (requires project OWNER, task creator or task PRIMARY)."""
    changes = task_update.model_dump(exclude_unset=True)
    return task_service.update_task(db, current_user.id, task_id, changes)


@router.patch("/{task_id}/status", response_model=schemas.Task)
def update_task_status(
    task_id: int,
    status_update: schemas.TaskStatusUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Change only the status (any project member)."""
    return task_service.update_task_status(db, current_user.id, task_id, status_update.status)


@router.delete("/{task_id}", response_model=schemas.MessageResponse)
def delete_task(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete task with its subtasks (requires project OWNER or task creator)."""
    task_service.delete_task(db, current_user.id, task_id)
    return {"message": "Task deleted"}


# ============== Subtasks ==============

@router.get("/{task_id}/subtasks", response_model=List[schemas.TaskSummary])
def list_subtasks(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return task_service.list_subtasks(db, current_user.id, task_id)


@router.post("/{task_id}/subtasks", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
def create_subtask(
    task_id: int,
    subtask: schemas.SubtaskCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return task_service.create_subtask(db, current_user.id, task_id, subtask.model_dump())


# ============== Task Members ==============

@router.get("/{task_id}/members", response_model=List[schemas.TaskMemberResponse])
def list_task_members(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return task_service.list_task_members(db, current_user.id, task_id)


@router.post("/{task_id}/members", response_model=schemas.TaskMemberResponse, status_code=status.HTTP_201_CREATED)
def add_task_member(
    task_id: int,
    member_data: schemas.TaskMemberCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Assign a project member to the task; PRIMARY demotes the current PRIMARY."""
    return task_service.add_task_member(db, current_user.id, task_id, member_data.user_id, member_data.role)


@router.put("/{task_id}/members/{user_id}", response_model=schemas.TaskMemberResponse)
def update_task_member(
    task_id: int,
    user_id: int,
    member_update: schemas.TaskMemberUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return task_service.update_task_member_role(db, current_user.id, task_id, user_id, member_update.role)


@router.delete("/{task_id}/members/{user_id}", response_model=schemas.MessageResponse)
def remove_task_member(
    task_id: int,
    user_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    task_service.remove_task_member(db, current_user.id, task_id, user_id)
    return {"message": "Task member removed successfully"}
