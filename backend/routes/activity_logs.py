from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db
from auth.dependencies import get_current_user
from services import activity_logs as activity_service

router = APIRouter(prefix="/api/activity-logs", tags=["activity-logs"])


@router.get("/my-activities", response_model=schemas.ActivityLogList)
def list_my_activities(
    limit: int = Query(activity_service.DEFAULT_LIMIT, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Activities performed by the current user, across all projects."""
    return activity_service.list_my_activity(db, current_user.id, limit=limit, offset=offset)


@router.get("/project/{project_id}", response_model=schemas.ActivityLogList)
def list_project_activities(
    project_id: int,
    limit: int = Query(activity_service.DEFAULT_LIMIT, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Activities in a project.

    Owners see everything; members see only their own entries.
    """
    return activity_service.list_project_activity(db, project_id, current_user.id, limit=limit, offset=offset)


@router.get("/task/{task_id}", response_model=schemas.ActivityLogList)
def list_task_activities(
    task_id: int,
    limit: int = Query(activity_service.DEFAULT_LIMIT, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """All activities of a task (requires project membership)."""
    return activity_service.list_task_activity(db, task_id, current_user.id, limit=limit, offset=offset)
