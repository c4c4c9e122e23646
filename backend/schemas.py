from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Any, Dict

from models import ProjectRole, TaskMemberRole, TaskStatus, TaskPriority


HEX_COLOR_PATTERN = r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$"


# User schemas
class UserSummary(BaseModel):
    id: int
    email: str
    name: str
    avatar: Optional[str] = None

    class Config:
        from_attributes = True


class User(UserSummary):
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    avatar: Optional[str] = Field(None, max_length=500)


# Project member schemas
class ProjectMemberCreate(BaseModel):
    user_id: int
    role: ProjectRole = ProjectRole.MEMBER


class ProjectMemberUpdate(BaseModel):
    role: ProjectRole


class ProjectMemberResponse(BaseModel):
    user_id: int
    project_id: int
    role: ProjectRole
    joined_at: datetime
    user: Optional[UserSummary] = None

    class Config:
        from_attributes = True


# Task member schemas
class TaskMemberCreate(BaseModel):
    user_id: int
    role: TaskMemberRole = TaskMemberRole.SECONDARY


class TaskMemberUpdate(BaseModel):
    role: TaskMemberRole


class TaskMemberResponse(BaseModel):
    task_id: int
    user_id: int
    role: TaskMemberRole
    assigned_at: datetime
    user: Optional[UserSummary] = None

    class Config:
        from_attributes = True


# Task schemas
class TaskBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.NOT_STARTED
    priority: TaskPriority = TaskPriority.MEDIUM
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class SubtaskCreate(TaskBase):
    pass


class TaskCreate(TaskBase):
    project_id: int
    parent_id: Optional[int] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


class TaskSummary(TaskBase):
    id: int
    project_id: int
    parent_id: Optional[int] = None
    creator_id: Optional[int]
    subtask_count: int = 0
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class Task(TaskSummary):
    members: List[TaskMemberResponse] = Field(default_factory=list)
    subtasks: List[TaskSummary] = Field(default_factory=list)

    class Config:
        from_attributes = True


# Project schemas
class ProjectBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None


class ProjectCreate(ProjectBase):
    color: Optional[str] = Field(None, pattern=HEX_COLOR_PATTERN)


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    color: Optional[str] = Field(None, pattern=HEX_COLOR_PATTERN)
    is_archived: Optional[bool] = None


class Project(ProjectBase):
    id: int
    color: str
    is_archived: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ProjectWithMembers(Project):
    members: List[ProjectMemberResponse] = []
    tasks: List[TaskSummary] = []

    class Config:
        from_attributes = True


# Activity log schemas
class TaskRef(BaseModel):
    id: int
    title: str

    class Config:
        from_attributes = True


class ActivityLog(BaseModel):
    id: int
    action: str
    description: str
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="log_metadata")
    user_id: Optional[int] = None
    project_id: int
    task_id: Optional[int] = None
    created_at: datetime
    user: Optional[UserSummary] = None
    task: Optional[TaskRef] = None

    class Config:
        from_attributes = True
        populate_by_name = True


class ActivityLogList(BaseModel):
    data: List[ActivityLog] = []
    total: int
    limit: int
    offset: int


class MessageResponse(BaseModel):
    message: str
