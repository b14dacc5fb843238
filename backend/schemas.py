from pydantic import AliasChoices, BaseModel, EmailStr, Field
from datetime import datetime
from typing import Any, Optional, List

from models import UserRole, ProjectStatus, TaskType, TaskPriority, TaskStatus


# User schemas
class UserSummary(BaseModel):
    id: int
    name: str
    email: str

    class Config:
        from_attributes = True


class User(UserSummary):
    role: UserRole
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TeamMemberUser(UserSummary):
    """A member-role user as listed to admins picking a team."""
    project_ids: List[int] = []
    assigned_task_ids: List[int] = []

    class Config:
        from_attributes = True


class UserUpdate(BaseModel):
    name: Optional[str] = None


# Comment schemas
class CommentCreate(BaseModel):
    content: Optional[str] = None


class Comment(BaseModel):
    id: int
    content: str
    task_id: int
    author_id: int
    author: Optional[UserSummary] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Task schemas
class TaskCreate(BaseModel):
    """
    Task creation payload.

    Every field is optional and untyped here; services.tasks.validate_task_payload
    parses them together so one response lists every problem, including a
    malformed id or date. Accepts the camelCase names used by existing clients.
    """
    title: Any = None
    description: Any = None
    project_id: Any = Field(None, validation_alias=AliasChoices("project_id", "project"))
    assigned_to: Any = Field(None, validation_alias=AliasChoices("assigned_to", "assignedTo"))
    type: Any = None
    priority: Any = None
    due_date: Any = Field(None, validation_alias=AliasChoices("due_date", "dueDate"))

    class Config:
        populate_by_name = True


class TaskStatusUpdate(BaseModel):
    status: Optional[str] = None


class TaskSummary(BaseModel):
    id: int
    title: str
    project_id: int
    type: TaskType
    priority: TaskPriority
    status: TaskStatus
    due_date: Optional[datetime] = None

    class Config:
        from_attributes = True


class Task(BaseModel):
    id: int
    title: str
    description: str
    project_id: int
    assigned_to_id: int
    assigned_by_id: int
    assignee: Optional[UserSummary] = None
    assigner: Optional[UserSummary] = None
    type: TaskType
    priority: TaskPriority
    status: TaskStatus
    due_date: Optional[datetime] = None
    is_overdue: bool = False
    comments: List[Comment] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Project schemas
class ProjectCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    team_members: List[int] = Field(default_factory=list, validation_alias=AliasChoices("team_members", "teamMembers"))

    class Config:
        populate_by_name = True


class TeamUpdate(BaseModel):
    team_members: List[int] = Field(default_factory=list, validation_alias=AliasChoices("team_members", "teamMembers"))

    class Config:
        populate_by_name = True


class ProjectSummary(BaseModel):
    id: int
    name: str
    status: ProjectStatus

    class Config:
        from_attributes = True


class Project(BaseModel):
    id: int
    name: str
    description: str
    admin_id: int
    admin: Optional[UserSummary] = None
    status: ProjectStatus
    team_member_ids: List[int] = []
    team_members: List[UserSummary] = []
    task_ids: List[int] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProjectWithTasks(Project):
    tasks: List[Task] = []

    class Config:
        from_attributes = True


class UserProfile(User):
    projects: List[ProjectSummary] = []
    owned_projects: List[ProjectSummary] = []
    assigned_tasks: List[TaskSummary] = []

    class Config:
        from_attributes = True


# Consistency schemas
class Mismatch(BaseModel):
    kind: str  # "project_member" or "assigned_task"
    user_id: int
    ref_id: int
    problem: str  # "missing_back_reference" or "stale_back_reference"


class ConsistencyReport(BaseModel):
    consistent: bool
    mismatches: List[Mismatch] = []


class ReconcileReport(BaseModel):
    added: int
    removed: int
    mismatches: List[Mismatch] = []
