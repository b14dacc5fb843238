from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from database import Base
import time_utils


class UserRole(str, enum.Enum):
    admin = "admin"
    member = "member"


class ProjectStatus(str, enum.Enum):
    active = "active"
    completed = "completed"
    archived = "archived"


class TaskType(str, enum.Enum):
    bug = "bug"
    feature = "feature"
    improvement = "improvement"


class TaskPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class TaskStatus(str, enum.Enum):
    open = "open"
    in_progress = "in_progress"
    review = "review"
    completed = "completed"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(UserRole, name="user_role"), nullable=False, default=UserRole.member)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Authoritative side: projects this admin owns
    owned_projects = relationship("Project", back_populates="admin", order_by="Project.id")

    # Derived back-references, written only by the membership ledger
    project_links = relationship("UserProject", back_populates="user", cascade="all, delete-orphan")
    assigned_task_links = relationship("UserAssignedTask", back_populates="user", cascade="all, delete-orphan")

    projects = relationship("Project", secondary="user_projects", viewonly=True, order_by="Project.id")
    assigned_tasks = relationship("Task", secondary="user_assigned_tasks", viewonly=True, order_by="Task.id")

    @property
    def project_ids(self):
        return sorted(link.project_id for link in self.project_links)

    @property
    def assigned_task_ids(self):
        return sorted(link.task_id for link in self.assigned_task_links)

    @property
    def owned_project_ids(self):
        return [project.id for project in self.owned_projects]


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    admin_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(Enum(ProjectStatus, name="project_status"), nullable=False, default=ProjectStatus.active)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    admin = relationship("User", back_populates="owned_projects")
    members = relationship(
        "ProjectMember",
        back_populates="project",
        order_by="ProjectMember.position",
        cascade="all, delete-orphan",
    )
    tasks = relationship("Task", back_populates="project", order_by="Task.id", cascade="all, delete-orphan")

    @property
    def team_member_ids(self):
        return [member.user_id for member in self.members]

    @property
    def team_members(self):
        return [member.user for member in self.members]

    @property
    def task_ids(self):
        return [task.id for task in self.tasks]


class ProjectMember(Base):
    """One entry of a project's ordered team-member set (authoritative)."""
    __tablename__ = "project_members"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_member"),)

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    project = relationship("Project", back_populates="members")
    user = relationship("User")


class UserProject(Base):
    """Back-reference: user -> project they are a team member of."""
    __tablename__ = "user_projects"
    __table_args__ = (UniqueConstraint("user_id", "project_id", name="uq_user_project"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="project_links")


class UserAssignedTask(Base):
    """Back-reference: user -> task assigned to them."""
    __tablename__ = "user_assigned_tasks"
    __table_args__ = (UniqueConstraint("user_id", "task_id", name="uq_user_assigned_task"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="assigned_task_links")


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    assigned_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(Enum(TaskType, name="task_type"), nullable=False)
    priority = Column(Enum(TaskPriority, name="task_priority"), nullable=False)
    status = Column(Enum(TaskStatus, name="task_status"), nullable=False, default=TaskStatus.open)
    due_date = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    project = relationship("Project", back_populates="tasks")
    assignee = relationship("User", foreign_keys=[assigned_to_id])
    assigner = relationship("User", foreign_keys=[assigned_by_id])
    comments = relationship("Comment", back_populates="task", order_by="Comment.id", cascade="all, delete-orphan")

    @property
    def is_overdue(self):
        return time_utils.is_overdue(self.due_date, self.status.value if self.status else None)


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True)
    content = Column(Text, nullable=False)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    task = relationship("Task", back_populates="comments")
    author = relationship("User")
