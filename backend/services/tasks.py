"""
Task engine.

Creates tasks inside a project, moves them through the status values and
appends comments. Status is a flat state machine: the assignee may move a
task between any two of open, in_progress, review and completed, and a
completed task can be reopened.

Task creation writes three things in one transaction: the task row (which
is the project's task set entry), the assignee's back-reference, and a
touch of the project row so a concurrent team change cannot interleave.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Type

from pydantic import TypeAdapter, ValidationError as PydanticValidationError
from sqlalchemy.orm import Session, selectinload

import models
import schemas
from auth.permissions import Action, require, project_snapshot, task_snapshot
from database import atomic
from errors import NotFoundError, ValidationError
from services.membership import MembershipLedger
from time_utils import utc_now

logger = logging.getLogger(__name__)

_ID = TypeAdapter(int)
_DUE_DATE = TypeAdapter(datetime)


def _enum_member(enum_cls: Type, value) -> Optional[object]:
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _allowed(enum_cls: Type) -> str:
    return ", ".join(member.value for member in enum_cls)


def _task_query(db: Session):
    return db.query(models.Task).options(
        selectinload(models.Task.assignee),
        selectinload(models.Task.assigner),
        selectinload(models.Task.comments).selectinload(models.Comment.author),
    )


def _load_task(db: Session, task_id: int) -> models.Task:
    task = _task_query(db).filter(models.Task.id == task_id).first()
    if task is None:
        logger.info(f"Task {task_id} not found")
        raise NotFoundError("Task", task_id)
    return task


def _parsed(adapter: TypeAdapter, value):
    try:
        return adapter.validate_python(value)
    except PydanticValidationError:
        return None


def _text(value) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    return value


def validate_task_payload(payload: schemas.TaskCreate) -> Dict[str, Any]:
    """
    Check every field of a new task and return the parsed values.

    The payload arrives untyped, so a malformed id or date is reported
    alongside the missing fields instead of hiding them.

    Returns:
        dict with title, description, project_id, assigned_to, type,
        priority and due_date converted to their stored types

    Raises:
        ValidationError: listing every violated field, not just the first
    """
    errors = []
    title = _text(payload.title)
    if title is None:
        errors.append({"field": "title", "message": "Title is required"})
    description = _text(payload.description)
    if description is None:
        errors.append({"field": "description", "message": "Description is required"})

    project_id = _parsed(_ID, payload.project_id)
    if payload.project_id is None:
        errors.append({"field": "project_id", "message": "Project ID is required"})
    elif project_id is None:
        errors.append({"field": "project_id", "message": "Project ID must be an integer"})

    assigned_to = _parsed(_ID, payload.assigned_to)
    if payload.assigned_to is None:
        errors.append({"field": "assigned_to", "message": "Assigned user ID is required"})
    elif assigned_to is None:
        errors.append({"field": "assigned_to", "message": "Assigned user ID must be an integer"})

    task_type = _enum_member(models.TaskType, payload.type)
    if task_type is None:
        errors.append({"field": "type", "message": f"Task type must be one of: {_allowed(models.TaskType)}"})
    priority = _enum_member(models.TaskPriority, payload.priority)
    if priority is None:
        errors.append({"field": "priority", "message": f"Priority must be one of: {_allowed(models.TaskPriority)}"})

    due_date = _parsed(_DUE_DATE, payload.due_date)
    if payload.due_date is not None and due_date is None:
        errors.append({"field": "due_date", "message": "Due date must be an ISO 8601 date or datetime"})

    if errors:
        logger.info(f"Task payload rejected: {[error['field'] for error in errors]}")
        raise ValidationError(errors)

    return {
        "title": title.strip(),
        "description": description,
        "project_id": project_id,
        "assigned_to": assigned_to,
        "type": task_type,
        "priority": priority,
        "due_date": due_date,
    }


def create_task(db: Session, actor: models.User, payload: schemas.TaskCreate) -> models.Task:
    """
    Create a task in a project the actor owns, assigned to one of its members.

    Raises:
        ValidationError: bad payload, or assignee not on the project team
        ForbiddenError: actor is not an admin, or does not own the project
        NotFoundError: project does not exist (checked after the role)
        ConsistencyError: the project changed concurrently
    """
    logger.debug(f"User {actor.id} creating task: {payload.title} in project {payload.project_id}")

    fields = validate_task_payload(payload)
    require(actor, Action.create_task)

    with atomic(db):
        project = db.query(models.Project).filter(models.Project.id == fields["project_id"]).with_for_update().first()
        if project is None:
            logger.info(f"Project {fields['project_id']} not found")
            raise NotFoundError("Project", fields["project_id"])

        require(actor, Action.create_task, project_snapshot(project), {"assigned_to": fields["assigned_to"]})

        task = models.Task(
            title=fields["title"],
            description=fields["description"],
            project_id=project.id,
            assigned_to_id=fields["assigned_to"],
            assigned_by_id=actor.id,  # Always the authenticated admin
            type=fields["type"],
            priority=fields["priority"],
            status=models.TaskStatus.open,
            due_date=fields["due_date"],
        )
        db.add(task)
        db.flush()

        ledger = MembershipLedger(db)
        ledger.add_assigned_task(task.assigned_to_id, task.id)

        project.updated_at = utc_now()

        ledger.verify_assigned_task(task.id, task.assigned_to_id)

    logger.info(f"Task created successfully: id={task.id} assigned to user {task.assigned_to_id}")
    return _load_task(db, task.id)


def update_status(db: Session, actor: models.User, task_id: int, new_status) -> models.Task:
    """
    Set a task's status. Only the assignee may do this.

    Raises:
        ValidationError: status not one of the four allowed values
        NotFoundError: task does not exist
        ForbiddenError: actor is not the assignee (project owner included)
    """
    logger.debug(f"User {actor.id} setting status of task {task_id} to {new_status}")

    status = _enum_member(models.TaskStatus, new_status)
    if status is None:
        raise ValidationError.single("status", f"Invalid status. Must be one of: {_allowed(models.TaskStatus)}")

    task = _load_task(db, task_id)
    require(actor, Action.update_task_status, task_snapshot(task))

    old_status = task.status
    with atomic(db):
        task.status = status

    logger.info(f"Task {task_id} status changed by user {actor.id}: {old_status.value} -> {status.value}")
    return _load_task(db, task_id)


def add_comment(db: Session, actor: models.User, task_id: int, content: Optional[str]) -> models.Task:
    """
    Append a comment to a task's thread.

    The assignee and the owning project's admin may comment; nobody else,
    including other members of the same project.

    Raises:
        ValidationError: content missing or blank
        NotFoundError: task does not exist
        ForbiddenError: actor is neither assignee nor project admin
    """
    logger.debug(f"User {actor.id} commenting on task {task_id}")

    if content is None or not content.strip():
        raise ValidationError.single("content", "Comment content is required")

    task = _load_task(db, task_id)
    require(actor, Action.add_task_comment, task_snapshot(task))

    with atomic(db):
        # SECURITY: author is always the authenticated actor
        comment = models.Comment(content=content, author_id=actor.id)
        task.comments.append(comment)

    logger.info(f"Comment {comment.id} added to task {task_id} by user {actor.id}")
    return _load_task(db, task_id)


def list_by_project(db: Session, actor: models.User, project_id: int) -> List[models.Task]:
    """Tasks of one project, for its owner and team members."""
    logger.debug(f"User {actor.id} listing tasks of project {project_id}")

    project = db.query(models.Project).filter(models.Project.id == project_id).first()
    if project is None:
        raise NotFoundError("Project", project_id)
    require(actor, Action.read_project, project_snapshot(project))

    return _task_query(db).filter(models.Task.project_id == project_id).order_by(models.Task.id).all()


def list_mine(db: Session, actor: models.User) -> List[models.Task]:
    """Tasks assigned to the actor."""
    require(actor, Action.read_my_tasks)
    tasks = _task_query(db).filter(models.Task.assigned_to_id == actor.id).order_by(models.Task.id).all()
    logger.debug(f"User {actor.id} has {len(tasks)} assigned tasks")
    return tasks


def list_all(db: Session, actor: models.User) -> List[models.Task]:
    """Every task in the system (admin only)."""
    require(actor, Action.read_all_tasks)
    return _task_query(db).order_by(models.Task.id).all()
