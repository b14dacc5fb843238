"""
Authorization guard.

Every read and mutation in the core is checked here before it touches the
database. `can_perform` is a pure decision function over the actor, the
action, and a snapshot of the target's relationships; it never queries or
mutates anything. `require` turns a denial into the matching domain error.

Rules per action (first failing check decides the reason):

    create_project       actor is admin                               not_admin
    read_project         actor owns project or is on its team         not_member
    update_project_team  actor owns project                           not_owner
    create_task          actor is admin                               not_admin
                         (no target yet: the role check alone decides)
                         actor owns project                           not_owner
                         assignee is on the project team              not_member (400)
    update_task_status   actor is the assignee                        not_assignee
    add_task_comment     actor is the assignee or owns the project    not_assignee
    read_all_tasks       actor is admin                               not_admin
    read_my_tasks        always allowed
    read_team_members    actor is admin                               not_admin
    read_user            actor is admin                               not_admin
    reconcile            actor is admin                               not_admin
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from errors import DenyReason, ForbiddenError, ValidationError
from models import UserRole

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    create_project = "create_project"
    read_project = "read_project"
    update_project_team = "update_project_team"
    create_task = "create_task"
    update_task_status = "update_task_status"
    add_task_comment = "add_task_comment"
    read_all_tasks = "read_all_tasks"
    read_my_tasks = "read_my_tasks"
    read_team_members = "read_team_members"
    read_user = "read_user"
    reconcile = "reconcile"


@dataclass(frozen=True)
class ProjectSnapshot:
    id: Optional[int]
    admin_id: int
    team_member_ids: Tuple[int, ...] = ()


@dataclass(frozen=True)
class TaskSnapshot:
    id: Optional[int]
    assigned_to_id: int
    project_admin_id: int


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None
    detail: Optional[str] = None
    # Set when the denial is an input problem rather than an access problem
    field: Optional[str] = None


ALLOW = Decision(allowed=True)


def project_snapshot(project) -> ProjectSnapshot:
    """Capture the relationships of a Project the guard needs."""
    return ProjectSnapshot(
        id=project.id,
        admin_id=project.admin_id,
        team_member_ids=tuple(project.team_member_ids),
    )


def task_snapshot(task) -> TaskSnapshot:
    """Capture the relationships of a Task (and its project) the guard needs."""
    return TaskSnapshot(
        id=task.id,
        assigned_to_id=task.assigned_to_id,
        project_admin_id=task.project.admin_id,
    )


def _deny(reason: DenyReason, detail: str, field: Optional[str] = None) -> Decision:
    return Decision(allowed=False, reason=reason, detail=detail, field=field)


def _is_admin(actor) -> bool:
    role = getattr(actor, "role", None)
    return role == UserRole.admin or role == UserRole.admin.value


def can_perform(actor, action: Action, target: Any = None, context: Optional[dict] = None) -> Decision:
    """
    Decide whether `actor` may perform `action` on `target`.

    Args:
        actor: object with `id` and `role`, or None when unauthenticated
        action: the Action being attempted
        target: ProjectSnapshot for project actions and create_task,
            TaskSnapshot for task actions, None otherwise
            (create_task with no target checks only the role, so
            callers can refuse non-admins before loading the project)
        context: extra inputs; create_task reads `assigned_to`

    Returns:
        Decision; never mutates state

    Raises:
        ValueError: for an action this table does not know
    """
    context = context or {}

    if actor is None:
        return _deny(DenyReason.not_authenticated, "Not authenticated")

    if action == Action.create_project:
        if not _is_admin(actor):
            return _deny(DenyReason.not_admin, "Not authorized to create projects")
        return ALLOW

    if action == Action.read_project:
        if actor.id == target.admin_id or actor.id in target.team_member_ids:
            return ALLOW
        return _deny(DenyReason.not_member, "Not authorized to view this project")

    if action == Action.update_project_team:
        if actor.id != target.admin_id:
            return _deny(DenyReason.not_owner, "Not authorized to update this project")
        return ALLOW

    if action == Action.create_task:
        if not _is_admin(actor):
            return _deny(DenyReason.not_admin, "Not authorized to create tasks")
        if target is None:
            return ALLOW
        if actor.id != target.admin_id:
            return _deny(DenyReason.not_owner, "Not authorized to create tasks for this project")
        if context.get("assigned_to") not in target.team_member_ids:
            return _deny(DenyReason.not_member, "Assigned user must be a team member", field="assigned_to")
        return ALLOW

    if action == Action.update_task_status:
        if actor.id != target.assigned_to_id:
            return _deny(DenyReason.not_assignee, "Not authorized to update this task")
        return ALLOW

    if action == Action.add_task_comment:
        if actor.id == target.assigned_to_id or actor.id == target.project_admin_id:
            return ALLOW
        return _deny(DenyReason.not_assignee, "Not authorized to comment on this task")

    if action == Action.read_my_tasks:
        return ALLOW

    if action in (Action.read_all_tasks, Action.read_team_members, Action.read_user, Action.reconcile):
        if not _is_admin(actor):
            return _deny(DenyReason.not_admin, f"Not authorized ({action.value} requires admin)")
        return ALLOW

    raise ValueError(f"Unknown action: {action!r}")


def require(actor, action: Action, target: Any = None, context: Optional[dict] = None) -> None:
    """
    Raise unless `can_perform` allows the action.

    Raises:
        ValidationError: when the denial concerns an input field
            (assignee not on the team)
        ForbiddenError: for every other denial, carrying the reason code
    """
    decision = can_perform(actor, action, target, context)
    actor_id = getattr(actor, "id", None)
    if decision.allowed:
        logger.debug(f"Permission check passed for user {actor_id}: {action.value}")
        return

    logger.info(f"User {actor_id} denied {action.value}: {decision.reason.value}")
    if decision.field is not None:
        raise ValidationError.single(decision.field, decision.detail)
    raise ForbiddenError(decision.reason, decision.detail)
