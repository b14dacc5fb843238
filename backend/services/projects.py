"""
Project registry.

Owns Project rows and their ordered team-member sets. Team changes go
through the membership ledger in the same transaction so the user-side
back-references never disagree with project_members.
"""

import logging
from typing import Iterable, List

from sqlalchemy.orm import Session, selectinload

import models
import schemas
from auth.permissions import Action, require, project_snapshot
from database import atomic
from errors import NotFoundError, ValidationError
from services.membership import MembershipLedger
from time_utils import utc_now

logger = logging.getLogger(__name__)


def _blank(value) -> bool:
    return value is None or not str(value).strip()


def _unique_in_order(ids: Iterable[int]) -> List[int]:
    seen = set()
    ordered = []
    for user_id in ids:
        if user_id not in seen:
            seen.add(user_id)
            ordered.append(user_id)
    return ordered


def _ensure_users_exist(db: Session, user_ids: List[int]) -> None:
    if not user_ids:
        return
    found = {row.id for row in db.query(models.User.id).filter(models.User.id.in_(user_ids)).all()}
    for user_id in user_ids:
        if user_id not in found:
            logger.info(f"Team member {user_id} does not exist")
            raise NotFoundError("User", user_id)


def _load_project(db: Session, project_id: int, for_update: bool = False) -> models.Project:
    query = db.query(models.Project).filter(models.Project.id == project_id)
    if for_update:
        query = query.with_for_update()
    project = query.first()
    if project is None:
        logger.info(f"Project {project_id} not found")
        raise NotFoundError("Project", project_id)
    return project


def create_project(db: Session, actor: models.User, payload: schemas.ProjectCreate) -> models.Project:
    """
    Create a project owned by `actor` and staff it with `payload.team_members`.

    Raises:
        ValidationError: name or description missing (both reported)
        ForbiddenError: actor is not an admin
        NotFoundError: a team member id does not exist
    """
    logger.debug(f"User {actor.id} creating project: {payload.name}")

    errors = []
    if _blank(payload.name):
        errors.append({"field": "name", "message": "Project name is required"})
    if _blank(payload.description):
        errors.append({"field": "description", "message": "Project description is required"})
    if errors:
        raise ValidationError(errors)

    require(actor, Action.create_project)

    member_ids = _unique_in_order(payload.team_members)
    _ensure_users_exist(db, member_ids)

    with atomic(db):
        project = models.Project(
            name=payload.name.strip(),
            description=payload.description,
            admin_id=actor.id,
        )
        db.add(project)
        db.flush()  # Get project ID without committing

        ledger = MembershipLedger(db)
        for position, user_id in enumerate(member_ids):
            project.members.append(models.ProjectMember(user_id=user_id, position=position))
            ledger.add_project_member(user_id, project.id)

        ledger.verify_project(project.id, member_ids)

    db.refresh(project)
    logger.info(f"Project created: {project.name} (ID: {project.id}) by user {actor.id} with {len(member_ids)} members")
    return project


def update_team(db: Session, actor: models.User, project_id: int, new_member_ids: Iterable[int]) -> models.Project:
    """
    Replace a project's team with `new_member_ids`.

    Dropped members lose their back-reference, new members gain one, and
    the team set is rewritten in the given order, all in one transaction.
    The project row is locked (where supported) and version-checked, so a
    concurrent update either waits or fails with ConsistencyError.

    Raises:
        NotFoundError: project or a member id does not exist
        ForbiddenError: actor does not own the project
        ConsistencyError: concurrent modification or back-reference drift
    """
    logger.debug(f"User {actor.id} updating team of project {project_id}")

    new_ids = _unique_in_order(new_member_ids)

    with atomic(db):
        project = _load_project(db, project_id, for_update=True)
        require(actor, Action.update_project_team, project_snapshot(project))
        _ensure_users_exist(db, new_ids)

        old_ids = project.team_member_ids
        dropped = [user_id for user_id in old_ids if user_id not in new_ids]
        added = [user_id for user_id in new_ids if user_id not in old_ids]

        ledger = MembershipLedger(db)
        for user_id in dropped:
            ledger.remove_project_member(user_id, project.id)
        for user_id in added:
            ledger.add_project_member(user_id, project.id)

        existing = {member.user_id: member for member in project.members}
        for member in list(project.members):
            if member.user_id in dropped:
                project.members.remove(member)
        for position, user_id in enumerate(new_ids):
            if user_id in existing:
                existing[user_id].position = position
            else:
                project.members.append(models.ProjectMember(user_id=user_id, position=position))

        # Touch the row so the version check covers team-only changes
        project.updated_at = utc_now()

        ledger.verify_project(project.id, new_ids)

    db.refresh(project)
    logger.info(
        f"Project {project_id} team updated by user {actor.id}: "
        f"{len(added)} added, {len(dropped)} removed, {len(new_ids)} total"
    )
    return project


def list_projects_for(db: Session, actor: models.User) -> List[models.Project]:
    """Admins see the projects they own; members see the projects they are on."""
    logger.debug(f"User {actor.id} listing projects")

    query = db.query(models.Project).options(
        selectinload(models.Project.admin),
        selectinload(models.Project.members).selectinload(models.ProjectMember.user),
    )
    if actor.role == models.UserRole.admin:
        query = query.filter(models.Project.admin_id == actor.id)
    else:
        query = query.join(models.ProjectMember).filter(models.ProjectMember.user_id == actor.id)

    projects = query.order_by(models.Project.id).all()
    logger.info(f"User {actor.id} retrieved {len(projects)} projects")
    return projects


def get_project(db: Session, actor: models.User, project_id: int) -> models.Project:
    """
    Fetch a project the actor owns or is a team member of.

    Raises:
        NotFoundError: project does not exist
        ForbiddenError: actor is neither owner nor member
    """
    logger.debug(f"User {actor.id} requesting project {project_id}")

    project = _load_project(db, project_id)
    require(actor, Action.read_project, project_snapshot(project))
    return project
