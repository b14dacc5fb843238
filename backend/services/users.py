"""Identity reads and profile updates."""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session, selectinload

import models
from auth.permissions import Action, require
from database import atomic
from errors import NotFoundError

logger = logging.getLogger(__name__)


def _profile_query(db: Session):
    return db.query(models.User).options(
        selectinload(models.User.projects),
        selectinload(models.User.owned_projects),
        selectinload(models.User.assigned_tasks),
    )


def list_team_members(db: Session, actor: models.User) -> List[models.User]:
    """Users with the member role, with their back-reference ids (admin only)."""
    require(actor, Action.read_team_members)
    members = (
        db.query(models.User)
        .options(
            selectinload(models.User.project_links),
            selectinload(models.User.assigned_task_links),
        )
        .filter(models.User.role == models.UserRole.member)
        .order_by(models.User.name)
        .all()
    )
    logger.debug(f"Admin {actor.id} listed {len(members)} team members")
    return members


def get_profile(db: Session, actor: models.User) -> models.User:
    return _profile_query(db).filter(models.User.id == actor.id).one()


def update_profile(db: Session, actor: models.User, name: Optional[str]) -> models.User:
    """Only the display name can change; a blank name is ignored."""
    if name is not None and name.strip():
        with atomic(db):
            actor.name = name.strip()
        logger.info(f"User {actor.id} updated their name")
    return get_profile(db, actor)


def get_user(db: Session, actor: models.User, user_id: int) -> models.User:
    require(actor, Action.read_user)
    user = _profile_query(db).filter(models.User.id == user_id).first()
    if user is None:
        raise NotFoundError("User", user_id)
    return user
