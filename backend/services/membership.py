"""
Membership ledger.

Keeps the derived back-references on the user side (user_projects,
user_assigned_tasks) in step with the authoritative sets they mirror
(project_members, tasks.assigned_to_id). Nothing else writes those tables.

All writes happen inside the caller's session and are committed by the
caller together with the authoritative change, so both sides land in one
transaction. `verify_*` is run before that commit; `reconcile` rebuilds
every back-reference from the authoritative side.
"""

import logging
from typing import Dict, Iterable, List, Set, Tuple

from sqlalchemy.orm import Session

import models
from errors import ConsistencyError

logger = logging.getLogger(__name__)


class MembershipLedger:
    """Idempotent set operations on the back-reference tables of one session."""

    def __init__(self, db: Session):
        self.db = db

    # ---- project membership ----

    def add_project_member(self, user_id: int, project_id: int) -> bool:
        """Record that `user_id` is on `project_id`'s team. Returns True if a row was added."""
        existing = (
            self.db.query(models.UserProject)
            .filter(
                models.UserProject.user_id == user_id,
                models.UserProject.project_id == project_id,
            )
            .first()
        )
        if existing is not None:
            logger.debug(f"Back-reference user {user_id} -> project {project_id} already present")
            return False
        self.db.add(models.UserProject(user_id=user_id, project_id=project_id))
        self.db.flush()
        logger.debug(f"Added back-reference user {user_id} -> project {project_id}")
        return True

    def remove_project_member(self, user_id: int, project_id: int) -> bool:
        """Drop the back-reference. Returns True if a row was removed."""
        removed = (
            self.db.query(models.UserProject)
            .filter(
                models.UserProject.user_id == user_id,
                models.UserProject.project_id == project_id,
            )
            .delete(synchronize_session="fetch")
        )
        if removed:
            logger.debug(f"Removed back-reference user {user_id} -> project {project_id}")
        return bool(removed)

    # ---- task assignment ----

    def add_assigned_task(self, user_id: int, task_id: int) -> bool:
        """Record that `task_id` is assigned to `user_id`. Returns True if a row was added."""
        existing = (
            self.db.query(models.UserAssignedTask)
            .filter(
                models.UserAssignedTask.user_id == user_id,
                models.UserAssignedTask.task_id == task_id,
            )
            .first()
        )
        if existing is not None:
            return False
        self.db.add(models.UserAssignedTask(user_id=user_id, task_id=task_id))
        self.db.flush()
        logger.debug(f"Added back-reference user {user_id} -> task {task_id}")
        return True

    # ---- verification ----

    def project_mismatches(self, project_id: int, team_member_ids: Iterable[int]) -> List[Dict]:
        """Compare one project's team set with the user-side back-references."""
        self.db.flush()
        expected = set(team_member_ids)
        actual = {
            row.user_id
            for row in self.db.query(models.UserProject.user_id)
            .filter(models.UserProject.project_id == project_id)
            .all()
        }
        mismatches = [
            _mismatch("project_member", user_id, project_id, "missing_back_reference")
            for user_id in sorted(expected - actual)
        ]
        mismatches += [
            _mismatch("project_member", user_id, project_id, "stale_back_reference")
            for user_id in sorted(actual - expected)
        ]
        return mismatches

    def verify_project(self, project_id: int, team_member_ids: Iterable[int]) -> None:
        """
        Raise ConsistencyError if the project's back-references drifted.

        Called after the ledger writes and before the caller commits.
        """
        mismatches = self.project_mismatches(project_id, team_member_ids)
        if mismatches:
            logger.error(f"Project {project_id} back-references out of sync: {mismatches}")
            raise ConsistencyError(
                f"Team membership of project {project_id} is out of sync with user back-references",
                mismatches,
            )

    def verify_assigned_task(self, task_id: int, assigned_to_id: int) -> None:
        """Raise ConsistencyError unless exactly the assignee references the task."""
        self.db.flush()
        holders = {
            row.user_id
            for row in self.db.query(models.UserAssignedTask.user_id)
            .filter(models.UserAssignedTask.task_id == task_id)
            .all()
        }
        if holders != {assigned_to_id}:
            mismatches = []
            if assigned_to_id not in holders:
                mismatches.append(_mismatch("assigned_task", assigned_to_id, task_id, "missing_back_reference"))
            for user_id in sorted(holders - {assigned_to_id}):
                mismatches.append(_mismatch("assigned_task", user_id, task_id, "stale_back_reference"))
            logger.error(f"Task {task_id} back-references out of sync: {mismatches}")
            raise ConsistencyError(f"Assignment of task {task_id} is out of sync with user back-references", mismatches)

    # ---- whole-database checks ----

    def _expected_pairs(self) -> Tuple[Set[Tuple[int, int]], Set[Tuple[int, int]]]:
        members = {
            (row.user_id, row.project_id)
            for row in self.db.query(models.ProjectMember.user_id, models.ProjectMember.project_id).all()
        }
        assignments = {
            (row.assigned_to_id, row.id)
            for row in self.db.query(models.Task.assigned_to_id, models.Task.id).all()
        }
        return members, assignments

    def _actual_pairs(self) -> Tuple[Set[Tuple[int, int]], Set[Tuple[int, int]]]:
        members = {
            (row.user_id, row.project_id)
            for row in self.db.query(models.UserProject.user_id, models.UserProject.project_id).all()
        }
        assignments = {
            (row.user_id, row.task_id)
            for row in self.db.query(models.UserAssignedTask.user_id, models.UserAssignedTask.task_id).all()
        }
        return members, assignments

    def find_mismatches(self) -> List[Dict]:
        """Every back-reference that is missing or stale, across all users."""
        self.db.flush()
        expected_members, expected_tasks = self._expected_pairs()
        actual_members, actual_tasks = self._actual_pairs()

        mismatches = []
        for kind, expected, actual in (
            ("project_member", expected_members, actual_members),
            ("assigned_task", expected_tasks, actual_tasks),
        ):
            for user_id, ref_id in sorted(expected - actual):
                mismatches.append(_mismatch(kind, user_id, ref_id, "missing_back_reference"))
            for user_id, ref_id in sorted(actual - expected):
                mismatches.append(_mismatch(kind, user_id, ref_id, "stale_back_reference"))
        return mismatches

    def reconcile(self) -> Dict:
        """
        Recompute all back-references from the authoritative sets.

        Missing rows are inserted and stale rows deleted. The caller commits.

        Returns:
            {"added": int, "removed": int, "mismatches": [...]} describing
            what was repaired
        """
        mismatches = self.find_mismatches()
        added = removed = 0
        for mismatch in mismatches:
            user_id, ref_id = mismatch["user_id"], mismatch["ref_id"]
            if mismatch["kind"] == "project_member":
                if mismatch["problem"] == "missing_back_reference":
                    added += self.add_project_member(user_id, ref_id)
                else:
                    removed += self.remove_project_member(user_id, ref_id)
            else:
                if mismatch["problem"] == "missing_back_reference":
                    added += self.add_assigned_task(user_id, ref_id)
                else:
                    removed += self._remove_assigned_task(user_id, ref_id)

        if mismatches:
            logger.warning(f"Reconciled back-references: {added} added, {removed} removed")
        else:
            logger.info("Back-references already consistent")
        return {"added": added, "removed": removed, "mismatches": mismatches}

    def _remove_assigned_task(self, user_id: int, task_id: int) -> bool:
        removed = (
            self.db.query(models.UserAssignedTask)
            .filter(
                models.UserAssignedTask.user_id == user_id,
                models.UserAssignedTask.task_id == task_id,
            )
            .delete(synchronize_session="fetch")
        )
        return bool(removed)


def _mismatch(kind: str, user_id: int, ref_id: int, problem: str) -> Dict:
    return {"kind": kind, "user_id": user_id, "ref_id": ref_id, "problem": problem}
