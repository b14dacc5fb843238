"""
Tests for the task endpoints.

Tests cover:
- Task creation: validation field lists, ownership, team membership of the assignee
- Status changes: assignee only, any-to-any transitions
- Comments: assignee or owning admin only
- Scoped reads: by project, my tasks, all tasks
"""

import logging

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import models
from tests.conftest import auth_headers_for

logger = logging.getLogger(__name__)


def task_payload(project_id, assigned_to, **overrides):
    payload = {
        "title": "Write docs",
        "description": "Document the API",
        "project": project_id,
        "assignedTo": assigned_to,
        "type": "feature",
        "priority": "medium",
    }
    payload.update(overrides)
    return payload


# ============== Create ==============


def test_create_task(client: TestClient, project: models.Project, admin_user: models.User,
                     second_member: models.User, admin_headers: dict, test_db: Session):
    response = client.post(
        "/api/tasks",
        json=task_payload(project.id, second_member.id, dueDate="2030-01-01T00:00:00Z"),
        headers=admin_headers,
    )

    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    data = response.json()
    assert data["status"] == "open"
    assert data["assigned_by_id"] == admin_user.id
    assert data["assigned_to_id"] == second_member.id
    assert data["assignee"]["email"] == second_member.email
    assert data["comments"] == []
    assert data["is_overdue"] is False

    test_db.expire_all()
    assert data["id"] in test_db.get(models.Project, project.id).task_ids
    assert test_db.get(models.User, second_member.id).assigned_task_ids == [data["id"]]


def test_create_task_lists_every_invalid_field(client: TestClient, admin_headers: dict, test_db: Session):
    response = client.post(
        "/api/tasks",
        json={"title": "", "type": "chore", "priority": "critical"},
        headers=admin_headers,
    )

    assert response.status_code == 400
    fields = {error["field"] for error in response.json()["errors"]}
    assert fields == {"title", "description", "project_id", "assigned_to", "type", "priority"}
    assert test_db.query(models.Task).count() == 0


def test_create_task_malformed_values_reported_with_missing_fields(client: TestClient, admin_headers: dict,
                                                                   test_db: Session):
    response = client.post(
        "/api/tasks",
        json={"project": "abc", "assignedTo": 1.5, "type": "epic", "dueDate": "next tuesday"},
        headers=admin_headers,
    )

    assert response.status_code == 400
    fields = {error["field"] for error in response.json()["errors"]}
    assert fields == {"title", "description", "project_id", "assigned_to", "type", "priority", "due_date"}
    assert test_db.query(models.Task).count() == 0


def test_rejected_task_payload_not_logged_as_creation(client: TestClient, admin_headers: dict, caplog):
    with caplog.at_level(logging.INFO, logger="services.tasks"):
        response = client.post("/api/tasks", json={"title": "Half a task"}, headers=admin_headers)

    assert response.status_code == 400
    info_messages = [record.getMessage() for record in caplog.records if record.levelno >= logging.INFO]
    assert not any("creating task" in message for message in info_messages)
    assert any("rejected" in message for message in info_messages)


def test_create_task_accepts_numeric_string_ids(client: TestClient, project: models.Project,
                                                member_user: models.User, admin_headers: dict):
    response = client.post(
        "/api/tasks",
        json=task_payload(str(project.id), str(member_user.id), dueDate="2030-06-01"),
        headers=admin_headers,
    )

    assert response.status_code == 200, response.json()
    assert response.json()["project_id"] == project.id
    assert response.json()["assigned_to_id"] == member_user.id


def test_create_task_assignee_not_on_team(client: TestClient, project: models.Project, outsider: models.User,
                                          admin_headers: dict, test_db: Session):
    response = client.post("/api/tasks", json=task_payload(project.id, outsider.id), headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "Assigned user must be a team member"
    assert response.json()["errors"][0]["field"] == "assigned_to"
    assert test_db.query(models.Task).count() == 0
    assert test_db.query(models.UserAssignedTask).count() == 0


def test_create_task_as_member_forbidden(client: TestClient, project: models.Project, member_user: models.User,
                                         member_headers: dict, test_db: Session):
    response = client.post("/api/tasks", json=task_payload(project.id, member_user.id), headers=member_headers)

    assert response.status_code == 403
    assert response.json()["reason"] == "not_admin"
    assert test_db.query(models.Task).count() == 0


def test_create_task_as_member_in_missing_project_forbidden(client: TestClient, member_user: models.User,
                                                           member_headers: dict):
    response = client.post("/api/tasks", json=task_payload(9999, member_user.id), headers=member_headers)

    assert response.status_code == 403
    assert response.json()["reason"] == "not_admin"


def test_create_task_in_someone_elses_project(client: TestClient, project: models.Project, other_admin: models.User,
                                              member_user: models.User, test_db: Session):
    response = client.post(
        "/api/tasks",
        json=task_payload(project.id, member_user.id),
        headers=auth_headers_for(other_admin),
    )

    assert response.status_code == 403
    assert response.json()["reason"] == "not_owner"
    assert test_db.query(models.Task).count() == 0


def test_create_task_missing_project(client: TestClient, member_user: models.User, admin_headers: dict):
    response = client.post("/api/tasks", json=task_payload(9999, member_user.id), headers=admin_headers)

    assert response.status_code == 404
    assert response.json()["detail"] == "Project not found"


def test_removed_member_cannot_receive_new_tasks(client: TestClient, project: models.Project,
                                                 member_user: models.User, second_member: models.User,
                                                 admin_headers: dict):
    response = client.put(
        f"/api/projects/{project.id}/team",
        json={"team_members": [second_member.id]},
        headers=admin_headers,
    )
    assert response.status_code == 200

    response = client.post("/api/tasks", json=task_payload(project.id, member_user.id), headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "assigned_to"


# ============== Status ==============


def test_assignee_updates_status(client: TestClient, task: models.Task, member_headers: dict):
    response = client.put(f"/api/tasks/{task.id}/status", json={"status": "in_progress"}, headers=member_headers)

    assert response.status_code == 200, response.json()
    assert response.json()["status"] == "in_progress"


def test_completed_task_can_be_reopened(client: TestClient, task: models.Task, member_headers: dict):
    for status in ("completed", "open", "review", "open"):
        response = client.put(f"/api/tasks/{task.id}/status", json={"status": status}, headers=member_headers)
        assert response.status_code == 200, response.json()
        assert response.json()["status"] == status


def test_owning_admin_cannot_update_status(client: TestClient, task: models.Task, admin_headers: dict,
                                           test_db: Session):
    response = client.put(f"/api/tasks/{task.id}/status", json={"status": "completed"}, headers=admin_headers)

    assert response.status_code == 403
    assert response.json()["reason"] == "not_assignee"
    test_db.expire_all()
    assert test_db.get(models.Task, task.id).status == models.TaskStatus.open


def test_other_team_member_cannot_update_status(client: TestClient, task: models.Task,
                                                second_member_headers: dict):
    response = client.put(f"/api/tasks/{task.id}/status", json={"status": "review"}, headers=second_member_headers)

    assert response.status_code == 403
    assert response.json()["reason"] == "not_assignee"


@pytest.mark.parametrize("status", ["pending", "done", "", None])
def test_invalid_status_rejected(client: TestClient, task: models.Task, member_headers: dict, status):
    response = client.put(f"/api/tasks/{task.id}/status", json={"status": status}, headers=member_headers)

    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "status"


def test_status_of_missing_task(client: TestClient, member_headers: dict):
    response = client.put("/api/tasks/31337/status", json={"status": "open"}, headers=member_headers)

    assert response.status_code == 404
    assert response.json()["detail"] == "Task not found"


# ============== Comments ==============


def test_assignee_and_owner_can_comment(client: TestClient, task: models.Task, member_user: models.User,
                                        admin_user: models.User, member_headers: dict, admin_headers: dict):
    first = client.post(f"/api/tasks/{task.id}/comments", json={"content": "looking"}, headers=member_headers)
    second = client.post(f"/api/tasks/{task.id}/comments", json={"content": "thanks"}, headers=admin_headers)

    assert first.status_code == 200, first.json()
    assert second.status_code == 200, second.json()
    comments = second.json()["comments"]
    assert [c["content"] for c in comments] == ["looking", "thanks"]
    assert [c["author_id"] for c in comments] == [member_user.id, admin_user.id]
    assert comments[0]["author"]["name"] == member_user.name
    assert comments[0]["created_at"] is not None


@pytest.mark.parametrize("who", ["second_member", "outsider", "other_admin"])
def test_third_party_cannot_comment(client: TestClient, task: models.Task, who: str, request, test_db: Session):
    user = request.getfixturevalue(who)
    response = client.post(f"/api/tasks/{task.id}/comments", json={"content": "me too"}, headers=auth_headers_for(user))

    assert response.status_code == 403
    assert response.json()["reason"] == "not_assignee"
    assert test_db.query(models.Comment).count() == 0


@pytest.mark.parametrize("content", ["", "   ", None])
def test_empty_comment_rejected(client: TestClient, task: models.Task, member_headers: dict, content):
    response = client.post(f"/api/tasks/{task.id}/comments", json={"content": content}, headers=member_headers)

    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "content"


def test_duplicate_comments_are_kept(client: TestClient, task: models.Task, member_headers: dict):
    for _ in range(2):
        client.post(f"/api/tasks/{task.id}/comments", json={"content": "ping"}, headers=member_headers)

    response = client.get("/api/tasks/my-tasks", headers=member_headers)
    assert [c["content"] for c in response.json()[0]["comments"]] == ["ping", "ping"]


# ============== Reads ==============


def test_list_project_tasks(client: TestClient, task: models.Task, project: models.Project,
                            second_member_headers: dict, admin_headers: dict):
    for headers in (second_member_headers, admin_headers):
        response = client.get(f"/api/tasks/project/{project.id}", headers=headers)
        assert response.status_code == 200, response.json()
        assert [t["id"] for t in response.json()] == [task.id]


def test_list_project_tasks_outsider(client: TestClient, task: models.Task, project: models.Project,
                                     outsider: models.User):
    response = client.get(f"/api/tasks/project/{project.id}", headers=auth_headers_for(outsider))

    assert response.status_code == 403
    assert response.json()["reason"] == "not_member"


def test_list_project_tasks_missing_project(client: TestClient, admin_headers: dict):
    response = client.get("/api/tasks/project/5555", headers=admin_headers)

    assert response.status_code == 404


def test_my_tasks_scoped_to_actor(client: TestClient, task: models.Task, member_headers: dict,
                                  second_member_headers: dict):
    assert [t["id"] for t in client.get("/api/tasks/my-tasks", headers=member_headers).json()] == [task.id]
    assert client.get("/api/tasks/my-tasks", headers=second_member_headers).json() == []


def test_all_tasks_admin_only(client: TestClient, task: models.Task, admin_headers: dict, member_headers: dict):
    response = client.get("/api/tasks", headers=admin_headers)
    assert response.status_code == 200
    assert [t["id"] for t in response.json()] == [task.id]

    response = client.get("/api/tasks", headers=member_headers)
    assert response.status_code == 403
    assert response.json()["reason"] == "not_admin"


# ============== End to end ==============


def test_admin_member_task_scenario(client: TestClient, test_db: Session):
    admin = client.post("/api/auth/signup", json={
        "name": "A", "email": "a@tracker.io", "password": "password1", "role": "admin",
    }).json()
    member = client.post("/api/auth/signup", json={
        "name": "U1", "email": "u1@tracker.io", "password": "password1",
    }).json()
    admin_headers = {"Authorization": f"Bearer {admin['token']}"}
    member_headers = {"x-auth-token": member["token"]}

    project = client.post("/api/projects", json={
        "name": "P1", "description": "first project", "teamMembers": [member["user"]["id"]],
    }, headers=admin_headers).json()

    created = client.post("/api/tasks", json={
        "title": "T1", "description": "crash on save", "project": project["id"],
        "assignedTo": member["user"]["id"], "type": "bug", "priority": "high",
    }, headers=admin_headers)
    assert created.status_code == 200, created.json()
    task_id = created.json()["id"]
    assert created.json()["status"] == "open"

    response = client.put(f"/api/tasks/{task_id}/status", json={"status": "in_progress"}, headers=member_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "in_progress"

    response = client.put(f"/api/tasks/{task_id}/status", json={"status": "completed"}, headers=admin_headers)
    assert response.status_code == 403
    assert response.json()["reason"] == "not_assignee"

    response = client.post(f"/api/tasks/{task_id}/comments", json={"content": "wip"}, headers=member_headers)
    assert response.status_code == 200
    comment = response.json()["comments"][-1]
    assert comment["content"] == "wip"
    assert comment["author_id"] == member["user"]["id"]

    consistency = client.get("/api/admin/consistency", headers=admin_headers).json()
    assert consistency["consistent"] is True


# ============== Due dates ==============


def test_past_due_task_is_overdue_until_completed(client: TestClient, project: models.Project,
                                                  member_user: models.User, admin_headers: dict,
                                                  member_headers: dict):
    created = client.post(
        "/api/tasks",
        json=task_payload(project.id, member_user.id, dueDate="2001-01-01T00:00:00Z"),
        headers=admin_headers,
    )
    assert created.json()["is_overdue"] is True

    response = client.put(
        f"/api/tasks/{created.json()['id']}/status",
        json={"status": "completed"},
        headers=member_headers,
    )
    assert response.json()["is_overdue"] is False
