"""
Test configuration and fixtures for tracker tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client with database dependency override
- Authentication helpers (JWT token generation)
- Common fixtures for admins, members, projects and tasks
"""

import os
import sys
import logging
from datetime import timedelta
from typing import Generator, Dict

# Configure the app for tests before anything imports it
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["SEED_ADMIN"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db
from main import app
import models
import schemas
from auth.security import hash_password, create_access_token
from services import projects as project_registry
from services import tasks as task_engine

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        logger.debug("Test database cleaned up")


@pytest.fixture(scope="function")
def client(test_db: Session) -> TestClient:
    """
    Create FastAPI test client with database dependency override.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def make_user(db: Session, name: str, email: str, role: models.UserRole) -> models.User:
    user = models.User(
        name=name,
        email=email,
        password_hash=hash_password("secret123"),
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created {role.value} user {email} with ID: {user.id}")
    return user


@pytest.fixture(scope="function")
def admin_user(test_db: Session) -> models.User:
    return make_user(test_db, "Admin User", "admin@test.com", models.UserRole.admin)


@pytest.fixture(scope="function")
def other_admin(test_db: Session) -> models.User:
    """An admin who owns nothing in the default fixtures."""
    return make_user(test_db, "Other Admin", "other-admin@test.com", models.UserRole.admin)


@pytest.fixture(scope="function")
def member_user(test_db: Session) -> models.User:
    return make_user(test_db, "Member One", "member1@test.com", models.UserRole.member)


@pytest.fixture(scope="function")
def second_member(test_db: Session) -> models.User:
    return make_user(test_db, "Member Two", "member2@test.com", models.UserRole.member)


@pytest.fixture(scope="function")
def outsider(test_db: Session) -> models.User:
    """A member who is on no team."""
    return make_user(test_db, "Outsider", "outsider@test.com", models.UserRole.member)


def create_auth_token(user: models.User, expires_delta: timedelta = None) -> str:
    """
    Helper to create JWT access token for a user.
    """
    token_data = {
        "sub": str(user.id),
        "role": user.role.value,
        "email": user.email
    }
    return create_access_token(token_data, expires_delta)


def auth_headers_for(user: models.User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_auth_token(user)}"}


@pytest.fixture(scope="function")
def admin_headers(admin_user: models.User) -> Dict[str, str]:
    return auth_headers_for(admin_user)


@pytest.fixture(scope="function")
def member_headers(member_user: models.User) -> Dict[str, str]:
    return auth_headers_for(member_user)


@pytest.fixture(scope="function")
def second_member_headers(second_member: models.User) -> Dict[str, str]:
    return auth_headers_for(second_member)


@pytest.fixture(scope="function")
def project(test_db: Session, admin_user: models.User, member_user: models.User,
            second_member: models.User) -> models.Project:
    """
    A project owned by admin_user staffed with member_user and second_member.
    """
    created = project_registry.create_project(
        test_db,
        admin_user,
        schemas.ProjectCreate(
            name="Project One",
            description="A project for testing",
            team_members=[member_user.id, second_member.id],
        ),
    )
    logger.info(f"Created project with ID: {created.id}")
    return created


@pytest.fixture(scope="function")
def task(test_db: Session, admin_user: models.User, member_user: models.User,
         project: models.Project) -> models.Task:
    """
    A bug in `project` assigned to member_user.
    """
    created = task_engine.create_task(
        test_db,
        admin_user,
        schemas.TaskCreate(
            title="Fix login",
            description="Login button does nothing",
            project_id=project.id,
            assigned_to=member_user.id,
            type="bug",
            priority="high",
        ),
    )
    logger.info(f"Created task with ID: {created.id}")
    return created
