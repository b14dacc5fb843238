from fastapi import FastAPI, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List
import logging
import os

from database import get_db, engine, Base, SessionLocal, atomic
import models
import schemas
from errors import TrackerError, ConsistencyError
from auth.routes import router as auth_router
from auth.dependencies import get_current_user
from auth.permissions import Action, require
from services import projects as project_registry
from services import tasks as task_engine
from services import users as identity
from services.membership import MembershipLedger

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Project Tracker API",
    description="Projects, team membership, task assignment and task discussion",
    version="1.0.0"
)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register authentication router
app.include_router(auth_router)


# ============== Error Handling ==============

@app.exception_handler(TrackerError)
async def tracker_error_handler(request: Request, exc: TrackerError):
    """Render domain errors with their status code and structured body."""
    if isinstance(exc, ConsistencyError):
        logger.error(f"{request.method} {request.url.path} failed consistency check: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies as 400 with the same field list as ValidationError."""
    errors = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or "body", "message": error.get("msg", "Invalid value")})
    logger.info(f"{request.method} {request.url.path} rejected: {[e['field'] for e in errors]}")
    return JSONResponse(status_code=400, content={"detail": "Validation failed", "errors": errors})


# ============== Startup ==============

@app.on_event("startup")
def prepare_database():
    """
    Create tables and make sure a bootstrap admin exists.

    Uses ADMIN_EMAIL / ADMIN_PASSWORD if set, otherwise admin@example.com /
    admin123 for local development. The default password is refused in
    production-like environments. Set SEED_ADMIN=false to skip seeding.
    """
    from auth.security import hash_password, is_production_like

    Base.metadata.create_all(bind=engine)

    if os.getenv("SEED_ADMIN", "true").lower() in ("false", "0", "no"):
        return

    admin_email = os.getenv("ADMIN_EMAIL", "admin@example.com")
    admin_password = os.getenv("ADMIN_PASSWORD", "admin123")

    if is_production_like() and (not admin_password.strip() or admin_password == "admin123" or len(admin_password.strip()) < 8):
        raise RuntimeError(
            "A secure ADMIN_PASSWORD (at least 8 characters, not the default) is required in production/staging"
        )

    db = SessionLocal()
    try:
        if db.query(models.User).filter(models.User.email == admin_email).first():
            logger.info(f"Admin user already exists (email: {admin_email})")
            return

        with atomic(db):
            db.add(models.User(
                name="Admin",
                email=admin_email,
                password_hash=hash_password(admin_password),
                role=models.UserRole.admin,
            ))

        if admin_password == "admin123":
            logger.warning(
                f"Admin user created with DEFAULT password 'admin123' ({admin_email}). "
                "Set ADMIN_PASSWORD to use a custom password."
            )
        else:
            logger.info(f"Admin user created: {admin_email}")
    finally:
        db.close()


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ============== Users ==============

@app.get("/api/users/team-members", response_model=List[schemas.TeamMemberUser])
def list_team_members(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List member-role users (admin only)."""
    return identity.list_team_members(db, current_user)


@app.get("/api/users/me", response_model=schemas.UserProfile)
def get_my_profile(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Current user's profile with projects and assigned tasks."""
    return identity.get_profile(db, current_user)


@app.put("/api/users/me", response_model=schemas.UserProfile)
def update_my_profile(
    user_update: schemas.UserUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update the current user's name."""
    return identity.update_profile(db, current_user, user_update.name)


@app.get("/api/users/{user_id}", response_model=schemas.UserProfile)
def get_user(
    user_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get a user with projects and assigned tasks (admin only)."""
    return identity.get_user(db, current_user, user_id)


# ============== Projects ==============

@app.post("/api/projects", response_model=schemas.Project)
def create_project(
    project: schemas.ProjectCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a project owned by the current admin."""
    return project_registry.create_project(db, current_user, project)


@app.get("/api/projects", response_model=List[schemas.Project])
def list_projects(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Projects the current user owns (admin) or is on the team of (member)."""
    return project_registry.list_projects_for(db, current_user)


@app.get("/api/projects/{project_id}", response_model=schemas.ProjectWithTasks)
def get_project(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get a project with its tasks (owner or team member)."""
    return project_registry.get_project(db, current_user, project_id)


@app.put("/api/projects/{project_id}/team", response_model=schemas.Project)
def update_project_team(
    project_id: int,
    team: schemas.TeamUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Replace the project's team (owning admin only)."""
    return project_registry.update_team(db, current_user, project_id, team.team_members)


# ============== Tasks ==============

@app.post("/api/tasks", response_model=schemas.Task)
def create_task(
    task: schemas.TaskCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a task in a project the current admin owns."""
    return task_engine.create_task(db, current_user, task)


@app.get("/api/tasks", response_model=List[schemas.Task])
def list_all_tasks(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """All tasks (admin only)."""
    return task_engine.list_all(db, current_user)


@app.get("/api/tasks/my-tasks", response_model=List[schemas.Task])
def list_my_tasks(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Tasks assigned to the current user."""
    return task_engine.list_mine(db, current_user)


@app.get("/api/tasks/project/{project_id}", response_model=List[schemas.Task])
def list_project_tasks(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Tasks of a project (owner or team member)."""
    return task_engine.list_by_project(db, current_user, project_id)


@app.put("/api/tasks/{task_id}/status", response_model=schemas.Task)
def update_task_status(
    task_id: int,
    status_update: schemas.TaskStatusUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Change a task's status (assignee only)."""
    return task_engine.update_status(db, current_user, task_id, status_update.status)


@app.post("/api/tasks/{task_id}/comments", response_model=schemas.Task)
def add_task_comment(
    task_id: int,
    comment: schemas.CommentCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Comment on a task (assignee or owning admin)."""
    return task_engine.add_comment(db, current_user, task_id, comment.content)


# ============== Consistency ==============

@app.get("/api/admin/consistency", response_model=schemas.ConsistencyReport)
def check_consistency(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Report back-references that disagree with project teams and task assignees."""
    require(current_user, Action.reconcile)
    mismatches = MembershipLedger(db).find_mismatches()
    return {"consistent": not mismatches, "mismatches": mismatches}


@app.post("/api/admin/reconcile", response_model=schemas.ReconcileReport)
def reconcile_back_references(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Rebuild every back-reference from the authoritative sets (admin only)."""
    require(current_user, Action.reconcile)
    with atomic(db):
        report = MembershipLedger(db).reconcile()
    logger.info(f"Admin {current_user.id} ran reconciliation: {report['added']} added, {report['removed']} removed")
    return report
