"""
Test configuration and fixtures for Task Hub tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client with database dependency override
- Authentication helpers (JWT token generation)
- Common fixtures for users, projects, and tasks
"""

import os
import sys
import logging
from datetime import timedelta
from typing import Generator, Dict

os.environ.setdefault("AUTO_CREATE_TABLES", "false")
os.environ.setdefault("DB_RETRY_DELAY_MS", "0")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db
from main import app
import models
from auth.security import hash_password, create_access_token
from services import projects as project_service
from services import tasks as task_service

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

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


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


def make_user(db: Session, name: str, email: str, password: str = "password123") -> models.User:
    user = models.User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created user {email} with ID: {user.id}")
    return user


@pytest.fixture(scope="function")
def owner_user(test_db: Session) -> models.User:
    """User who creates the project fixture and is its OWNER."""
    return make_user(test_db, "Olivia Owner", "owner@taskhub.io")


@pytest.fixture(scope="function")
def member_user(test_db: Session) -> models.User:
    """User added to the project fixture with role MEMBER."""
    return make_user(test_db, "Max Member", "member@taskhub.io")


@pytest.fixture(scope="function")
def another_member(test_db: Session) -> models.User:
    """Second MEMBER of the project fixture."""
    return make_user(test_db, "Ada Another", "another@taskhub.io")


@pytest.fixture(scope="function")
def outsider_user(test_db: Session) -> models.User:
    """User with no membership anywhere."""
    return make_user(test_db, "Otto Outsider", "outsider@taskhub.io")


def create_auth_token(user: models.User, expires_delta: timedelta = None) -> str:
    """
    Helper to create JWT access token for a user.
    """
    token_data = {
        "sub": str(user.id),
        "email": user.email
    }
    return create_access_token(token_data, expires_delta)


def auth_headers_for(user: models.User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_auth_token(user)}"}


@pytest.fixture(scope="function")
def owner_headers(owner_user: models.User) -> Dict[str, str]:
    return auth_headers_for(owner_user)


@pytest.fixture(scope="function")
def member_headers(member_user: models.User) -> Dict[str, str]:
    return auth_headers_for(member_user)


@pytest.fixture(scope="function")
def outsider_headers(outsider_user: models.User) -> Dict[str, str]:
    return auth_headers_for(outsider_user)


@pytest.fixture(scope="function")
def project(
    test_db: Session,
    owner_user: models.User,
    member_user: models.User,
    another_member: models.User,
) -> models.Project:
    """
    Project owned by owner_user, with member_user and another_member as MEMBERs.
    """
    project = project_service.create_project(
        test_db, owner_user.id, {"name": "Website Redesign", "description": "A project for testing"}
    )
    project_service.add_member(test_db, owner_user.id, project.id, member_user.id, models.ProjectRole.MEMBER)
    project_service.add_member(test_db, owner_user.id, project.id, another_member.id, models.ProjectRole.MEMBER)
    logger.info(f"Created project with ID: {project.id}")
    return project


@pytest.fixture(scope="function")
def other_project(test_db: Session, owner_user: models.User) -> models.Project:
    """Second project owned by owner_user with no other members."""
    return project_service.create_project(test_db, owner_user.id, {"name": "Internal Tools"})


@pytest.fixture(scope="function")
def task(test_db: Session, project: models.Project, owner_user: models.User) -> models.Task:
    """Top-level task created by owner_user (owner_user is its PRIMARY)."""
    return task_service.create_task(test_db, owner_user.id, {"title": "Design homepage", "project_id": project.id})


def task_roles(db: Session, task_id: int) -> Dict[int, models.TaskMemberRole]:
    """Map of user_id -> role for every member row of a task, read fresh from the database."""
    db.expire_all()
    rows = db.query(models.TaskMember).filter(models.TaskMember.task_id == task_id).all()
    return {row.user_id: row.role for row in rows}
