"""
Test configuration and fixtures for task list tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client with database dependency override
- Service fixtures bound to the test session
- Common fixtures for lists, tasks and tags
"""

import os
import logging
from typing import Generator

# Keep the app's own engine off the filesystem during tests
os.environ.setdefault("TASKLIST_DATABASE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tasklist import models
from tasklist.database import Base, enable_sqlite_foreign_keys, get_db
from tasklist.main import app
from tasklist.services import (
    AttributeService,
    ListService,
    SearchService,
    TagService,
    TaskService,
    TemplateService,
)

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    logger.debug("Creating test database")

    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
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


# ============== Services ==============

@pytest.fixture
def lists(test_db: Session) -> ListService:
    return ListService(test_db)


@pytest.fixture
def tasks(test_db: Session) -> TaskService:
    return TaskService(test_db)


@pytest.fixture
def tags(test_db: Session) -> TagService:
    return TagService(test_db)


@pytest.fixture
def attributes(test_db: Session) -> AttributeService:
    return AttributeService(test_db)


@pytest.fixture
def templates(test_db: Session) -> TemplateService:
    return TemplateService(test_db)


@pytest.fixture
def search(test_db: Session) -> SearchService:
    return SearchService(test_db)


# ============== Data ==============

@pytest.fixture
def home_list(lists: ListService) -> models.TaskList:
    """A root list named Home."""
    task_list = lists.create_list("Home", description="Things to do at home")
    logger.info(f"Created list with ID: {task_list.id}")
    return task_list


@pytest.fixture
def sample_task(tasks: TaskService, home_list: models.TaskList) -> models.Task:
    task = tasks.create_task("Water the plants", home_list.id, estimated_hours=0.5)
    logger.info(f"Created task with ID: {task.id}")
    return task


@pytest.fixture
def list_tree(lists: ListService) -> dict:
    """
    Three-level tree:

        Work
        ├── Projects
        │   └── Launch
        └── Admin
    """
    work = lists.create_list("Work")
    projects = lists.create_list("Projects", parent_list_id=work.id)
    launch = lists.create_list("Launch", parent_list_id=projects.id)
    admin = lists.create_list("Admin", parent_list_id=work.id)
    return {"work": work, "projects": projects, "launch": launch, "admin": admin}
