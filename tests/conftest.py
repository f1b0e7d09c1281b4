"""Pytest configuration: in-memory document storage and FastAPI TestClient."""

from __future__ import annotations

import os
import tempfile
from typing import Generator

import pytest

# Override env BEFORE importing app modules so module-level config picks up test values.
os.environ.pop("DATABASE_URL", None)
os.environ.update(
    {
        "DATA_DIR": tempfile.mkdtemp(prefix="projectsphere-test-"),
        "SUBMIT_DELAY_SECONDS": "0",
        "LOG_LEVEL": "WARNING",
    }
)

from fastapi.testclient import TestClient  # noqa: E402

from database import DocumentStore, MemoryStorage  # noqa: E402
from main import app, get_sessions, get_store  # noqa: E402
from session import SessionManager  # noqa: E402


@pytest.fixture()
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture()
def store(storage: MemoryStorage) -> DocumentStore:
    """A store seeded with the default document."""
    return DocumentStore(storage)


@pytest.fixture()
def sessions() -> SessionManager:
    return SessionManager()


@pytest.fixture()
def client(store: DocumentStore, sessions: SessionManager) -> Generator[TestClient, None, None]:
    """TestClient wired to the in-memory store and a fresh session."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_sessions] = lambda: sessions
    app.state.submitting.clear()
    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc
    app.dependency_overrides.clear()


@pytest.fixture()
def teacher(client: TestClient) -> TestClient:
    resp = client.post(
        "/auth/login",
        json={"role": "teacher", "name": "Dr. Rao", "email": "rao@college.edu", "password": "secret"},
    )
    assert resp.status_code == 200
    return client


@pytest.fixture()
def student(client: TestClient) -> TestClient:
    resp = client.post(
        "/auth/login",
        json={"role": "student", "name": "Vipul", "email": "vipul@college.edu",
              "password": "secret", "group": "Group A"},
    )
    assert resp.status_code == 200
    return client
