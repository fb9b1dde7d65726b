"""
Pytest configuration and fixtures for Workshop Backend tests.
"""

import os
import shutil
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
_STORAGE_ROOT = tempfile.mkdtemp(prefix="workshop_test_")
os.environ["WORKSHOP_OBJECT_BACKEND"] = "local"
os.environ["WORKSHOP_RECORD_BACKEND"] = "sqlite"
os.environ["WORKSHOP_LOCAL_ROOT"] = os.path.join(_STORAGE_ROOT, "objects")
os.environ["WORKSHOP_SQLITE_PATH"] = os.path.join(_STORAGE_ROOT, "workshops.db")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

from workshop_backend.database import SQLiteRecordStore
from workshop_backend.main import app, get_workshop_service
from workshop_backend.models import ImageUpload, WorkshopFields
from workshop_backend.s3_service import LocalObjectStore
from workshop_backend.workshop_service import WorkshopService

# Smallest valid PNG: 1x1 transparent pixel
PNG_BYTES = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c63000100000500010d0a2db40000000049454e44ae426082"
)


@pytest.fixture(scope="session", autouse=True)
def storage_root():
    """Cleanup the storage directory used by the app-level settings."""
    yield Path(_STORAGE_ROOT)
    shutil.rmtree(_STORAGE_ROOT, ignore_errors=True)


@pytest.fixture
def record_store(tmp_path):
    return SQLiteRecordStore(tmp_path / "records.db")


@pytest.fixture
def object_store(tmp_path):
    return LocalObjectStore(tmp_path / "objects", public_base_url="https://cdn.example.test")


@pytest.fixture
def service(record_store, object_store):
    """A service on the SQLite and local filesystem backends, isolated per test."""
    return WorkshopService(record_store, object_store)


@pytest.fixture
def client(service):
    """Create a test client for the FastAPI app, wired to the per-test service."""
    app.dependency_overrides[get_workshop_service] = lambda: service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def png_image():
    return ImageUpload(data=PNG_BYTES, content_type="image/png", filename="cover.png")


@pytest.fixture
def workshop(service, png_image):
    """A freshly created workshop with no slides."""
    return service.create_workshop(
        WorkshopFields(name="Paper rockets", description="Build and launch a paper rocket"),
        png_image,
    )
