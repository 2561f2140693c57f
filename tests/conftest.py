"""Pytest configuration and shared fixtures."""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("NOTIFICATION_WEBHOOK_URL", "")
os.environ.setdefault("SUPABASE_URL", "http://storage.test")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")

from typing import Dict, List
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.core.exceptions import StorageError
from app.database import models  # noqa: F401
from app.main import app
from app.models.classification import PageImage
from app.services.cache.ttl_store import InMemoryTTLStore


class FakeStorage:
    """In-memory stand-in for StorageService with the same async surface."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self.fail_deletes = False

    async def upload_bytes(self, path: str, content: bytes, content_type: str = "application/octet-stream"):
        self.objects[path] = content
        return {"Key": path}

    async def download_bytes(self, path: str) -> bytes:
        if path not in self.objects:
            raise StorageError(f"Download of {path} failed with 404")
        return self.objects[path]

    async def delete_objects(self, paths: List[str]) -> None:
        if self.fail_deletes:
            raise StorageError("Delete failed: storage unavailable")
        for path in paths:
            self.objects.pop(path, None)
            self.deleted.append(path)

    async def create_download_url(self, path: str, expires_in: int = 3600) -> str:
        return f"http://storage.test/signed/{path}?expires={expires_in}"


@pytest.fixture
def test_client() -> TestClient:
    """Create FastAPI test client.

    Returns:
        TestClient: FastAPI test client instance
    """
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest.fixture
async def session_factory():
    """Session factory bound to a fresh in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db_session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
def memory_store() -> InMemoryTTLStore:
    return InMemoryTTLStore()


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def sample_pdf_content() -> bytes:
    """Sample PDF content for testing.

    Returns:
        bytes: Sample PDF content
    """
    # Minimal valid PDF header
    return b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n1 0 obj\n<<\n/Type /Catalog\n/Pages 2 0 R\n>>\nendobj\n"


@pytest.fixture
def make_pages():
    """Build ``count`` placeholder page images numbered from 1."""
    def _make(count: int, resolution: int = 100) -> List[PageImage]:
        return [
            PageImage(page_number=n, data=f"png-{n}".encode(), resolution=resolution)
            for n in range(1, count + 1)
        ]
    return _make


@pytest.fixture
def mock_httpx_client() -> Mock:
    """Create mock httpx client.

    Returns:
        Mock: Mocked httpx client
    """
    client = Mock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    return client
