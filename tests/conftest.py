import os
import uuid
from typing import Any, Dict, List, Optional

# Keep external integrations out of the test run before importing metaharvest
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

import pytest
import pytest_asyncio

from metaharvest.config import settings
from metaharvest.core.database.models import ExternalLink, StoredFile
from metaharvest.core.extraction.execution import ExecutionLayer
from metaharvest.core.extraction.extractors.base import BaseMetadataExtractor
from metaharvest.core.extraction.extractors.registry import ExtractorRegistry
from metaharvest.core.extraction.resource_types import FILE
from metaharvest.core.shared.database_service import DatabaseService


class FakeExecutionLayer(ExecutionLayer):
    """Records submitted jobs instead of sending them to Celery."""

    def __init__(self, in_flight: Optional[int] = None):
        self.enqueued = []
        self.in_flight = in_flight

    def enqueue(self, resource_id, resource_type, extractor):
        self.enqueued.append((resource_id, resource_type, extractor))

    async def in_flight_count(self, session, modified_after):
        if self.in_flight is not None:
            return self.in_flight
        return await super().in_flight_count(session, modified_after)


class StubExtractor(BaseMetadataExtractor):
    """File extractor returning a fixed result."""

    extractor_name = "stub"
    result: Optional[Dict[str, Any]] = {"title": "stub"}

    @property
    def name(self):
        return self.extractor_name

    @property
    def display_name(self):
        return "Stub"

    @property
    def description(self):
        return "Test extractor"

    @property
    def supported_resource_types(self):
        return [FILE]

    async def extract(self, resource, resource_type):
        return dict(self.result) if self.result else None


class SecondStubExtractor(StubExtractor):
    extractor_name = "stub2"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Known settings for every test."""
    monkeypatch.setattr(settings, "total_extraction_processes", 10000)
    monkeypatch.setattr(settings, "max_extraction_processes", 1000)
    monkeypatch.setattr(settings, "extraction_staleness_seconds", 86400)
    monkeypatch.setattr(settings, "enabled_extractors", ["filemeta", "htmlmeta"])
    monkeypatch.setattr(settings, "cyclical_processing_disabled", False)
    monkeypatch.setattr(settings, "extractor_cyclical", {})
    monkeypatch.setattr(settings, "extraction_filters", "[]")
    monkeypatch.setattr(settings, "cursor_seed_from_completed", False)
    monkeypatch.setattr(settings, "parallel_backend_scans", False)
    monkeypatch.setattr(settings, "fingerprint_hash_algorithm", "sha256")
    return settings


@pytest_asyncio.fixture
async def database():
    """Fresh in-memory database with all tables created."""
    db = DatabaseService("sqlite+aiosqlite://")
    await db.init_db()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def session(database):
    async with database.get_session() as session:
        yield session


@pytest.fixture
def execution_layer():
    return FakeExecutionLayer()


@pytest.fixture
def stub_registry():
    """Registry with only the stub extractor enabled."""
    registry = ExtractorRegistry(enabled=["stub"])
    registry.register("stub", StubExtractor)
    return registry


async def add_files(session, count: int, content_hash: Optional[str] = None, **kwargs) -> List[StoredFile]:
    """Add stored files; each gets a unique content hash unless one is given."""
    files = [
        StoredFile(
            filename=kwargs.get("filename", f"document-{uuid.uuid4().hex[:8]}.pdf"),
            filepath="/",
            content_hash=content_hash or uuid.uuid4().hex,
            mimetype=kwargs.get("mimetype", "application/pdf"),
            filesize=kwargs.get("filesize", 1024),
            storage_path=kwargs.get("storage_path"),
        )
        for _ in range(count)
    ]
    session.add_all(files)
    await session.flush()
    return files


async def add_links(session, urls: List[str]) -> List[ExternalLink]:
    links = [ExternalLink(name=url, external_url=url) for url in urls]
    session.add_all(links)
    await session.flush()
    return links
