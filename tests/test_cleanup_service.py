"""
Unit tests for MetadataCleanupService.
"""

import pytest
from sqlalchemy import delete

from conftest import add_files
from metaharvest.core.database.models import StoredFile
from metaharvest.core.extraction.cleanup_service import MetadataCleanupService
from metaharvest.core.extraction.extraction_record_service import extraction_record_service
from metaharvest.core.extraction.extractors.registry import ExtractorRegistry
from metaharvest.core.extraction.status import ExtractionStatus


@pytest.fixture
def cleanup():
    return MetadataCleanupService(extractors=ExtractorRegistry(enabled=["filemeta", "htmlmeta"]))


async def _extracted(session, stored_file, extractor):
    await extraction_record_service.upsert_status(
        session, stored_file.id, "file", extractor.name, ExtractionStatus.COMPLETE,
        resource_hash=stored_file.content_hash,
    )
    await extractor.save_metadata(session, stored_file.content_hash, {"title": stored_file.filename})


class TestMetadataCleanup:

    @pytest.mark.asyncio
    async def test_removes_records_and_metadata_of_deleted_resources(self, session, cleanup):
        extractor = cleanup.extractors.get("filemeta")
        kept, removed = await add_files(session, 2)
        await _extracted(session, kept, extractor)
        await _extracted(session, removed, extractor)
        await session.execute(delete(StoredFile).where(StoredFile.id == removed.id))

        counts = await cleanup.cleanup(session)

        assert counts.to_dict() == {"records_deleted": 1, "metadata_deleted": 1}
        assert await extraction_record_service.get_record(session, removed.id, "file", "filemeta") is None
        assert await extractor.list_known_fingerprints(session) == {kept.content_hash}

    @pytest.mark.asyncio
    async def test_shared_content_keeps_metadata(self, session, cleanup):
        """Test that metadata survives while another resource has the same content."""
        extractor = cleanup.extractors.get("filemeta")
        kept, removed = await add_files(session, 2, content_hash="shared")
        await _extracted(session, kept, extractor)
        await _extracted(session, removed, extractor)
        await session.execute(delete(StoredFile).where(StoredFile.id == removed.id))

        counts = await cleanup.cleanup(session)

        assert counts.records_deleted == 1
        assert counts.metadata_deleted == 0
        assert await extractor.has_metadata(session, "shared")

    @pytest.mark.asyncio
    async def test_nothing_to_clean(self, session, cleanup):
        await add_files(session, 1)
        counts = await cleanup.cleanup(session)
        assert counts.records_deleted == 0
