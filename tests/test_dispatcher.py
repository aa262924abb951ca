"""
Unit tests for DeduplicatingDispatcher.

Tests the per-row state machine, fingerprint deduplication within a pass
and the known-content shortcut.
"""

from datetime import datetime, timedelta

import pytest

from conftest import StubExtractor, add_files
from metaharvest.core.database.models import ExtractionRecord
from metaharvest.core.extraction.dispatcher import DeduplicatingDispatcher
from metaharvest.core.extraction.extraction_record_service import extraction_record_service
from metaharvest.core.extraction.resource_scanner import resource_scanner
from metaharvest.core.extraction.resource_types import resource_type_registry
from metaharvest.core.extraction.status import ExtractionStatus

FILES = resource_type_registry.get("file")


@pytest.fixture
def extractor():
    return StubExtractor()


@pytest.fixture
def dispatcher():
    return DeduplicatingDispatcher(staleness_seconds=86400)


async def _set_status(session, resource_id, status, age=timedelta(0), resource_hash=None):
    record = await extraction_record_service.upsert_status(
        session, resource_id, "file", "stub", status, resource_hash=resource_hash
    )
    record.modified_at = datetime.utcnow() - age
    await session.flush()
    return record


async def _dispatch(session, dispatcher, extractor):
    rows = await resource_scanner.scan(session, FILES, extractor.name, 0, 100)
    return await dispatcher.dispatch(session, FILES, extractor, rows)


class TestNewResources:
    """Tests for resources without an extraction record."""

    @pytest.mark.asyncio
    async def test_new_resource_is_accepted(self, session, dispatcher, extractor):
        files = await add_files(session, 1, content_hash="h1")

        result = await _dispatch(session, dispatcher, extractor)

        assert result.counts.queued == 1
        assert result.to_enqueue == [(files[0].id, "stub")]
        record = await extraction_record_service.get_record(session, files[0].id, "file", "stub")
        assert record.status == ExtractionStatus.ACCEPTED
        assert record.resource_hash == "h1"

    @pytest.mark.asyncio
    async def test_identical_content_dispatched_once(self, session, dispatcher, extractor):
        """Test that two resources with the same fingerprint yield one job."""
        files = await add_files(session, 2, content_hash="same")

        result = await _dispatch(session, dispatcher, extractor)

        assert result.counts.queued == 1
        assert result.counts.duplicates == 1
        assert result.to_enqueue == [(files[0].id, "stub")]
        assert await extraction_record_service.get_record(session, files[1].id, "file", "stub") is None

    @pytest.mark.asyncio
    async def test_known_content_is_completed(self, session, dispatcher, extractor):
        """Test that every row with stored-metadata content counts as completed."""
        files = await add_files(session, 2, content_hash="known")
        await _set_status(session, files[0].id, ExtractionStatus.ERROR)
        await extractor.save_metadata(session, "known", {"title": "x"})

        result = await _dispatch(session, dispatcher, extractor)

        assert result.counts.completed == 2
        assert result.counts.duplicates == 0
        assert result.counts.errors == 0
        assert result.to_enqueue == []


class TestStatusTransitions:
    """Tests for rows that already have a record."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,counter",
        [
            (ExtractionStatus.COMPLETE, "completed"),
            (ExtractionStatus.NOT_SUPPORTED, "unsupported"),
            (ExtractionStatus.ERROR, "errors"),
            (ExtractionStatus.PENDING, "pending"),
            (ExtractionStatus.ACCEPTED, "pending"),
        ],
    )
    async def test_no_action_statuses(self, session, dispatcher, extractor, status, counter):
        files = await add_files(session, 1)
        await _set_status(session, files[0].id, status, age=timedelta(hours=1))

        result = await _dispatch(session, dispatcher, extractor)

        assert getattr(result.counts, counter) == 1
        assert result.counts.total == 1
        assert result.to_enqueue == []

    @pytest.mark.asyncio
    async def test_not_found_is_requeued(self, session, dispatcher, extractor):
        files = await add_files(session, 1)
        record = await _set_status(session, files[0].id, ExtractionStatus.NOT_FOUND)

        result = await _dispatch(session, dispatcher, extractor)

        assert result.counts.queued == 1
        assert result.to_enqueue == [(files[0].id, "stub")]
        assert record.status == ExtractionStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_stale_pending_is_requeued_once(self, session, dispatcher, extractor):
        """Test that a 25 hour old PENDING record is re-queued and refreshed."""
        files = await add_files(session, 1)
        record = await _set_status(session, files[0].id, ExtractionStatus.PENDING, age=timedelta(hours=25))

        result = await _dispatch(session, dispatcher, extractor)

        assert result.counts.queued == 1
        assert result.counts.pending == 0
        assert result.to_enqueue == [(files[0].id, "stub")]
        assert record.status == ExtractionStatus.PENDING
        assert "re-queued" in record.reason
        assert datetime.utcnow() - record.modified_at < timedelta(minutes=1)

        # Refreshed, so the next pass sees it as in progress
        again = await _dispatch(session, dispatcher, extractor)
        assert again.counts.pending == 1
        assert again.to_enqueue == []

    @pytest.mark.asyncio
    async def test_unknown_status(self, session, dispatcher, extractor):
        files = await add_files(session, 1)
        session.add(ExtractionRecord(
            resource_id=files[0].id, resource_type="file", extractor="stub", status=999,
        ))
        await session.flush()

        result = await _dispatch(session, dispatcher, extractor)

        assert result.counts.unknown == 1
        assert result.to_enqueue == []

    @pytest.mark.asyncio
    async def test_unfingerprintable_row_is_unknown(self, session, dispatcher, extractor, tmp_path):
        await add_files(session, 1, storage_path=str(tmp_path / "missing.bin"))
        files = await add_files(session, 1)
        # Bypass the generated hash so the missing bytes must be read
        rows = await resource_scanner.scan(session, FILES, "stub", 0, 100)
        rows[0].resource.content_hash = None

        result = await dispatcher.dispatch(session, FILES, extractor, rows)

        assert result.counts.unknown == 1
        assert result.counts.queued == 1
        assert result.to_enqueue == [(files[0].id, "stub")]
