"""
Tests for ExtractionScheduler passes.

Each test runs passes against an in-memory database with a fake execution
layer that records submitted jobs.
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, PropertyMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from conftest import FakeExecutionLayer, SecondStubExtractor, StubExtractor, add_files
from metaharvest.core.extraction.exceptions import UnsupportedResourceType
from metaharvest.core.extraction.extraction_record_service import extraction_record_service
from metaharvest.core.extraction.extractors.registry import ExtractorRegistry
from metaharvest.core.extraction.scheduler import ExtractionScheduler
from metaharvest.core.extraction.status import ExtractionStatus
from metaharvest.core.extraction.summary import StatusCounts


class BrokenExtractor(StubExtractor):
    extractor_name = "broken"

    async def filter_known_fingerprints(self, session, fingerprints):
        raise RuntimeError("metadata index offline")


class UnreachableStoreExtractor(StubExtractor):
    extractor_name = "unreachable"

    async def filter_known_fingerprints(self, session, fingerprints):
        raise OperationalError("SELECT", {}, Exception("database is locked"))


class FlakyExecutionLayer(FakeExecutionLayer):
    """Refuses submissions, from the fail_from-th attempt on, while the broker is down."""

    def __init__(self, fail_from=1):
        super().__init__()
        self.broker_down = True
        self.fail_from = fail_from
        self.attempts = 0

    def enqueue(self, resource_id, resource_type, extractor):
        self.attempts += 1
        if self.broker_down and self.attempts >= self.fail_from:
            raise ConnectionError("broker down")
        super().enqueue(resource_id, resource_type, extractor)


def _registry(*extractor_classes):
    registry = ExtractorRegistry(enabled=[cls.extractor_name for cls in extractor_classes])
    for cls in extractor_classes:
        registry.register(cls.extractor_name, cls)
    return registry


@pytest.fixture
def make_scheduler(database, execution_layer, stub_registry):
    def _make(registry=None, layer=None):
        return ExtractionScheduler(
            execution_layer=layer or execution_layer,
            extractors=registry or stub_registry,
            database=database,
        )
    return _make


async def _seed_files(database, count, **kwargs):
    async with database.get_session() as session:
        return await add_files(session, count, **kwargs)


class TestResumableScanning:
    """Tests for cursor-driven scanning across passes."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cyclical,final_cursor", [(True, 0), (False, 25)])
    async def test_corpus_scanned_in_batches(
        self, database, make_scheduler, execution_layer, test_settings, cyclical, final_cursor
    ):
        """Test 25 resources with a batch size of 10 over three passes."""
        test_settings.max_extraction_processes = 10
        test_settings.extractor_cyclical = {"stub": cyclical}
        await _seed_files(database, 25)
        scheduler = make_scheduler()

        first = await scheduler.run_pass("file")
        assert first.queued == 10
        assert first.cursors == {"stub": 10}
        assert [job[0] for job in execution_layer.enqueued] == list(range(1, 11))

        second = await scheduler.run_pass("file")
        assert second.queued == 10
        assert second.cursors == {"stub": 20}

        third = await scheduler.run_pass("file")
        assert third.queued == 5
        assert third.cursors == {"stub": final_cursor}
        assert await scheduler.get_cursors("file") == {"stub": final_cursor}

        assert len(execution_layer.enqueued) == 25
        assert {job[1:] for job in execution_layer.enqueued} == {("file", "stub")}

    @pytest.mark.asyncio
    async def test_global_kill_switch_disables_wraparound(self, database, make_scheduler, test_settings):
        test_settings.cyclical_processing_disabled = True
        test_settings.extractor_cyclical = {"stub": True}
        await _seed_files(database, 3)

        summary = await make_scheduler().run_pass("file")

        assert summary.cursors == {"stub": 3}

    @pytest.mark.asyncio
    async def test_cursor_is_monotonic_without_wraparound(self, database, make_scheduler, test_settings):
        test_settings.max_extraction_processes = 4
        test_settings.cyclical_processing_disabled = True
        await _seed_files(database, 10)
        scheduler = make_scheduler()

        positions = []
        for _ in range(4):
            summary = await scheduler.run_pass("file")
            positions.append(summary.cursors["stub"])

        assert positions == sorted(positions)
        assert positions[-1] == 10


class TestDeduplication:
    """Tests for deduplication across a pass."""

    @pytest.mark.asyncio
    async def test_identical_fingerprints_enqueue_once(self, database, make_scheduler, execution_layer):
        await _seed_files(database, 2, content_hash="H")

        summary = await make_scheduler().run_pass("file")

        assert len(execution_layer.enqueued) == 1
        assert summary.queued == 1
        assert summary.duplicates == 1

    @pytest.mark.asyncio
    async def test_known_content_never_dispatched(self, database, make_scheduler, execution_layer):
        files = await _seed_files(database, 1, content_hash="known")
        async with database.get_session() as session:
            await StubExtractor().save_metadata(session, "known", {"title": "done"})
            await extraction_record_service.upsert_status(
                session, files[0].id, "file", "stub", ExtractionStatus.NOT_FOUND
            )

        summary = await make_scheduler().run_pass("file")

        assert execution_layer.enqueued == []
        assert summary.completed == 1


class TestStaleness:

    @pytest.mark.asyncio
    async def test_stale_pending_is_requeued(self, database, make_scheduler, execution_layer):
        """Test that a PENDING record 25 hours old is queued, not pending."""
        files = await _seed_files(database, 1)
        async with database.get_session() as session:
            record = await extraction_record_service.upsert_status(
                session, files[0].id, "file", "stub", ExtractionStatus.PENDING
            )
            record.modified_at = datetime.utcnow() - timedelta(hours=25)

        summary = await make_scheduler().run_pass("file")

        assert summary.queued == 1
        assert summary.pending == 0
        assert execution_layer.enqueued == [(files[0].id, "file", "stub")]


class TestAdmission:
    """Tests for admission control within a pass."""

    @pytest.mark.asyncio
    async def test_full_queue_dispatches_nothing(self, database, make_scheduler, test_settings):
        test_settings.total_extraction_processes = 1000
        await _seed_files(database, 5)
        layer = FakeExecutionLayer(in_flight=1000)

        summary = await make_scheduler(layer=layer).run_pass("file")

        assert layer.enqueued == []
        assert summary.budget.per_backend_limit == 0
        assert summary.total == 0
        assert summary.failures == {}
        assert summary.cursors == {"stub": 0}

    @pytest.mark.asyncio
    async def test_enqueues_never_exceed_remaining_capacity(self, database, make_scheduler, test_settings):
        test_settings.total_extraction_processes = 15
        await _seed_files(database, 20)
        layer = FakeExecutionLayer(in_flight=0)
        registry = _registry(StubExtractor, SecondStubExtractor)

        summary = await make_scheduler(registry=registry, layer=layer).run_pass("file")

        assert summary.budget.per_backend_limit == 7
        assert len(layer.enqueued) == 14
        assert summary.backends["stub"].queued == 7
        assert summary.backends["stub2"].queued == 7


class TestFailureIsolation:
    """Tests for per-extractor failure isolation."""

    @pytest.mark.asyncio
    async def test_failing_extractor_does_not_stop_others(
        self, database, make_scheduler, execution_layer, test_settings
    ):
        test_settings.cyclical_processing_disabled = True
        await _seed_files(database, 3)
        registry = _registry(BrokenExtractor, StubExtractor)

        summary = await make_scheduler(registry=registry).run_pass("file")

        assert "metadata index offline" in summary.failures["broken"]
        assert summary.backends["stub"].queued == 3
        assert "broken" not in summary.cursors
        assert {job[2] for job in execution_layer.enqueued} == {"stub"}

        async with database.get_session() as session:
            # Rolled back: no records, cursor never stored
            assert await extraction_record_service.list_records(session, "file", "broken") == []
        assert await make_scheduler(registry=registry).get_cursors("file") == {"broken": 0, "stub": 3}

    @pytest.mark.asyncio
    async def test_storage_failure_reported(self, database, make_scheduler):
        await _seed_files(database, 2)
        registry = _registry(UnreachableStoreExtractor, StubExtractor)

        summary = await make_scheduler(registry=registry).run_pass("file")

        assert "Record store unavailable" in summary.failures["unreachable"]
        assert summary.queued == 2

    @pytest.mark.asyncio
    async def test_broker_outage_does_not_skip_resources(self, database, make_scheduler, test_settings):
        """Test that rows whose jobs could not be submitted are picked up again."""
        test_settings.extractor_cyclical = {"stub": False}
        test_settings.extraction_staleness_seconds = 0
        files = await _seed_files(database, 5)
        layer = FlakyExecutionLayer()
        scheduler = make_scheduler(layer=layer)

        first = await scheduler.run_pass("file")

        assert "broker down" in first.failures["stub"]
        assert layer.enqueued == []
        assert await scheduler.get_cursors("file") == {"stub": 0}

        layer.broker_down = False
        second = await scheduler.run_pass("file")

        assert second.failures == {}
        assert second.queued == 5
        assert sorted(job[0] for job in layer.enqueued) == [f.id for f in files]
        assert second.cursors == {"stub": files[-1].id}

    @pytest.mark.asyncio
    async def test_cursor_stops_before_first_unsubmitted_row(self, database, make_scheduler, test_settings):
        test_settings.cyclical_processing_disabled = True
        files = await _seed_files(database, 5)
        layer = FlakyExecutionLayer(fail_from=3)
        scheduler = make_scheduler(layer=layer)

        summary = await scheduler.run_pass("file")

        assert "stub" in summary.failures
        assert [job[0] for job in layer.enqueued] == [files[0].id, files[1].id]
        assert await scheduler.get_cursors("file") == {"stub": files[1].id}


class TestPassEdges:

    @pytest.mark.asyncio
    async def test_unregistered_resource_type(self, make_scheduler):
        with pytest.raises(UnsupportedResourceType):
            await make_scheduler().run_pass("course")

    @pytest.mark.asyncio
    async def test_no_supporting_extractors(self, database, make_scheduler, execution_layer):
        summary = await make_scheduler().run_pass("url")

        assert summary.total == 0
        assert summary.budget is None
        assert execution_layer.enqueued == []

    @pytest.mark.asyncio
    async def test_parallel_backends_share_one_budget(self, database, make_scheduler, test_settings):
        test_settings.parallel_backend_scans = True
        test_settings.total_extraction_processes = 10
        registry = _registry(StubExtractor, SecondStubExtractor)
        scheduler = make_scheduler(registry=registry)

        process = AsyncMock(side_effect=[(StatusCounts(queued=5), 5), (StatusCounts(queued=4), 4)])
        with patch.object(scheduler, "_process_backend", process):
            summary = await scheduler.run_pass("file")

        assert process.await_count == 2
        budgets = {call.args[2] for call in process.await_args_list}
        assert len(budgets) == 1
        assert budgets.pop().per_backend_limit == 5
        assert summary.queued == 9
        assert summary.to_dict()["backends"]["stub2"]["queued"] == 4
        assert summary.cursors == {"stub": 5, "stub2": 4}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("single_connection,most_active", [(False, 2), (True, 1)])
    async def test_parallel_scans_need_separate_connections(
        self, database, make_scheduler, test_settings, single_connection, most_active
    ):
        test_settings.parallel_backend_scans = True
        scheduler = make_scheduler(registry=_registry(StubExtractor, SecondStubExtractor))
        active = 0
        observed = []

        async def process(descriptor, extractor, budget, conditions):
            nonlocal active
            active += 1
            observed.append(active)
            await asyncio.sleep(0)
            active -= 1
            return StatusCounts(queued=1), 1

        with patch.object(type(database), "single_connection", new_callable=PropertyMock,
                          return_value=single_connection), \
                patch.object(scheduler, "_process_backend", process):
            summary = await scheduler.run_pass("file")

        assert max(observed) == most_active
        assert summary.queued == 2
