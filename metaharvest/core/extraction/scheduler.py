"""
Incremental extraction scheduler.

One pass over one resource type:

1. Resolve the extractors enabled for the type.
2. Compute the admission budget once, up front.
3. Per extractor, in its own session: read its cursor, scan up to its
   budget and dispatch the scanned rows. The session commits before any
   job is submitted.
4. Submit the accepted jobs to the execution layer.
5. Advance the cursor, in a second session, only past submitted rows.
6. Return and log a PassSummary.

A failing extractor never stops the others. Its session is rolled back,
so its records and cursor are left untouched, and the failure is reported
in the summary. When submitting fails part way, the cursor stops before the
first unsubmitted row; those rows stay ACCEPTED and are submitted again
once stale.

Passes over the same resource type must not overlap; the Celery task that
runs passes holds a Redis lock per resource type for the duration.

Usage:
    from metaharvest.core.extraction.scheduler import ExtractionScheduler

    summary = await ExtractionScheduler().run_pass("file")
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from metaharvest.config import settings
from metaharvest.core.shared.database_service import DatabaseService, database_service
from .admission_controller import AdmissionBudget, AdmissionController
from .cursor_service import CursorService, cursor_service
from .dispatcher import DeduplicatingDispatcher
from .exceptions import BackendScanFailure, MetadataExtractionError, StorageUnavailable
from .execution import CeleryExecutionLayer, ExecutionLayer
from .extractors.base import BaseMetadataExtractor
from .extractors.registry import ExtractorRegistry, extractor_registry
from .filters import get_filter_conditions
from .resource_scanner import ResourceScanner, next_cursor, resource_scanner
from .resource_types import ResourceTypeDescriptor, ResourceTypeRegistry, resource_type_registry
from .summary import PassSummary, StatusCounts

logger = logging.getLogger("metaharvest.scheduler")


class ExtractionScheduler:
    """Runs extraction passes; collaborators default to the module singletons."""

    def __init__(
        self,
        execution_layer: Optional[ExecutionLayer] = None,
        extractors: Optional[ExtractorRegistry] = None,
        resource_types: Optional[ResourceTypeRegistry] = None,
        database: Optional[DatabaseService] = None,
        dispatcher: Optional[DeduplicatingDispatcher] = None,
        scanner: Optional[ResourceScanner] = None,
        cursors: Optional[CursorService] = None,
    ):
        self.execution_layer = execution_layer or CeleryExecutionLayer()
        self.extractors = extractors or extractor_registry
        self.resource_types = resource_types or resource_type_registry
        self.database = database or database_service
        self.dispatcher = dispatcher or DeduplicatingDispatcher()
        self.scanner = scanner or resource_scanner
        self.cursors = cursors or cursor_service
        self.admission = AdmissionController(self.execution_layer)

    async def run_pass(self, resource_type: str) -> PassSummary:
        """
        Run one scheduling pass over a resource type.

        Raises:
            UnsupportedResourceType: If the resource type is not registered
            InvalidExtractionFilters: If the extraction_filters setting is invalid
            StorageUnavailable: If the admission budget could not be read
        """
        descriptor = self.resource_types.get(resource_type)
        summary = PassSummary(resource_type=resource_type)

        extractors = self.extractors.get_for_resource_type(resource_type)
        if not extractors:
            logger.info(f"No enabled extractors support {resource_type} resources")
            return summary

        conditions = get_filter_conditions(descriptor)

        try:
            async with self.database.get_session() as session:
                summary.budget = await self.admission.get_budget(session, len(extractors))
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Could not compute admission budget: {e}") from e

        parallel = settings.parallel_backend_scans
        if parallel and self.database.single_connection:
            # A shared connection would mix the backends' transactions
            logger.debug("Single-connection database, scanning backends sequentially")
            parallel = False

        if parallel:
            outcomes = await asyncio.gather(
                *[self._run_backend(descriptor, e, summary.budget, conditions) for e in extractors]
            )
        else:
            outcomes = [
                await self._run_backend(descriptor, e, summary.budget, conditions) for e in extractors
            ]

        for extractor, (counts, cursor, error) in zip(extractors, outcomes):
            if error is not None:
                summary.record_failure(extractor.name, error)
            else:
                summary.record_backend(extractor.name, counts)
            if cursor is not None:
                summary.cursors[extractor.name] = cursor

        summary.log(logger)
        return summary

    async def _run_backend(
        self,
        descriptor: ResourceTypeDescriptor,
        extractor: BaseMetadataExtractor,
        budget: AdmissionBudget,
        conditions: List[Any],
    ):
        """Returns (counts, cursor, error); error is None on success."""
        try:
            counts, cursor = await self._process_backend(descriptor, extractor, budget, conditions)
            return counts, cursor, None
        except MetadataExtractionError as e:
            logger.error(
                f"{descriptor.name} pass failed for {extractor.name}: {e}", exc_info=True
            )
            return None, None, e

    async def _process_backend(
        self,
        descriptor: ResourceTypeDescriptor,
        extractor: BaseMetadataExtractor,
        budget: AdmissionBudget,
        conditions: List[Any],
    ):
        limit = budget.per_backend_limit
        cyclical = settings.is_cyclical(extractor.name, descriptor.cyclical)

        try:
            async with self.database.get_session() as session:
                cursor = await self.cursors.get_cursor(session, descriptor.name, extractor.name)
                if limit <= 0:
                    # No capacity: leave the cursor where it is
                    return StatusCounts(), cursor

                rows = await self.scanner.scan(
                    session, descriptor, extractor.name, cursor, limit, conditions
                )
                result = await self.dispatcher.dispatch(session, descriptor, extractor, rows)
        except SQLAlchemyError as e:
            raise StorageUnavailable(
                f"Record store unavailable while processing {descriptor.name} for {extractor.name}: {e}"
            ) from e
        except MetadataExtractionError:
            raise
        except Exception as e:
            raise BackendScanFailure(extractor.name, e) from e

        position = next_cursor(cursor, rows, limit, cyclical)
        failure = None
        for key in result.to_enqueue:
            try:
                self.execution_layer.enqueue(key.resource_id, descriptor.name, key.extractor)
            except Exception as e:
                failure = BackendScanFailure(extractor.name, e)
                # Rows from the first unsubmitted one onwards are scanned again next pass
                position = max(cursor, key.resource_id - 1)
                break

        if position != cursor:
            await self._store_cursor(descriptor, extractor, position)

        if failure is not None:
            raise failure from failure.cause
        return result.counts, position

    async def _store_cursor(
        self,
        descriptor: ResourceTypeDescriptor,
        extractor: BaseMetadataExtractor,
        position: int,
    ) -> None:
        try:
            async with self.database.get_session() as session:
                await self.cursors.set_cursor(session, descriptor.name, extractor.name, position)
        except SQLAlchemyError as e:
            raise StorageUnavailable(
                f"Could not store {descriptor.name} cursor for {extractor.name}: {e}"
            ) from e

    async def get_cursors(self, resource_type: str) -> Dict[str, int]:
        """Current cursor per enabled extractor of a resource type, for observability."""
        self.resource_types.get(resource_type)
        async with self.database.get_session() as session:
            stored = await self.cursors.get_cursors(session, resource_type)
        return {
            extractor.name: stored.get(extractor.name, 0)
            for extractor in self.extractors.get_for_resource_type(resource_type)
        }
