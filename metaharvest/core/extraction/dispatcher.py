"""
Deduplicating dispatcher.

Decides, for each scanned row of one extractor, whether an extraction job
is needed, and applies the record transitions that go with the decision:

    NONE                      -> ACCEPTED, enqueue
    ACCEPTED/PENDING (fresh)  -> counted pending
    ACCEPTED/PENDING (stale)  -> re-enqueue, status kept, modified_at refreshed
    NOT_FOUND                 -> ACCEPTED, enqueue
    NOT_SUPPORTED             -> counted unsupported
    COMPLETE                  -> counted completed
    ERROR                     -> counted errors

Before the table applies, rows are checked by fingerprint. A fingerprint
the extractor already holds metadata for makes the row completed, whatever
its own record says. Otherwise a fingerprint already decided in this pass
makes the row a duplicate.

Jobs are not submitted here: the decisions are returned so the caller can
submit them once the record writes are committed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Set

from sqlalchemy.ext.asyncio import AsyncSession

from metaharvest.config import settings
from metaharvest.core.database.models import ExtractionRecord
from .extraction_record_service import ExtractionRecordService, extraction_record_service
from .extractors.base import BaseMetadataExtractor
from .fingerprint_service import FingerprintService, fingerprint_service
from .resource_scanner import RowKey, ScannedRow
from .resource_types import ResourceTypeDescriptor
from .status import REASON_ACCEPTED, REASON_REQUEUED, ExtractionStatus
from .summary import StatusCounts

logger = logging.getLogger("metaharvest.dispatcher")


@dataclass
class DispatchResult:
    counts: StatusCounts = field(default_factory=StatusCounts)
    to_enqueue: List[RowKey] = field(default_factory=list)


class DeduplicatingDispatcher:

    def __init__(
        self,
        fingerprinter: FingerprintService = None,
        records: ExtractionRecordService = None,
        staleness_seconds: Optional[int] = None,
    ):
        self.fingerprinter = fingerprinter or fingerprint_service
        self.records = records or extraction_record_service
        self._staleness_seconds = staleness_seconds

    @property
    def staleness(self) -> timedelta:
        seconds = self._staleness_seconds
        if seconds is None:
            seconds = settings.extraction_staleness_seconds
        return timedelta(seconds=seconds)

    def _fingerprint(self, row: ScannedRow, descriptor: ResourceTypeDescriptor) -> Optional[str]:
        try:
            return self.fingerprinter.fingerprint(row.resource, descriptor.name)
        except Exception as e:
            logger.warning(
                f"Could not fingerprint {descriptor.name} {row.resource_id} "
                f"for {row.extractor}: {e}"
            )
            return None

    async def dispatch(
        self,
        session: AsyncSession,
        descriptor: ResourceTypeDescriptor,
        extractor: BaseMetadataExtractor,
        rows: Sequence[ScannedRow],
        now: Optional[datetime] = None,
    ) -> DispatchResult:
        """
        Decide and record the outcome of each scanned row.

        Args:
            session: Database session the record transitions are written in
            descriptor: Resource type of the rows
            extractor: Extractor the rows were scanned for
            rows: Scanned rows, in scan order
            now: Reference time for staleness (defaults to utcnow)

        Returns:
            DispatchResult with counts and the jobs to submit
        """
        now = now or datetime.utcnow()
        result = DispatchResult()

        fingerprints = [self._fingerprint(row, descriptor) for row in rows]
        known = await extractor.filter_known_fingerprints(session, [fp for fp in fingerprints if fp])
        processed: Set[str] = set()

        for row, fingerprint in zip(rows, fingerprints):
            if fingerprint is None:
                result.counts.unknown += 1
                continue

            # Known content counts as completed even when repeated in the batch
            if fingerprint in known:
                result.counts.completed += 1
                continue

            if fingerprint in processed:
                result.counts.duplicates += 1
                continue
            processed.add(fingerprint)

            if not row.has_record:
                await self.records.get_or_create_record(
                    session,
                    row.resource_id,
                    descriptor.name,
                    extractor.name,
                    ExtractionStatus.ACCEPTED,
                    REASON_ACCEPTED,
                    resource_hash=fingerprint,
                )
                result.to_enqueue.append(row.key)
                result.counts.queued += 1
                continue

            await self._apply_status(session, descriptor, row, fingerprint, now, result)

        logger.debug(
            f"Dispatched {len(rows)} {descriptor.name} rows for {extractor.name}: "
            f"{result.counts.to_dict()}"
        )
        return result

    async def _apply_status(
        self,
        session: AsyncSession,
        descriptor: ResourceTypeDescriptor,
        row: ScannedRow,
        fingerprint: str,
        now: datetime,
        result: DispatchResult,
    ) -> None:
        status = ExtractionStatus.parse(row.status)
        counts = result.counts

        if status is None:
            logger.warning(
                f"Unknown extraction status {row.status} for {descriptor.name} "
                f"{row.resource_id} ({row.extractor})"
            )
            counts.unknown += 1
        elif status.is_in_progress:
            age = now - row.modified_at if row.modified_at else self.staleness
            if age < self.staleness:
                counts.pending += 1
                return
            record = await session.get(ExtractionRecord, row.record_id)
            await self.records.set_status(
                session, record, status, REASON_REQUEUED.format(age=age), resource_hash=fingerprint
            )
            logger.info(
                f"Re-queueing stale {status.name} extraction of {descriptor.name} "
                f"{row.resource_id} for {row.extractor} (age {age})"
            )
            result.to_enqueue.append(row.key)
            counts.queued += 1
        elif status == ExtractionStatus.NOT_FOUND:
            record = await session.get(ExtractionRecord, row.record_id)
            await self.records.set_status(
                session, record, ExtractionStatus.ACCEPTED, REASON_ACCEPTED, resource_hash=fingerprint
            )
            result.to_enqueue.append(row.key)
            counts.queued += 1
        elif status == ExtractionStatus.NOT_SUPPORTED:
            counts.unsupported += 1
        elif status == ExtractionStatus.COMPLETE:
            counts.completed += 1
        elif status == ExtractionStatus.ERROR:
            counts.errors += 1
