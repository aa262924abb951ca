"""
Extraction record store.

CRUD for extraction records keyed by (resource id, resource type,
extractor). Every status transition goes through ``set_status`` so
modified_at always reflects the last transition; the scheduler's staleness
check depends on it.

Usage:
    from metaharvest.core.extraction.extraction_record_service import extraction_record_service

    record = await extraction_record_service.get_record(session, 42, "file", "filemeta")
    await extraction_record_service.set_status(
        session, record, ExtractionStatus.COMPLETE, REASON_COMPLETE
    )
"""

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from metaharvest.core.database.models import ExtractionRecord
from .status import IN_PROGRESS_STATUSES, ExtractionStatus

logger = logging.getLogger("metaharvest.extraction_records")


class ExtractionRecordService:
    """Persistence of extraction records."""

    async def get_record(
        self,
        session: AsyncSession,
        resource_id: int,
        resource_type: str,
        extractor: str,
    ) -> Optional[ExtractionRecord]:
        result = await session.execute(
            select(ExtractionRecord).where(
                ExtractionRecord.resource_id == resource_id,
                ExtractionRecord.resource_type == resource_type,
                ExtractionRecord.extractor == extractor,
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create_record(
        self,
        session: AsyncSession,
        resource_id: int,
        resource_type: str,
        extractor: str,
        status: ExtractionStatus,
        reason: Optional[str] = None,
        resource_hash: Optional[str] = None,
    ) -> ExtractionRecord:
        """
        Get the record for a triple, creating it with the given status if absent.

        An existing record is returned unchanged.
        """
        record = await self.get_record(session, resource_id, resource_type, extractor)
        if record is not None:
            return record

        now = datetime.utcnow()
        record = ExtractionRecord(
            resource_id=resource_id,
            resource_type=resource_type,
            extractor=extractor,
            resource_hash=resource_hash,
            status=int(status),
            reason=reason,
            created_at=now,
            modified_at=now,
        )
        session.add(record)
        await session.flush()
        logger.debug(f"Created extraction record {record}")
        return record

    async def set_status(
        self,
        session: AsyncSession,
        record: ExtractionRecord,
        status: ExtractionStatus,
        reason: Optional[str] = None,
        resource_hash: Optional[str] = None,
    ) -> ExtractionRecord:
        """Transition a record to a new status and stamp modified_at."""
        record.status = int(status)
        record.reason = reason
        if resource_hash is not None:
            record.resource_hash = resource_hash
        record.modified_at = datetime.utcnow()
        await session.flush()
        return record

    async def upsert_status(
        self,
        session: AsyncSession,
        resource_id: int,
        resource_type: str,
        extractor: str,
        status: ExtractionStatus,
        reason: Optional[str] = None,
        resource_hash: Optional[str] = None,
    ) -> ExtractionRecord:
        """Set the status of a triple, creating its record when needed."""
        record = await self.get_record(session, resource_id, resource_type, extractor)
        if record is None:
            return await self.get_or_create_record(
                session, resource_id, resource_type, extractor, status, reason, resource_hash
            )
        return await self.set_status(session, record, status, reason, resource_hash)

    async def get_highest_completed_resource_id(
        self,
        session: AsyncSession,
        resource_type: str,
        extractor: str,
    ) -> int:
        """Highest resource id with a COMPLETE extraction, or 0 when none exists."""
        result = await session.execute(
            select(func.max(ExtractionRecord.resource_id)).where(
                ExtractionRecord.resource_type == resource_type,
                ExtractionRecord.extractor == extractor,
                ExtractionRecord.status == int(ExtractionStatus.COMPLETE),
            )
        )
        return result.scalar() or 0

    async def count_in_flight(self, session: AsyncSession, modified_after: datetime) -> int:
        """
        Count accepted or pending extractions modified after a cutoff.

        Older in-progress records are presumed lost and are not counted
        against the concurrency ceiling.
        """
        result = await session.execute(
            select(func.count(ExtractionRecord.id)).where(
                ExtractionRecord.status.in_([int(s) for s in IN_PROGRESS_STATUSES]),
                ExtractionRecord.modified_at >= modified_after,
            )
        )
        return result.scalar() or 0

    async def list_records(
        self,
        session: AsyncSession,
        resource_type: str,
        extractor: str,
        after_id: int = 0,
        limit: Optional[int] = None,
    ) -> List[ExtractionRecord]:
        """Range query over one extractor's records for a resource type."""
        query = (
            select(ExtractionRecord)
            .where(
                ExtractionRecord.resource_type == resource_type,
                ExtractionRecord.extractor == extractor,
                ExtractionRecord.resource_id > after_id,
            )
            .order_by(ExtractionRecord.resource_id.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())

    async def delete_records(self, session: AsyncSession, record_ids: Sequence[int]) -> int:
        if not record_ids:
            return 0
        result = await session.execute(
            delete(ExtractionRecord).where(ExtractionRecord.id.in_(list(record_ids)))
        )
        return result.rowcount or 0


# Global singleton instance
extraction_record_service = ExtractionRecordService()
