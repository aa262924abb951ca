"""
Cleanup of extraction state for deleted resources.

Resources are deleted by their owners without notifying the scheduler.
Cleanup finds extraction records whose resource is gone, deletes them, and
deletes the extractor's metadata for their fingerprints unless another
surviving record still refers to the same content.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from metaharvest.core.database.models import ExtractionRecord
from .extraction_record_service import ExtractionRecordService, extraction_record_service
from .extractors.base import BaseMetadataExtractor
from .extractors.registry import ExtractorRegistry, extractor_registry
from .resource_types import ResourceTypeDescriptor, ResourceTypeRegistry, resource_type_registry

logger = logging.getLogger("metaharvest.cleanup")


@dataclass
class CleanupCounts:
    records_deleted: int = 0
    metadata_deleted: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"records_deleted": self.records_deleted, "metadata_deleted": self.metadata_deleted}


class MetadataCleanupService:

    def __init__(
        self,
        extractors: Optional[ExtractorRegistry] = None,
        resource_types: Optional[ResourceTypeRegistry] = None,
        records: Optional[ExtractionRecordService] = None,
    ):
        self.extractors = extractors or extractor_registry
        self.resource_types = resource_types or resource_type_registry
        self.records = records or extraction_record_service

    async def cleanup(self, session: AsyncSession) -> CleanupCounts:
        """Remove records and metadata of deleted resources for every enabled extractor."""
        counts = CleanupCounts()
        for extractor in self.extractors.get_enabled():
            for resource_type in extractor.supported_resource_types:
                if resource_type not in self.resource_types:
                    logger.warning(f"{extractor.name} declares unknown resource type {resource_type}")
                    continue
                descriptor = self.resource_types.get(resource_type)
                result = await self.cleanup_type(session, descriptor, extractor)
                counts.records_deleted += result.records_deleted
                counts.metadata_deleted += result.metadata_deleted

        logger.info(
            f"Metadata cleanup: {counts.records_deleted} records, "
            f"{counts.metadata_deleted} metadata entries deleted"
        )
        return counts

    async def cleanup_type(
        self,
        session: AsyncSession,
        descriptor: ResourceTypeDescriptor,
        extractor: BaseMetadataExtractor,
    ) -> CleanupCounts:
        model = descriptor.model
        result = await session.execute(
            select(ExtractionRecord.id, ExtractionRecord.resource_hash)
            .outerjoin(model, model.id == ExtractionRecord.resource_id)
            .where(
                ExtractionRecord.resource_type == descriptor.name,
                ExtractionRecord.extractor == extractor.name,
                model.id.is_(None),
            )
        )
        orphans = result.all()
        if not orphans:
            return CleanupCounts()

        record_ids = [record_id for record_id, _ in orphans]
        hashes = {resource_hash for _, resource_hash in orphans if resource_hash}

        records_deleted = await self.records.delete_records(session, record_ids)

        metadata_deleted = 0
        if hashes:
            # Content still reachable through another resource keeps its metadata
            result = await session.execute(
                select(ExtractionRecord.resource_hash)
                .where(
                    ExtractionRecord.extractor == extractor.name,
                    ExtractionRecord.resource_hash.in_(hashes),
                )
                .distinct()
            )
            still_referenced = set(result.scalars().all())
            metadata_deleted = await extractor.delete_metadata(session, hashes - still_referenced)

        logger.debug(
            f"Cleaned up {records_deleted} {descriptor.name} records for {extractor.name}"
        )
        return CleanupCounts(records_deleted, metadata_deleted)


# Global singleton instance
metadata_cleanup_service = MetadataCleanupService()
