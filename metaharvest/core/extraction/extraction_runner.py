"""
Execution of one extraction job.

Runs inside the worker for a job submitted by the scheduler:

    resource gone           -> NOT_FOUND
    metadata already known  -> COMPLETE (new record only)
    otherwise               -> PENDING, then
        cannot extract      -> NOT_SUPPORTED
        metadata extracted  -> COMPLETE, metadata saved by fingerprint
        nothing extracted   -> NOT_FOUND
        extraction failed   -> ERROR

Jobs are delivered at least once, so running the same job twice is safe:
metadata writes are upserts keyed by fingerprint.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .exceptions import ExtractionFailed
from .extraction_record_service import ExtractionRecordService, extraction_record_service
from .extractors.registry import ExtractorRegistry, extractor_registry
from .fingerprint_service import FingerprintService, fingerprint_service
from .resource_types import ResourceTypeRegistry, resource_type_registry
from .status import (
    REASON_COMMENCED,
    REASON_COMPLETE,
    REASON_NO_METADATA,
    REASON_NOT_SUPPORTED,
    REASON_RESOURCE_GONE,
    ExtractionStatus,
)

logger = logging.getLogger("metaharvest.runner")


class ExtractionRunner:

    def __init__(
        self,
        extractors: Optional[ExtractorRegistry] = None,
        resource_types: Optional[ResourceTypeRegistry] = None,
        fingerprinter: Optional[FingerprintService] = None,
        records: Optional[ExtractionRecordService] = None,
    ):
        self.extractors = extractors or extractor_registry
        self.resource_types = resource_types or resource_type_registry
        self.fingerprinter = fingerprinter or fingerprint_service
        self.records = records or extraction_record_service

    async def run(
        self,
        session: AsyncSession,
        resource_id: int,
        resource_type: str,
        extractor_name: str,
    ) -> ExtractionStatus:
        """
        Extract metadata for one (resource, extractor) pair and record the outcome.

        Raises:
            ExtractorNotEnabled: If the extractor is not enabled
            UnsupportedResourceType: If the resource type is not registered
        """
        extractor = self.extractors.get(extractor_name)
        descriptor = self.resource_types.get(resource_type)
        reason_args = {"resource_id": resource_id, "resource_type": resource_type}

        resource = await descriptor.resolve(session, resource_id)
        if resource is None:
            await self.records.upsert_status(
                session, resource_id, resource_type, extractor.name,
                ExtractionStatus.NOT_FOUND, REASON_RESOURCE_GONE.format(**reason_args),
            )
            logger.info(f"{resource_type} {resource_id} no longer exists")
            return ExtractionStatus.NOT_FOUND

        fingerprint = self.fingerprinter.fingerprint(resource, resource_type)

        record = await self.records.get_record(session, resource_id, resource_type, extractor.name)
        if record is None and await extractor.has_metadata(session, fingerprint):
            await self.records.get_or_create_record(
                session, resource_id, resource_type, extractor.name,
                ExtractionStatus.COMPLETE, REASON_COMPLETE, resource_hash=fingerprint,
            )
            return ExtractionStatus.COMPLETE

        record = await self.records.upsert_status(
            session, resource_id, resource_type, extractor.name,
            ExtractionStatus.PENDING, REASON_COMMENCED, resource_hash=fingerprint,
        )
        # Make PENDING visible to the scheduler while extraction runs
        await session.commit()

        if not extractor.can_extract(resource, resource_type):
            await self.records.set_status(
                session, record, ExtractionStatus.NOT_SUPPORTED,
                REASON_NOT_SUPPORTED.format(extractor=extractor.name, **reason_args),
            )
            return ExtractionStatus.NOT_SUPPORTED

        try:
            metadata = await extractor.extract(resource, resource_type)
        except ExtractionFailed as e:
            logger.warning(f"{extractor.name} failed on {resource_type} {resource_id}: {e}")
            await self.records.set_status(session, record, ExtractionStatus.ERROR, str(e))
            return ExtractionStatus.ERROR
        except Exception as e:
            logger.error(
                f"Unexpected {extractor.name} error on {resource_type} {resource_id}: {e}",
                exc_info=True,
            )
            await self.records.set_status(session, record, ExtractionStatus.ERROR, str(e))
            return ExtractionStatus.ERROR

        if not metadata:
            await self.records.set_status(
                session, record, ExtractionStatus.NOT_FOUND, REASON_NO_METADATA.format(**reason_args)
            )
            return ExtractionStatus.NOT_FOUND

        await extractor.save_metadata(session, fingerprint, metadata)
        await self.records.set_status(session, record, ExtractionStatus.COMPLETE, REASON_COMPLETE)
        logger.debug(f"{extractor.name} extracted {len(metadata)} fields from {resource_type} {resource_id}")
        return ExtractionStatus.COMPLETE


# Global singleton instance
extraction_runner = ExtractionRunner()
