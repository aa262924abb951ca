"""
Base abstraction for metadata extractors.

An extractor reads a resource and returns descriptive metadata (author,
title, format, ...). Extracted metadata is stored per extractor and keyed
by content fingerprint, so identical content reached through different
resources is extracted once.

Subclasses implement:
- name / display_name / description
- supported_resource_types
- extract(): Read a resource and return a metadata dict (or None)

Subclasses may override:
- can_extract(): Reject individual resources of a supported type
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from metaharvest.core.database.models import ExtractedMetadata

# Bound parameter count per IN (...) query
_IN_CHUNK_SIZE = 500


class BaseMetadataExtractor(ABC):
    """
    Abstract base class for metadata extractors.

    Besides extraction itself, the base class provides the extractor's view
    of the shared metadata store: existence checks by fingerprint, reads,
    upserts and deletes, always scoped to this extractor's name.
    """

    def __init__(self, options: Optional[Dict[str, Any]] = None):
        self.options = options or {}
        self._logger = logging.getLogger(f"metaharvest.extractors.{self.name}")

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique extractor name, used in extraction records and cursors."""
        pass

    @property
    @abstractmethod
    def display_name(self) -> str:
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        pass

    @property
    @abstractmethod
    def supported_resource_types(self) -> List[str]:
        pass

    def supports_resource_type(self, resource_type: str) -> bool:
        return resource_type in self.supported_resource_types

    def can_extract(self, resource: Any, resource_type: str) -> bool:
        """Whether this extractor can extract metadata from a specific resource."""
        return self.supports_resource_type(resource_type)

    @abstractmethod
    async def extract(self, resource: Any, resource_type: str) -> Optional[Dict[str, Any]]:
        """
        Extract metadata from a resource.

        Args:
            resource: Resource instance
            resource_type: Resource type name

        Returns:
            Dict of extracted fields, or None when no metadata could be found

        Raises:
            ExtractionFailed: If extraction failed for a reason worth reporting
        """
        pass

    # ------------------------------------------------------------------
    # Metadata store
    # ------------------------------------------------------------------

    async def list_known_fingerprints(self, session: AsyncSession) -> Set[str]:
        """All fingerprints this extractor holds metadata for."""
        result = await session.execute(
            select(ExtractedMetadata.resource_hash).where(ExtractedMetadata.extractor == self.name)
        )
        return set(result.scalars().all())

    async def filter_known_fingerprints(self, session: AsyncSession, fingerprints: Iterable[str]) -> Set[str]:
        """Subset of the given fingerprints this extractor holds metadata for."""
        candidates = sorted({fp for fp in fingerprints if fp})
        known: Set[str] = set()
        for start in range(0, len(candidates), _IN_CHUNK_SIZE):
            chunk = candidates[start:start + _IN_CHUNK_SIZE]
            result = await session.execute(
                select(ExtractedMetadata.resource_hash).where(
                    ExtractedMetadata.extractor == self.name,
                    ExtractedMetadata.resource_hash.in_(chunk),
                )
            )
            known.update(result.scalars().all())
        return known

    async def has_metadata(self, session: AsyncSession, fingerprint: str) -> bool:
        return bool(await self.filter_known_fingerprints(session, [fingerprint]))

    async def read_metadata(self, session: AsyncSession, fingerprint: str) -> Optional[ExtractedMetadata]:
        result = await session.execute(
            select(ExtractedMetadata).where(
                ExtractedMetadata.extractor == self.name,
                ExtractedMetadata.resource_hash == fingerprint,
            )
        )
        return result.scalar_one_or_none()

    async def save_metadata(
        self,
        session: AsyncSession,
        fingerprint: str,
        data: Dict[str, Any],
    ) -> ExtractedMetadata:
        """Create or replace the metadata stored for a fingerprint."""
        metadata = await self.read_metadata(session, fingerprint)
        if metadata is None:
            metadata = ExtractedMetadata(extractor=self.name, resource_hash=fingerprint, data=data)
            session.add(metadata)
        else:
            metadata.data = data
            metadata.modified_at = datetime.utcnow()
        await session.flush()
        return metadata

    async def delete_metadata(self, session: AsyncSession, fingerprints: Iterable[str]) -> int:
        """Delete stored metadata for the given fingerprints; returns rows deleted."""
        candidates = sorted(set(fingerprints))
        deleted = 0
        for start in range(0, len(candidates), _IN_CHUNK_SIZE):
            chunk = candidates[start:start + _IN_CHUNK_SIZE]
            result = await session.execute(
                delete(ExtractedMetadata).where(
                    ExtractedMetadata.extractor == self.name,
                    ExtractedMetadata.resource_hash.in_(chunk),
                )
            )
            deleted += result.rowcount or 0
        return deleted

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(name={self.name}, types={self.supported_resource_types})>"
