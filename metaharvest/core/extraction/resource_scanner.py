"""
Resource scanner.

Walks one resource type's table in id order from a cursor, outer-joined
against the extraction records of one extractor, so each row carries the
resource together with its current extraction state (or None fields when
no record exists yet).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, NamedTuple, Optional, Sequence

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from metaharvest.core.database.models import ExtractionRecord
from .resource_types import ResourceTypeDescriptor

logger = logging.getLogger("metaharvest.scanner")


class RowKey(NamedTuple):
    """Identity of a scanned row within a pass."""

    resource_id: int
    extractor: str


@dataclass
class ScannedRow:
    resource_id: int
    extractor: str
    resource: Any
    record_id: Optional[int] = None
    status: Optional[int] = None
    resource_hash: Optional[str] = None
    modified_at: Optional[datetime] = None

    @property
    def key(self) -> RowKey:
        return RowKey(self.resource_id, self.extractor)

    @property
    def has_record(self) -> bool:
        return self.record_id is not None


class ResourceScanner:

    async def scan(
        self,
        session: AsyncSession,
        descriptor: ResourceTypeDescriptor,
        extractor: str,
        cursor: int,
        limit: int,
        extra_conditions: Optional[Sequence[Any]] = None,
    ) -> List[ScannedRow]:
        """
        Scan up to ``limit`` resources with id greater than ``cursor``.

        Args:
            session: Database session
            descriptor: Resource type being scanned
            extractor: Extractor whose records are joined in
            cursor: Exclusive lower bound on resource id
            limit: Maximum number of rows
            extra_conditions: Additional predicates ANDed with the range
                predicate and the type's base exclusions

        Returns:
            Rows ordered by resource id
        """
        if limit <= 0:
            return []

        id_column = descriptor.id_column
        conditions = [id_column > cursor]
        conditions.extend(descriptor.base_conditions())
        conditions.extend(extra_conditions or [])

        query = (
            select(
                descriptor.model,
                ExtractionRecord.id,
                ExtractionRecord.status,
                ExtractionRecord.resource_hash,
                ExtractionRecord.modified_at,
            )
            .outerjoin(
                ExtractionRecord,
                and_(
                    ExtractionRecord.resource_id == id_column,
                    ExtractionRecord.resource_type == descriptor.name,
                    ExtractionRecord.extractor == extractor,
                ),
            )
            .where(*conditions)
            .order_by(id_column.asc())
            .limit(limit)
        )
        result = await session.execute(query)

        rows = [
            ScannedRow(
                resource_id=resource.id,
                extractor=extractor,
                resource=resource,
                record_id=record_id,
                status=status,
                resource_hash=resource_hash,
                modified_at=modified_at,
            )
            for resource, record_id, status, resource_hash, modified_at in result.all()
        ]
        logger.debug(
            f"Scanned {len(rows)} {descriptor.name} rows for {extractor} "
            f"after id {cursor} (limit {limit})"
        )
        return rows


def next_cursor(cursor: int, rows: Sequence[ScannedRow], limit: int, cyclical: bool) -> int:
    """
    Cursor position after a scan.

    A short scan means the end of the corpus was reached: cyclical scanning
    restarts from 0, otherwise the cursor holds at the last id scanned.
    """
    if cyclical and len(rows) < limit:
        return 0
    if rows:
        return rows[-1].resource_id
    return cursor


# Global singleton instance
resource_scanner = ResourceScanner()
