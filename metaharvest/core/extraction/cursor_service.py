"""
Scan cursor store.

One integer watermark per (resource type, extractor): the highest
resource id fully considered by the most recent pass. Cursor rows are
read and written with row locks (SELECT ... FOR UPDATE where the database
supports it); cross-pass exclusion is provided by the pass lock.

Usage:
    from metaharvest.core.extraction.cursor_service import cursor_service

    position = await cursor_service.get_cursor(session, "file", "filemeta")
    await cursor_service.set_cursor(session, "file", "filemeta", 250)
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from metaharvest.config import settings
from metaharvest.core.database.models import ScanCursor
from .extraction_record_service import extraction_record_service

logger = logging.getLogger("metaharvest.cursors")


class CursorService:
    """Persistence of per (resource type, extractor) scan cursors."""

    async def _get_row(
        self,
        session: AsyncSession,
        resource_type: str,
        extractor: str,
        for_update: bool = False,
    ) -> Optional[ScanCursor]:
        query = select(ScanCursor).where(
            ScanCursor.resource_type == resource_type,
            ScanCursor.extractor == extractor,
        )
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def get_cursor(self, session: AsyncSession, resource_type: str, extractor: str) -> int:
        """
        Get the scan position for an extractor.

        Returns 0 when no cursor has been stored. With
        ``cursor_seed_from_completed`` enabled, a missing cursor is instead
        seeded from the highest resource id already extracted successfully,
        so a new deployment over existing records doesn't rescan them.
        """
        row = await self._get_row(session, resource_type, extractor)
        if row is not None:
            return row.position

        if not settings.cursor_seed_from_completed:
            return 0

        position = await extraction_record_service.get_highest_completed_resource_id(
            session, resource_type, extractor
        )
        await self.set_cursor(session, resource_type, extractor, position)
        logger.info(f"Seeded {resource_type} cursor for {extractor} at {position}")
        return position

    async def set_cursor(
        self,
        session: AsyncSession,
        resource_type: str,
        extractor: str,
        position: int,
    ) -> None:
        row = await self._get_row(session, resource_type, extractor, for_update=True)
        if row is None:
            row = ScanCursor(resource_type=resource_type, extractor=extractor)
            session.add(row)
        row.position = max(0, int(position))
        row.updated_at = datetime.utcnow()
        await session.flush()

    async def reset_cursor(self, session: AsyncSession, resource_type: str, extractor: str) -> None:
        await self.set_cursor(session, resource_type, extractor, 0)

    async def get_cursors(self, session: AsyncSession, resource_type: str) -> Dict[str, int]:
        """All stored cursors for a resource type, keyed by extractor name."""
        result = await session.execute(
            select(ScanCursor).where(ScanCursor.resource_type == resource_type)
        )
        return {row.extractor: row.position for row in result.scalars().all()}


# Global singleton instance
cursor_service = CursorService()
