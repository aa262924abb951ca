"""
Maintenance Celery tasks for metaharvest.
"""
import asyncio
import logging
from typing import Any, Dict

from metaharvest.celery_app import app as celery_app
from metaharvest.core.extraction.cleanup_service import metadata_cleanup_service
from metaharvest.core.shared.database_service import database_service


@celery_app.task(bind=True, name="metaharvest.tasks.cleanup_metadata_task", max_retries=0)
def cleanup_metadata_task(self) -> Dict[str, Any]:
    """
    Remove extraction records and metadata of deleted resources.

    Returns:
        Dict with records_deleted and metadata_deleted counts
    """
    logger = logging.getLogger("metaharvest.tasks.maintenance")

    try:
        result = asyncio.run(_cleanup_metadata_async())
    except Exception as e:
        logger.error(f"Metadata cleanup failed: {e}", exc_info=True)
        raise

    return {"status": "completed", **result}


async def _cleanup_metadata_async() -> Dict[str, int]:
    async with database_service.get_session() as session:
        counts = await metadata_cleanup_service.cleanup(session)
        return counts.to_dict()
