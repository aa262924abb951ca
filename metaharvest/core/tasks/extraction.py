"""
Extraction Celery tasks for metaharvest.

Runs scheduling passes and the extraction jobs they submit.
"""
import asyncio
import logging
from typing import Any, Dict

from metaharvest.celery_app import app as celery_app
from metaharvest.core.extraction.extraction_runner import extraction_runner
from metaharvest.core.extraction.scheduler import ExtractionScheduler
from metaharvest.core.shared.database_service import database_service
from metaharvest.core.shared.lock_service import lock_service


# ============================================================================
# SCHEDULING PASS
# ============================================================================

@celery_app.task(bind=True, name="metaharvest.tasks.process_extractions_task", max_retries=0)
def process_extractions_task(self, resource_type: str) -> Dict[str, Any]:
    """
    Run one extraction pass over a resource type.

    Passes over the same resource type never overlap: a pass that finds the
    resource type's lock held is skipped.

    Args:
        resource_type: Resource type to scan ("file", "url", ...)

    Returns:
        Dict with the pass summary, or status "skipped"
    """
    logger = logging.getLogger("metaharvest.tasks.extraction")
    logger.info(f"Starting {resource_type} extraction pass")

    try:
        result = asyncio.run(_process_extractions_async(resource_type))
        logger.info(f"{resource_type} extraction pass finished: {result.get('status')}")
        return result
    except Exception as e:
        logger.error(f"{resource_type} extraction pass failed: {e}", exc_info=True)
        raise


async def _process_extractions_async(resource_type: str) -> Dict[str, Any]:
    logger = logging.getLogger("metaharvest.tasks.extraction")

    try:
        async with lock_service.pass_lock(resource_type) as acquired:
            if not acquired:
                logger.info(f"{resource_type} extraction pass already running, skipping")
                return {"status": "skipped", "resource_type": resource_type, "reason": "locked"}

            summary = await ExtractionScheduler().run_pass(resource_type)
            return {"status": "completed", **summary.to_dict()}
    finally:
        # The client is bound to this asyncio.run() loop
        await lock_service.close()


# ============================================================================
# EXTRACTION JOB
# ============================================================================

@celery_app.task(
    bind=True,
    name="metaharvest.tasks.metadata_extraction_task",
    autoretry_for=(ConnectionError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 2},
)
def metadata_extraction_task(
    self,
    resource_id: int,
    resource_type: str,
    extractor: str,
) -> Dict[str, Any]:
    """
    Extract metadata for one resource with one extractor.

    Args:
        resource_id: Resource id
        resource_type: Resource type name
        extractor: Extractor name

    Returns:
        Dict with the resulting extraction status
    """
    logger = logging.getLogger("metaharvest.tasks.extraction")
    logger.debug(f"Starting {extractor} extraction for {resource_type} {resource_id}")

    try:
        status = asyncio.run(_metadata_extraction_async(resource_id, resource_type, extractor))
    except Exception as e:
        logger.error(
            f"{extractor} extraction task failed for {resource_type} {resource_id}: {e}",
            exc_info=True,
        )
        raise

    return {
        "resource_id": resource_id,
        "resource_type": resource_type,
        "extractor": extractor,
        "status": int(status),
        "status_name": status.name,
    }


async def _metadata_extraction_async(resource_id: int, resource_type: str, extractor: str):
    async with database_service.get_session() as session:
        return await extraction_runner.run(session, resource_id, resource_type, extractor)
