"""
Execution layer seam.

The scheduler hands extraction jobs to an asynchronous, at-least-once work
queue and never waits for them. The production implementation submits
Celery tasks; tests substitute an in-memory layer.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from metaharvest.config import settings
from .extraction_record_service import extraction_record_service

logger = logging.getLogger("metaharvest.execution")


class ExecutionLayer(ABC):

    @abstractmethod
    def enqueue(self, resource_id: int, resource_type: str, extractor: str) -> None:
        """Submit one extraction job (fire and forget)."""
        pass

    async def in_flight_count(self, session: AsyncSession, modified_after: datetime) -> int:
        """
        Jobs currently accepted or running.

        In-flight jobs are tracked by their extraction records, so the count
        is read from the record store.
        """
        return await extraction_record_service.count_in_flight(session, modified_after)


class CeleryExecutionLayer(ExecutionLayer):
    """Submits extraction jobs to the Celery extraction queue."""

    def __init__(self, queue: str = None):
        self.queue = queue

    def enqueue(self, resource_id: int, resource_type: str, extractor: str) -> None:
        from metaharvest.core.tasks import metadata_extraction_task

        queue = self.queue or settings.extraction_queue
        task = metadata_extraction_task.apply_async(
            kwargs={
                "resource_id": resource_id,
                "resource_type": resource_type,
                "extractor": extractor,
            },
            queue=queue,
        )
        logger.debug(
            f"Queued {extractor} extraction for {resource_type} {resource_id}: "
            f"task_id={task.id}, queue={queue}"
        )
