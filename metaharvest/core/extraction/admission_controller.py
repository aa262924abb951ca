"""
Admission control for extraction passes.

Each pass, the remaining global capacity (ceiling minus jobs already in
flight) is split equally between the extractors active for the pass, and
each share is capped by the per-extractor batch size. The sum of shares
never exceeds the remaining capacity, and no extractor is starved by
another. A full queue yields a budget of 0 for everyone; that is a normal
outcome, not an error.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from metaharvest.config import settings
from .execution import ExecutionLayer

logger = logging.getLogger("metaharvest.admission")


def compute_budget(
    total_ceiling: int,
    in_flight: int,
    active_backends: int,
    max_batch: Optional[int] = None,
) -> int:
    """
    Per-extractor job limit for one pass.

    Example:
        >>> compute_budget(1000, 300, 4, max_batch=300)
        175
    """
    if active_backends <= 0:
        return 0
    remaining = max(0, total_ceiling - in_flight)
    limit = remaining // active_backends
    if max_batch is not None:
        limit = min(limit, max(0, max_batch))
    return limit


@dataclass(frozen=True)
class AdmissionBudget:
    """Budget computed once at the start of a pass."""

    total_ceiling: int
    in_flight: int
    active_backends: int
    per_backend_limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.total_ceiling - self.in_flight)

    def to_dict(self):
        return {
            "total_ceiling": self.total_ceiling,
            "in_flight": self.in_flight,
            "active_backends": self.active_backends,
            "per_backend_limit": self.per_backend_limit,
        }


class AdmissionController:
    """Computes the per-pass admission budget from settings and the execution layer."""

    def __init__(self, execution_layer: ExecutionLayer):
        self.execution_layer = execution_layer

    async def get_budget(self, session: AsyncSession, active_backends: int) -> AdmissionBudget:
        # Older in-progress records are presumed lost and don't hold capacity
        cutoff = datetime.utcnow() - timedelta(seconds=settings.extraction_staleness_seconds)
        in_flight = await self.execution_layer.in_flight_count(session, cutoff)
        limit = compute_budget(
            settings.total_extraction_processes,
            in_flight,
            active_backends,
            settings.max_extraction_processes,
        )
        budget = AdmissionBudget(
            total_ceiling=settings.total_extraction_processes,
            in_flight=in_flight,
            active_backends=active_backends,
            per_backend_limit=limit,
        )
        if limit == 0 and active_backends:
            logger.info(
                f"No extraction capacity this pass "
                f"(in_flight={in_flight}, ceiling={budget.total_ceiling})"
            )
        return budget
