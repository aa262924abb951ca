"""Per-pass outcome counts."""

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

from .admission_controller import AdmissionBudget

COUNTERS = ("completed", "duplicates", "queued", "pending", "unsupported", "errors", "unknown")


@dataclass
class StatusCounts:
    completed: int = 0
    duplicates: int = 0
    queued: int = 0
    pending: int = 0
    unsupported: int = 0
    errors: int = 0
    unknown: int = 0

    @property
    def total(self) -> int:
        return sum(getattr(self, f.name) for f in fields(self))

    def add(self, other: "StatusCounts") -> None:
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))

    def to_dict(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in COUNTERS}


@dataclass
class PassSummary:
    """Result of one scheduling pass over a resource type."""

    resource_type: str
    counts: StatusCounts = field(default_factory=StatusCounts)
    backends: Dict[str, StatusCounts] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)
    cursors: Dict[str, int] = field(default_factory=dict)
    budget: Optional[AdmissionBudget] = None

    @property
    def total(self) -> int:
        return self.counts.total

    @property
    def completed(self) -> int:
        return self.counts.completed

    @property
    def duplicates(self) -> int:
        return self.counts.duplicates

    @property
    def queued(self) -> int:
        return self.counts.queued

    @property
    def pending(self) -> int:
        return self.counts.pending

    @property
    def unsupported(self) -> int:
        return self.counts.unsupported

    @property
    def errors(self) -> int:
        return self.counts.errors

    @property
    def unknown(self) -> int:
        return self.counts.unknown

    def record_backend(self, extractor: str, counts: StatusCounts) -> None:
        self.backends[extractor] = counts
        self.counts.add(counts)

    def record_failure(self, extractor: str, error: Exception) -> None:
        self.failures[extractor] = str(error)

    def log(self, logger: logging.Logger) -> None:
        if self.total == 0 and not self.failures:
            logger.info(f"No {self.resource_type} resources to process")
            return
        for name in COUNTERS:
            logger.info(f"{self.resource_type} {name}: {getattr(self.counts, name)}")
        logger.info(f"{self.resource_type} total: {self.total}")
        for extractor, error in self.failures.items():
            logger.error(f"{self.resource_type} pass failed for {extractor}: {error}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_type": self.resource_type,
            **self.counts.to_dict(),
            "total": self.total,
            "backends": {name: counts.to_dict() for name, counts in self.backends.items()},
            "failures": dict(self.failures),
            "cursors": dict(self.cursors),
            "budget": self.budget.to_dict() if self.budget else None,
        }
