"""
Celery tasks package for metaharvest.

Celery discovers tasks via the include= list in celery_app.py, which
references each submodule directly.
"""

# Extraction tasks
from metaharvest.core.tasks.extraction import (
    metadata_extraction_task,
    process_extractions_task,
)

# Maintenance tasks
from metaharvest.core.tasks.maintenance import (
    cleanup_metadata_task,
)

__all__ = [
    "cleanup_metadata_task",
    "metadata_extraction_task",
    "process_extractions_task",
]
