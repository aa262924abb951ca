"""
Celery application setup for metaharvest.

Configures Celery using environment-driven settings so the scheduler and
the workers share the same broker/result backend.

Queue Architecture:
- extraction: One task per (resource, extractor) extraction job
- maintenance: Scheduling passes and metadata cleanup (non-blocking)

Scheduling passes run on the maintenance queue so they are never stuck
behind a backlog of slow extraction jobs.
"""
import logging
import os

from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_ready
from kombu import Queue


def _bool(val: str, default: bool = False) -> bool:
    if val is None:
        return default
    return str(val).lower() in {"1", "true", "yes", "on"}


def _parse_cron(value: str, default: crontab) -> crontab:
    """Parse "minute hour day month day_of_week"; fall back to default when malformed."""
    parts = (value or "").split()
    if len(parts) != 5:
        return default
    try:
        return crontab(
            minute=parts[0],
            hour=parts[1],
            day_of_month=parts[2],
            month_of_year=parts[3],
            day_of_week=parts[4],
        )
    except ValueError:
        return default


BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")
RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/1")

# Resource types scanned by the periodic passes
PASS_RESOURCE_TYPES = [
    t.strip() for t in os.getenv("EXTRACTION_PASS_RESOURCE_TYPES", "file,url").split(",") if t.strip()
]

app = Celery(
    "metaharvest",
    broker=BROKER_URL,
    backend=RESULT_BACKEND,
    include=["metaharvest.core.tasks.extraction", "metaharvest.core.tasks.maintenance"],
)

app.conf.task_queues = (
    Queue("extraction", routing_key="extraction"),
    Queue("maintenance", routing_key="maintenance"),
)

app.conf.update(
    task_acks_late=_bool(os.getenv("CELERY_ACKS_LATE", "true"), True),
    worker_prefetch_multiplier=int(os.getenv("CELERY_PREFETCH_MULTIPLIER", "1")),
    worker_max_tasks_per_child=int(os.getenv("CELERY_MAX_TASKS_PER_CHILD", "200")),
    task_soft_time_limit=int(os.getenv("CELERY_TASK_SOFT_TIME_LIMIT", "300")),
    task_time_limit=int(os.getenv("CELERY_TASK_TIME_LIMIT", "600")),
    result_expires=int(os.getenv("CELERY_RESULT_EXPIRES", "86400")),
    task_default_queue=os.getenv("CELERY_DEFAULT_QUEUE", "extraction"),
    task_routes={
        "metaharvest.tasks.metadata_extraction_task": {"queue": "extraction"},
        "metaharvest.tasks.process_extractions_task": {"queue": "maintenance"},
        "metaharvest.tasks.cleanup_metadata_task": {"queue": "maintenance"},
    },
)

# ============================================================================
# Celery Beat Schedule
# ============================================================================

extraction_pass_interval = int(os.getenv("EXTRACTION_PASS_INTERVAL", "300"))
cleanup_enabled = _bool(os.getenv("METADATA_CLEANUP_ENABLED", "true"), True)
cleanup_schedule = _parse_cron(
    os.getenv("METADATA_CLEANUP_SCHEDULE_CRON", "0 3 * * *"),
    crontab(hour=3, minute=0),
)

beat_schedule = {}

for resource_type in PASS_RESOURCE_TYPES:
    beat_schedule[f"process-{resource_type}-extractions"] = {
        "task": "metaharvest.tasks.process_extractions_task",
        "schedule": extraction_pass_interval,  # Every N seconds (default: 300 = 5 min)
        "kwargs": {"resource_type": resource_type},
        "options": {"queue": "maintenance"},
    }

if cleanup_enabled:
    beat_schedule["cleanup-metadata"] = {
        "task": "metaharvest.tasks.cleanup_metadata_task",
        "schedule": cleanup_schedule,
        "options": {"queue": "maintenance"},
    }

app.conf.beat_schedule = beat_schedule

app.conf.timezone = "UTC"


# ============================================================================
# WORKER STARTUP
# ============================================================================

_startup_logger = logging.getLogger("metaharvest.celery.startup")


@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    """Run one extraction pass per resource type when a worker comes up."""
    if not _bool(os.getenv("EXTRACTION_STARTUP_PASS_ENABLED", "false"), False):
        return

    # Import here to avoid circular imports
    from metaharvest.core.tasks import process_extractions_task

    for resource_type in PASS_RESOURCE_TYPES:
        process_extractions_task.apply_async(
            kwargs={"resource_type": resource_type},
            queue="maintenance",
            countdown=10,
        )
    _startup_logger.info(f"Startup extraction passes scheduled for {', '.join(PASS_RESOURCE_TYPES)}")
