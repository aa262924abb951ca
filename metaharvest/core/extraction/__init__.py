"""
Incremental metadata extraction.

Scheduling passes scan each resource type from a persisted cursor, skip
content whose metadata is already known, and submit extraction jobs within
a global concurrency budget.
"""

from .admission_controller import AdmissionBudget, AdmissionController, compute_budget
from .cleanup_service import MetadataCleanupService, metadata_cleanup_service
from .cursor_service import CursorService, cursor_service
from .dispatcher import DeduplicatingDispatcher, DispatchResult
from .exceptions import (
    BackendScanFailure,
    ExtractionFailed,
    ExtractorNotEnabled,
    InvalidExtractionFilters,
    MetadataExtractionError,
    StorageUnavailable,
    UnsupportedResourceType,
)
from .execution import CeleryExecutionLayer, ExecutionLayer
from .extraction_record_service import ExtractionRecordService, extraction_record_service
from .extraction_runner import ExtractionRunner, extraction_runner
from .fingerprint_service import FingerprintService, canonicalize_url, fingerprint_service
from .resource_scanner import ResourceScanner, RowKey, ScannedRow, next_cursor, resource_scanner
from .resource_types import (
    FILE,
    URL,
    ResourceTypeDescriptor,
    ResourceTypeRegistry,
    resource_type_registry,
)
from .scheduler import ExtractionScheduler
from .status import ExtractionStatus
from .summary import PassSummary, StatusCounts

__all__ = [
    "AdmissionBudget",
    "AdmissionController",
    "compute_budget",
    "MetadataCleanupService",
    "metadata_cleanup_service",
    "CursorService",
    "cursor_service",
    "DeduplicatingDispatcher",
    "DispatchResult",
    "BackendScanFailure",
    "ExtractionFailed",
    "ExtractorNotEnabled",
    "InvalidExtractionFilters",
    "MetadataExtractionError",
    "StorageUnavailable",
    "UnsupportedResourceType",
    "CeleryExecutionLayer",
    "ExecutionLayer",
    "ExtractionRecordService",
    "extraction_record_service",
    "ExtractionRunner",
    "extraction_runner",
    "FingerprintService",
    "canonicalize_url",
    "fingerprint_service",
    "ResourceScanner",
    "RowKey",
    "ScannedRow",
    "next_cursor",
    "resource_scanner",
    "FILE",
    "URL",
    "ResourceTypeDescriptor",
    "ResourceTypeRegistry",
    "resource_type_registry",
    "ExtractionScheduler",
    "ExtractionStatus",
    "PassSummary",
    "StatusCounts",
]
