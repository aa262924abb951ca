"""
Extraction status codes and reasons.

Status codes follow HTTP semantics: 2xx for accepted/in-progress/complete,
4xx for "nothing to extract" outcomes and 5xx for failures. A resource with
no extraction record is in the implicit NONE state.
"""

from enum import IntEnum


class ExtractionStatus(IntEnum):
    COMPLETE = 200
    PENDING = 201
    ACCEPTED = 202
    NOT_FOUND = 404
    NOT_SUPPORTED = 415
    ERROR = 500

    @classmethod
    def parse(cls, value):
        """Return the status for a stored code, or None if the code is unknown."""
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def is_in_progress(self) -> bool:
        return self in (ExtractionStatus.ACCEPTED, ExtractionStatus.PENDING)


IN_PROGRESS_STATUSES = (ExtractionStatus.ACCEPTED, ExtractionStatus.PENDING)

# Human-readable reasons stored on extraction records
REASON_ACCEPTED = "Metadata extraction task queued."
REASON_REQUEUED = "Metadata extraction task re-queued after {age} without progress."
REASON_COMMENCED = "Metadata extraction started."
REASON_COMPLETE = "Metadata extraction successfully completed."
REASON_NOT_SUPPORTED = (
    "Metadata extraction not supported for resource id: {resource_id}, "
    "type: {resource_type} by '{extractor}'."
)
REASON_NO_METADATA = "Could not extract metadata for resource id: {resource_id}, type: {resource_type}."
REASON_RESOURCE_GONE = "Resource id: {resource_id}, type: {resource_type} no longer exists."
