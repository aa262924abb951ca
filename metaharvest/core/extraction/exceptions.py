"""
Exceptions raised by the metadata extraction scheduler.

"No metadata found" and "resource gone" are ordinary extraction outcomes
(NOT_FOUND), never exceptions.
"""

from typing import Optional


class MetadataExtractionError(Exception):
    """Base class for all metaharvest errors."""


class UnsupportedResourceType(MetadataExtractionError):
    """A resource type is not registered, or not supported by an extractor."""

    def __init__(self, resource_type: str, extractor: Optional[str] = None):
        self.resource_type = resource_type
        self.extractor = extractor
        if extractor:
            message = f"{extractor} does not support {resource_type} resources."
        else:
            message = f"Unsupported resource type: {resource_type}"
        super().__init__(message)


class StorageUnavailable(MetadataExtractionError):
    """The record store or cursor store could not be reached."""


class BackendScanFailure(MetadataExtractionError):
    """Scanning or dispatching failed for one extractor during a pass."""

    def __init__(self, extractor: str, cause: Exception):
        self.extractor = extractor
        self.cause = cause
        super().__init__(f"Extraction pass failed for extractor '{extractor}': {cause}")


class ExtractorNotEnabled(MetadataExtractionError):
    """The requested extractor is not installed or not enabled."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Metadata extractor {name} is not enabled or not installed.")


class InvalidExtractionFilters(MetadataExtractionError):
    """The extraction_filters setting could not be parsed."""


class ExtractionFailed(MetadataExtractionError):
    """An extractor failed while extracting metadata from a resource."""
