# metaharvest/core/database/__init__.py
"""
Database package for metaharvest.

Provides SQLAlchemy models and the declarative base.
"""

from .base import Base
from .models import (
    ExternalLink,
    ExtractedMetadata,
    ExtractionRecord,
    ScanCursor,
    StoredFile,
)

__all__ = [
    "Base",
    "StoredFile",
    "ExternalLink",
    "ExtractionRecord",
    "ScanCursor",
    "ExtractedMetadata",
]
