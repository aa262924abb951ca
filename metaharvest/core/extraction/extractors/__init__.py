"""Pluggable metadata extraction backends."""

from .base import BaseMetadataExtractor
from .filemeta import FileMetadataExtractor
from .htmlmeta import HtmlMetadataExtractor
from .registry import ExtractorRegistry, extractor_registry

__all__ = [
    "BaseMetadataExtractor",
    "FileMetadataExtractor",
    "HtmlMetadataExtractor",
    "ExtractorRegistry",
    "extractor_registry",
]
