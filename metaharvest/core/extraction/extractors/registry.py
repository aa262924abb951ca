"""
Metadata extractor registry.

Maps extractor names to implementations and resolves the enabled set from
settings. External modules can register custom extractors without
modifying this module.
"""

import logging
from typing import Dict, List, Optional, Type

from metaharvest.config import settings
from ..exceptions import ExtractorNotEnabled
from .base import BaseMetadataExtractor
from .filemeta import FileMetadataExtractor
from .htmlmeta import HtmlMetadataExtractor

logger = logging.getLogger("metaharvest.extractors")


class ExtractorRegistry:
    """
    Registry of available metadata extractors.

    Extractor instances are created once per registry and reused.
    """

    def __init__(self, enabled: Optional[List[str]] = None):
        self._classes: Dict[str, Type[BaseMetadataExtractor]] = {
            "filemeta": FileMetadataExtractor,
            "htmlmeta": HtmlMetadataExtractor,
        }
        self._instances: Dict[str, BaseMetadataExtractor] = {}
        self._enabled = enabled

    @property
    def enabled_names(self) -> List[str]:
        return list(self._enabled if self._enabled is not None else settings.enabled_extractors)

    def register(self, name: str, extractor_class: Type[BaseMetadataExtractor]) -> None:
        """
        Register a new extractor type.

        Raises:
            TypeError: If extractor_class doesn't inherit from BaseMetadataExtractor
        """
        if not issubclass(extractor_class, BaseMetadataExtractor):
            raise TypeError(
                f"Extractor class must inherit from BaseMetadataExtractor, "
                f"got {extractor_class.__name__}"
            )
        if name in self._classes:
            logger.warning(
                f"Overriding existing extractor: {name} "
                f"(was: {self._classes[name].__name__}, now: {extractor_class.__name__})"
            )
        self._classes[name] = extractor_class
        self._instances.pop(name, None)

    def get_available(self) -> List[str]:
        return list(self._classes)

    def get(self, name: str) -> BaseMetadataExtractor:
        """
        Get an enabled extractor by name.

        Raises:
            ExtractorNotEnabled: If the extractor is unknown or not enabled
        """
        if name not in self.enabled_names or name not in self._classes:
            raise ExtractorNotEnabled(name)
        if name not in self._instances:
            self._instances[name] = self._classes[name]()
        return self._instances[name]

    def get_enabled(self) -> List[BaseMetadataExtractor]:
        """Enabled extractors in configured order; unknown names are skipped."""
        extractors = []
        for name in self.enabled_names:
            if name not in self._classes:
                logger.warning(f"Enabled extractor {name} is not installed")
                continue
            extractors.append(self.get(name))
        return extractors

    def get_for_resource_type(self, resource_type: str) -> List[BaseMetadataExtractor]:
        """Enabled extractors declaring support for a resource type."""
        return [e for e in self.get_enabled() if e.supports_resource_type(resource_type)]


# Global singleton instance
extractor_registry = ExtractorRegistry()
