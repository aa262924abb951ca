"""
Resource type descriptors.

A descriptor tells the generic scanner, dispatcher and worker everything
that differs between resource types: which table holds the resources,
which rows are never eligible for extraction, how a resource is loaded by
id, and whether scanning restarts from the beginning by default.

Usage:
    from metaharvest.core.extraction.resource_types import resource_type_registry

    descriptor = resource_type_registry.get("file")
    resource = await descriptor.resolve(session, 42)
"""

import logging
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession

from metaharvest.core.database.models import ExternalLink, StoredFile
from .exceptions import UnsupportedResourceType

logger = logging.getLogger("metaharvest.resource_types")

FILE = "file"
URL = "url"

# Filename used by directory placeholder rows in the files table
DIRECTORY_FILENAME = "."


class ResourceTypeDescriptor:
    """
    Base descriptor for a resource type.

    Subclasses set ``name`` and ``model`` and override ``base_conditions``
    when some rows of the resource table must never be extracted.
    """

    name: str = ""
    model: Any = None
    cyclical: bool = True

    @property
    def id_column(self):
        return self.model.id

    @property
    def table_name(self) -> str:
        return self.model.__tablename__

    @property
    def column_names(self) -> Set[str]:
        return {column.name for column in self.model.__table__.columns}

    def base_conditions(self) -> List[Any]:
        """Exclusion predicates that always apply to this resource type."""
        return []

    def get_column(self, name: str):
        return self.model.__table__.columns[name]

    async def resolve(self, session: AsyncSession, resource_id: int) -> Optional[Any]:
        """Load a resource by id, or None if it no longer exists."""
        return await session.get(self.model, resource_id)

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(name={self.name}, table={self.table_name})>"


class FileResourceType(ResourceTypeDescriptor):
    name = FILE
    model = StoredFile

    def base_conditions(self) -> List[Any]:
        # Directory placeholders carry no content
        return [StoredFile.filename != DIRECTORY_FILENAME]


class UrlResourceType(ResourceTypeDescriptor):
    name = URL
    model = ExternalLink

    def base_conditions(self) -> List[Any]:
        # Only http(s) links can be fetched
        return [func.lower(ExternalLink.external_url).like("http%")]


class ResourceTypeRegistry:
    """Registry of known resource types, keyed by name."""

    def __init__(self):
        self._types: Dict[str, ResourceTypeDescriptor] = {}

    def register(self, descriptor: ResourceTypeDescriptor) -> ResourceTypeDescriptor:
        if descriptor.name in self._types:
            logger.debug(f"Replacing resource type descriptor: {descriptor.name}")
        self._types[descriptor.name] = descriptor
        return descriptor

    def get(self, resource_type: str) -> ResourceTypeDescriptor:
        descriptor = self._types.get(resource_type)
        if descriptor is None:
            raise UnsupportedResourceType(resource_type)
        return descriptor

    def __contains__(self, resource_type: str) -> bool:
        return resource_type in self._types


def _build_default_registry() -> ResourceTypeRegistry:
    registry = ResourceTypeRegistry()
    registry.register(FileResourceType())
    registry.register(UrlResourceType())
    return registry


resource_type_registry = _build_default_registry()
