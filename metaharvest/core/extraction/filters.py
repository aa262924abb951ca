"""
Resource extraction filters.

Operators can restrict which resources are extracted with the
``extraction_filters`` setting, a JSON list such as:

    [{"type": "file", "field": "mimetype", "value": "application/pdf"}]

Filters for the scanned resource type whose field names a real column of
the resource table become equality predicates ANDed into the scan. Filters
naming unknown fields are ignored.
"""

import logging
from typing import Any, List, Optional

from pydantic import BaseModel, TypeAdapter, ValidationError

from metaharvest.config import settings
from .exceptions import InvalidExtractionFilters
from .resource_types import ResourceTypeDescriptor

logger = logging.getLogger("metaharvest.filters")


class ExtractionFilter(BaseModel):
    type: str
    field: str
    value: Any = None


_filters_adapter = TypeAdapter(List[ExtractionFilter])


def parse_extraction_filters(raw: Optional[str] = None) -> List[ExtractionFilter]:
    """
    Parse the extraction_filters setting.

    Raises:
        InvalidExtractionFilters: If the value is not a JSON list of filters
    """
    if raw is None:
        raw = settings.extraction_filters
    if not raw or not raw.strip():
        return []
    try:
        return _filters_adapter.validate_json(raw)
    except ValidationError as e:
        raise InvalidExtractionFilters(
            "Extraction filters could not be parsed, check the extraction_filters setting: "
            f"{e.error_count()} error(s)"
        ) from e


def get_filter_conditions(descriptor: ResourceTypeDescriptor, raw: Optional[str] = None) -> List[Any]:
    """Build the SQL predicates contributed by configured filters for one resource type."""
    columns = descriptor.column_names
    conditions = []
    for extraction_filter in parse_extraction_filters(raw):
        if extraction_filter.type != descriptor.name:
            continue
        if extraction_filter.field not in columns:
            logger.warning(
                f"Ignoring extraction filter on unknown field "
                f"{descriptor.table_name}.{extraction_filter.field}"
            )
            continue
        conditions.append(descriptor.get_column(extraction_filter.field) == extraction_filter.value)
    return conditions
