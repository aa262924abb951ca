"""
File metadata extractor.

Derives descriptive metadata from a stored file's record and, when its
bytes are on disk, from the file itself: title, format, extension and
size.
"""

import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..resource_types import DIRECTORY_FILENAME, FILE
from .base import BaseMetadataExtractor


def title_from_filename(filename: str) -> str:
    """'quarterly_report-2024.pdf' -> 'quarterly report 2024'"""
    stem = Path(filename).stem
    return " ".join(stem.replace("_", " ").replace("-", " ").split())


class FileMetadataExtractor(BaseMetadataExtractor):

    @property
    def name(self) -> str:
        return "filemeta"

    @property
    def display_name(self) -> str:
        return "File Metadata"

    @property
    def description(self) -> str:
        return "Title, format and size of stored files."

    @property
    def supported_resource_types(self) -> List[str]:
        return [FILE]

    def can_extract(self, resource: Any, resource_type: str) -> bool:
        if not super().can_extract(resource, resource_type):
            return False
        return resource.filename != DIRECTORY_FILENAME

    async def extract(self, resource: Any, resource_type: str) -> Optional[Dict[str, Any]]:
        filesize = resource.filesize
        if resource.storage_path:
            path = Path(resource.storage_path)
            if not path.exists():
                # Bytes are gone; nothing to describe
                self._logger.info(f"File {resource.id} content missing at {path}")
                return None
            filesize = path.stat().st_size

        mimetype = resource.mimetype or mimetypes.guess_type(resource.filename)[0]
        metadata = {
            "title": title_from_filename(resource.filename),
            "filename": resource.filename,
            "format": mimetype,
            "extension": Path(resource.filename).suffix.lstrip(".").lower() or None,
            "filesize": filesize,
        }
        return {key: value for key, value in metadata.items() if value not in (None, "")}
