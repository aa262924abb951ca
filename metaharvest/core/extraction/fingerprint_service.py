"""
Content fingerprinting for resources.

A fingerprint is a stable content hash used as the deduplication key and
as the storage key of extracted metadata:

- file: the stored content hash, or a streaming hash of the bytes on disk
- url: a hash of the canonical form of the link

Link content is dynamic, so a link's fingerprint identifies its locator,
not the bytes it currently serves. Fingerprints are not guaranteed to be
stable over a resource's lifetime: re-reading a resource later may give a
different value, and callers must treat that as a content change.

Usage:
    from metaharvest.core.extraction.fingerprint_service import fingerprint_service

    resource_hash = fingerprint_service.fingerprint(stored_file, "file")
"""

import hashlib
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from metaharvest.config import settings
from .exceptions import UnsupportedResourceType
from .resource_types import FILE, URL

logger = logging.getLogger("metaharvest.fingerprint")

_DEFAULT_PORTS = {"http": 80, "https": 443}

FingerprintFunction = Callable[[Any], str]


def canonicalize_url(url: str) -> str:
    """
    Canonical form of a URL.

    Lower-cases scheme and host, drops default ports, user info is kept,
    sorts query parameters, drops the fragment and normalizes an empty
    path to "/".

    Example:
        >>> canonicalize_url("HTTPS://Example.COM:443?b=2&a=1#top")
        'https://example.com/?a=1&b=2'
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()

    host = (parts.hostname or "").lower()
    if ":" in host:
        # IPv6 literal
        host = f"[{host}]"
    port = parts.port
    netloc = host
    if parts.username:
        userinfo = parts.username
        if parts.password:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{host}"
    if port and _DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"

    path = parts.path or "/"
    query = urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))

    return urlunsplit((scheme, netloc, path, query, ""))


class FingerprintService:
    """
    Derives content fingerprints for resources.

    Fingerprint functions are registered per resource type; additional
    resource types register their own with ``register()``.
    """

    def __init__(self, algorithm: Optional[str] = None):
        self._algorithm = algorithm
        self._functions: Dict[str, FingerprintFunction] = {
            FILE: self._fingerprint_file,
            URL: self._fingerprint_url,
        }

    @property
    def algorithm(self) -> str:
        return self._algorithm or settings.fingerprint_hash_algorithm

    def register(self, resource_type: str, function: FingerprintFunction) -> None:
        self._functions[resource_type] = function

    def supports(self, resource_type: str) -> bool:
        return resource_type in self._functions

    def fingerprint(self, resource: Any, resource_type: str) -> str:
        """
        Get the fingerprint of a resource.

        Args:
            resource: Resource instance (ORM row)
            resource_type: Resource type name

        Returns:
            Hex digest identifying the resource's content

        Raises:
            UnsupportedResourceType: If no fingerprint function exists for the type
        """
        function = self._functions.get(resource_type)
        if function is None:
            raise UnsupportedResourceType(resource_type)
        return function(resource)

    def hash_text(self, value: str) -> str:
        return hashlib.new(self.algorithm, value.encode("utf-8")).hexdigest()

    def hash_file(self, file_path: Path) -> str:
        """Hash a file's bytes, streaming in chunks to handle large files."""
        hash_func = hashlib.new(self.algorithm)
        with open(file_path, "rb") as f:
            while chunk := f.read(8192):
                hash_func.update(chunk)
        return hash_func.hexdigest()

    def _fingerprint_file(self, stored_file: Any) -> str:
        if stored_file.content_hash:
            return stored_file.content_hash
        if not stored_file.storage_path:
            # No bytes to read, so the file can only be identified by itself
            logger.debug(f"File {stored_file.id} has no content hash or storage path")
            return self.hash_text(f"{FILE}:{stored_file.id}")
        return self.hash_file(Path(stored_file.storage_path))

    def _fingerprint_url(self, link: Any) -> str:
        return self.hash_text(canonicalize_url(link.external_url))


# Global singleton instance
fingerprint_service = FingerprintService()
