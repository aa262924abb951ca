# metaharvest/core/database/models.py
"""
SQLAlchemy ORM models for the metadata extraction scheduler.

Models:
    - StoredFile: Byte-addressable file resources ("file" resource type)
    - ExternalLink: External link resources ("url" resource type)
    - ExtractionRecord: Status of one (resource, resource type, extractor) extraction
    - ScanCursor: Persisted scan watermark per (resource type, extractor)
    - ExtractedMetadata: Metadata produced by an extractor, keyed by content fingerprint

Resource tables are owned by external collaborators; the scheduler only reads
them. Extraction records, cursors and extracted metadata are owned here.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .base import Base


class StoredFile(Base):
    """
    A stored file whose bytes live in content-addressable storage.

    Attributes:
        id: Resource identifier, unique within the "file" resource type
        filename: File name ("." marks a directory placeholder)
        filepath: Logical directory path
        storage_path: Location of the bytes on disk (optional)
        content_hash: Hash of the content bytes, computed at storage time
        mimetype: MIME type reported by the uploader
        filesize: Size in bytes
    """

    __tablename__ = "files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    filename = Column(String(255), nullable=False)
    filepath = Column(String(1024), nullable=False, default="/")
    storage_path = Column(String(1024), nullable=True)
    content_hash = Column(String(128), nullable=True, index=True)
    mimetype = Column(String(255), nullable=True)
    filesize = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    modified_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<StoredFile(id={self.id}, filename={self.filename})>"


class ExternalLink(Base):
    """
    An external link resource.

    The content behind a link is dynamic, so its fingerprint is derived from
    the canonical form of the URL rather than the bytes it serves.
    """

    __tablename__ = "links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, default="")
    external_url = Column(Text, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    modified_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<ExternalLink(id={self.id}, url={self.external_url})>"


class ExtractionRecord(Base):
    """
    Durable status of one extraction.

    Exactly one record exists per (resource_id, resource_type, extractor).
    Records are created on the first scheduling decision for a pair and
    updated on every status transition. The scheduler never deletes them;
    the cleanup task removes records whose resource has been deleted.

    Attributes:
        resource_id: Id of the resource within its resource type
        resource_type: Resource type name ("file", "url", ...)
        extractor: Name of the extractor backend
        resource_hash: Content fingerprint last seen for the resource
        status: ExtractionStatus code (see core.extraction.status)
        reason: Human-readable explanation of the current status
        created_at / modified_at: Timestamps (modified_at drives staleness)
    """

    __tablename__ = "metadata_extractions"
    __table_args__ = (
        UniqueConstraint("resource_id", "resource_type", "extractor", name="uq_extraction_resource_extractor"),
        Index("ix_extraction_type_extractor_resource", "resource_type", "extractor", "resource_id"),
        Index("ix_extraction_extractor_hash", "extractor", "resource_hash"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    resource_id = Column(Integer, nullable=False)
    resource_type = Column(String(50), nullable=False)
    extractor = Column(String(100), nullable=False)
    resource_hash = Column(String(128), nullable=True)
    status = Column(Integer, nullable=False, index=True)
    reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    modified_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ExtractionRecord(resource={self.resource_type}:{self.resource_id}, "
            f"extractor={self.extractor}, status={self.status})>"
        )


class ScanCursor(Base):
    """Scan watermark: highest resource id fully considered by the last pass."""

    __tablename__ = "extraction_cursors"

    resource_type = Column(String(50), primary_key=True)
    extractor = Column(String(100), primary_key=True)
    position = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ExtractedMetadata(Base):
    """
    Metadata extracted by one extractor for one piece of content.

    Keyed by content fingerprint rather than resource id, so identical
    content reached through different resources is extracted once.
    """

    __tablename__ = "extracted_metadata"
    __table_args__ = (
        UniqueConstraint("extractor", "resource_hash", name="uq_metadata_extractor_hash"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    extractor = Column(String(100), nullable=False, index=True)
    resource_hash = Column(String(128), nullable=False)
    data = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    modified_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
