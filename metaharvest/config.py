# ============================================================================
# metaharvest - Application Configuration
# ============================================================================
"""
Application configuration module using Pydantic Settings.

This module defines all configuration parameters for the metadata extraction
scheduler, including:
- Admission control (global ceiling and per-extractor batch size)
- Staleness threshold for in-progress extractions
- Enabled extractors and cyclical rescanning policy
- Resource extraction filters
- HTTP settings used by URL extractors

Environment Variables:
    Every field can be set from the environment (case-insensitive), e.g.
    TOTAL_EXTRACTION_PROCESSES=5000 or ENABLED_EXTRACTORS='["filemeta"]'.

Usage:
    from metaharvest.config import settings
    ceiling = settings.total_extraction_processes
"""

from typing import Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # =========================================================================
    # GENERAL
    # =========================================================================
    app_name: str = "metaharvest"
    debug: bool = Field(default=False, description="Enable SQL echo & verbose logging")

    # =========================================================================
    # ADMISSION CONTROL
    # =========================================================================
    total_extraction_processes: int = Field(
        default=10000,
        description="Global ceiling of extraction jobs in flight across all extractors",
    )
    max_extraction_processes: int = Field(
        default=1000,
        description="Maximum extraction jobs a single extractor may queue per pass",
    )
    extraction_staleness_seconds: int = Field(
        default=86400,
        description="Age after which an accepted/pending extraction is presumed lost",
    )

    # =========================================================================
    # EXTRACTORS & SCANNING
    # =========================================================================
    enabled_extractors: List[str] = Field(
        default=["filemeta", "htmlmeta"],
        description="Names of enabled metadata extractors",
    )
    cyclical_processing_disabled: bool = Field(
        default=False,
        description="Never restart scanning from the beginning once the end is reached",
    )
    extractor_cyclical: Dict[str, bool] = Field(
        default_factory=dict,
        description="Per-extractor override of cyclical rescanning",
    )
    extraction_filters: str = Field(
        default="[]",
        description="JSON list of {type, field, value} resource filters",
    )
    cursor_seed_from_completed: bool = Field(
        default=False,
        description="Seed a missing cursor from the highest completed resource id",
    )
    parallel_backend_scans: bool = Field(
        default=False,
        description="Scan and dispatch extractors concurrently within a pass",
    )
    fingerprint_hash_algorithm: str = Field(default="sha256", description="hashlib algorithm")

    # =========================================================================
    # EXECUTION LAYER
    # =========================================================================
    extraction_queue: str = Field(default="extraction", description="Celery queue for extraction jobs")
    pass_lock_timeout: int = Field(default=900, description="Seconds a pass lock is held before expiry")

    # =========================================================================
    # HTTP (URL extractors)
    # =========================================================================
    http_connect_timeout: float = Field(default=10.0, description="Connect timeout (s)")
    http_request_timeout: float = Field(default=30.0, description="Total request timeout (s)")
    http_user_agent: str = Field(default="metaharvest/1.0", description="User-Agent header")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    def is_cyclical(self, extractor_name: str, default: bool = True) -> bool:
        """Resolve the cyclical rescanning policy for one extractor."""
        if self.cyclical_processing_disabled:
            return False
        return self.extractor_cyclical.get(extractor_name, default)


# Global settings instance (imported elsewhere)
settings = Settings()
