"""Incremental metadata extraction scheduler."""

__version__ = "1.0.0"
