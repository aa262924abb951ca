"""Shared infrastructure services (database, locks)."""
