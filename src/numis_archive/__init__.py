"""
NumisArchive: local catalog for collectible banknotes.

This package provides shared utilities (config, logging, paths, domain models)
plus the catalog itself: SQLite storage, in-memory search, form rules, image
handling, AI-assisted metadata and the HTTP/CLI entrypoints.
"""

__all__ = [
    "config",
    "logging",
    "paths",
]

__version__ = "0.3.0"
