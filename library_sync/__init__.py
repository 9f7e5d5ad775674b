# library_sync/__init__.py
"""Library Sync - folder classification and tag hierarchy synchronization."""

__version__ = "0.1.0"
__title__ = "Library Sync"
__description__ = "Turn a curated Drive folder tree into a tag forest and resource catalog"
