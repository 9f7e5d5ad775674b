# library_sync/services/__init__.py
"""Service layer: classification, tags, catalog, browse and persistence."""
