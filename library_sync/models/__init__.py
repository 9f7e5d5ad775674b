# library_sync/models/__init__.py
"""Pydantic models for configuration and query results."""
