"""Operator commands, runnable with ``python -m library_sync.commands.<name>``."""
