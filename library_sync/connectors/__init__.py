"""Remote store connectors."""
