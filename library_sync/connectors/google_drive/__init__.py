"""Google Drive connector: API client and folder-tree sync."""
