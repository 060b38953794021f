"""Platform-wide core types (exception hierarchy)."""
