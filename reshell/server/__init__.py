"""WebSocket/HTTP surface: client registry, protocol router, file access."""
