"""PTY-backed shell sessions and their recordings."""
