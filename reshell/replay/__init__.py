"""Bring a recorded session back into a fresh shell."""
