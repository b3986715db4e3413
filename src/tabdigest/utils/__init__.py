"""Utility helpers shared across the tabdigest runtime."""
