"""Domain layer for firedragon."""
