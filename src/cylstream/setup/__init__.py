"""Cylinder construction: density table, placement, stretch map, orchestration."""
