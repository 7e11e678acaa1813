"""Shared data structures, errors, options and the live particle pool."""
