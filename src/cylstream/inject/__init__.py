"""Cyclic-reservoir stream injection."""

from cylstream.inject.stream import IndexList, StreamInjector, advance_cylinder

__all__ = ["IndexList", "StreamInjector", "advance_cylinder"]
