"""Exception types raised by the generation and injection pipeline.

Each error subclasses the builtin the rest of the codebase would raise for
the same condition, so callers catching ``ValueError`` / ``RuntimeError``
keep working.
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid geometry, mass, particle count or setup-file keys."""


class CapacityError(RuntimeError):
    """More particles accepted than the caller-provided storage can hold."""


class CheckpointMismatchError(RuntimeError):
    """A restart snapshot disagrees with the current particle count or mass."""


class SetupError(RuntimeError):
    """The particle setup sanity check reported structural errors."""


class PartitionError(RuntimeError):
    """Relaxation requested while particles are split across partitions."""


class ReservoirFormatError(ValueError):
    """Reservoir record file is truncated or has too few columns."""
