"""cylstream: cylinder reservoirs and colliding-stream injection for SPH.

Builds (and optionally relaxes) cylinders of SPH gas particles with a
uniform or Gaussian transverse profile, stores them as reservoir files,
and injects them into a live particle pool as two cyclic streams.
"""

from __future__ import annotations

__version__ = "0.1.0"
