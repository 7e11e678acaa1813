"""Relaxation of a cylinder towards its target density profile."""

from cylstream.relax.relaxer import Relaxer, relax_cylinder
from cylstream.relax.sph import PeriodicBox, SPHDerivatives

__all__ = ["PeriodicBox", "Relaxer", "SPHDerivatives", "relax_cylinder"]
