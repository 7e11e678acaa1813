"""Cylindrical stretch map from uniform to tabulated transverse density.

A particle at radius r in a uniformly filled disc of radius R encloses the
area fraction f = (r / R)^2. It is moved radially to the radius r' that
encloses the same fraction of the target mass per unit height,

    M(r') / M(R) = f,      M(r) = int_0^r 2 pi rho(s) s ds,

keeping its azimuth and axial coordinate. The map is monotone, so the
radial ordering of particles is preserved, and particles are only moved,
never created or removed.
"""

from __future__ import annotations

import logging

import numpy as np

from cylstream.constants import pi
from cylstream.core.bases import DensityProfile

logger = logging.getLogger(__name__)


def cumulative_mass(r: np.ndarray, rho: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Trapezoid cumulative mass per unit height, anchored on the axis.

    Returns:
        (radii, mass) with a leading (0, 0) point prepended.
    """
    rr = np.concatenate(([0.0], r))
    dd = np.concatenate(([rho[0]], rho))
    integrand = 2.0 * pi * dd * rr
    mass = np.zeros_like(rr)
    mass[1:] = np.cumsum(0.5 * (integrand[1:] + integrand[:-1]) * np.diff(rr))
    return rr, mass


def set_density_profile(
    xyzh: np.ndarray,
    profile: DensityProfile,
    rmin: float = 0.0,
    rmax: float | None = None,
) -> None:
    """Stretch transverse radii of ``xyzh`` in place to follow ``profile``.

    Args:
        xyzh: Particle positions, shape (n, 4); columns 0-1 are transverse.
        profile: Target density table.
        rmin: Inner radius of the mapped region.
        rmax: Outer radius of the uniform distribution (default: table edge).
    """
    if xyzh.shape[0] == 0:
        return
    rmax = profile.rmax if rmax is None else rmax
    if profile.kind == "uniform" and rmin == 0.0:
        return

    rr, mass = cumulative_mass(profile.r, profile.rho)
    m_in = np.interp(rmin, rr, mass)
    m_out = np.interp(rmax, rr, mass)

    r_old = np.hypot(xyzh[:, 0], xyzh[:, 1])
    frac = (r_old**2 - rmin**2) / (rmax**2 - rmin**2)
    frac = np.clip(frac, 0.0, 1.0)
    r_new = np.interp(m_in + frac * (m_out - m_in), mass, rr)

    scale = np.divide(r_new, r_old, out=np.ones_like(r_old), where=r_old > 0.0)
    xyzh[:, 0] *= scale
    xyzh[:, 1] *= scale
    logger.debug("Stretched %d particles onto %s profile", xyzh.shape[0], profile.kind)
