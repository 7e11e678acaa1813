"""Tabulated transverse density profiles of a cylinder.

Two profile kinds are supported, both normalised to the cylinder mass M
over radius R and height Z:

    uniform:  rho(r) = M / (pi R^2 Z)
    gaussian: rho(r) = rho0 exp(-r^2 / sigma^2),
              rho0 = M / (pi Z sigma^2 (1 - exp(-R^2 / sigma^2)))
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from cylstream.constants import nrhotab, pi
from cylstream.core.bases import DensityProfile
from cylstream.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


def set_cylinder_profile(
    kind: str,
    radius: float,
    height: float,
    mass: float,
    gauss_sigma: float = 0.0,
    npts: int = nrhotab,
) -> DensityProfile:
    """Tabulate rho(r) on ``r_i = i R / npts`` for i = 1..npts.

    Raises:
        ConfigurationError: Non-positive radius or height, negative mass,
            non-positive sigma for the gaussian profile, or an unknown kind.
    """
    if radius <= 0.0:
        raise ConfigurationError(f"cylinder radius must be positive, got {radius}")
    if height <= 0.0:
        raise ConfigurationError(f"cylinder height must be positive, got {height}")
    if mass < 0.0:
        raise ConfigurationError(f"cylinder mass must be non-negative, got {mass}")

    r = np.arange(1, npts + 1) * (radius / npts)
    if kind == "uniform":
        rho0 = mass / (pi * radius**2 * height)
        rho = np.full(npts, rho0)
    elif kind == "gaussian":
        if gauss_sigma <= 0.0:
            raise ConfigurationError(f"gaussian profile needs sigma > 0, got {gauss_sigma}")
        sig2 = gauss_sigma**2
        rho0 = mass / (height * pi * sig2 * (1.0 - np.exp(-(radius**2) / sig2)))
        rho = rho0 * np.exp(-(r**2) / sig2)
    else:
        raise ConfigurationError(f"unknown density profile '{kind}' (expected uniform or gaussian)")

    logger.debug("Profile %s: rho0=%.6e over %d points", kind, rho0, npts)
    return DensityProfile(r=r, rho=rho, rho_centre=float(rho0), kind=kind)


def get_mr(rho: np.ndarray, r: np.ndarray) -> np.ndarray:
    """Cumulative mass per unit height m(r) = int 2 pi rho r dr from r[0].

    Midpoint rule on each interval with rho taken at the outer edge.
    """
    mr = np.zeros_like(r, dtype=np.float64)
    mr[1:] = np.cumsum(2.0 * pi * rho[1:] * np.diff(r) * 0.5 * (r[1:] + r[:-1]))
    return mr


def write_rhotab(path: str | Path, r: np.ndarray, rho: np.ndarray, label: str = "") -> None:
    """Write a two-column radius/density table."""
    header = "r  rho" if not label else f"{label}\nr  rho"
    np.savetxt(path, np.column_stack([r, rho]), fmt="%24.16e", header=header)
    logger.info("Density profile written to %s", path)
