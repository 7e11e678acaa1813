"""Monte-Carlo placement of particles in a cylinder or annular shell.

Particles are placed in pairs mirrored through the cylinder axis, so the
transverse centre of mass of every accepted pair is exactly zero:

    phi = 2 pi U1
    r   = R sqrt(U2)                      (full cylinder)
    r   = r1 + (r2 - r1) sqrt(U2)         (annulus)
    z   = Z (U3 - 1/2)

    p1 = ( r cos phi,  r sin phi, z)
    p2 = (-r cos phi, -r sin phi, z)

Every candidate gets a 1-based global index and is kept only if the
inclusion mask accepts that index, so subsampling never changes the
random stream.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from cylstream.constants import hfact_default, pi
from cylstream.core.bases import InclusionMask, mask_true
from cylstream.core.errors import CapacityError

logger = logging.getLogger(__name__)

DEFAULT_SEED = 1978


@dataclass
class Placement:
    """Result of a Monte-Carlo placement.

    Attributes:
        xyzh: Accepted positions and smoothing lengths, shape (n, 4).
        nparttot: Candidates generated (accepted or not) across all masks.
        psep: Mean interparticle spacing used for the initial h.
    """

    xyzh: np.ndarray
    nparttot: int
    psep: float

    @property
    def npart(self) -> int:
        return int(self.xyzh.shape[0])


def mean_spacing(radius: float, height: float, n: int, r_inner: float = 0.0) -> float:
    """Mean interparticle spacing (V / n)^(1/3) of an annular cylinder."""
    volume = pi * (radius**2 - r_inner**2) * height
    return float((volume / n) ** (1.0 / 3.0))


def set_cylinder_mc(
    radius: float,
    height: float,
    np_requested: int,
    hfact: float = hfact_default,
    mask: InclusionMask = mask_true,
    maxp: int | None = None,
    r_inner: float | None = None,
    seed: int = DEFAULT_SEED,
    index_offset: int = 0,
) -> Placement:
    """Place ``np_requested`` particles (rounded up to a pair) at random.

    Args:
        radius: Cylinder radius, or outer radius of the annulus.
        height: Axial extent, centred on z = 0.
        np_requested: Requested number of candidates.
        hfact: Smoothing length factor, h = hfact * psep.
        mask: Inclusion predicate on the 1-based global index.
        maxp: Storage available to the caller (None = unlimited).
        r_inner: Inner radius of an annular shell (None = full cylinder).
        seed: Seed of the random stream.
        index_offset: Global index of the candidate preceding the first one.

    Raises:
        CapacityError: More particles accepted than ``maxp``.
    """
    npairs = (np_requested + 1) // 2
    rng = np.random.default_rng(seed)
    draws = rng.random((npairs, 3))

    phi = 2.0 * pi * draws[:, 0]
    if r_inner is None:
        rr = radius * np.sqrt(draws[:, 1])
        psep = mean_spacing(radius, height, np_requested)
    else:
        rr = r_inner + (radius - r_inner) * np.sqrt(draws[:, 1])
        psep = mean_spacing(radius, height, np_requested, r_inner)
    z = height * (draws[:, 2] - 0.5)

    pos = np.empty((2 * npairs, 3))
    pos[0::2, 0] = rr * np.cos(phi)
    pos[0::2, 1] = rr * np.sin(phi)
    pos[1::2, :2] = -pos[0::2, :2]
    pos[0::2, 2] = z
    pos[1::2, 2] = z

    nparttot = 2 * npairs
    if mask is mask_true:
        keep = np.ones(nparttot, dtype=bool)
    else:
        keep = np.fromiter(
            (mask(index_offset + i + 1) for i in range(nparttot)), dtype=bool, count=nparttot
        )
    naccepted = int(np.count_nonzero(keep))
    if maxp is not None and naccepted > maxp:
        raise CapacityError(
            f"{naccepted} particles accepted but storage holds {maxp}; "
            f"increase maxp to at least {naccepted}"
        )

    xyzh = np.empty((naccepted, 4))
    xyzh[:, :3] = pos[keep]
    xyzh[:, 3] = hfact * psep
    logger.info("Placed %d particles in random-but-symmetric cylinder", naccepted)
    return Placement(xyzh=xyzh, nparttot=nparttot, psep=psep)
