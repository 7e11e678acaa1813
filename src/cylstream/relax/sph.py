"""Minimal SPH density and pressure-force evaluator used during relaxation.

M4 cubic spline kernel in 3D (support 2h):

    W(q, h) = 1/(pi h^3) * { 1 - 3/2 q^2 + 3/4 q^3     0 <= q < 1
                           { 1/4 (2 - q)^3             1 <= q < 2

Smoothing lengths follow h = hfact (m / rho)^(1/3) by fixed-point
iteration, after which the density is taken as rho = m (hfact / h)^3.
Acceleration:

    a_i = -sum_j m_j (P_i / rho_i^2 dW_ij(h_i) + P_j / rho_j^2 dW_ij(h_j)) e_ij
          - damp v_i

Neighbours are found with a periodic ``scipy.spatial.cKDTree``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from numba import njit
from scipy.spatial import cKDTree

from cylstream.constants import pi, radkern, relax_box
from cylstream.core.bases import DerivativesBase
from cylstream.core.options import PhysicsOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeriodicBox:
    """Axis-aligned periodic domain ``[lo, hi)``."""

    lo: np.ndarray
    hi: np.ndarray

    @classmethod
    def for_cylinder(cls, radius: float, height: float, half_width: float = relax_box) -> PeriodicBox:
        """Box of +-half_width*R transversely and +-Z/2 along the axis."""
        return cls(
            lo=np.array([-half_width * radius, -half_width * radius, -0.5 * height]),
            hi=np.array([half_width * radius, half_width * radius, 0.5 * height]),
        )

    @property
    def size(self) -> np.ndarray:
        return self.hi - self.lo

    def wrap(self, pos: np.ndarray) -> np.ndarray:
        """Map positions back into the box."""
        return self.lo + np.mod(pos - self.lo, self.size)

    def tree_coords(self, pos: np.ndarray) -> np.ndarray:
        """Positions relative to ``lo`` folded into [0, size) for the kd-tree."""
        off = np.mod(pos - self.lo, self.size)
        return np.where(off >= self.size, 0.0, off)

    def minimum_image(self, dx: np.ndarray) -> np.ndarray:
        return dx - self.size * np.round(dx / self.size)


# ---------------------------------------------------------------
# Kernel and pair sums
# ---------------------------------------------------------------

@njit(cache=True)
def kernel_w(q: float) -> float:
    """Dimensionless cubic spline, W = kernel_w(q) / (pi h^3)."""
    if q < 1.0:
        return 1.0 - 1.5 * q * q + 0.75 * q * q * q
    if q < 2.0:
        return 0.25 * (2.0 - q) ** 3
    return 0.0


@njit(cache=True)
def kernel_dw(q: float) -> float:
    """Dimensionless derivative, dW/dr = kernel_dw(q) / (pi h^4)."""
    if q < 1.0:
        return -3.0 * q + 2.25 * q * q
    if q < 2.0:
        return -0.75 * (2.0 - q) ** 2
    return 0.0


@njit(cache=True)
def density_sum(
    pair_i: np.ndarray, pair_j: np.ndarray, r: np.ndarray, h: np.ndarray, m: np.ndarray
) -> np.ndarray:
    n = h.shape[0]
    rho = np.empty(n)
    for i in range(n):
        rho[i] = m[i] * kernel_w(0.0) / (pi * h[i] ** 3)
    for k in range(pair_i.shape[0]):
        i = pair_i[k]
        j = pair_j[k]
        rho[i] += m[j] * kernel_w(r[k] / h[i]) / (pi * h[i] ** 3)
        rho[j] += m[i] * kernel_w(r[k] / h[j]) / (pi * h[j] ** 3)
    return rho


@njit(cache=True)
def pressure_force_sum(
    pair_i: np.ndarray,
    pair_j: np.ndarray,
    dx: np.ndarray,
    r: np.ndarray,
    h: np.ndarray,
    m: np.ndarray,
    prho2: np.ndarray,
) -> np.ndarray:
    """Symmetric pressure-gradient acceleration; dx = x_i - x_j."""
    n = h.shape[0]
    acc = np.zeros((n, 3))
    for k in range(pair_i.shape[0]):
        rij = r[k]
        if rij <= 0.0:
            continue
        i = pair_i[k]
        j = pair_j[k]
        gi = kernel_dw(rij / h[i]) / (pi * h[i] ** 4)
        gj = kernel_dw(rij / h[j]) / (pi * h[j] ** 4)
        f = (prho2[i] * gi + prho2[j] * gj) / rij
        for d in range(3):
            acc[i, d] -= m[j] * f * dx[k, d]
            acc[j, d] += m[i] * f * dx[k, d]
    return acc


# ---------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------

class SPHDerivatives(DerivativesBase):
    """Density and pressure force evaluator on a periodic box.

    Args:
        options: Run-time physics options (EOS, hfact, damping). Read on
            every call, so changes made by ``relaxation_options`` apply.
        box: Periodic domain; None for open boundaries.
        h_tol: Relative tolerance of the smoothing-length iteration.
        max_h_iter: Iteration cap for the smoothing-length iteration.
    """

    def __init__(
        self,
        options: PhysicsOptions,
        box: PeriodicBox | None = None,
        h_tol: float = 1e-4,
        max_h_iter: int = 20,
    ) -> None:
        self.options = options
        self.box = box
        self.h_tol = h_tol
        self.max_h_iter = max_h_iter
        self.density = np.zeros(0)
        self.ncalls = 0

    def _pairs(self, pos: np.ndarray, rcut: float) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        if self.box is not None:
            tree = cKDTree(self.box.tree_coords(pos), boxsize=self.box.size)
        else:
            tree = cKDTree(pos)
        pairs = tree.query_pairs(rcut, output_type="ndarray")
        pi_ = pairs[:, 0].astype(np.int64)
        pj_ = pairs[:, 1].astype(np.int64)
        dx = pos[pi_] - pos[pj_]
        if self.box is not None:
            dx = self.box.minimum_image(dx)
        r = np.sqrt(np.sum(dx * dx, axis=1))
        return pi_, pj_, dx, r

    def smoothing_lengths(self, pos: np.ndarray, h: np.ndarray, m: np.ndarray) -> np.ndarray:
        """Iterate h = hfact (m / rho(h))^(1/3) to ``h_tol``."""
        hfact = self.options.hfact
        h = h.copy()
        for _ in range(self.max_h_iter):
            pi_, pj_, _, r = self._pairs(pos, radkern * float(np.max(h)))
            rho = density_sum(pi_, pj_, r, h, m)
            hnew = hfact * (m / rho) ** (1.0 / 3.0)
            change = float(np.max(np.abs(hnew - h) / h))
            h = hnew
            if change < self.h_tol:
                break
        else:
            logger.debug("h iteration stopped after %d iterations (change %.2e)", self.max_h_iter, change)
        return h

    def compute(self, pool) -> None:
        n = pool.npart
        alive = np.flatnonzero(pool.alive_mask())
        if alive.size == 0:
            return
        pos = pool.xyzh[alive, :3]
        m = pool.massoftype[pool.itype[alive]]
        h = np.abs(pool.xyzh[alive, 3])

        h = self.smoothing_lengths(pos, h, m)
        rho = m * (self.options.hfact / h) ** 3

        eos = self.options.eos()
        u = pool.vxyzu[alive, 3]
        prho2 = eos.pressure(rho, u) / rho**2

        pi_, pj_, dx, r = self._pairs(pos, radkern * float(np.max(h)))
        acc = pressure_force_sum(pi_, pj_, dx, r, h, m, prho2)
        if self.options.idamp:
            acc -= self.options.damp * pool.vxyzu[alive, :3]

        pool.xyzh[alive, 3] = h
        pool.fxyzu[:n, :3] = 0.0
        pool.fxyzu[alive, :3] = acc
        self.density = np.zeros(n)
        self.density[alive] = rho
        self.ncalls += 1
