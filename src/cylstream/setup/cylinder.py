"""Build a cylinder of gas particles from a ``CylinderConfig``.

Pipeline: density table -> Monte-Carlo placement -> radial stretch map ->
optional relaxation -> centre-of-mass reset -> rotation and shift.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from cylstream.config import CylinderConfig
from cylstream.constants import pi, solarm, solarr
from cylstream.core.bases import DensityProfile, DerivativesBase, InclusionMask, RelaxResult, mask_true
from cylstream.core.errors import ConfigurationError
from cylstream.core.options import PhysicsOptions
from cylstream.core.particles import IGAS, ParticlePool
from cylstream.relax.relaxer import default_buffer_count, relax_cylinder
from cylstream.setup.placement import set_cylinder_mc
from cylstream.setup.profile import set_cylinder_profile, write_rhotab
from cylstream.setup.stretchmap import set_density_profile

logger = logging.getLogger(__name__)


@dataclass
class CylinderSetup:
    """Outcome of ``set_cylinder``.

    Attributes:
        pool: Pool holding the new particles at ``[npart_old, pool.npart)``.
        profile: Target density table.
        npart_old: Particle count before the cylinder was added.
        npart_total: Candidates generated across all masks.
        rhomean: Mean density M / (pi R^2 Z).
        relax: Relaxation outcome, or None when not relaxed.
    """

    pool: ParticlePool
    profile: DensityProfile
    npart_old: int
    npart_total: int
    rhomean: float
    relax: RelaxResult | None = None

    @property
    def nadded(self) -> int:
        return self.pool.npart - self.npart_old


def rotate_vectors(v: np.ndarray, axis: np.ndarray, angle: float) -> np.ndarray:
    """Rotate row vectors ``v`` by ``angle`` (radians) about ``axis`` (Rodrigues)."""
    k = np.asarray(axis, dtype=np.float64)
    k = k / np.linalg.norm(k)
    v = np.asarray(v, dtype=np.float64)
    c, s = np.cos(angle), np.sin(angle)
    return v * c + np.cross(k, v) * s + np.outer(v @ k, k) * (1.0 - c)


def shift_cylinder(
    xyzh: np.ndarray,
    rotate_theta: float,
    rotate_phi: float,
    x0: float,
    y0: float,
    z0: float,
) -> None:
    """Rotate about x by theta, then about z by phi (degrees), then translate, in place."""
    pos = rotate_vectors(xyzh[:, :3], np.array([1.0, 0.0, 0.0]), rotate_theta / 180.0 * pi)
    pos = rotate_vectors(pos, np.array([0.0, 0.0, 1.0]), rotate_phi / 180.0 * pi)
    xyzh[:, :3] = pos + np.array([x0, y0, z0])


def set_cylinder(
    config: CylinderConfig,
    pool: ParticlePool | None = None,
    options: PhysicsOptions | None = None,
    mask: InclusionMask = mask_true,
    itype: int | None = None,
    derivs: DerivativesBase | None = None,
    n_partitions: int = 1,
) -> CylinderSetup:
    """Add one cylinder to ``pool`` (a new pool sized for it when None).

    Raises:
        ConfigurationError: Bad geometry, mass or particle count.
        CapacityError: ``pool`` cannot hold the cylinder (or its buffer).
        PartitionError, CheckpointMismatchError, SetupError: From relaxation.
    """
    options = options or PhysicsOptions(ieos=config.ieos, gamma=config.gamma)
    if config.mass < 0.0:
        raise ConfigurationError("cannot set up a cylinder with negative mass")
    profile = set_cylinder_profile(
        config.profile, config.radius, config.height, config.mass, config.gauss_sigma
    )
    rhomean = config.mass / (pi * config.radius**2 * config.height)

    if pool is None:
        # placement works in mirrored pairs
        nplace = 2 * ((config.np + 1) // 2)
        nbuf = 0
        if config.relax.enabled:
            r = config.relax
            edge_ratio = float(profile.interpolate(config.radius)) / rhomean if rhomean > 0.0 else 1.0
            nbuf = r.n_buffer if r.n_buffer is not None else default_buffer_count(
                nplace, r.buffer_inner, r.buffer_outer, edge_ratio
            )
        pool = ParticlePool(nplace + nbuf + 2)
    npart_old = pool.npart
    if config.np < 1 and npart_old == 0:
        raise ConfigurationError("cannot set up a cylinder with zero particles")

    n = config.np
    mass_is_set = pool.massoftype[IGAS] > np.finfo(float).tiny
    if mass_is_set:
        n = int(round(config.mass / pool.massoftype[IGAS]))
        if n < 1:
            raise ConfigurationError(
                f"particle mass {pool.massoftype[IGAS]:.4e} is already set and exceeds the "
                f"cylinder mass {config.mass:.4e}; no particles can be placed"
            )
        logger.warning("Particle mass is already set, using np = %d", n)

    placement = set_cylinder_mc(
        config.radius, config.height, n, hfact=options.hfact, mask=mask,
        maxp=pool.capacity_left, seed=config.seed,
    )
    set_density_profile(placement.xyzh, profile, rmin=0.0, rmax=config.radius)
    if not mass_is_set:
        pool.massoftype[IGAS] = config.mass / placement.nparttot
    pool.add_block(placement.xyzh, itype=IGAS)

    if config.write_rho_to_file:
        write_rhotab(config.dens_profile, profile.r, profile.rho, label=f"rhocentre = {profile.rho_centre:.8e}")

    result = CylinderSetup(
        pool=pool, profile=profile, npart_old=npart_old,
        npart_total=placement.nparttot, rhomean=rhomean,
    )
    if config.relax.enabled:
        result.relax = relax_cylinder(
            pool, profile, config.radius, config.height, config=config.relax,
            options=options, derivs=derivs, npin=npart_old, mask=mask,
            n_partitions=n_partitions,
        )

    pool.reset_centreofmass(start=npart_old)

    if config.shift.enabled:
        s = config.shift
        shift_cylinder(pool.xyzh[npart_old:pool.npart], s.rotate_theta, s.rotate_phi, s.xshift, s.yshift, s.zshift)

    if itype is not None:
        for i in range(npart_old, pool.npart):
            pool.set_particle_type(i, itype)

    log_summary(config, result, options)
    if result.relax is not None and not result.relax.converged:
        logger.warning("ERRORS DURING RELAXATION, SEE ABOVE")
    return result


def log_summary(config: CylinderConfig, result: CylinderSetup, options: PhysicsOptions) -> None:
    mpart = float(result.pool.massoftype[IGAS])
    logger.info("=" * 70)
    logger.info("gamma                   = %12.5f", options.gamma)
    logger.info("Number of particles     = %12d", result.nadded)
    if config.iunits == 0:
        rows = [
            ("Particle mass", mpart), ("Cylinder mass", config.mass),
            ("Cylinder radius", config.radius), ("Cylinder height", config.height),
            ("Central density", result.profile.rho_centre), ("Average density", result.rhomean),
        ]
        for name, value in rows:
            logger.info("%-24s= %12.5e code units", name, value)
    else:
        logger.info("%-24s= %12.5e Msun", "Particle mass", mpart * config.umass / solarm)
        logger.info("%-24s= %12.5e Msun", "Cylinder mass", config.mass * config.umass / solarm)
        logger.info("%-24s= %12.5e Rsun", "Cylinder radius", config.radius * config.udist / solarr)
        logger.info("%-24s= %12.5e Rsun", "Cylinder height", config.height * config.udist / solarr)
        unit_density = config.umass / config.udist**3
        logger.info("%-24s= %12.5e g/cm^3", "Central density", result.profile.rho_centre * unit_density)
        logger.info("%-24s= %12.5e g/cm^3", "Average density", result.rhomean * unit_density)
    s = config.shift
    logger.info("Cylinder center         = (%.5e, %.5e, %.5e)", s.xshift, s.yshift, s.zshift)
    logger.info("Rotation about x, z     = %.5e, %.5e degrees", s.rotate_theta, s.rotate_phi)
    logger.info("=" * 70)
