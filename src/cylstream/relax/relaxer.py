"""Iterative relaxation of a cylinder towards its target density profile.

Each iteration moves every relaxed particle by an asynchronous
"timestep" using its local Courant estimate,

    dt_i = 0.3 h_i / c_s,i,    dx_i = 1/2 dt_i^2 f_i,    |dx_i| <= h_i,

then sets its thermal energy to

    u_i = u_base(r_i) sqrt(rho_i / rho_target(r_i)),

where u_base gives every target density the same pressure, so that
P_i ~ (rho_i / rho_target)^(3/2). It then measures the RMS density error
normalised by the central target density.
A shell of buffer particles (1.01R to 1.6R), filled at the target density
of the cylinder edge, surrounds the cylinder while it relaxes and is
removed afterwards.

State machine: INIT -> ITERATING -> {CONVERGED | MAX_ITER_EXCEEDED}.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
from numba import njit

from cylstream.config import RelaxConfig
from cylstream.constants import courant_factor, pi, u_after_relax, u_relax_particle
from cylstream.core.bases import (
    DensityProfile,
    DerivativesBase,
    InclusionMask,
    RelaxationState,
    RelaxPhase,
    RelaxResult,
    RelaxStatus,
    mask_true,
)
from cylstream.core.errors import PartitionError, SetupError
from cylstream.core.options import PhysicsOptions, relaxation_options
from cylstream.core.particles import IGAS, ParticlePool
from cylstream.diagnostics.checkpoint import (
    check_for_existing_file,
    next_snapshot_name,
    save_relax_snapshot,
    snapshot_name,
)
from cylstream.relax.sph import PeriodicBox, SPHDerivatives
from cylstream.setup.placement import set_cylinder_mc

logger = logging.getLogger(__name__)


@njit(cache=True)
def shift_particles_kernel(
    xyzh: np.ndarray,
    vxyzu: np.ndarray,
    fxyzu: np.ndarray,
    cs: np.ndarray,
    i1: int,
    i2: int,
    courant: float,
) -> tuple[float, int]:
    """Shift particles ``i1 <= i < i2`` in place, ``cs`` being their sound speeds.

    Returns:
        (smallest local timestep, number of clamped shifts).
    """
    dtmin = np.inf
    nclamped = 0
    for i in range(i1, i2):
        hi = xyzh[i, 3]
        csi = cs[i]
        if csi <= 0.0 or hi <= 0.0:
            vxyzu[i, 0] = 0.0
            vxyzu[i, 1] = 0.0
            vxyzu[i, 2] = 0.0
            continue
        dti = courant * hi / csi
        dx0 = 0.5 * dti * dti * fxyzu[i, 0]
        dx1 = 0.5 * dti * dti * fxyzu[i, 1]
        dx2 = 0.5 * dti * dti * fxyzu[i, 2]
        d2 = dx0 * dx0 + dx1 * dx1 + dx2 * dx2
        if d2 > hi * hi:
            scale = hi / np.sqrt(d2)
            dx0 *= scale
            dx1 *= scale
            dx2 *= scale
            nclamped += 1
        xyzh[i, 0] += dx0
        xyzh[i, 1] += dx1
        xyzh[i, 2] += dx2
        vxyzu[i, 0] = dx0 / dti
        vxyzu[i, 1] = dx1 / dti
        vxyzu[i, 2] = dx2 / dti
        dtmin = min(dtmin, dti)
    return dtmin, nclamped


def set_u_and_get_errors(
    pool: ParticlePool,
    i1: int,
    i2: int,
    profile: DensityProfile,
    hfact: float,
    ubase: np.ndarray | None = None,
) -> tuple[float, float]:
    """Rescale thermal energies towards the target density and measure the error.

    u_i <- ubase_i sqrt(rho_i / rho_t(r_i)) and du_i <- u_i sqrt(rho_i / rho_t(r_i)),
    with rho_i = m (hfact / h_i)^3. ``ubase`` defaults to the current u, which
    makes repeated calls compound the factor.

    Returns:
        (rmax, rmserr): largest cylindrical radius and RMS density error
        divided by the target density on the axis.
    """
    sl = slice(i1, i2)
    n = i2 - i1
    if n <= 0:
        return 0.0, 0.0
    ri = np.hypot(pool.xyzh[sl, 0], pool.xyzh[sl, 1])
    rhotarget = profile.interpolate(ri)
    mass = pool.massoftype[pool.itype[sl]]
    rhoi = mass * (hfact / pool.xyzh[sl, 3]) ** 3

    factor = np.sqrt(rhoi / rhotarget)
    if ubase is None:
        ubase = pool.vxyzu[sl, 3]
    pool.vxyzu[sl, 3] = ubase * factor
    pool.fxyzu[sl, 3] = pool.vxyzu[sl, 3] * factor

    rho1 = float(profile.interpolate(0.0))
    rmserr = float(np.sqrt(np.sum((rhotarget - rhoi) ** 2) / n) / rho1)
    return float(np.max(ri)), rmserr


def compute_energies(pool: ParticlePool) -> tuple[float, float]:
    """Kinetic and thermal energy of the live particles.

    Returns:
        (ekin, etherm).
    """
    n = pool.npart
    alive = pool.alive_mask()
    m = pool.massoftype[pool.itype[:n]][alive]
    v = pool.vxyzu[:n][alive]
    ekin = 0.5 * float(np.sum(m * np.sum(v[:, :3] ** 2, axis=1)))
    etherm = float(np.sum(m * v[:, 3]))
    return ekin, etherm


def check_setup(pool: ParticlePool) -> tuple[int, int]:
    """Sanity-check the particle arrays.

    Returns:
        (nerr, nwarn). Each problem is logged.
    """
    nerr = 0
    nwarn = 0
    n = pool.npart
    if n <= 0:
        logger.error("check_setup: no particles")
        return 1, 0
    xyzh = pool.xyzh[:n]
    alive = pool.alive_mask()
    if not np.all(np.isfinite(xyzh)) or not np.all(np.isfinite(pool.vxyzu[:n])):
        logger.error("check_setup: NaN or Inf in particle arrays")
        nerr += 1
    nbad_h = int(np.count_nonzero(xyzh[alive, 3] <= 0.0))
    if nbad_h:
        logger.error("check_setup: %d particles with h <= 0", nbad_h)
        nerr += 1
    types = np.unique(pool.itype[:n][alive])
    if np.any(pool.massoftype[types] <= 0.0):
        logger.error("check_setup: particle mass not set for types %s", types.tolist())
        nerr += 1
    if np.any(pool.npartoftype < 0):
        logger.error("check_setup: negative particle count per type")
        nerr += 1
    ndup = int(np.count_nonzero(alive)) - np.unique(xyzh[alive, :3], axis=0).shape[0]
    if ndup > 0:
        logger.warning("check_setup: %d particles at duplicate positions", ndup)
        nwarn += 1
    return nerr, nwarn


def default_buffer_count(nrelax: int, inner: float, outer: float, edge_ratio: float = 1.0) -> int:
    """Buffer particles filling the shell at the target density of the cylinder edge.

    ``edge_ratio`` is rho_target(R) divided by the mean cylinder density.
    """
    return max(2, int(round(nrelax * (outer**2 - inner**2) * edge_ratio)))


class Relaxer:
    """Relax the particles ``[npin, pool.npart)`` of a cylinder.

    Args:
        pool: Live particle pool holding the cylinder at the end.
        profile: Target density table.
        radius: Cylinder radius R.
        height: Cylinder height Z.
        config: Relaxation parameters.
        options: Physics options, switched to relaxation values for the run.
        derivs: Force evaluator (default: ``SPHDerivatives`` on the
            relaxation box).
        npin: Index of the first particle to relax.
        mask: Inclusion predicate used when placing the buffer shell.
        n_partitions: Number of execution partitions holding particles.
        seed: Seed for the buffer placement.
    """

    def __init__(
        self,
        pool: ParticlePool,
        profile: DensityProfile,
        radius: float,
        height: float,
        config: RelaxConfig | None = None,
        options: PhysicsOptions | None = None,
        derivs: DerivativesBase | None = None,
        npin: int = 0,
        mask: InclusionMask = mask_true,
        n_partitions: int = 1,
        seed: int = 1978,
    ) -> None:
        self.pool = pool
        self.profile = profile
        self.radius = radius
        self.height = height
        self.config = config or RelaxConfig(enabled=True)
        self.options = options or PhysicsOptions()
        self.box = PeriodicBox.for_cylinder(radius, height)
        self.derivs = derivs or SPHDerivatives(self.options, box=self.box)
        self.npin = npin
        self.mask = mask
        self.n_partitions = n_partitions
        self.seed = seed
        self.state = RelaxationState()
        self.npart0 = pool.npart
        self.nbuffer = 0
        self.restarted_from: Path | None = None
        self._snapshot: Path | None = None
        self._ev = None

    # ----------------------------------------------------------------
    # Phases
    # ----------------------------------------------------------------

    def edge_ratio(self) -> float:
        """Target density at R over the mean density of the relaxed particles."""
        nrelax = self.npart0 - self.npin
        if nrelax <= 0 or self.pool.massoftype[IGAS] <= 0.0:
            return 1.0
        rhomean = nrelax * float(self.pool.massoftype[IGAS]) / (pi * self.radius**2 * self.height)
        return float(self.profile.interpolate(self.radius)) / rhomean

    def baseline_energy(self, radius):
        """Thermal energy giving the target density at ``radius`` the pressure
        that u_relax_particle gives the axis density."""
        eos = self.options.eos()
        rho_axis = float(self.profile.interpolate(0.0))
        return eos.energy_from_pressure(self.profile.interpolate(radius), eos.pressure(rho_axis, u_relax_particle))

    def add_buffer(self) -> int:
        """Append the buffer shell and set the starting thermal energies.

        The shell continues the target density of the cylinder edge. All
        particles start at the baseline energy, the shell at that of R.
        """
        cfg = self.config
        nrelax = self.npart0 - self.npin
        nreq = cfg.n_buffer if cfg.n_buffer is not None else default_buffer_count(
            nrelax, cfg.buffer_inner, cfg.buffer_outer, self.edge_ratio()
        )
        if nreq > 0:
            placement = set_cylinder_mc(
                cfg.buffer_outer * self.radius,
                self.height,
                nreq,
                hfact=self.options.hfact,
                mask=self.mask,
                maxp=self.pool.capacity_left,
                r_inner=cfg.buffer_inner * self.radius,
                seed=self.seed,
            )
            block = self.pool.add_block(placement.xyzh, itype=IGAS)
            self.pool.vxyzu[block, 3] = self.baseline_energy(self.radius)
            self.nbuffer = placement.npart
        sl = slice(self.npin, self.npart0)
        self.pool.vxyzu[sl, 3] = self.baseline_energy(np.hypot(self.pool.xyzh[sl, 0], self.pool.xyzh[sl, 1]))
        logger.debug("Added %d buffer particles around %d relaxed particles", self.nbuffer, nrelax)
        return self.nbuffer

    def try_restart(self) -> bool:
        """Load the latest matching snapshot, if any."""
        cfg = self.config
        self._snapshot = Path(cfg.output_dir) / snapshot_name(cfg.label, 0)
        if not cfg.write_files:
            return False
        found = check_for_existing_file(
            cfg.output_dir, cfg.label, self.pool.npart, float(self.pool.massoftype[IGAS])
        )
        if found is None:
            return False
        path, data = found
        n = data["npart"]
        self.pool.xyzh[:n] = data["xyzh"]
        self.pool.vxyzu[:n] = data["vxyzu"]
        self.pool.fxyzu[:n] = data["fxyzu"]
        self.state.nits = data["nits"]
        self.state.converged = data["converged"]
        self.state.rmserr = data["rmserr"]
        self.state.history = data["history"].tolist()
        self.restarted_from = path
        self._snapshot = path
        return True

    def shift(self) -> None:
        """One asynchronous shift of the relaxed particles, then new forces."""
        pool = self.pool
        cs = self.options.eos().sound_speed(pool.vxyzu[: self.npart0, 3])
        dtmin, nclamped = shift_particles_kernel(
            pool.xyzh, pool.vxyzu, pool.fxyzu, cs, self.npin, self.npart0, courant_factor,
        )
        if nclamped > 0:
            logger.warning("Restricted dx for %d particles", nclamped)
        sl = slice(self.npin, self.npart0)
        pool.xyzh[sl, :3] = self.box.wrap(pool.xyzh[sl, :3])
        self.state.dtmin = dtmin
        self.state.nclamped = nclamped
        self.derivs.compute(pool)

    def update_errors(self) -> None:
        sl = slice(self.npin, self.npart0)
        ubase = self.baseline_energy(np.hypot(self.pool.xyzh[sl, 0], self.pool.xyzh[sl, 1]))
        rmax, rmserr = set_u_and_get_errors(
            self.pool, self.npin, self.npart0, self.profile, self.options.hfact, ubase=ubase
        )
        self.state.rmax = rmax
        self.state.rmserr = rmserr

    def update_energies(self) -> None:
        self.state.ekin, self.state.etherm = compute_energies(self.pool)

    def write_snapshot(self, first: bool = False) -> None:
        if not first:
            self._snapshot = next_snapshot_name(self._snapshot)
        save_relax_snapshot(
            self._snapshot, self.pool, self.state.nits, self.state.rmserr,
            converged=self.state.converged, hfact=self.options.hfact,
            history=self.state.history,
        )

    def remove_buffer(self) -> int:
        if self.pool.npart <= self.npart0:
            return 0
        return self.pool.delete_alternating(self.npart0, self.pool.npart)

    def iterate(self) -> None:
        """Run iterations until converged or out of budget."""
        cfg = self.config
        state = self.state
        state.phase = RelaxPhase.ITERATING
        while not state.converged and state.nits < cfg.maxits:
            state.nits += 1
            self.shift()
            self.update_errors()
            self.update_energies()
            state.history.append(state.rmserr)
            state.converged = state.ekin > 0.0 and state.rmserr < cfg.tol_dens

            if state.nits % 10 == 0 or state.nits == 1:
                logger.info(
                    "Relaxing cylinder: Iter %4d/%4d, dens error: %6.2f%%, Rcylinder: %.3g",
                    state.nits, cfg.maxits, 100.0 * state.rmserr, state.rmax,
                )
            if self._ev is not None:
                self._ev.write(
                    f"{state.nits:10d} {state.rmax:18.10e} {state.etherm:18.10e} "
                    f"{state.ekin:18.10e} {state.rmserr:18.10e}\n"
                )
                last = (state.nits == cfg.maxits or state.converged) and state.nits > 1
                if state.nits % cfg.checkpoint_interval == 0 or last:
                    self.write_snapshot()
                    self._ev.flush()

    # ----------------------------------------------------------------
    # Driver
    # ----------------------------------------------------------------

    def run(self) -> RelaxResult:
        """Relax the cylinder and return the outcome.

        Raises:
            PartitionError: Particles are spread over more than one partition.
            CheckpointMismatchError: A previous snapshot does not match.
            SetupError: The particle sanity check failed.
            CapacityError: The pool cannot hold the buffer shell.
        """
        if self.n_partitions > 1:
            raise PartitionError(
                f"cannot relax a cylinder split over {self.n_partitions} partitions; "
                "run the setup on one partition"
            )
        cfg = self.config
        state = self.state
        state.phase = RelaxPhase.INIT
        self.npart0 = self.pool.npart

        try:
            with relaxation_options(self.options):
                self.add_buffer()
                restart = self.try_restart()
                nerr, _ = check_setup(self.pool)
                if nerr > 0:
                    raise SetupError("cannot relax cylinder because particle setup contains errors")

                if not restart:
                    # forces and u of a snapshot are already those of its last iteration
                    self.update_errors()
                    self.derivs.compute(self.pool)
                    self.update_errors()
                self.update_energies()
                logger.info(
                    "Relaxing cylinder: Etherm %.3g, Ekin %.3g, R %.3g; will stop when "
                    "dens error < %.3g or iter = %d",
                    state.etherm, state.ekin, float(self.profile.rmax), cfg.tol_dens, cfg.maxits,
                )

                if cfg.write_files:
                    Path(cfg.output_dir).mkdir(parents=True, exist_ok=True)
                    if not restart:
                        self.write_snapshot(first=True)
                    ev_path = Path(cfg.output_dir) / f"relax{cfg.label}.ev"
                    resume_log = restart and ev_path.is_file()
                    with ev_path.open("a" if resume_log else "w") as ev:
                        if not resume_log:
                            ev.write("# nits,rmax,etherm,ekin,L2_{err}\n")
                        self._ev = ev
                        self.iterate()
                    self._ev = None
                else:
                    self.iterate()
        finally:
            self.remove_buffer()
            sl = slice(self.npin, min(self.npart0, self.pool.npart))
            self.pool.vxyzu[sl, :3] = 0.0
            self.pool.vxyzu[sl, 3] = u_after_relax

        if state.converged:
            state.phase = RelaxPhase.CONVERGED
            status = RelaxStatus.CONVERGED
            logger.info("Cylinder relaxed after %d iterations (dens error %.3e)", state.nits, state.rmserr)
        else:
            state.phase = RelaxPhase.MAX_ITER_EXCEEDED
            status = RelaxStatus.NOT_CONVERGED
            logger.warning("Relaxation did not converge, just reached max iterations (%d)", cfg.maxits)

        return RelaxResult(
            status=status,
            state=state,
            npart=self.pool.npart,
            restarted_from=str(self.restarted_from) if self.restarted_from else None,
        )


def relax_cylinder(
    pool: ParticlePool,
    profile: DensityProfile,
    radius: float,
    height: float,
    config: RelaxConfig | None = None,
    options: PhysicsOptions | None = None,
    derivs: DerivativesBase | None = None,
    npin: int = 0,
    mask: InclusionMask = mask_true,
    n_partitions: int = 1,
) -> RelaxResult:
    """Relax ``pool[npin:]`` towards ``profile``; see ``Relaxer``."""
    relaxer = Relaxer(
        pool, profile, radius, height, config=config, options=options, derivs=derivs,
        npin=npin, mask=mask, n_partitions=n_partitions,
    )
    return relaxer.run()
