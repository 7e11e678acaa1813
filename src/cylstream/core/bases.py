"""Core abstract base classes and shared data structures.

Defines the interface contracts the setup, relaxation and injection
modules are written against:
- ``DensityProfile``: tabulated transverse density profile
- ``RelaxationState`` / ``RelaxResult``: relaxation bookkeeping
- ``InjectionStep``: per-step injection record
- ``DerivativesBase``: ABC for force/density evaluators
- ``LivePoolBase``: ABC for the live particle pool
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field

import numpy as np

#: Inclusion predicate, called with a 1-based global particle index.
InclusionMask = Callable[[int], bool]


def mask_true(index: int) -> bool:
    """Accept every particle."""
    return True


@dataclass(frozen=True)
class DensityProfile:
    """Transverse density profile rho(r) on a fixed radial grid.

    Attributes:
        r: Radii, strictly increasing, shape (npts,).
        rho: Density at each radius, shape (npts,).
        rho_centre: Analytic central density.
        kind: Profile kind ('uniform' or 'gaussian').
    """

    r: np.ndarray
    rho: np.ndarray
    rho_centre: float
    kind: str = "uniform"

    @property
    def npts(self) -> int:
        return int(self.r.shape[0])

    @property
    def rmax(self) -> float:
        return float(self.r[-1])

    def interpolate(self, radius: np.ndarray | float) -> np.ndarray:
        """Linear interpolation, clamped to the end values outside the table."""
        return np.interp(radius, self.r, self.rho)


class RelaxStatus(enum.Enum):
    """Terminal status of a relaxation run."""

    CONVERGED = "converged"
    NOT_CONVERGED = "not_converged"


class RelaxPhase(enum.Enum):
    """Relaxation state machine phases."""

    INIT = "init"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITER_EXCEEDED = "max_iter_exceeded"


@dataclass
class RelaxationState:
    """Mutable per-iteration relaxation bookkeeping.

    Attributes:
        nits: Iterations performed (including those of a resumed run).
        rmserr: RMS density error normalised by the central target density.
        rmax: Largest cylindrical radius among relaxed particles.
        ekin: Total kinetic energy (fake shift velocities).
        etherm: Total thermal energy.
        nclamped: Particles whose shift was clamped in the last iteration.
        dtmin: Smallest local Courant step in the last iteration.
        converged: True once rmserr < tol and ekin > 0.
        phase: Current state-machine phase.
        history: rmserr of every iteration, in order.
    """

    nits: int = 0
    rmserr: float = np.inf
    rmax: float = 0.0
    ekin: float = 0.0
    etherm: float = 0.0
    nclamped: int = 0
    dtmin: float = np.inf
    converged: bool = False
    phase: RelaxPhase = RelaxPhase.INIT
    history: list[float] = field(default_factory=list)


@dataclass
class RelaxResult:
    """Outcome of ``relax_cylinder``.

    Attributes:
        status: Converged or best-effort.
        state: Final relaxation state.
        npart: Particle count after the buffer shell was removed.
        restarted_from: Snapshot the run resumed from, if any.
    """

    status: RelaxStatus
    state: RelaxationState
    npart: int
    restarted_from: str | None = None

    @property
    def converged(self) -> bool:
        return self.status is RelaxStatus.CONVERGED


@dataclass
class InjectionStep:
    """Record of one call to ``StreamInjector.inject_particles``.

    Attributes:
        time: Simulation time at the call.
        ninj1: Particles crossing the plane in reservoir 1.
        ninj2: Particles crossing the plane in reservoir 2 (0 when the
            streams are identical).
        nadded: Particles added to the live pool.
        npart: Live pool count after injection.
        dtinject: Injection timestep constraint returned to the caller.
        list1: Reservoir-1 indices injected this step.
        list2: Reservoir-2 indices injected this step.
    """

    time: float = 0.0
    ninj1: int = 0
    ninj2: int = 0
    nadded: int = 0
    npart: int = 0
    dtinject: float = np.inf
    list1: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    list2: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))


class DerivativesBase(ABC):
    """Abstract base for force/density evaluators."""

    @abstractmethod
    def compute(self, pool) -> None:
        """Evaluate forces on the active particles of ``pool``.

        Implementations update ``pool.fxyzu[:npart, :3]`` and the smoothing
        lengths ``pool.xyzh[:npart, 3]`` and must not mutate anything else.

        Args:
            pool: A ``ParticlePool`` holding positions, velocities and energies.
        """


class LivePoolBase(ABC):
    """Abstract base for the live particle pool."""

    @abstractmethod
    def add_or_update(
        self,
        itype: int,
        position: np.ndarray,
        velocity: np.ndarray,
        h: float,
        u: float,
        slot_hint: int | None = None,
    ) -> int:
        """Insert or update one particle and return the particle count after."""

    @abstractmethod
    def kill_particle(self, i: int) -> None:
        """Mark particle ``i`` as dead."""

    @abstractmethod
    def shuffle_part(self) -> None:
        """Compact dead particles out of the active range."""
