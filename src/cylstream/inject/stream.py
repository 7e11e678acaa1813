"""Injection of two colliding streams from cyclic cylinder reservoirs.

Each reservoir is a relaxed cylinder whose axis lies along y, occupying
``[y0, y0 + span)`` with ``y0 = yshift`` and ``span = zstream``. Every step
the reservoir slides down by ``vinj * dtmax``; particles that cross ``y0``
wrap back to the top and are copied into the live pool, so the reservoir
acts as an endless stream:

    y <- y0 + mod(y - shift - y0, span)   if y - shift < y0   (injected)
    y <- y - shift                        otherwise

Injected particles are placed just below the injection plane, offset by
+-dz/2 in z and rotated about z by +-(pi/2 - inclination/2):

    upper: ( x,  (y - span) - vinj dtlast, z + dz/2),  v = (0, -vinj, 0)
    lower: ( x, -(y - span) + vinj dtlast, z - dz/2),  v = (0, +vinj, 0)
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from cylstream.config import StreamConfig
from cylstream.constants import pi, u_injection_factor
from cylstream.core.bases import InjectionStep, LivePoolBase
from cylstream.core.particles import IGAS
from cylstream.io.reservoir import Reservoir, read_stream_ascii
from cylstream.setup.cylinder import rotate_vectors

logger = logging.getLogger(__name__)

_ZAXIS = np.array([0.0, 0.0, 1.0])


class IndexList:
    """Growable int64 array with amortized doubling."""

    def __init__(self, capacity: int = 16) -> None:
        self._data = np.empty(max(int(capacity), 1), dtype=np.int64)
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def __iter__(self):
        return iter(self._data[: self._size].tolist())

    def __getitem__(self, i):
        return self._data[: self._size][i]

    @property
    def capacity(self) -> int:
        return int(self._data.shape[0])

    def _reserve(self, n: int) -> None:
        if n <= self.capacity:
            return
        cap = self.capacity
        while cap < n:
            cap *= 2
        data = np.empty(cap, dtype=np.int64)
        data[: self._size] = self._data[: self._size]
        self._data = data

    def append(self, index: int) -> None:
        self._reserve(self._size + 1)
        self._data[self._size] = index
        self._size += 1

    def extend(self, indices: np.ndarray) -> None:
        indices = np.asarray(indices, dtype=np.int64)
        self._reserve(self._size + indices.shape[0])
        self._data[self._size : self._size + indices.shape[0]] = indices
        self._size += indices.shape[0]

    def clear(self) -> None:
        """Empty the list, keeping its capacity."""
        self._size = 0

    def to_array(self) -> np.ndarray:
        return self._data[: self._size].copy()


def rewind_cylinder(ycyl: np.ndarray, y0: float, span: float, vinj: float, time: float) -> None:
    """Move axial coordinates back to where the stream stood at ``time``."""
    shift = vinj * time
    wraps = ycyl - shift < y0
    ycyl[wraps] = y0 + np.mod(ycyl[wraps] - shift - y0, span)
    ycyl[~wraps] -= shift
    _fold_top(ycyl, y0, span)


def advance_cylinder(
    ycyl: np.ndarray,
    y0: float,
    span: float,
    vinj: float,
    dtmax: float,
    out: IndexList,
) -> int:
    """Slide the reservoir down by ``vinj * dtmax`` and list crossing particles.

    Args:
        ycyl: Axial coordinates, modified in place.
        y0: Injection plane.
        span: Reservoir length.
        vinj: Injection speed.
        dtmax: Step length.
        out: Cleared and refilled with the indices that crossed ``y0``.

    Returns:
        Number of crossing particles.
    """
    shift = vinj * dtmax
    crossing = ycyl - shift < y0
    ycyl[crossing] = y0 + np.mod(ycyl[crossing] - shift - y0, span)
    ycyl[~crossing] -= shift
    _fold_top(ycyl, y0, span)
    out.clear()
    out.extend(np.flatnonzero(crossing))
    return len(out)


def _fold_top(ycyl: np.ndarray, y0: float, span: float) -> None:
    # np.mod of a tiny negative number rounds up to span
    ycyl[ycyl >= y0 + span] = y0


def injection_state(
    xyzh: np.ndarray,
    span: float,
    vinj: float,
    dtlast: float,
    dz: float,
    inc: float,
    upper: bool,
) -> tuple[np.ndarray, np.ndarray]:
    """Positions and velocities of newly injected particles.

    Args:
        xyzh: Reservoir rows of the crossing particles, shape (n, 4).
        span: Reservoir length.
        vinj: Injection speed.
        dtlast: Last timestep.
        dz: Offset between the streams along z.
        inc: Half the inclination between the streams [rad]; the streams
            are rotated about z by +-(pi/2 - inc).
        upper: Upper (moving -y) or lower (moving +y) stream.

    Returns:
        (positions, velocities), each shape (n, 3).
    """
    n = xyzh.shape[0]
    sign = 1.0 if upper else -1.0
    pos = np.empty((n, 3))
    pos[:, 0] = xyzh[:, 0]
    pos[:, 1] = sign * ((xyzh[:, 1] - span) - vinj * dtlast)
    pos[:, 2] = xyzh[:, 2] + sign * 0.5 * dz
    vel = np.zeros((n, 3))
    vel[:, 1] = -sign * vinj
    angle = sign * (0.5 * pi - inc)
    return rotate_vectors(pos, _ZAXIS, angle), rotate_vectors(vel, _ZAXIS, angle)


def inject_streams(
    pool: LivePoolBase,
    reservoir: Reservoir,
    indices: np.ndarray,
    span: float,
    vinj: float,
    dtlast: float,
    dz: float,
    inc: float,
    upper: bool,
    both: bool = False,
) -> int:
    """Add one live particle per index (two when ``both``).

    Returns:
        Number of particles added.
    """
    if indices.size == 0:
        return 0
    rows = reservoir.xyzh[indices]
    u = u_injection_factor * vinj**2
    streams = [True, False] if both else [upper]
    states = [injection_state(rows, span, vinj, dtlast, dz, inc, s) for s in streams]
    nadded = 0
    for k in range(indices.shape[0]):
        for pos, vel in states:
            pool.add_or_update(IGAS, pos[k], vel[k], float(rows[k, 3]), u, slot_hint=pool.npart)
            nadded += 1
    return nadded


class StreamInjector:
    """Per-run injection context holding the two reservoirs.

    Lifecycle: ``open`` (or the first ``inject_particles`` call) loads the
    reservoirs; ``inject_particles`` is then called once per step; ``close``
    releases them. Also usable as a context manager.

    Args:
        config: Stream parameters.
        base_dir: Directory that relative reservoir paths are resolved
            against (default: the working directory).
    """

    def __init__(self, config: StreamConfig, base_dir: str | Path | None = None) -> None:
        self.config = config
        self.base_dir = Path(base_dir) if base_dir is not None else None
        self.reservoir1: Reservoir | None = None
        self.reservoir2: Reservoir | None = None
        self.identical_streams = False
        self.is_initialized = False
        self.list1 = IndexList()
        self.list2 = IndexList()
        self._first_step = False

    @classmethod
    def from_setup_file(cls, path: str | Path) -> StreamInjector:
        """Build an injector from a stream ``.setup`` file.

        Raises:
            FileNotFoundError: The setup file does not exist.
            ConfigurationError: Missing or malformed keys.
        """
        path = Path(path)
        return cls(StreamConfig.from_setup_file(path), base_dir=path.parent)

    def _resolve(self, name: str) -> Path:
        p = Path(name)
        if not p.is_absolute() and self.base_dir is not None:
            p = self.base_dir / p
        return p

    def open(self) -> StreamInjector:
        """Load the reservoirs.

        Whether the run is a restart is decided by the first
        ``inject_particles`` call: a non-empty pool at that point rewinds the
        reservoirs to the current time.
        """
        if self.is_initialized:
            raise RuntimeError("stream injector is already open")
        cfg = self.config
        self.reservoir1 = read_stream_ascii(self._resolve(cfg.inputfile1))
        self.reservoir2 = read_stream_ascii(self._resolve(cfg.inputfile2))
        self.identical_streams = cfg.identical_streams
        self._first_step = True
        self.is_initialized = True
        logger.info(
            "Stream injection: vinj=(%.4g, %.4g), offset=%.4g, particle mass=%.4e, identical streams=%s",
            cfg.vinj1, cfg.vinj2, cfg.offset * cfg.rstream1, self.reservoir1.mass, self.identical_streams,
        )
        return self

    def close(self) -> None:
        self.reservoir1 = None
        self.reservoir2 = None
        self.is_initialized = False
        self._first_step = False

    def __enter__(self) -> StreamInjector:
        if not self.is_initialized:
            self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _set_particle_mass(self, pool) -> None:
        mass = self.reservoir1.mass
        current = pool.massoftype[IGAS]
        if current <= 0.0:
            pool.massoftype[IGAS] = mass
        elif not np.isclose(current, mass, rtol=1e-10, atol=0.0):
            logger.warning("Pool particle mass %.6e differs from reservoir mass %.6e", current, mass)

    def inject_particles(self, time: float, dtlast: float, dtmax: float, pool) -> InjectionStep:
        """Advance the reservoirs by one step and inject crossing particles.

        Args:
            time: Current simulation time.
            dtlast: Previous timestep.
            dtmax: Step length used to advance the reservoirs.
            pool: Live particle pool receiving the particles.

        Returns:
            Record of the step; ``dtinject`` is the injection cadence.
        """
        if not self.is_initialized:
            self.open()
        cfg = self.config
        self._set_particle_mass(pool)
        npart_before = pool.npart

        dz = cfg.offset * cfg.rstream1
        inc = pi / 180.0 * (0.5 * cfg.inclination)
        y0 = cfg.yshift
        rewind = self._first_step and npart_before > 0
        self._first_step = False
        if rewind:
            logger.info("Continuing simulation with %d particles", npart_before)

        res1 = self.reservoir1
        if rewind:
            rewind_cylinder(res1.xyzh[:, 1], y0, cfg.zstream1, cfg.vinj1, time)
        ninj1 = advance_cylinder(res1.xyzh[:, 1], y0, cfg.zstream1, cfg.vinj1, dtmax, self.list1)
        nadded = inject_streams(
            pool, res1, self.list1.to_array(), cfg.zstream1, cfg.vinj1, dtlast, dz, inc,
            upper=True, both=self.identical_streams,
        )

        ninj2 = 0
        self.list2.clear()
        if not self.identical_streams:
            res2 = self.reservoir2
            if rewind:
                rewind_cylinder(res2.xyzh[:, 1], y0, cfg.zstream2, cfg.vinj2, time)
            ninj2 = advance_cylinder(res2.xyzh[:, 1], y0, cfg.zstream2, cfg.vinj2, dtmax, self.list2)
            nadded += inject_streams(
                pool, res2, self.list2.to_array(), cfg.zstream2, cfg.vinj2, dtlast, dz, inc,
                upper=False,
            )

        step = InjectionStep(
            time=time,
            ninj1=ninj1,
            ninj2=ninj2,
            nadded=nadded,
            npart=pool.npart,
            dtinject=cfg.dtinject,
            list1=self.list1.to_array(),
            list2=self.list2.to_array(),
        )
        logger.debug(
            "t=%.4e: injected %d (%d + %d crossing), npart %d -> %d",
            time, nadded, ninj1, ninj2, npart_before, pool.npart,
        )
        return step
