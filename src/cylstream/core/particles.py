"""Live particle pool: fixed-capacity particle arrays with add/kill/compact.

Particles are stored as parallel arrays of capacity ``maxp``:
    - ``xyzh``  shape (maxp, 4): x, y, z, smoothing length h
    - ``vxyzu`` shape (maxp, 4): vx, vy, vz, specific internal energy u
    - ``fxyzu`` shape (maxp, 4): force per unit mass and du/dt
    - ``itype`` shape (maxp,):   particle type

Only the first ``npart`` rows are active. A dead particle is flagged by a
negative smoothing length until ``shuffle_part`` compacts it away; freed
slots are reused by ``add_or_update`` before the pool grows.
"""

from __future__ import annotations

import heapq
import logging

import numpy as np

from cylstream.core.bases import LivePoolBase
from cylstream.core.errors import CapacityError

logger = logging.getLogger(__name__)

IGAS = 1
MAXTYPES = 8


class ParticlePool(LivePoolBase):
    """In-memory live particle pool.

    Args:
        maxp: Capacity (maximum number of particles).
        massoftype: Optional initial particle mass per type, shape (MAXTYPES,).
    """

    def __init__(self, maxp: int, massoftype: np.ndarray | None = None) -> None:
        if maxp <= 0:
            raise ValueError(f"maxp must be positive, got {maxp}")
        self.maxp = int(maxp)
        self.xyzh = np.zeros((self.maxp, 4))
        self.vxyzu = np.zeros((self.maxp, 4))
        self.fxyzu = np.zeros((self.maxp, 4))
        self.itype = np.zeros(self.maxp, dtype=np.int64)
        self.npart = 0
        self.npartoftype = np.zeros(MAXTYPES, dtype=np.int64)
        self.massoftype = np.zeros(MAXTYPES)
        if massoftype is not None:
            self.massoftype[:] = massoftype
        self._free: list[int] = []

    # -----------------------------------------------------------------
    # Views
    # -----------------------------------------------------------------

    @property
    def capacity_left(self) -> int:
        return self.maxp - self.npart

    @property
    def positions(self) -> np.ndarray:
        return self.xyzh[: self.npart, :3]

    @property
    def smoothing_lengths(self) -> np.ndarray:
        return self.xyzh[: self.npart, 3]

    def isdead(self, i: int) -> bool:
        return bool(self.xyzh[i, 3] < 0.0)

    def alive_mask(self) -> np.ndarray:
        """Boolean mask over the active range, False for killed particles."""
        return self.xyzh[: self.npart, 3] >= 0.0

    def total_mass(self) -> float:
        alive = self.alive_mask()
        return float(np.sum(self.massoftype[self.itype[: self.npart][alive]]))

    # -----------------------------------------------------------------
    # Mutation primitives
    # -----------------------------------------------------------------

    def add_block(
        self,
        xyzh: np.ndarray,
        itype: int = IGAS,
        vxyzu: np.ndarray | None = None,
    ) -> slice:
        """Append a block of particles and return the slice they occupy."""
        n = xyzh.shape[0]
        if n > self.capacity_left:
            raise CapacityError(
                f"cannot append {n} particles: pool holds {self.npart} of maxp={self.maxp}; "
                f"increase maxp to at least {self.npart + n}"
            )
        block = slice(self.npart, self.npart + n)
        self.xyzh[block] = xyzh
        self.vxyzu[block] = 0.0 if vxyzu is None else vxyzu
        self.fxyzu[block] = 0.0
        self.itype[block] = itype
        self.npartoftype[itype] += n
        self.npart += n
        return block

    def add_or_update(
        self,
        itype: int,
        position: np.ndarray,
        velocity: np.ndarray,
        h: float,
        u: float,
        slot_hint: int | None = None,
    ) -> int:
        """Insert one particle, reusing freed slots before appending.

        If ``slot_hint`` names a live particle it is overwritten in place.

        Returns:
            Particle count ``npart`` after the insertion.
        """
        if slot_hint is not None and 0 <= slot_hint < self.npart and not self.isdead(slot_hint):
            i = slot_hint
            if self.itype[i] != itype:
                self.npartoftype[self.itype[i]] -= 1
                self.npartoftype[itype] += 1
        else:
            i = self._pop_free_slot()
            if i is None:
                if self.npart >= self.maxp:
                    raise CapacityError(
                        f"live pool is full (maxp={self.maxp}); increase maxp"
                    )
                i = self.npart
                self.npart += 1
            self.npartoftype[itype] += 1

        self.xyzh[i, :3] = position
        self.xyzh[i, 3] = h
        self.vxyzu[i, :3] = velocity
        self.vxyzu[i, 3] = u
        self.fxyzu[i] = 0.0
        self.itype[i] = itype
        return self.npart

    def _pop_free_slot(self) -> int | None:
        while self._free:
            i = heapq.heappop(self._free)
            if i < self.npart and self.isdead(i):
                return i
        return None

    def set_particle_type(self, i: int, itype: int) -> None:
        self.npartoftype[self.itype[i]] -= 1
        self.npartoftype[itype] += 1
        self.itype[i] = itype

    def kill_particle(self, i: int) -> None:
        """Flag particle ``i`` as dead (negative h) and free its slot."""
        if self._flag_dead(i):
            heapq.heappush(self._free, i)

    def _flag_dead(self, i: int) -> bool:
        if i < 0 or i >= self.npart:
            raise IndexError(f"particle {i} outside active range [0, {self.npart})")
        if self.isdead(i):
            return False
        self.xyzh[i, 3] = -abs(self.xyzh[i, 3]) if self.xyzh[i, 3] != 0.0 else -1.0
        self.npartoftype[self.itype[i]] -= 1
        return True

    def shuffle_part(self) -> None:
        """Compact dead particles by moving the last live particle into each hole."""
        holes = sorted(set(self._free))
        self._free = []
        for i in holes:
            self._trim_dead_tail()
            if i >= self.npart:
                continue
            last = self.npart - 1
            self._copy_particle(last, i)
            self.npart -= 1
        self._trim_dead_tail()

    def _trim_dead_tail(self) -> None:
        while self.npart > 0 and self.xyzh[self.npart - 1, 3] < 0.0:
            self.npart -= 1

    def _copy_particle(self, src: int, dst: int) -> None:
        self.xyzh[dst] = self.xyzh[src]
        self.vxyzu[dst] = self.vxyzu[src]
        self.fxyzu[dst] = self.fxyzu[src]
        self.itype[dst] = self.itype[src]

    def delete_alternating(self, start: int, stop: int) -> int:
        """Delete the trailing block ``[start, stop)`` from both ends alternately.

        Each deletion is followed by a compaction inside the block. Deleting
        at the low end pulls the current last particle into the hole,
        deleting at the high end just shortens the array, so every
        compaction moves at most one particle and the block shrinks from
        both ends. Particles below ``start`` are never touched, dead ones
        included: their slots stay free for ``add_or_update``.

        Returns:
            Number of particles deleted.
        """
        if stop != self.npart:
            raise ValueError(
                f"alternating deletion needs the block at the tail: stop={stop}, npart={self.npart}"
            )
        ndel = 0
        while self.npart > start:
            i = start if ndel % 2 == 0 else self.npart - 1
            self._flag_dead(i)
            last = self.npart - 1
            if i != last:
                self._copy_particle(last, i)
            self.npart -= 1
            ndel += 1
        self._free = [j for j in self._free if j < start]
        heapq.heapify(self._free)
        return ndel

    def reset_centreofmass(self, start: int = 0) -> None:
        """Shift positions and velocities so the centre of mass is at rest at the origin."""
        sl = slice(start, self.npart)
        alive = self.xyzh[sl, 3] >= 0.0
        if not np.any(alive):
            return
        m = self.massoftype[self.itype[sl][alive]]
        mtot = np.sum(m)
        if mtot <= 0.0:
            m = np.ones_like(m)
            mtot = float(m.size)
        xcom = np.sum(self.xyzh[sl, :3][alive] * m[:, None], axis=0) / mtot
        vcom = np.sum(self.vxyzu[sl, :3][alive] * m[:, None], axis=0) / mtot
        idx = np.arange(start, self.npart)[alive]
        self.xyzh[idx, :3] -= xcom
        self.vxyzu[idx, :3] -= vcom
        logger.debug("Reset centre of mass by x=%s, v=%s", xcom, vcom)
