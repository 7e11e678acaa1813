"""Reservoir record files: one relaxed cylinder as flat ASCII.

Layout: ``reservoir_header_lines`` header lines, then one row per particle
with columns ``x y z m h rho vx vy vz u``. Readers only rely on position,
mass (first row), smoothing length and thermal energy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from cylstream.constants import hfact_default, reservoir_columns, reservoir_header_lines
from cylstream.core.errors import ReservoirFormatError

logger = logging.getLogger(__name__)


@dataclass
class Reservoir:
    """Particle arrays of one cylinder, mutated in place by cyclic advance.

    Attributes:
        xyzh: Positions and smoothing lengths, shape (N, 4).
        u: Specific internal energy proxy, shape (N,).
        mass: Shared particle mass.
        source: Path the reservoir was read from.
    """

    xyzh: np.ndarray
    u: np.ndarray
    mass: float
    source: str = ""

    @property
    def npart(self) -> int:
        return int(self.xyzh.shape[0])

    @property
    def total_mass(self) -> float:
        return self.npart * self.mass


def read_stream_ascii(path: str | Path) -> Reservoir:
    """Load a reservoir record file.

    Raises:
        FileNotFoundError: ``path`` does not exist.
        ReservoirFormatError: The file holds no rows after the header or a
            row has fewer than ``reservoir_columns`` fields.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"reservoir file not found: {path}")

    lines = path.read_text().splitlines()
    if len(lines) <= reservoir_header_lines:
        raise ReservoirFormatError(
            f"{path}: {len(lines)} line(s), need more than {reservoir_header_lines} header lines"
        )
    rows = [ln for ln in lines[reservoir_header_lines:] if ln.strip()]
    if not rows:
        raise ReservoirFormatError(f"{path}: no particle rows after the header")
    try:
        data = np.loadtxt(rows, ndmin=2)
    except ValueError as exc:
        raise ReservoirFormatError(f"{path}: {exc}") from exc
    if data.shape[1] < reservoir_columns:
        raise ReservoirFormatError(
            f"{path}: {data.shape[1]} column(s) per row, expected at least {reservoir_columns}"
        )

    xyzh = np.empty((data.shape[0], 4))
    xyzh[:, :3] = data[:, 0:3]
    xyzh[:, 3] = data[:, 4]
    reservoir = Reservoir(xyzh=xyzh, u=data[:, 9].copy(), mass=float(data[0, 3]), source=str(path))
    logger.info("Read %d particles (mass %.4e) from %s", reservoir.npart, reservoir.mass, path)
    return reservoir


def write_stream_ascii(
    path: str | Path,
    xyzh: np.ndarray,
    vxyzu: np.ndarray,
    mass: float,
    hfact: float = hfact_default,
) -> None:
    """Write particles in the reservoir record format.

    Density is the smoothing-length-consistent ``m (hfact/h)^3``.
    """
    n = xyzh.shape[0]
    h = xyzh[:, 3]
    rho = np.where(h > 0.0, mass * (hfact / np.where(h > 0.0, h, 1.0)) ** 3, 0.0)
    cols = np.column_stack([
        xyzh[:, :3], np.full(n, mass), h, rho, vxyzu[:, :3], vxyzu[:, 3],
    ])
    labels = ["x", "y", "z", "m", "h", "density", "vx", "vy", "vz", "u"]
    header = [
        "cylstream reservoir",
        f"npart = {n}",
        f"particle mass = {mass:.16e}",
        f"hfact = {hfact}",
    ]
    header += [""] * (reservoir_header_lines - len(header) - 1)
    header.append(" ".join(f"{lab:>24}" for lab in labels))
    np.savetxt(path, cols, fmt="%24.16e", delimiter=" ", header="\n".join(header), comments="# ")
    logger.info("Wrote %d particles to %s", n, path)
