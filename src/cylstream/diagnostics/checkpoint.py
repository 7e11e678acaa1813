"""HDF5 snapshots for relaxation restart and live-pool output.

Relaxation snapshots are numbered ``relax<label>_00000.h5``,
``relax<label>_00001.h5``, ... and the last existing one is the restart
candidate. A candidate is only accepted when its particle count and
particle mass match the current run.

Usage:
    save_relax_snapshot("relax_00000.h5", pool, nits=0, rmserr=1.0)
    found = check_for_existing_file(".", "", npart=pool.npart, mass=m)
    if found is not None:
        path, data = found
        xyzh = data["xyzh"]
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import h5py
import numpy as np

from cylstream.core.errors import CheckpointMismatchError
from cylstream.core.particles import IGAS, ParticlePool

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1
_NUMBERED = re.compile(r"^(.*_)(\d+)(\.h5)$")


def snapshot_name(label: str = "", index: int = 0) -> str:
    return f"relax{label}_{index:05d}.h5"


def next_snapshot_name(filename: str | Path) -> Path:
    """Increment the trailing number of a snapshot name, keeping its width."""
    path = Path(filename)
    match = _NUMBERED.match(path.name)
    if match is None:
        raise ValueError(f"not a numbered snapshot name: {path.name}")
    head, digits, ext = match.groups()
    return path.with_name(f"{head}{int(digits) + 1:0{len(digits)}d}{ext}")


def find_last_snapshot(directory: str | Path, label: str = "") -> Path | None:
    """Last file of the contiguous sequence starting at ``relax<label>_00000``."""
    candidate = Path(directory) / snapshot_name(label, 0)
    last = None
    while candidate.is_file():
        last = candidate
        candidate = next_snapshot_name(candidate)
    return last


def save_relax_snapshot(
    filename: str | Path,
    pool,
    nits: int,
    rmserr: float,
    converged: bool = False,
    hfact: float | None = None,
    time: float = 0.0,
    history: list[float] | None = None,
) -> None:
    """Write the active particles of ``pool`` and relaxation metadata.

    Args:
        filename: Output HDF5 path.
        pool: ``ParticlePool`` to save.
        nits: Iterations completed.
        rmserr: Current RMS density error.
        converged: Whether the relaxation has converged.
        hfact: Smoothing length factor in use.
        time: Fake relaxation time.
        history: RMS density error of every iteration so far.
    """
    n = pool.npart
    with h5py.File(filename, "w") as f:
        f.attrs["checkpoint_version"] = CHECKPOINT_VERSION
        f.attrs["npart"] = n
        f.attrs["massoftype"] = float(pool.massoftype[IGAS])
        f.attrs["nits"] = int(nits)
        f.attrs["rmserr"] = float(rmserr)
        f.attrs["converged"] = bool(converged)
        f.attrs["time"] = float(time)
        if hfact is not None:
            f.attrs["hfact"] = float(hfact)

        grp = f.create_group("particles")
        grp.create_dataset("xyzh", data=pool.xyzh[:n])
        grp.create_dataset("vxyzu", data=pool.vxyzu[:n])
        grp.create_dataset("fxyzu", data=pool.fxyzu[:n])
        grp.create_dataset("itype", data=pool.itype[:n])
        f.create_dataset("history", data=np.asarray(history if history is not None else [], dtype=np.float64))

    logger.info("Relaxation snapshot saved: %s (nits=%d, err=%.3e)", filename, nits, rmserr)


def load_relax_snapshot(filename: str | Path) -> dict[str, Any]:
    """Read a relaxation snapshot.

    Returns:
        Dictionary with keys "npart", "massoftype", "nits", "rmserr",
        "converged", "time", "hfact" (or None) and the arrays "xyzh",
        "vxyzu", "fxyzu", "itype" and "history".
    """
    logger.info("Loading relaxation snapshot from %s", filename)
    with h5py.File(filename, "r") as f:
        data: dict[str, Any] = {
            "npart": int(f.attrs["npart"]),
            "massoftype": float(f.attrs["massoftype"]),
            "nits": int(f.attrs.get("nits", 0)),
            "rmserr": float(f.attrs.get("rmserr", np.inf)),
            "converged": bool(f.attrs.get("converged", False)),
            "time": float(f.attrs.get("time", 0.0)),
            "hfact": float(f.attrs["hfact"]) if "hfact" in f.attrs else None,
        }
        grp = f["particles"]
        for key in ("xyzh", "vxyzu", "fxyzu", "itype"):
            data[key] = np.array(grp[key])
        data["history"] = np.array(f["history"]) if "history" in f else np.zeros(0)
    return data


def check_for_existing_file(
    directory: str | Path,
    label: str,
    npart: int,
    mass: float,
) -> tuple[Path, dict[str, Any]] | None:
    """Find and validate the latest relaxation snapshot.

    Returns:
        ``(path, data)`` of a matching snapshot, or None when there is none.

    Raises:
        CheckpointMismatchError: The snapshot was written for a different
            particle count or particle mass.
    """
    last = find_last_snapshot(directory, label)
    if last is None:
        return None

    logger.info(">> RESTARTING relaxation from %s", last)
    with h5py.File(last, "r") as f:
        npart_file = int(f.attrs["npart"])
        mass_file = float(f.attrs["massoftype"])
    if npart_file != npart:
        raise CheckpointMismatchError(
            f"np={npart_file} in {last} differs from current np={npart}; "
            f"delete relax{label}_* and restart"
        )
    if abs(mass_file - mass) > np.finfo(float).eps * max(1.0, abs(mass)):
        raise CheckpointMismatchError(
            f"M={npart * mass_file:.3e} in {last} differs from current M={npart * mass:.3e}; "
            f"delete relax{label}_* and restart"
        )
    return last, load_relax_snapshot(last)


def save_pool(filename: str | Path, pool, time: float, config_json: str | None = None) -> None:
    """Save the active part of a live particle pool."""
    n = pool.npart
    logger.info("Saving pool snapshot to %s at t=%.4e, npart=%d", filename, time, n)
    with h5py.File(filename, "w") as f:
        f.attrs["time"] = float(time)
        f.attrs["npart"] = n
        f.attrs["checkpoint_version"] = CHECKPOINT_VERSION
        if config_json is not None:
            f.attrs["config_json"] = config_json
        f.create_dataset("massoftype", data=pool.massoftype)
        f.create_dataset("npartoftype", data=pool.npartoftype)
        grp = f.create_group("particles")
        grp.create_dataset("xyzh", data=pool.xyzh[:n])
        grp.create_dataset("vxyzu", data=pool.vxyzu[:n])
        grp.create_dataset("itype", data=pool.itype[:n])


def load_pool(filename: str | Path, maxp: int | None = None):
    """Rebuild a ``ParticlePool`` from ``save_pool`` output.

    Returns:
        ``(pool, time)``.
    """
    with h5py.File(filename, "r") as f:
        time = float(f.attrs["time"])
        n = int(f.attrs["npart"])
        pool = ParticlePool(max(maxp or n, n, 1), massoftype=np.array(f["massoftype"]))
        grp = f["particles"]
        pool.xyzh[:n] = np.array(grp["xyzh"])
        pool.vxyzu[:n] = np.array(grp["vxyzu"])
        pool.itype[:n] = np.array(grp["itype"])
        pool.npartoftype[:] = np.array(f["npartoftype"])
        pool.npart = n
    logger.info("Pool loaded from %s: t=%.4e, npart=%d", filename, time, n)
    return pool, time
