"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import numpy as np
import pytest

from cylstream.config import CylinderConfig, RelaxConfig, StreamConfig
from cylstream.io.reservoir import write_stream_ascii


@pytest.fixture
def cylinder_config():
    """Unshifted code-unit cylinder: R=1, Z=2, M=2, 200 particles."""
    return CylinderConfig(np=200, shift={"enabled": False})


@pytest.fixture
def quick_relax():
    """Relaxation that converges on the first iteration, no files."""
    return RelaxConfig(enabled=True, tol_dens=10.0, maxits=5, write_files=False)


@pytest.fixture
def reservoir_arrays():
    """A small reservoir: 64 particles spread uniformly along y in [4, 6)."""
    rng = np.random.default_rng(7)
    n = 64
    xyzh = np.empty((n, 4))
    xyzh[:, 0] = rng.uniform(-0.5, 0.5, n)
    xyzh[:, 1] = 4.0 + 2.0 * rng.random(n)
    xyzh[:, 2] = rng.uniform(-0.5, 0.5, n)
    xyzh[:, 3] = 0.2
    vxyzu = np.zeros((n, 4))
    vxyzu[:, 3] = 1e-15
    return xyzh, vxyzu, 2.0 / n


@pytest.fixture
def reservoir_file(tmp_path, reservoir_arrays):
    xyzh, vxyzu, mass = reservoir_arrays
    path = tmp_path / "cylinder1.ascii"
    write_stream_ascii(path, xyzh, vxyzu, mass)
    return path


@pytest.fixture
def stream_setup(tmp_path, reservoir_file):
    """Stream setup file with two identical streams sharing ``reservoir_file``."""
    path = tmp_path / "stream.setup"
    StreamConfig(
        np=64,
        mpart=2.0 / 64,
        inputfile1=reservoir_file.name,
        inputfile2=reservoir_file.name,
    ).to_setup_file(path)
    return path
