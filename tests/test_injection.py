"""Tests for colliding-stream injection."""

from __future__ import annotations

import logging

import numpy as np
import pytest

from cylstream.config import StreamConfig
from cylstream.core.errors import ConfigurationError
from cylstream.core.particles import IGAS, ParticlePool
from cylstream.inject.stream import (
    IndexList,
    StreamInjector,
    advance_cylinder,
    rewind_cylinder,
)


class TestIndexList:

    def test_growth(self):
        lst = IndexList(capacity=2)
        for i in range(5):
            lst.append(i)
        assert len(lst) == 5
        assert lst.capacity == 8
        np.testing.assert_array_equal(lst.to_array(), np.arange(5))
        assert lst[-1] == 4
        assert list(lst) == [0, 1, 2, 3, 4]

    def test_clear_keeps_capacity(self):
        lst = IndexList(capacity=4)
        lst.extend(np.arange(10))
        cap = lst.capacity
        lst.clear()
        assert len(lst) == 0
        assert lst.capacity == cap


class TestCyclicAdvance:
    """The reservoir slides down and wraps around [y0, y0 + span)."""

    def test_crossing_particle_wraps(self):
        y = np.array([4.05, 5.0])
        out = IndexList()
        n = advance_cylinder(y, 4.0, 2.0, 1.0, 0.1, out)
        assert n == 1
        np.testing.assert_array_equal(out.to_array(), [0])
        np.testing.assert_allclose(y, [5.95, 4.9])

    def test_stays_in_range(self):
        rng = np.random.default_rng(3)
        y = 4.0 + 2.0 * rng.random(500)
        out = IndexList()
        for _ in range(200):
            advance_cylinder(y, 4.0, 2.0, 1.3, 0.037, out)
            assert np.all(y >= 4.0)
            assert np.all(y < 6.0)

    def test_shift_longer_than_span(self):
        y = np.array([4.5])
        out = IndexList()
        advance_cylinder(y, 4.0, 2.0, 1.0, 5.0, out)
        assert y[0] == pytest.approx(5.5)
        assert len(out) == 1

    def test_rewind_matches_repeated_advance(self):
        rng = np.random.default_rng(4)
        y1 = 4.0 + 2.0 * rng.random(300)
        y2 = y1.copy()
        out = IndexList()
        for _ in range(3):
            advance_cylinder(y1, 4.0, 2.0, 1.0, 0.2, out)
        rewind_cylinder(y2, 4.0, 2.0, 1.0, 0.6)
        np.testing.assert_allclose(y2, y1, atol=1e-12)


class TestStreamInjector:
    """Injection into a live pool."""

    def test_identical_streams_counts(self, stream_setup):
        pool = ParticlePool(10_000)
        with StreamInjector.from_setup_file(stream_setup) as inj:
            assert inj.identical_streams
            step = inj.inject_particles(0.0, 0.1, 0.5, pool)
        assert step.ninj1 > 0
        assert step.ninj2 == 0
        assert step.nadded == 2 * step.ninj1
        assert pool.npart == step.nadded == step.npart
        assert step.dtinject == pytest.approx(0.01)

    def test_each_particle_injected_once(self, stream_setup):
        """With dtmax = span/(10 vinj) no index repeats within 8 steps."""
        pool = ParticlePool(10_000)
        seen = []
        with StreamInjector.from_setup_file(stream_setup) as inj:
            for k in range(8):
                step = inj.inject_particles(0.2 * k, 0.2, 0.2, pool)
                seen.extend(step.list1.tolist())
        assert len(seen) == len(set(seen))
        assert pool.npart == 2 * len(seen)

    def test_mirrored_streams(self, stream_setup):
        pool = ParticlePool(10_000)
        with StreamInjector.from_setup_file(stream_setup) as inj:
            step = inj.inject_particles(0.0, 0.1, 0.3, pool)
        n = step.nadded
        up, lo = pool.xyzh[0:n:2], pool.xyzh[1:n:2]
        np.testing.assert_allclose(lo[:, 1], -up[:, 1], atol=1e-12)
        np.testing.assert_allclose(lo[:, 0], up[:, 0], atol=1e-12)
        np.testing.assert_allclose(lo[:, 3], up[:, 3])
        np.testing.assert_allclose(pool.vxyzu[0:n:2, 1], -1.0, atol=1e-12)
        np.testing.assert_allclose(pool.vxyzu[1:n:2, 1], 1.0, atol=1e-12)
        # upper stream just below the injection plane
        assert np.all(up[:, 1] < 4.0)

    def test_inclined_velocities(self, reservoir_file):
        config = StreamConfig(
            inclination=90.0, vinj1=2.0, vinj2=2.0,
            inputfile1=str(reservoir_file), inputfile2=str(reservoir_file),
        )
        pool = ParticlePool(10_000)
        with StreamInjector(config) as inj:
            step = inj.inject_particles(0.0, 0.1, 0.3, pool)
        n = step.nadded
        v = 2.0 / np.sqrt(2.0)
        np.testing.assert_allclose(pool.vxyzu[0:n:2, :2], np.tile([v, -v], (n // 2, 1)), atol=1e-12)
        np.testing.assert_allclose(pool.vxyzu[1:n:2, :2], np.tile([v, v], (n // 2, 1)), atol=1e-12)
        np.testing.assert_allclose(pool.vxyzu[:n, 3], 1e-5 * 4.0)

    def test_distinct_streams(self, tmp_path, reservoir_file):
        other = tmp_path / "cylinder2.ascii"
        other.write_text(reservoir_file.read_text())
        config = StreamConfig(
            vinj1=1.0, vinj2=0.5, offset=0.2,
            inputfile1=str(reservoir_file), inputfile2=str(other),
        )
        pool = ParticlePool(10_000)
        with StreamInjector(config) as inj:
            assert not inj.identical_streams
            step = inj.inject_particles(0.0, 0.1, 1.0, pool)
        assert step.nadded == step.ninj1 + step.ninj2
        assert step.ninj2 > 0
        n1 = step.ninj1
        np.testing.assert_allclose(pool.vxyzu[:n1, 1], -1.0, atol=1e-12)
        np.testing.assert_allclose(pool.vxyzu[n1 : step.nadded, 1], 0.5, atol=1e-12)
        # dz = offset * rstream1 splits the streams along z
        res_z = np.loadtxt(reservoir_file, comments="#")[:, 2]
        assert np.all(np.isin(np.round(pool.xyzh[:n1, 2] - 0.1, 12), np.round(res_z, 12)))

    def test_particle_mass_set(self, stream_setup, reservoir_arrays):
        pool = ParticlePool(1000)
        with StreamInjector.from_setup_file(stream_setup) as inj:
            inj.inject_particles(0.0, 0.1, 0.1, pool)
        assert pool.massoftype[IGAS] == pytest.approx(reservoir_arrays[2])

    def test_mass_mismatch_warns(self, stream_setup, caplog):
        pool = ParticlePool(1000)
        pool.massoftype[IGAS] = 1.0
        with caplog.at_level(logging.WARNING):
            with StreamInjector.from_setup_file(stream_setup) as inj:
                inj.inject_particles(0.0, 0.1, 0.1, pool)
        assert "differs from reservoir mass" in caplog.text
        assert pool.massoftype[IGAS] == 1.0

    def test_restart_rewinds(self, stream_setup):
        """A fresh injector on a non-empty pool picks up where the stream stood."""
        pool_a = ParticlePool(10_000)
        inj_a = StreamInjector.from_setup_file(stream_setup)
        for k in range(3):
            inj_a.inject_particles(0.2 * k, 0.2, 0.2, pool_a)
        step_a = inj_a.inject_particles(0.6, 0.2, 0.2, pool_a)

        pool_b = ParticlePool(10_000)
        pool_b.add_block(np.zeros((1, 4)) + [0.0, 0.0, 0.0, 0.1])
        inj_b = StreamInjector.from_setup_file(stream_setup)
        step_b = inj_b.inject_particles(0.6, 0.2, 0.2, pool_b)
        np.testing.assert_array_equal(np.sort(step_b.list1), np.sort(step_a.list1))
        np.testing.assert_allclose(inj_b.reservoir1.xyzh[:, 1], inj_a.reservoir1.xyzh[:, 1], atol=1e-12)

    def test_restart_rewinds_in_with_block(self, stream_setup):
        pool_a = ParticlePool(10_000)
        with StreamInjector.from_setup_file(stream_setup) as inj_a:
            for k in range(4):
                inj_a.inject_particles(0.2 * k, 0.2, 0.2, pool_a)
            y_a = inj_a.reservoir1.xyzh[:, 1].copy()

        pool_b = ParticlePool(10_000)
        pool_b.add_block(np.zeros((1, 4)) + [0.0, 0.0, 0.0, 0.1])
        with StreamInjector.from_setup_file(stream_setup) as inj_b:
            inj_b.inject_particles(0.6, 0.2, 0.2, pool_b)
            np.testing.assert_allclose(inj_b.reservoir1.xyzh[:, 1], y_a, atol=1e-12)

    def test_empty_pool_does_not_rewind(self, stream_setup, reservoir_arrays):
        pool = ParticlePool(10_000)
        with StreamInjector.from_setup_file(stream_setup) as inj:
            inj.inject_particles(5.0, 0.2, 0.2, pool)
            y = inj.reservoir1.xyzh[:, 1]
        expected = reservoir_arrays[0][:, 1].copy()
        advance_cylinder(expected, 4.0, 2.0, 1.0, 0.2, IndexList())
        np.testing.assert_allclose(y, expected, atol=1e-12)


class TestInjectorErrors:

    def test_missing_reservoir(self, tmp_path):
        config = StreamConfig(inputfile1="missing.ascii", inputfile2="missing.ascii")
        with pytest.raises(FileNotFoundError):
            StreamInjector(config, base_dir=tmp_path).open()

    def test_missing_key(self, stream_setup):
        lines = [ln for ln in stream_setup.read_text().splitlines() if not ln.strip().startswith("vinj1")]
        stream_setup.write_text("\n".join(lines) + "\n")
        with pytest.raises(ConfigurationError, match="vinj1"):
            StreamInjector.from_setup_file(stream_setup)

    def test_double_open(self, stream_setup):
        inj = StreamInjector.from_setup_file(stream_setup).open()
        with pytest.raises(RuntimeError):
            inj.open()
        inj.close()
        assert not inj.is_initialized
        assert inj.reservoir1 is None
