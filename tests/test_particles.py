"""Tests for the live particle pool."""

from __future__ import annotations

import numpy as np
import pytest

from cylstream.core.errors import CapacityError
from cylstream.core.particles import IGAS, ParticlePool


def _filled_pool(n: int, maxp: int = 32) -> ParticlePool:
    pool = ParticlePool(maxp)
    xyzh = np.zeros((n, 4))
    xyzh[:, 0] = np.arange(n)
    xyzh[:, 3] = 0.1
    pool.add_block(xyzh)
    pool.massoftype[IGAS] = 1.0
    return pool


class TestAddAndKill:
    """Slot bookkeeping of the pool."""

    def test_add_block(self):
        pool = _filled_pool(5)
        assert pool.npart == 5
        assert pool.npartoftype[IGAS] == 5
        assert pool.capacity_left == 27

    def test_add_block_capacity(self):
        pool = _filled_pool(5, maxp=6)
        with pytest.raises(CapacityError, match="increase maxp"):
            pool.add_block(np.zeros((2, 4)))

    def test_add_or_update_appends(self):
        pool = _filled_pool(3)
        n = pool.add_or_update(IGAS, np.array([9.0, 0, 0]), np.array([0, 1.0, 0]), 0.2, 3.0)
        assert n == 4
        assert pool.xyzh[3, 0] == 9.0
        assert pool.vxyzu[3, 1] == 1.0
        assert pool.vxyzu[3, 3] == 3.0

    def test_add_or_update_reuses_dead_slot(self):
        pool = _filled_pool(4)
        pool.kill_particle(1)
        assert pool.isdead(1)
        assert pool.npartoftype[IGAS] == 3
        n = pool.add_or_update(IGAS, np.array([7.0, 0, 0]), np.zeros(3), 0.2, 0.0)
        assert n == 4
        assert pool.xyzh[1, 0] == 7.0
        assert pool.npartoftype[IGAS] == 4

    def test_slot_hint_past_end_appends(self):
        pool = _filled_pool(2)
        pool.add_or_update(IGAS, np.ones(3), np.zeros(3), 0.2, 0.0, slot_hint=pool.npart)
        assert pool.npart == 3

    def test_full_pool(self):
        pool = _filled_pool(2, maxp=2)
        with pytest.raises(CapacityError):
            pool.add_or_update(IGAS, np.ones(3), np.zeros(3), 0.2, 0.0)

    def test_kill_out_of_range(self):
        pool = _filled_pool(2)
        with pytest.raises(IndexError):
            pool.kill_particle(5)


class TestCompaction:
    """shuffle_part and alternating deletion."""

    def test_shuffle_removes_dead(self):
        pool = _filled_pool(6)
        pool.kill_particle(0)
        pool.kill_particle(5)
        pool.shuffle_part()
        assert pool.npart == 4
        assert np.all(pool.alive_mask())
        assert sorted(pool.xyzh[:4, 0].tolist()) == [1.0, 2.0, 3.0, 4.0]

    def test_delete_alternating_keeps_core(self):
        pool = _filled_pool(10)
        ndel = pool.delete_alternating(4, 10)
        assert ndel == 6
        assert pool.npart == 4
        np.testing.assert_array_equal(pool.xyzh[:4, 0], [0.0, 1.0, 2.0, 3.0])

    def test_delete_alternating_odd_block(self):
        pool = _filled_pool(9)
        assert pool.delete_alternating(4, 9) == 5
        assert pool.npart == 4

    def test_delete_alternating_keeps_earlier_hole(self):
        pool = _filled_pool(5)
        pool.kill_particle(1)
        buffer = np.zeros((5, 4))
        buffer[:, 0] = 10.0 + np.arange(5)
        buffer[:, 3] = 0.1
        pool.add_block(buffer)
        assert pool.delete_alternating(5, 10) == 5
        assert pool.npart == 5
        assert pool.isdead(1)
        np.testing.assert_array_equal(pool.xyzh[[0, 2, 3, 4], 0], [0.0, 2.0, 3.0, 4.0])
        assert pool.npartoftype[IGAS] == 4
        # the hole below the block is still reused
        pool.add_or_update(IGAS, np.array([7.0, 0, 0]), np.zeros(3), 0.2, 0.0)
        assert pool.npart == 5
        assert pool.xyzh[1, 0] == 7.0

    def test_delete_alternating_needs_tail(self):
        pool = _filled_pool(6)
        with pytest.raises(ValueError):
            pool.delete_alternating(2, 4)

    def test_total_mass_ignores_dead(self):
        pool = _filled_pool(4)
        pool.kill_particle(2)
        assert pool.total_mass() == pytest.approx(3.0)


class TestCentreOfMass:

    def test_reset_block_only(self):
        pool = _filled_pool(6)
        pool.vxyzu[:6, 0] = 2.0
        pool.reset_centreofmass(start=3)
        # particles 3, 4, 5 had x = 3, 4, 5
        np.testing.assert_allclose(pool.xyzh[3:6, 0], [-1.0, 0.0, 1.0])
        np.testing.assert_allclose(pool.vxyzu[3:6, 0], 0.0)
        np.testing.assert_array_equal(pool.xyzh[:3, 0], [0.0, 1.0, 2.0])
        np.testing.assert_array_equal(pool.vxyzu[:3, 0], 2.0)
