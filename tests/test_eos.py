"""Tests for the equation of state and physics options."""

from __future__ import annotations

import numpy as np
import pytest

from cylstream.constants import hfact_default, relax_damp
from cylstream.core.options import PhysicsOptions, relaxation_options
from cylstream.fluid.eos import ADIABATIC, ISOTHERMAL, IdealEOS


class TestIdealEOS:
    """Isothermal and adiabatic closures."""

    def setup_method(self):
        self.eos = IdealEOS(ieos=ADIABATIC, gamma=4.0 / 3.0)

    def test_adiabatic_pressure(self):
        """P = (gamma - 1) rho u."""
        rho = np.array([2.0])
        u = np.array([3.0])
        np.testing.assert_allclose(self.eos.pressure(rho, u), [2.0], rtol=1e-12)

    def test_adiabatic_sound_speed(self):
        """c_s^2 = gamma (gamma - 1) u."""
        cs = self.eos.sound_speed(np.array([1e-5]))
        np.testing.assert_allclose(cs**2, 4.0 / 9.0 * 1e-5, rtol=1e-12)

    def test_isothermal(self):
        eos = IdealEOS(ieos=ISOTHERMAL, polyk=0.25)
        np.testing.assert_allclose(eos.pressure(np.array([4.0]), np.array([99.0])), [1.0])
        np.testing.assert_allclose(eos.sound_speed(np.array([1.0, 2.0])), [0.5, 0.5])

    def test_energy_inverts_pressure(self):
        rho = np.array([0.3, 1.5])
        u = np.array([1e-3, 2.0])
        p = self.eos.pressure(rho, u)
        np.testing.assert_allclose(self.eos.energy_from_pressure(rho, p), u, rtol=1e-12)

    def test_bad_ieos(self):
        with pytest.raises(ValueError, match="ieos"):
            IdealEOS(ieos=12)


class TestRelaxationOptions:
    """The context manager always restores the caller's options."""

    def test_values_inside(self):
        opts = PhysicsOptions(ieos=ISOTHERMAL, polyk=1.0)
        with relaxation_options(opts) as o:
            assert o.ieos == ADIABATIC
            assert o.idamp == 1
            assert o.damp == pytest.approx(relax_damp)

    def test_restored_after(self):
        opts = PhysicsOptions(ieos=ISOTHERMAL, gamma=5.0 / 3.0, hfact=1.1)
        with relaxation_options(opts) as o:
            o.gamma = 1.4
            o.hfact = hfact_default
        assert opts.ieos == ISOTHERMAL
        assert opts.gamma == pytest.approx(5.0 / 3.0)
        assert opts.hfact == pytest.approx(1.1)
        assert opts.idamp == 0
        assert opts.damp == 0.0

    def test_restored_on_exception(self):
        opts = PhysicsOptions(ieos=ISOTHERMAL)
        with pytest.raises(RuntimeError):
            with relaxation_options(opts):
                raise RuntimeError("boom")
        assert opts.ieos == ISOTHERMAL
        assert opts.idamp == 0
