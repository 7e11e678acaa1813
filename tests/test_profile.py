"""Tests for the tabulated transverse density profile."""

from __future__ import annotations

import numpy as np
import pytest

from cylstream.constants import nrhotab, pi
from cylstream.core.errors import ConfigurationError
from cylstream.setup.profile import get_mr, set_cylinder_profile, write_rhotab


class TestUniformProfile:
    """rho(r) = M / (pi R^2 Z)."""

    def test_central_density(self):
        """R=1, Z=2, M=2 gives rho0 = 1/pi."""
        prof = set_cylinder_profile("uniform", 1.0, 2.0, 2.0)
        assert prof.rho_centre == pytest.approx(2.0 / (pi * 2.0))
        assert prof.rho_centre == pytest.approx(0.3183, abs=1e-4)
        np.testing.assert_allclose(prof.rho, prof.rho_centre)

    def test_radial_grid(self):
        prof = set_cylinder_profile("uniform", 3.0, 1.0, 1.0)
        assert prof.npts == nrhotab
        assert prof.r[0] == pytest.approx(3.0 / nrhotab)
        assert prof.rmax == pytest.approx(3.0)
        assert np.all(np.diff(prof.r) > 0)

    def test_interpolate_clamps(self):
        """Outside the table the end values are used."""
        prof = set_cylinder_profile("gaussian", 1.0, 2.0, 2.0, gauss_sigma=0.5)
        assert prof.interpolate(0.0) == pytest.approx(prof.rho[0])
        assert prof.interpolate(5.0) == pytest.approx(prof.rho[-1])


class TestGaussianProfile:
    """rho(r) = rho0 exp(-r^2 / sigma^2)."""

    def test_central_density(self):
        R, Z, M, sig = 1.0, 2.0, 2.0, 0.5
        prof = set_cylinder_profile("gaussian", R, Z, M, gauss_sigma=sig)
        expected = M / (pi * Z * sig**2 * (1.0 - np.exp(-(R**2) / sig**2)))
        assert prof.rho_centre == pytest.approx(expected)

    def test_mass_normalisation(self):
        """int 2 pi Z rho r dr over [0, R] recovers M."""
        R, Z, M = 1.0, 2.0, 2.0
        prof = set_cylinder_profile("gaussian", R, Z, M, gauss_sigma=0.4)
        r = np.concatenate(([0.0], prof.r))
        f = 2.0 * pi * Z * np.concatenate(([prof.rho_centre], prof.rho)) * r
        mass = np.sum(0.5 * (f[1:] + f[:-1]) * np.diff(r))
        assert mass == pytest.approx(M, rel=1e-5)

    def test_monotone_decreasing(self):
        prof = set_cylinder_profile("gaussian", 1.0, 2.0, 2.0, gauss_sigma=0.3)
        assert np.all(np.diff(prof.rho) < 0)


class TestProfileErrors:
    """Invalid geometry is rejected before any table is built."""

    def test_zero_radius(self):
        with pytest.raises(ConfigurationError, match="radius"):
            set_cylinder_profile("uniform", 0.0, 2.0, 2.0)

    def test_negative_mass(self):
        with pytest.raises(ConfigurationError, match="mass"):
            set_cylinder_profile("uniform", 1.0, 2.0, -1.0)

    def test_gaussian_needs_sigma(self):
        with pytest.raises(ConfigurationError, match="sigma"):
            set_cylinder_profile("gaussian", 1.0, 2.0, 2.0, gauss_sigma=0.0)

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError):
            set_cylinder_profile("polytrope", 1.0, 2.0, 2.0)


class TestMassCoordinate:
    """get_mr integrates 2 pi rho r dr from the first grid point."""

    def test_uniform_is_exact(self):
        prof = set_cylinder_profile("uniform", 1.0, 2.0, 2.0)
        mr = get_mr(prof.rho, prof.r)
        expected = pi * prof.rho_centre * (prof.r**2 - prof.r[0] ** 2)
        np.testing.assert_allclose(mr, expected, rtol=1e-10, atol=1e-14)

    def test_starts_at_zero_and_increases(self):
        prof = set_cylinder_profile("gaussian", 1.0, 2.0, 2.0, gauss_sigma=0.5)
        mr = get_mr(prof.rho, prof.r)
        assert mr[0] == 0.0
        assert np.all(np.diff(mr) > 0)

    def test_write_rhotab(self, tmp_path):
        prof = set_cylinder_profile("uniform", 1.0, 2.0, 2.0, npts=50)
        path = tmp_path / "density_out.tab"
        write_rhotab(path, prof.r, prof.rho)
        data = np.loadtxt(path)
        assert data.shape == (50, 2)
        np.testing.assert_allclose(data[:, 0], prof.r)
