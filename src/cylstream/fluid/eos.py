"""Equation of state for SPH gas particles.

Provides the two closures used by the setup and relaxation code:
isothermal (``ieos=1``) and adiabatic (``ieos=2``). The full thermodynamics
of the host simulation is not modelled here.

    ieos=1:  P = c_s^2 rho,           c_s = sqrt(polyk)
    ieos=2:  P = (gamma - 1) rho u,   c_s = sqrt(gamma (gamma - 1) u)
"""

from __future__ import annotations

import numpy as np

ISOTHERMAL = 1
ADIABATIC = 2


class IdealEOS:
    """Ideal-gas equation of state on specific internal energy.

    Args:
        ieos: 1 (isothermal) or 2 (adiabatic).
        gamma: Adiabatic index.
        polyk: Isothermal sound speed squared (ieos=1 only).
    """

    def __init__(self, ieos: int = ADIABATIC, gamma: float = 4.0 / 3.0, polyk: float = 0.0) -> None:
        if ieos not in (ISOTHERMAL, ADIABATIC):
            raise ValueError(f"ieos must be 1 (isothermal) or 2 (adiabatic), got {ieos}")
        self.ieos = ieos
        self.gamma = gamma
        self.polyk = polyk

    def pressure(self, rho: np.ndarray, u: np.ndarray) -> np.ndarray:
        """Thermal pressure."""
        if self.ieos == ISOTHERMAL:
            return self.polyk * rho
        return (self.gamma - 1.0) * rho * np.maximum(u, 0.0)

    def sound_speed(self, u: np.ndarray) -> np.ndarray:
        """Adiabatic (or isothermal) sound speed."""
        if self.ieos == ISOTHERMAL:
            return np.full_like(np.asarray(u, dtype=np.float64), np.sqrt(self.polyk))
        return np.sqrt(self.gamma * (self.gamma - 1.0) * np.maximum(u, 0.0))

    def energy_from_pressure(self, rho: np.ndarray, p: np.ndarray) -> np.ndarray:
        """Specific internal energy u = P / ((gamma - 1) rho)."""
        return p / ((self.gamma - 1.0) * np.maximum(rho, 1e-30))
