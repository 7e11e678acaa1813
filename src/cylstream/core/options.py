"""Run-time physics switches shared by the force evaluator and the relaxer.

``PhysicsOptions`` holds the settings that relaxation overrides (EOS type,
adiabatic index, hfact, velocity damping). ``relaxation_options`` swaps in
relaxation-friendly values and guarantees the previous values come back on
every exit path.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator

from pydantic import BaseModel, Field

from cylstream.constants import hfact_default, relax_damp
from cylstream.fluid.eos import ADIABATIC, IdealEOS

logger = logging.getLogger(__name__)


class PhysicsOptions(BaseModel):
    """Mutable physics options of a run."""

    ieos: int = Field(ADIABATIC, ge=1, le=2, description="1=isothermal, 2=adiabatic")
    gamma: float = Field(4.0 / 3.0, gt=1.0, description="Adiabatic index")
    polyk: float = Field(0.0, ge=0.0, description="Isothermal sound speed squared")
    hfact: float = Field(hfact_default, gt=0.0, description="Smoothing length factor")
    idamp: int = Field(0, ge=0, le=1, description="Velocity damping switch")
    damp: float = Field(0.0, ge=0.0, description="Velocity damping coefficient")

    model_config = {"validate_assignment": True}

    def eos(self) -> IdealEOS:
        return IdealEOS(ieos=self.ieos, gamma=self.gamma, polyk=self.polyk)


@contextlib.contextmanager
def relaxation_options(options: PhysicsOptions) -> Iterator[PhysicsOptions]:
    """Switch ``options`` to adiabatic EOS with velocity damping for the block.

    gamma, hfact and ieos are restored on exit and damping is switched off,
    whether the block returns normally or raises.
    """
    saved = options.model_dump(include={"gamma", "hfact", "ieos"})
    options.ieos = ADIABATIC
    options.idamp = 1
    options.damp = relax_damp
    logger.debug("Relaxation options set (saved %s)", saved)
    try:
        yield options
    finally:
        options.gamma = saved["gamma"]
        options.hfact = saved["hfact"]
        options.ieos = saved["ieos"]
        options.idamp = 0
        options.damp = 0.0
        logger.debug("Physics options restored to %s", saved)
