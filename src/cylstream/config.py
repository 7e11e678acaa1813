"""Pydantic v2 configuration for cylinder setup and stream injection.

Provides validated, typed configuration with submodels for the shift and
relaxation options. Supports JSON I/O and ``.setup`` key/value files.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, model_validator

from cylstream.constants import buffer_inner, buffer_outer
from cylstream.core.errors import ConfigurationError
from cylstream.io.setupfile import SetupReader, read_setup_file, write_setup_file

_PROFILE_IDS = {1: "uniform", 2: "gaussian"}
_PROFILE_NAMES = {v: k for k, v in _PROFILE_IDS.items()}
_STREAM_FLOAT_KEYS = (
    "gamma", "rstream1", "zstream1", "rstream2", "zstream2", "inclination",
    "yshift", "vinj1", "vinj2", "offset", "dtinject",
)


class ShiftConfig(BaseModel):
    """Rotation and translation applied after setup."""

    enabled: bool = Field(True, description="Shift and/or rotate the cylinder after setup")
    rotate_theta: float = Field(90.0, description="Rotation about the x axis [deg]")
    rotate_phi: float = Field(0.0, description="Rotation about the z axis [deg]")
    xshift: float = Field(0.0, description="x coordinate of the shifted centre")
    yshift: float = Field(4.0, description="y coordinate of the shifted centre")
    zshift: float = Field(0.0, description="z coordinate of the shifted centre")


class RelaxConfig(BaseModel):
    """Relaxation parameters."""

    enabled: bool = Field(False, description="Relax the cylinder during setup")
    tol_dens: float = Field(0.01, ge=0, description="RMS density error tolerance")
    maxits: int = Field(1000, ge=1, description="Maximum number of relaxation iterations")
    checkpoint_interval: int = Field(100, ge=1, description="Iterations between snapshots")
    n_buffer: int | None = Field(
        None, ge=0,
        description="Buffer-shell particles (None = match the cylinder number density)",
    )
    buffer_inner: float = Field(buffer_inner, gt=1.0, description="Buffer inner radius [R]")
    buffer_outer: float = Field(buffer_outer, gt=1.0, description="Buffer outer radius [R]")
    write_files: bool = Field(True, description="Write .ev log and snapshots")
    label: str = Field("", description="Suffix for relax<label>_NNNNN snapshot names")
    output_dir: str = Field(".", description="Directory for snapshots and the .ev log")

    @model_validator(mode="after")
    def check_buffer(self) -> RelaxConfig:
        if self.buffer_inner >= self.buffer_outer:
            raise ValueError("buffer_inner must be less than buffer_outer")
        return self


class CylinderConfig(BaseModel):
    """Geometry, profile and relaxation options for one cylinder."""

    iunits: int = Field(0, ge=0, le=1, description="0 = code units, 1 = solar units")
    udist: float = Field(1.0, gt=0, description="Code distance unit [cm] (summary only)")
    umass: float = Field(1.0, gt=0, description="Code mass unit [g] (summary only)")
    ieos: int = Field(2, ge=1, le=2, description="1=isothermal, 2=adiabatic")
    gamma: float = Field(4.0 / 3.0, gt=1.0, description="Adiabatic index")

    np: int = Field(1000, description="Requested number of particles")
    profile: Literal["uniform", "gaussian"] = Field("uniform", description="Transverse profile")
    gauss_sigma: float = Field(0.0, ge=0, description="Gaussian width sigma")
    mass: float = Field(2.0, description="Cylinder mass")
    radius: float = Field(1.0, description="Cylinder radius")
    height: float = Field(2.0, description="Cylinder height along its axis")
    seed: int = Field(1978, description="Seed of the Monte-Carlo placement stream")

    write_rho_to_file: bool = Field(False, description="Write the density table to file")
    dens_profile: str = Field("density_out.tab", description="Density table filename")

    shift: ShiftConfig = Field(default_factory=ShiftConfig)
    relax: RelaxConfig = Field(default_factory=RelaxConfig)

    @model_validator(mode="after")
    def validate_geometry(self) -> CylinderConfig:
        if self.radius <= 0:
            raise ValueError(f"cylinder radius must be positive, got {self.radius}")
        if self.height <= 0:
            raise ValueError(f"cylinder height must be positive, got {self.height}")
        if self.mass < 0:
            raise ValueError("cannot set up a cylinder with negative mass")
        if self.np < 1:
            raise ValueError("cannot set up a cylinder with zero particles")
        if self.profile == "gaussian" and self.gauss_sigma <= 0:
            raise ValueError("gaussian profile requires gauss_sigma > 0")
        return self

    @property
    def iprofile(self) -> int:
        return _PROFILE_NAMES[self.profile]

    # --- I/O helpers ---

    @classmethod
    def from_file(cls, path: str | Path) -> CylinderConfig:
        """Load configuration from a JSON file."""
        path = Path(path)
        with path.open() as f:
            data = json.load(f)
        try:
            return cls(**data)
        except ValidationError as exc:
            raise ConfigurationError(f"{path}: {exc}") from exc

    def to_json(self, path: str | Path | None = None) -> str:
        """Serialize to JSON string, optionally writing to file."""
        out = self.model_dump_json(indent=2)
        if path is not None:
            Path(path).write_text(out)
        return out

    @classmethod
    def from_setup_file(cls, path: str | Path) -> CylinderConfig:
        """Load a cylinder ``.setup`` file; missing or malformed keys are fatal."""
        entries = read_setup_file(path)
        rd = SetupReader(entries, str(path))
        defaults = cls()
        iprofile = rd.get_int("iprofile", defaults.iprofile)
        if iprofile is not None and iprofile not in _PROFILE_IDS:
            rd.errors.append(f"key 'iprofile': must be 1 (uniform) or 2 (gaussian), got {iprofile}")
            iprofile = defaults.iprofile
        relax_enabled = rd.get_bool("relax_cylinder", False)
        shift_enabled = rd.get_bool("shift cylinder", True)
        data = {
            "iunits": rd.get_int("iunits", 0),
            "ieos": rd.get_int("ieos"),
            "gamma": rd.get_float("gamma"),
            "np": rd.get_int("np"),
            "mass": rd.get_float("mcylinder"),
            "radius": rd.get_float("rcylinder"),
            "height": rd.get_float("zcylinder"),
            "profile": _PROFILE_IDS[iprofile],
            "gauss_sigma": rd.get_float("gauss_sigma", 0.0),
            "seed": rd.get_int("seed", defaults.seed),
            "write_rho_to_file": rd.get_bool("write_rho_to_file", False),
            "shift": {"enabled": shift_enabled},
            "relax": {"enabled": relax_enabled},
        }
        if shift_enabled:
            for key in ("rotate_theta", "rotate_phi", "xshift", "yshift", "zshift"):
                data["shift"][key] = rd.get_float(key)
        if relax_enabled:
            data["relax"]["tol_dens"] = rd.get_float("tol_dens")
            data["relax"]["maxits"] = rd.get_int("maxits")
        rd.raise_if_errors()
        try:
            return cls(**data)
        except ValidationError as exc:
            raise ConfigurationError(f"{path}: {exc}") from exc

    def to_setup_file(self, path: str | Path) -> None:
        """Write this configuration as a ``.setup`` file."""
        sections = [
            ("options for units", [("iunits", self.iunits, "Code units (0) or solar units (1)")]),
            ("equation of state", [
                ("ieos", self.ieos, "1=isothermal,2=adiabatic"),
                ("gamma", self.gamma, "Adiabatic index"),
            ]),
            ("options for cylinder", [
                ("np", self.np, "Number of particles"),
                ("mcylinder", self.mass, "Mass of the cylinder (code units)"),
                ("rcylinder", self.radius, "Radius of the cylinder (code units)"),
                ("zcylinder", self.height, "Height of the cylinder along z-axis (code units)"),
                ("seed", self.seed, "Seed of the random placement"),
            ]),
            ("options for cylinder transverse density profile", [
                ("iprofile", self.iprofile, "Choose density profile: 1=uniform, 2=Gaussian"),
                ("gauss_sigma", self.gauss_sigma, "Standard deviation of the density profile"),
            ]),
        ]
        shift_entries = [("shift cylinder", self.shift.enabled, "Shift cylinder automatically during setup")]
        if self.shift.enabled:
            shift_entries += [
                ("rotate_theta", self.shift.rotate_theta, 'Rotation angle of the cylinder along "x" axis (degrees)'),
                ("rotate_phi", self.shift.rotate_phi, 'Rotation angle of the cylinder along "z" axis (degrees)'),
                ("xshift", self.shift.xshift, '"x" coordinate of the shifted cylinder center'),
                ("yshift", self.shift.yshift, '"y" coordinate of the shifted cylinder center'),
                ("zshift", self.shift.zshift, '"z" coordinate of the shifted cylinder center'),
            ]
        sections.append(("options for shifting and/or rotating cylinder", shift_entries))
        relax_entries = [("relax_cylinder", self.relax.enabled, "Relax cylinder automatically during setup")]
        if self.relax.enabled:
            relax_entries += [
                ("tol_dens", self.relax.tol_dens, "tolerance on density to stop relaxation"),
                ("maxits", self.relax.maxits, "maximum number of relaxation iterations"),
            ]
        relax_entries.append(("write_rho_to_file", self.write_rho_to_file, "Write density profile(s) to file"))
        sections.append(("relaxation options", relax_entries))
        write_setup_file(path, sections, title="input file for cylinder setup")


class StreamConfig(BaseModel):
    """Parameters of the two colliding streams consumed by the injector."""

    iunits: int = Field(0, ge=0, le=1, description="0 = code units, 1 = solar units")
    ieos: int = Field(2, ge=1, le=2, description="1=isothermal, 2=adiabatic")
    np: int = Field(5000, ge=1, description="Number of particles in a cylinder")
    mpart: float = Field(4e-4, gt=0, description="Particle mass")
    gamma: float = Field(4.0 / 3.0, gt=1.0, description="Adiabatic index")
    rstream1: float = Field(1.0, gt=0, description="Radius of the 1st stream")
    zstream1: float = Field(2.0, gt=0, description="Length of the 1st stream")
    rstream2: float = Field(1.0, gt=0, description="Radius of the 2nd stream")
    zstream2: float = Field(2.0, gt=0, description="Length of the 2nd stream")
    inclination: float = Field(180.0, description="Inclination between streams [deg]")
    yshift: float = Field(4.0, description="Injection-plane origin y0")
    vinj1: float = Field(1.0, gt=0, description="Injection speed of the 1st stream")
    vinj2: float = Field(1.0, gt=0, description="Injection speed of the 2nd stream")
    offset: float = Field(0.0, description="Offset between streams [rstream1]")
    dtinject: float = Field(0.01, gt=0, description="Injection cadence")
    inputfile1: str = Field("cylinder1.ascii", description="Reservoir file of the 1st stream")
    inputfile2: str = Field("cylinder1.ascii", description="Reservoir file of the 2nd stream")

    @property
    def identical_streams(self) -> bool:
        """Both reservoirs share source file, injection speed and radius."""
        return (
            self.inputfile1 == self.inputfile2
            and self.vinj1 == self.vinj2
            and self.rstream1 == self.rstream2
        )

    @classmethod
    def from_file(cls, path: str | Path) -> StreamConfig:
        """Load configuration from a JSON file."""
        path = Path(path)
        with path.open() as f:
            data = json.load(f)
        try:
            return cls(**data)
        except ValidationError as exc:
            raise ConfigurationError(f"{path}: {exc}") from exc

    def to_json(self, path: str | Path | None = None) -> str:
        """Serialize to JSON string, optionally writing to file."""
        out = self.model_dump_json(indent=2)
        if path is not None:
            Path(path).write_text(out)
        return out

    @classmethod
    def from_setup_file(cls, path: str | Path) -> StreamConfig:
        """Load a stream ``.setup`` file; every injection key is required."""
        entries = read_setup_file(path)
        rd = SetupReader(entries, str(path))
        data: dict[str, object] = {
            "iunits": rd.get_int("iunits", 0),
            "ieos": rd.get_int("ieos", 2),
            "np": rd.get_int("np"),
            "mpart": rd.get_float("mpart", 4e-4),
        }
        for key in _STREAM_FLOAT_KEYS:
            data[key] = rd.get_float(key)
        data["inputfile1"] = rd.get_str("inputfile1")
        data["inputfile2"] = rd.get_str("inputfile2")
        rd.raise_if_errors()
        try:
            return cls(**data)
        except ValidationError as exc:
            raise ConfigurationError(f"{path}: {exc}") from exc

    def to_setup_file(self, path: str | Path) -> None:
        """Write this configuration as a ``.setup`` file."""
        entries = [
            ("iunits", self.iunits, "Code units (0) or solar units (1)"),
            ("np", self.np, "Number of particles"),
            ("mpart", self.mpart, "Particle mass"),
            ("gamma", self.gamma, "Adiabatic index"),
            ("rstream1", self.rstream1, "Radius of the 1st stream"),
            ("zstream1", self.zstream1, "Length of the 1st stream along z-axis"),
            ("rstream2", self.rstream2, "Radius of the 2nd stream"),
            ("zstream2", self.zstream2, "Length of the 2nd stream along z-axis"),
            ("inclination", self.inclination, "inclination between streams (degrees)"),
            ("yshift", self.yshift, '"y" coordinate of the shifted stream center (code units)'),
            ("vinj1", self.vinj1, "injection speed (code units)"),
            ("vinj2", self.vinj2, "injection speed (code units)"),
            ("offset", self.offset, "offset between streams (units of rstream)"),
            ("dtinject", self.dtinject, "delta t for particle injection (code units)"),
            ("inputfile1", self.inputfile1, "input file name of the 1st cylinder"),
            ("inputfile2", self.inputfile2, "input file name of the 2nd cylinder"),
            ("ieos", self.ieos, "1=isothermal,2=adiabatic"),
        ]
        write_setup_file(path, [("options for stream", entries)], title="input file for stream setup")
