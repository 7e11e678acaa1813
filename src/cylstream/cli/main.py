"""Command-line interface for cylinder setup and stream injection.

Usage:
    cylstream write-setup cylinder cylinder.setup
    cylstream setup-cylinder cylinder.setup -o cylinder1.ascii --relax
    cylstream inject stream.setup --tmax 1.0 --dtmax 0.01 -o pool.h5
"""

from __future__ import annotations

import logging
import sys

import click

from cylstream.core.errors import (
    CapacityError,
    CheckpointMismatchError,
    ConfigurationError,
    PartitionError,
    ReservoirFormatError,
    SetupError,
)

_FATAL = (
    ConfigurationError,
    CapacityError,
    CheckpointMismatchError,
    PartitionError,
    ReservoirFormatError,
    SetupError,
    FileNotFoundError,
)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """cylstream: cylinder reservoirs and colliding-stream injection."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@cli.command()
@click.argument("setup_file", type=click.Path(exists=True))
def verify(setup_file: str) -> None:
    """Verify a cylinder or stream setup file is valid."""
    from cylstream.config import CylinderConfig, StreamConfig
    from cylstream.io.setupfile import read_setup_file

    try:
        entries = read_setup_file(setup_file)
        if "vinj1" in entries or "inputfile1" in entries:
            scfg = StreamConfig.from_setup_file(setup_file)
            click.echo("Stream configuration is valid:")
            click.echo(f"  np: {scfg.np}, gamma: {scfg.gamma:.4f}")
            click.echo(f"  stream 1: r={scfg.rstream1:.4g}, z={scfg.zstream1:.4g}, vinj={scfg.vinj1:.4g}")
            click.echo(f"  stream 2: r={scfg.rstream2:.4g}, z={scfg.zstream2:.4g}, vinj={scfg.vinj2:.4g}")
            click.echo(f"  inclination: {scfg.inclination:.4g} deg, offset: {scfg.offset:.4g}")
            click.echo(f"  reservoirs: {scfg.inputfile1}, {scfg.inputfile2}")
            click.echo(f"  identical streams: {scfg.identical_streams}")
        else:
            ccfg = CylinderConfig.from_setup_file(setup_file)
            click.echo("Cylinder configuration is valid:")
            click.echo(f"  np: {ccfg.np}, profile: {ccfg.profile}")
            click.echo(f"  M={ccfg.mass:.4g}, R={ccfg.radius:.4g}, Z={ccfg.height:.4g}")
            click.echo(f"  relax: {ccfg.relax.enabled}, shift: {ccfg.shift.enabled}")
    except _FATAL as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)


@cli.command("write-setup")
@click.argument("kind", type=click.Choice(["cylinder", "stream"], case_sensitive=False))
@click.argument("path", type=click.Path(dir_okay=False))
def write_setup(kind: str, path: str) -> None:
    """Write a setup file with default values."""
    from cylstream.config import CylinderConfig, StreamConfig

    if kind.lower() == "cylinder":
        CylinderConfig().to_setup_file(path)
    else:
        StreamConfig().to_setup_file(path)
    click.echo(f"Wrote default {kind} setup to {path}")


@cli.command("setup-cylinder")
@click.argument("setup_file", type=click.Path(exists=True))
@click.option("--output", "-o", type=str, default="cylinder1.ascii", help="Reservoir file to write.")
@click.option("--relax/--no-relax", default=None, help="Override relax_cylinder from the setup file.")
@click.option("--seed", type=int, default=None, help="Override the placement seed.")
def setup_cylinder(setup_file: str, output: str, relax: bool | None, seed: int | None) -> None:
    """Build a cylinder and write it as a reservoir file."""
    from cylstream.config import CylinderConfig
    from cylstream.core.particles import IGAS
    from cylstream.io.reservoir import write_stream_ascii
    from cylstream.setup.cylinder import set_cylinder

    try:
        config = CylinderConfig.from_setup_file(setup_file)
        if relax is not None:
            config.relax.enabled = relax
        if seed is not None:
            config.seed = seed
        result = set_cylinder(config)
    except _FATAL as exc:
        click.echo(f"Setup error: {exc}", err=True)
        sys.exit(1)

    pool = result.pool
    n = pool.npart
    write_stream_ascii(output, pool.xyzh[:n], pool.vxyzu[:n], float(pool.massoftype[IGAS]))

    click.echo("\n--- Cylinder Summary ---")
    click.echo(f"  particles: {result.nadded}")
    click.echo(f"  particle mass: {pool.massoftype[IGAS]:.6e}")
    click.echo(f"  central density: {result.profile.rho_centre:.6e}")
    if result.relax is not None:
        click.echo(f"  relaxation: {result.relax.status.value} after {result.relax.state.nits} iterations")
    click.echo(f"  reservoir: {output}")


@cli.command()
@click.argument("setup_file", type=click.Path(exists=True))
@click.option("--tmax", type=float, required=True, help="End time.")
@click.option("--dtmax", type=float, required=True, help="Step length.")
@click.option("--maxp", type=int, default=1_000_000, help="Live pool capacity.")
@click.option("--output", "-o", type=str, default=None, help="Write the final pool to this HDF5 file.")
def inject(setup_file: str, tmax: float, dtmax: float, maxp: int, output: str | None) -> None:
    """Drive stream injection into an empty live pool."""
    from cylstream.core.particles import ParticlePool
    from cylstream.diagnostics.checkpoint import save_pool
    from cylstream.inject.stream import StreamInjector

    if dtmax <= 0.0:
        click.echo("Configuration error: --dtmax must be positive", err=True)
        sys.exit(1)

    pool = ParticlePool(maxp)
    time = 0.0
    nsteps = 0
    ninjected = 0
    try:
        injector = StreamInjector.from_setup_file(setup_file)
        with injector:
            while time < tmax:
                step = injector.inject_particles(time, dtmax, dtmax, pool)
                ninjected += step.nadded
                time += dtmax
                nsteps += 1
            identical = injector.identical_streams
            config_json = injector.config.to_json()
    except _FATAL as exc:
        click.echo(f"Injection error: {exc}", err=True)
        sys.exit(1)

    if output:
        save_pool(output, pool, time, config_json=config_json)

    click.echo("\n--- Injection Summary ---")
    click.echo(f"  steps: {nsteps}")
    click.echo(f"  time: {time:.6e}")
    click.echo(f"  identical streams: {identical}")
    click.echo(f"  particles injected: {ninjected}")
    click.echo(f"  npart: {pool.npart}")


if __name__ == "__main__":
    cli()
