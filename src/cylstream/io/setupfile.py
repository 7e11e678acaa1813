"""Reader and writer for ``.setup`` key/value files.

Format (one option per line, ``#`` starts a comment line, ``!`` starts a
trailing comment)::

    # input file for cylinder setup

    # options for cylinder
                  np =        1000    ! Number of particles
           mcylinder =       2.000    ! Mass of the cylinder (code units)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path

from cylstream.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

#: (key, value, comment)
SetupEntry = tuple[str, object, str]
#: (section title, entries)
SetupSection = tuple[str, Sequence[SetupEntry]]

_TRUE = {"t", "true", ".true.", "yes", "y", "1"}
_FALSE = {"f", "false", ".false.", "no", "n", "0"}


def read_setup_file(path: str | Path) -> dict[str, str]:
    """Parse a setup file into a ``{key: raw value}`` dictionary.

    Raises:
        FileNotFoundError: The file does not exist.
        ConfigurationError: A non-comment line has no ``=``.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"setup file not found: {path}")

    entries: dict[str, str] = {}
    bad: list[int] = []
    for lineno, raw in enumerate(path.read_text().splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            bad.append(lineno)
            continue
        key, value = line.split("=", 1)
        value = value.split("!", 1)[0].strip()
        entries[key.strip()] = value
    if bad:
        raise ConfigurationError(f"{path}: malformed line(s) {bad} (expected 'key = value')")
    logger.debug("Read %d options from %s", len(entries), path)
    return entries


def format_value(value: object) -> str:
    if isinstance(value, bool):
        return "T" if value else "F"
    if isinstance(value, float):
        return f"{value:.6g}" if abs(value) < 1e4 else f"{value:.6e}"
    return str(value)


def write_setup_file(
    path: str | Path,
    sections: Iterable[SetupSection],
    title: str = "input file for cylstream setup",
) -> None:
    """Write option sections to ``path``, replacing any existing file."""
    lines = [f"# {title}"]
    for section, entries in sections:
        lines.append("")
        lines.append(f"# {section}")
        for key, value, comment in entries:
            lines.append(f"{key:>20} = {format_value(value):>20}    ! {comment}")
    Path(path).write_text("\n".join(lines) + "\n")
    logger.info("Writing %s", path)


def parse_bool(raw: str) -> bool:
    token = raw.strip().lower()
    if token in _TRUE:
        return True
    if token in _FALSE:
        return False
    raise ValueError(f"not a logical value: {raw!r}")


class SetupReader:
    """Typed accessor over a parsed setup file that collects every error.

    Mirrors the read-all-then-report pattern: each ``get_*`` call records
    missing or malformed keys instead of raising, and ``raise_if_errors``
    raises a single ``ConfigurationError`` naming all of them.
    """

    def __init__(self, entries: dict[str, str], source: str = "<setup>") -> None:
        self.entries = entries
        self.source = source
        self.errors: list[str] = []

    def _raw(self, key: str, required: bool) -> str | None:
        if key not in self.entries:
            if required:
                self.errors.append(f"missing key '{key}'")
            return None
        return self.entries[key]

    def get_float(self, key: str, default: float | None = None, required: bool = True) -> float | None:
        raw = self._raw(key, required and default is None)
        if raw is None:
            return default
        try:
            return float(raw.replace("d", "e").replace("D", "e"))
        except ValueError:
            self.errors.append(f"key '{key}': cannot parse {raw!r} as a real number")
            return default

    def get_int(self, key: str, default: int | None = None, required: bool = True) -> int | None:
        raw = self._raw(key, required and default is None)
        if raw is None:
            return default
        try:
            return int(raw)
        except ValueError:
            self.errors.append(f"key '{key}': cannot parse {raw!r} as an integer")
            return default

    def get_bool(self, key: str, default: bool | None = None, required: bool = True) -> bool | None:
        raw = self._raw(key, required and default is None)
        if raw is None:
            return default
        try:
            return parse_bool(raw)
        except ValueError:
            self.errors.append(f"key '{key}': cannot parse {raw!r} as a logical")
            return default

    def get_str(self, key: str, default: str | None = None, required: bool = True) -> str | None:
        raw = self._raw(key, required and default is None)
        if raw is None:
            return default
        if not raw:
            self.errors.append(f"key '{key}': empty value")
            return default
        return raw

    def raise_if_errors(self) -> None:
        if self.errors:
            raise ConfigurationError(
                f"{self.source}: {len(self.errors)} error(s) during read of setup file: "
                + "; ".join(self.errors)
            )
