"""
Model configuration and parameter files.

A parameter file holds one ``key: value`` pair per line; keys are matched
case-insensitively and ``#`` starts a comment::

    run name: ridge
    time step: 100
    boundary code: bpbp
    non-linear: on
    s_c: 30

:func:`load_parameter_file` validates the file once and returns a typed
:class:`ModelConfig` together with a list of :class:`ConfigWarning` for keys
it did not recognise.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable

from .boundary import BoundaryConditions

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Malformed or inconsistent configuration."""


@dataclass(frozen=True)
class ConfigWarning:
    """A parameter-file line that was read but not applied."""

    line: int
    key: str
    message: str


@dataclass
class ModelConfig:
    """Every option of a model run.

    ``S_c`` is a gradient (the parameter file gives it in degrees);
    ``K_amplitude`` and ``D_amplitude`` are fractions of ``K`` and ``D``.
    ``switch_time`` defaults to half of ``end_time``.
    """

    run_name: str = "lem_run"
    # Time stepping
    dt: float = 100.0
    end_time: float = 10000.0
    end_time_mode: int = 0
    num_runs: int = 1
    steady_state_tolerance: float = 0.0001
    steady_state_limit: float = -1.0
    # Grid
    nrows: int = 100
    ncols: int = 100
    resolution: float = 10.0
    nodata: float = -99.0
    boundary_code: str = "bpbp"
    load_file: str | None = None
    noise: float = 0.1
    # Uplift
    uplift_mode: int = 0
    max_uplift: float = 0.0005
    # Fluvial
    fluvial: bool = True
    K: float = 0.0002
    m: float = 0.5
    n: float = 1.0
    incision_threshold: float = 0.0
    threshold_drainage: float = -99.0
    # Hillslope
    hillslope: bool = True
    nonlinear: bool = False
    adaptive_timestep: bool = False
    D: float = 0.02
    S_c: float = math.tan(math.radians(30.0))
    # Isostasy
    isostasy: bool = False
    flexure: bool = False
    iterative_flexure: bool = False
    rigidity: float = 1e7
    # Forcing
    K_mode: int = 0
    D_mode: int = 0
    K_amplitude: float = 0.1
    D_amplitude: float = 0.1
    K_file: str | None = None
    D_file: str | None = None
    periodicity: float = 10000.0
    periodicity_2: float = 20000.0
    period_mode: int = 1
    p_ratio: float = 0.8
    switch_time: float | None = None
    # Output
    print_interval: int = 10
    quiet: bool = False
    reporting: bool = True
    report_delay: float = 0.0
    print_elevation: bool = True
    print_hillshade: bool = False
    print_erosion: bool = False
    print_erosion_cycle: bool = False
    print_slope_area: bool = False

    def __post_init__(self) -> None:
        if self.switch_time is None:
            self.switch_time = self.end_time / 2.0
        self.p_ratio = min(self.p_ratio, 1.0)

    @property
    def boundary(self) -> BoundaryConditions:
        return BoundaryConditions.from_code(self.boundary_code)

    @property
    def S_c_degrees(self) -> float:
        return math.degrees(math.atan(self.S_c))

    @property
    def forcing_active(self) -> bool:
        return self.K_mode != 0 or self.D_mode != 0

    def validate(self) -> None:
        """Check value ranges.

        Raises
        ------
        ConfigError
            On the first invalid option.
        """
        if self.nrows < 3 or self.ncols < 3:
            raise ConfigError(
                f"grid must be at least 3x3, got {self.nrows}x{self.ncols}"
            )
        if self.resolution <= 0:
            raise ConfigError(f"resolution must be positive, got {self.resolution}")
        if self.dt <= 0:
            raise ConfigError(f"time step must be positive, got {self.dt}")
        if self.end_time_mode not in (0, 1, 2, 3):
            raise ConfigError(f"end time mode must be 0-3, got {self.end_time_mode}")
        if self.uplift_mode not in (0, 1, 2, 3):
            raise ConfigError(f"uplift mode must be 0-3, got {self.uplift_mode}")
        if self.K_mode not in (0, 1, 2, 3) or self.D_mode not in (0, 1, 2, 3):
            raise ConfigError("K mode and D mode must be 0-3")
        if self.K_mode == 3 and not self.K_file:
            raise ConfigError("K mode 3 requires a K file")
        if self.D_mode == 3 and not self.D_file:
            raise ConfigError("D mode 3 requires a D file")
        if self.period_mode not in (1, 2, 3, 4):
            raise ConfigError(f"period mode must be 1-4, got {self.period_mode}")
        if self.periodicity <= 0 or self.periodicity_2 <= 0:
            raise ConfigError("periodicities must be positive")
        if self.S_c <= 0:
            raise ConfigError(f"critical slope must be positive, got {self.S_c}")
        if self.num_runs < 1:
            raise ConfigError(f"num runs must be at least 1, got {self.num_runs}")
        if self.print_interval < 0:
            raise ConfigError("print interval must not be negative")
        try:
            self.boundary
        except ValueError as exc:
            raise ConfigError(str(exc)) from None


# ---------------------------------------------------------------------------
# Parameter-file keys
# ---------------------------------------------------------------------------

_TRUE = {"on", "true", "yes", "1"}
_FALSE = {"off", "false", "no", "0"}


def _flag(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"expected on/off, got {value!r}")


def _integer(value: str) -> int:
    return int(float(value))


def _degrees(value: str) -> float:
    return math.tan(math.radians(float(value)))


def _text(value: str) -> str:
    return value.strip()


PARAMETER_KEYS: dict[str, tuple[str, Callable[[str], Any]]] = {
    "run name": ("run_name", _text),
    "time step": ("dt", float),
    "end time": ("end_time", float),
    "end time mode": ("end_time_mode", _integer),
    "num runs": ("num_runs", _integer),
    "max uplift": ("max_uplift", float),
    "uplift mode": ("uplift_mode", _integer),
    "tolerance": ("steady_state_tolerance", float),
    "steady limit": ("steady_state_limit", float),
    "boundary code": ("boundary_code", _text),
    "m": ("m", float),
    "n": ("n", float),
    "k": ("K", float),
    "threshold drainage": ("threshold_drainage", float),
    "incision threshold": ("incision_threshold", float),
    "d": ("D", float),
    "s_c": ("S_c", _degrees),
    "rigidity": ("rigidity", float),
    "nrows": ("nrows", _integer),
    "ncols": ("ncols", _integer),
    "resolution": ("resolution", float),
    "nodata": ("nodata", float),
    "print interval": ("print_interval", _integer),
    "k mode": ("K_mode", _integer),
    "d mode": ("D_mode", _integer),
    "k file": ("K_file", _text),
    "d file": ("D_file", _text),
    "periodicity": ("periodicity", float),
    "periodicity 2": ("periodicity_2", float),
    "p ratio": ("p_ratio", float),
    "period mode": ("period_mode", _integer),
    "switch time": ("switch_time", float),
    "k amplitude": ("K_amplitude", float),
    "d amplitude": ("D_amplitude", float),
    "noise": ("noise", float),
    "report delay": ("report_delay", float),
    "load file": ("load_file", _text),
    "fluvial": ("fluvial", _flag),
    "hillslope": ("hillslope", _flag),
    "non-linear": ("nonlinear", _flag),
    "adaptive timestep": ("adaptive_timestep", _flag),
    "isostasy": ("isostasy", _flag),
    "flexure": ("flexure", _flag),
    "iterative flexure": ("iterative_flexure", _flag),
    "quiet": ("quiet", _flag),
    "reporting": ("reporting", _flag),
    "print elevation": ("print_elevation", _flag),
    "print hillshade": ("print_hillshade", _flag),
    "print erosion": ("print_erosion", _flag),
    "print erosion cycle": ("print_erosion_cycle", _flag),
    "print slope-area": ("print_slope_area", _flag),
}
"""Parameter-file key → (``ModelConfig`` attribute, value parser)."""


def parse_parameter_lines(
    lines: list[str],
    source: str = "<parameters>",
) -> tuple[ModelConfig, list[ConfigWarning]]:
    """Build a :class:`ModelConfig` from parameter-file lines.

    Raises
    ------
    ConfigError
        On a line without ``:``, an unparseable value, or an invalid
        configuration.
    """
    values: dict[str, Any] = {}
    warnings: list[ConfigWarning] = []

    for lineno, raw in enumerate(lines, start=1):
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        if ":" not in line:
            raise ConfigError(f"{source}:{lineno}: expected 'key: value', got {raw.strip()!r}")
        key, value = (part.strip() for part in line.split(":", 1))
        key = key.lower()

        if key not in PARAMETER_KEYS:
            warning = ConfigWarning(lineno, key, f"unknown parameter {key!r} ignored")
            warnings.append(warning)
            logger.warning("%s:%d: %s", source, lineno, warning.message)
            continue

        attr, parser = PARAMETER_KEYS[key]
        try:
            values[attr] = parser(value)
        except ValueError as exc:
            raise ConfigError(f"{source}:{lineno}: bad value for {key!r}: {exc}") from None

    config = ModelConfig(**values)
    try:
        config.validate()
    except ConfigError as exc:
        raise ConfigError(f"{source}: {exc}") from None

    for message in config.boundary.warnings:
        warnings.append(ConfigWarning(0, "boundary code", message))
    return config, warnings


def load_parameter_file(path: str | Path) -> tuple[ModelConfig, list[ConfigWarning]]:
    """Read and validate a parameter file.

    Raises
    ------
    ConfigError
        If the file cannot be read or holds invalid values.
    """
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as exc:
        raise ConfigError(f"cannot read parameter file {path}: {exc}") from exc
    config, warnings = parse_parameter_lines(text.splitlines(), source=str(path))
    logger.info("Loaded parameters for run %r from %s", config.run_name, path)
    return config, warnings


def write_template_parameter_file(
    path: str | Path,
    config: ModelConfig | None = None,
) -> Path:
    """Write a parameter file listing every key with its current value."""
    config = config if config is not None else ModelConfig()
    attr_to_key = {attr: key for key, (attr, _) in PARAMETER_KEYS.items()}
    field_names = [f.name for f in fields(config)]

    lines = ["# lemcore parameter file"]
    for name in field_names:
        key = attr_to_key.get(name)
        if key is None:
            continue
        value = getattr(config, name)
        if value is None:
            continue
        if isinstance(value, bool):
            text = "on" if value else "off"
        elif name == "S_c":
            text = f"{config.S_c_degrees:g}"
        else:
            text = str(value)
        lines.append(f"{key}: {text}")

    path = Path(path)
    path.write_text("\n".join(lines) + "\n")
    logger.info("Wrote template parameter file %s", path)
    return path
