"""
Periodic forcing of erodibility (K) and diffusivity (D).

A :class:`PeriodicSchedule` holds the forcing periodicities and produces a
dimensionless signal in ``[-1, 1]``; each :class:`ParameterForcing` maps
that signal onto one parameter as ``base + amplitude * signal``, or reads
the parameter from an external :class:`TimeSeries`.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)


class ForcingMode(IntEnum):
    """How a forced parameter varies with time."""

    CONSTANT = 0
    SINUSOIDAL = 1
    SQUARE_WAVE = 2
    TIME_SERIES = 3


class PeriodMode(IntEnum):
    """How the two forcing periodicities combine."""

    SINGLE = 1
    SWITCH = 2
    COMPOSITE = 3
    COMPOSITE_SWITCH = 4


@dataclass
class TimeSeries:
    """Parameter values sampled at increasing times, linearly interpolated."""

    times: np.ndarray
    values: np.ndarray

    def __post_init__(self) -> None:
        self.times = np.asarray(self.times, dtype=float)
        self.values = np.asarray(self.values, dtype=float)
        if self.times.ndim != 1 or self.times.shape != self.values.shape:
            raise ValueError("times and values must be 1-D arrays of equal length")
        if self.times.size == 0:
            raise ValueError("time series is empty")
        if np.any(np.diff(self.times) <= 0):
            raise ValueError("time series times must be strictly increasing")

    @classmethod
    def from_file(cls, path: str | Path) -> "TimeSeries":
        """Read two whitespace-separated columns (time, value).

        Raises
        ------
        ValueError
            If the file does not hold two numeric columns.
        """
        data = np.loadtxt(path, ndmin=2, comments="#")
        if data.shape[1] < 2:
            raise ValueError(f"{path}: expected two columns (time, value)")
        logger.debug("Loaded %d forcing samples from %s", data.shape[0], path)
        return cls(data[:, 0], data[:, 1])

    def value_at(self, time: float, offset: float = 0.0) -> float:
        """Value at *time*, with the series starting at *offset*.

        Values are held constant before the first and after the last sample.
        """
        return float(np.interp(time - offset, self.times, self.values))


@dataclass
class PeriodicSchedule:
    """Forcing periodicities and the dimensionless periodic signal.

    Attributes
    ----------
    periodicity, periodicity_2 : float
        Primary and secondary periods.
    period_mode : PeriodMode
        ``SINGLE`` and ``SWITCH`` use one period; ``COMPOSITE`` modes blend
        both with weight :attr:`weight` on the primary.  The ``SWITCH`` modes
        swap the periods once, at :attr:`switch_time`.
    weight : float
        Weight of the primary period in composite modes (at most 1).
    switch_time : float
        Switch time: in cycles for end-time mode 2, otherwise in model time.
    """

    periodicity: float = 10000.0
    periodicity_2: float = 20000.0
    period_mode: PeriodMode = PeriodMode.SINGLE
    weight: float = 0.8
    switch_time: float = 5000.0
    switched: bool = False

    def __post_init__(self) -> None:
        self.period_mode = PeriodMode(self.period_mode)
        self.weight = min(self.weight, 1.0)

    @property
    def composite(self) -> bool:
        return self.period_mode in (PeriodMode.COMPOSITE, PeriodMode.COMPOSITE_SWITCH)

    @property
    def switches(self) -> bool:
        return self.period_mode in (PeriodMode.SWITCH, PeriodMode.COMPOSITE_SWITCH)

    def signal(self, elapsed: float, square: bool = False) -> float:
        """Periodic signal at *elapsed* time since forcing began.

        Parameters
        ----------
        elapsed : float
            ``time - time_delay - switch_delay``.
        square : bool
            Square wave instead of a sinusoid: ``+1`` during even
            half-periods, ``-1`` during odd ones.
        """
        if square:
            half = int(math.floor(elapsed / (self.periodicity / 2.0)))
            return 1.0 if half % 2 == 0 else -1.0
        primary = math.sin(2.0 * math.pi * elapsed / self.periodicity)
        if not self.composite:
            return primary
        secondary = math.sin(2.0 * math.pi * elapsed / self.periodicity_2)
        return self.weight * primary + (1.0 - self.weight) * secondary

    def switch_at(self, end_time_mode: int) -> float:
        """Model time (after steady state) at which the periods swap."""
        if end_time_mode == 2:
            return self.switch_time * self.periodicity
        if end_time_mode == 3:
            return math.ceil(self.switch_time / self.periodicity) * self.periodicity
        return self.switch_time

    def swap(self) -> None:
        self.periodicity, self.periodicity_2 = self.periodicity_2, self.periodicity
        self.switched = not self.switched
        logger.info(
            "Switched forcing periodicity to %.6g (secondary %.6g)",
            self.periodicity, self.periodicity_2,
        )


@dataclass
class ParameterForcing:
    """Time-varying value of one model parameter.

    Attributes
    ----------
    base : float
        Unforced value.
    amplitude : float
        Absolute amplitude of the periodic variation.
    mode : ForcingMode
    series : TimeSeries or None
        Required for ``TIME_SERIES`` mode.
    """

    base: float
    amplitude: float = 0.0
    mode: ForcingMode = ForcingMode.CONSTANT
    series: TimeSeries | None = None

    def __post_init__(self) -> None:
        self.mode = ForcingMode(self.mode)
        if self.mode is ForcingMode.TIME_SERIES and self.series is None:
            raise ValueError("time-series forcing requires a TimeSeries")

    @property
    def periodic(self) -> bool:
        return self.mode in (ForcingMode.SINUSOIDAL, ForcingMode.SQUARE_WAVE)

    def value(
        self,
        schedule: PeriodicSchedule,
        time: float,
        time_delay: float = 0.0,
        switch_delay: float = 0.0,
        active: bool = True,
    ) -> float:
        """Parameter value at *time*; *base* whenever forcing is inactive."""
        if not active or self.mode is ForcingMode.CONSTANT:
            return self.base
        if self.mode is ForcingMode.TIME_SERIES:
            return self.series.value_at(time, offset=time_delay)
        elapsed = time - time_delay - switch_delay
        square = self.mode is ForcingMode.SQUARE_WAVE
        return self.base + self.amplitude * schedule.signal(elapsed, square=square)
