"""
Time-stepping control of a landscape evolution run.

:class:`SimulationController` sequences the process solvers every step

1. periodicity switch check
2. snapshot of the step-start surface
3. hillslope diffusion (linear or nonlinear)
4. wash-out of channel sediment
5. fluvial incision
6. isostasy
7. uplift
8. statistics and reports

then advances the clock, prints raster frames at the print interval and
checks for steady state.  Runs stop on one of four end-time policies, or
are aborted when they never settle.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from itertools import pairwise
from pathlib import Path

import numpy as np

from .boundary import BoundaryConditions
from .config import ConfigError, ModelConfig
from .flow import FlowNetwork, build_flow_network, fill_depressions
from .fluvial import FluvialSolver, wash_out
from .forcing import ForcingMode, ParameterForcing, PeriodicSchedule, PeriodMode, TimeSeries
from .grid import GridState, add_surface_noise, create_initial_grid, generate_uplift_field
from .hillslope import AdaptiveCreepSolver, LinearDiffusionSolver, NonlinearDiffusionSolver
from .io import FrameWriter, read_ascii_grid
from .isostasy import AiryIsostasy, FlexuralIsostasy
from .reporting import CycleRecord, FinalRecord, RunReporter, StepRecord
from .utils import mean_relief

logger = logging.getLogger(__name__)

HANG_FACTOR = 100
"""A run that has not settled after this multiple of its duration is aborted."""

CYCLE_RECORD_LENGTH = 5
"""Number of per-cycle mean erosion rates compared for cyclic steady state."""

STEADY_STATE_AMPLITUDE = 0.3
"""Erodibility amplitude (fraction of K) used while spinning up to steady state."""


class RunState(Enum):
    """Life cycle of a run."""

    INITIALIZING = "initializing"
    STEPPING = "stepping"
    STEADY_STATE_REACHED = "steady-state-reached"
    END_CONDITION_MET = "end-condition-met"
    TERMINATED = "terminated"
    ABORTED = "aborted"


class EndTimeMode(IntEnum):
    """How the configured end time is interpreted."""

    ABSOLUTE = 0
    POST_STEADY = 1
    CYCLE_COUNT = 2
    CYCLE_ALIGNED = 3


@dataclass
class SimulationClock:
    """Model time and the run flags that depend on it."""

    dt: float
    end_time: float
    end_time_mode: EndTimeMode = EndTimeMode.ABSOLUTE
    current_time: float = 0.0
    time_delay: float = 0.0
    switch_delay: float = 0.0
    cycle_number: int = 1
    steps: int = 0
    initial_steady_state: bool = False
    cycle_steady_check: bool = False
    steady_state: bool = False
    recording: bool = False


@dataclass
class RunningStat:
    """Mean and range of a scalar over a forcing cycle."""

    total: float = 0.0
    count: int = 0
    low: float | None = None
    high: float | None = None

    def add(self, value: float) -> None:
        self.total += value
        self.count += 1
        self.low = value if self.low is None else min(self.low, value)
        self.high = value if self.high is None else max(self.high, value)

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else float("nan")

    @property
    def response(self) -> float:
        if self.low is None:
            return float("nan")
        return self.high - self.low


@dataclass
class ErosionStatistics:
    """Erosion bookkeeping of one run."""

    erosion: float = 0.0
    erosion_last_step: float = 0.0
    total_erosion: float = 0.0
    min_erosion: float | None = None
    max_erosion: float = 0.0
    response: float = 0.0
    cycle_record: deque = field(
        default_factory=lambda: deque(maxlen=CYCLE_RECORD_LENGTH)
    )
    cycle_start: float = 0.0
    phase_positive: bool = True
    cycle_erosion: RunningStat = field(default_factory=RunningStat)
    cycle_elevation: RunningStat = field(default_factory=RunningStat)
    cycle_relief_3px: RunningStat = field(default_factory=RunningStat)
    cycle_relief_10m: RunningStat = field(default_factory=RunningStat)
    cycle_erosion_field: np.ndarray | None = None

    def reset_cycle(self, start: float) -> None:
        self.cycle_start = start
        self.cycle_erosion = RunningStat()
        self.cycle_elevation = RunningStat()
        self.cycle_relief_3px = RunningStat()
        self.cycle_relief_10m = RunningStat()
        self.cycle_erosion_field = None


@dataclass
class RunResult:
    """Outcome of :meth:`SimulationController.run_components`."""

    state: RunState
    time: float
    steps: int
    frames: int
    time_delay: float
    end_time: float
    total_erosion: float
    response: float
    reached_steady_state: bool
    cycles: int

    @property
    def aborted(self) -> bool:
        return self.state is RunState.ABORTED


class SimulationController:
    """State machine driving the process solvers through a run.

    Parameters
    ----------
    config : ModelConfig
        Validated run configuration.
    grid : GridState
        Surface to evolve; its uplift field is (re)generated from *config*.
    boundary : BoundaryConditions or None
        Defaults to ``config.boundary``.
    reporter : RunReporter or None
        Receives step, cycle, frame and final reports.
    writer : FrameWriter or None
        Persists raster frames at the print interval.
    rng : numpy.random.Generator or None
        Source of surface noise.
    """

    def __init__(
        self,
        config: ModelConfig,
        grid: GridState,
        boundary: BoundaryConditions | None = None,
        reporter: RunReporter | None = None,
        writer: FrameWriter | None = None,
        rng: np.random.Generator | None = None,
        K_series: TimeSeries | None = None,
        D_series: TimeSeries | None = None,
    ) -> None:
        self.config = config
        self.boundary = boundary if boundary is not None else config.boundary
        self.grid = grid
        self.reporter = reporter
        self.writer = writer
        self.rng = rng if rng is not None else np.random.default_rng()

        grid.uplift_rate = generate_uplift_field(
            config.uplift_mode, config.max_uplift, grid.shape, self.boundary,
        )
        grid.uplift_rate[~grid.valid_mask()] = 0.0
        self._initial_elevation = grid.elevation.copy()
        self._initial_root = grid.root_depth.copy()
        self.steady_state_data: np.ndarray | None = None
        self._steady_root: np.ndarray | None = None

        self.schedule = PeriodicSchedule(
            periodicity=config.periodicity,
            periodicity_2=config.periodicity_2,
            period_mode=config.period_mode,
            weight=config.p_ratio,
            switch_time=config.switch_time,
        )
        self.K_forcing = ParameterForcing(
            config.K, config.K_amplitude * config.K, config.K_mode, K_series,
        )
        self.D_forcing = ParameterForcing(
            config.D, config.D_amplitude * config.D, config.D_mode, D_series,
        )

        # Solvers are built once and keep their assembled structures
        self.fluvial = FluvialSolver(
            config.K, config.m, config.n, threshold=config.incision_threshold,
        )
        self.linear_hillslope = LinearDiffusionSolver(self.boundary)
        self.nonlinear_hillslope = NonlinearDiffusionSolver(self.boundary)
        self.adaptive_hillslope = (
            AdaptiveCreepSolver(self.boundary, dt=config.dt, max_dt=10.0 * config.dt)
            if config.adaptive_timestep else None
        )
        if config.flexure:
            self.isostasy = FlexuralIsostasy(
                config.rigidity, iterate=config.iterative_flexure,
            )
        else:
            self.isostasy = AiryIsostasy()

        self.state = RunState.INITIALIZING
        self.clock = self._new_clock()
        self.stats = ErosionStatistics()
        self.network: FlowNetwork | None = None
        self.frame = 0
        self.print_interval = config.print_interval
        self._last_dt = config.dt
        self._printed_step = -1

    # ------------------------------------------------------------------
    # Construction from a parameter file
    # ------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: ModelConfig,
        output_dir: str | Path = ".",
        rng: np.random.Generator | None = None,
    ) -> "SimulationController":
        """Load or synthesise the initial grid and wire up the output writers.

        Raises
        ------
        ConfigError
            If a forcing time-series file cannot be read.
        RasterFormatError
            If the initial raster cannot be read.
        """
        rng = rng if rng is not None else np.random.default_rng()
        boundary = config.boundary
        if config.load_file:
            grid = read_ascii_grid(config.load_file, nodata=config.nodata)
            logger.info("Loaded initial surface %s %s", config.load_file, grid.shape)
        else:
            grid = create_initial_grid(
                config.nrows, config.ncols, config.resolution, boundary,
                noise=config.noise, rng=rng, nodata=config.nodata,
            )

        series = {}
        for name, mode, path in (("K", config.K_mode, config.K_file),
                                 ("D", config.D_mode, config.D_file)):
            if mode == ForcingMode.TIME_SERIES:
                try:
                    series[name] = TimeSeries.from_file(path)
                except (OSError, ValueError) as exc:
                    raise ConfigError(f"cannot read {name} forcing file {path}: {exc}") from exc

        reporter = RunReporter(
            output_dir, config.run_name, enabled=config.reporting,
            report_delay=config.report_delay,
        )
        writer = FrameWriter(
            output_dir, config.run_name,
            elevation=config.print_elevation, hillshade=config.print_hillshade,
            erosion=config.print_erosion, slope_area=config.print_slope_area,
        )
        return cls(
            config, grid, boundary=boundary, reporter=reporter, writer=writer,
            rng=rng, K_series=series.get("K"), D_series=series.get("D"),
        )

    def __enter__(self) -> "SimulationController":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self.reporter is not None:
            self.reporter.close()

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    def _new_clock(
        self,
        end_time: float | None = None,
        end_time_mode: int | None = None,
        cycle_steady_check: bool = False,
    ) -> SimulationClock:
        cfg = self.config
        return SimulationClock(
            dt=self.adaptive_hillslope.dt if self.adaptive_hillslope else cfg.dt,
            end_time=cfg.end_time if end_time is None else end_time,
            end_time_mode=EndTimeMode(
                cfg.end_time_mode if end_time_mode is None else end_time_mode
            ),
            cycle_steady_check=cycle_steady_check,
        )

    @property
    def forcing_enabled(self) -> bool:
        return (self.K_forcing.mode is not ForcingMode.CONSTANT
                or self.D_forcing.mode is not ForcingMode.CONSTANT)

    def _forcing_active(self) -> bool:
        return self.clock.initial_steady_state or self.clock.cycle_steady_check

    def current_K(self) -> float:
        c = self.clock
        return self.K_forcing.value(
            self.schedule, c.current_time, c.time_delay, c.switch_delay,
            active=self._forcing_active(),
        )

    def current_D(self) -> float:
        c = self.clock
        return self.D_forcing.value(
            self.schedule, c.current_time, c.time_delay, c.switch_delay,
            active=self._forcing_active(),
        )

    # ------------------------------------------------------------------
    # One time step
    # ------------------------------------------------------------------

    def step(self) -> float:
        """Advance the surface by one time step; returns the step length."""
        cfg = self.config
        grid = self.grid
        clock = self.clock

        self.check_periodicity_switch()
        grid.snapshot()
        K = self.current_K()
        D = self.current_D()

        if self.adaptive_hillslope is not None:
            dt = self._adaptive_step(K, D)
        else:
            dt = clock.dt
            if cfg.hillslope:
                if cfg.nonlinear:
                    self.nonlinear_hillslope.step(grid, dt, D, cfg.S_c)
                else:
                    self.linear_hillslope.step(grid, dt, D)

            self.network = build_flow_network(
                grid.elevation, self.boundary, grid.valid_mask(),
            )
            if cfg.hillslope and cfg.fluvial and cfg.threshold_drainage >= 0:
                wash_out(grid, self.network, cfg.threshold_drainage)
            if cfg.fluvial:
                self.fluvial.incise(grid, self.network, dt, self.boundary, K=K)
            if cfg.isostasy:
                self.isostasy.apply(grid, self.boundary)
            grid.apply_uplift(dt, self.boundary)

        self._last_dt = dt
        self.write_report(dt, K, D)

        clock.current_time += dt
        clock.steps += 1
        if self.print_interval > 0 and clock.steps % self.print_interval == 0:
            self.print_frame(K, D)
        self.check_steady_state()
        return dt

    def _adaptive_step(self, K: float, D: float) -> float:
        """Coupled creep, incision and uplift solve with an adaptive time step."""
        cfg = self.config
        grid = self.grid
        solver = self.adaptive_hillslope

        self.network = build_flow_network(grid.elevation, self.boundary, grid.valid_mask())
        fluvial_rate = None
        if cfg.fluvial:
            fluvial_rate = self.fluvial.erosion_rate(
                grid, self.network, solver.dt, self.boundary, K=K,
            )
        result = solver.step(
            grid,
            D if cfg.hillslope else 0.0,
            cfg.S_c if cfg.nonlinear else np.inf,
            uplift_rate=grid.uplift_rate,
            fluvial_rate=fluvial_rate,
        )
        if cfg.isostasy:
            self.isostasy.apply(grid, self.boundary)
        self.clock.dt = result.next_dt
        return result.dt_used

    # ------------------------------------------------------------------
    # Statistics and reports
    # ------------------------------------------------------------------

    def write_report(self, dt: float, K: float, D: float) -> StepRecord:
        """Update erosion statistics and feed the step (and cycle) reports."""
        grid = self.grid
        clock = self.clock
        stats = self.stats
        valid = grid.valid_mask()
        interior = valid & ~self.boundary.base_level_mask(grid.shape)

        erosion_field = grid.erosion_rate(dt)
        stats.erosion_last_step = stats.erosion
        stats.erosion = float(np.mean(erosion_field[interior])) if interior.any() else 0.0

        self.check_recording()
        if clock.recording:
            stats.total_erosion += stats.erosion * dt

        if stats.erosion > stats.erosion_last_step:
            stats.max_erosion = stats.erosion
        elif stats.erosion < stats.erosion_last_step:
            stats.min_erosion = stats.erosion
        if stats.min_erosion is not None and stats.max_erosion - stats.min_erosion > stats.response:
            stats.response = stats.max_erosion - stats.min_erosion
        if clock.recording:
            stats.max_erosion = max(stats.max_erosion, stats.erosion)
            if stats.min_erosion is None or stats.erosion < stats.min_erosion:
                stats.min_erosion = stats.erosion

        z = grid.elevation[valid]
        max_height = float(z.max()) if z.size else float("nan")
        mean_height = float(z.mean()) if z.size else float("nan")
        relief_3px = mean_relief(grid.elevation, grid.dx, 0.0, valid)
        relief_10m = mean_relief(grid.elevation, grid.dx, 10.0, valid)
        drainage_20, drainage_200 = self._drainage_fractions(valid)

        record = StepRecord(
            time=clock.current_time + dt,
            periodicity=self.schedule.periodicity,
            K=K, D=D,
            erosion=stats.erosion,
            total_erosion=stats.total_erosion,
            steady=clock.steady_state,
            max_height=max_height,
            mean_height=mean_height,
            relief_3px=relief_3px,
            relief_10m=relief_10m,
            drainage_20px=drainage_20,
            drainage_200px=drainage_200,
        )
        if self.reporter is not None:
            self.reporter.write_step(record)

        if self.forcing_enabled and self._forcing_active():
            self._track_cycle(dt, mean_height, relief_3px, relief_10m, erosion_field)
        return record

    def _drainage_fractions(self, valid: np.ndarray) -> tuple[float, float]:
        """Fraction of cells draining at least 20 and 200 pixels."""
        if self.network is None or not valid.any():
            return float("nan"), float("nan")
        pixels = self.network.contributing_pixels.reshape(self.grid.shape)[valid]
        return float(np.mean(pixels >= 20)), float(np.mean(pixels >= 200))

    def _track_cycle(
        self,
        dt: float,
        elevation: float,
        relief_3px: float,
        relief_10m: float,
        erosion_field: np.ndarray,
    ) -> None:
        """Accumulate cycle statistics; close the cycle when the phase turns positive."""
        clock = self.clock
        stats = self.stats
        elapsed = clock.current_time + dt - clock.time_delay - clock.switch_delay
        square = (self.K_forcing.mode is ForcingMode.SQUARE_WAVE
                  or (self.K_forcing.mode is ForcingMode.CONSTANT
                      and self.D_forcing.mode is ForcingMode.SQUARE_WAVE))

        if self.schedule.signal(elapsed, square=square) > 0:
            if not stats.phase_positive:
                self._close_cycle()
            stats.phase_positive = True
        else:
            stats.phase_positive = False

        stats.cycle_erosion.add(stats.erosion)
        stats.cycle_elevation.add(elevation)
        stats.cycle_relief_3px.add(relief_3px)
        stats.cycle_relief_10m.add(relief_10m)
        if self.config.print_erosion_cycle:
            if stats.cycle_erosion_field is None:
                stats.cycle_erosion_field = np.zeros(self.grid.shape)
            stats.cycle_erosion_field += np.nan_to_num(erosion_field)

    def _close_cycle(self) -> None:
        clock = self.clock
        stats = self.stats
        clock.cycle_number += 1
        cycle = clock.cycle_number - 1
        mean_erosion = stats.cycle_erosion.mean

        record = CycleRecord(
            cycle=cycle,
            start_time=stats.cycle_start,
            end_time=clock.current_time,
            periodicity=self.schedule.periodicity,
            erosion=mean_erosion,
            erosion_response=stats.cycle_erosion.response,
            elevation=stats.cycle_elevation.mean,
            elevation_response=stats.cycle_elevation.response,
            relief_3px=stats.cycle_relief_3px.mean,
            relief_3px_response=stats.cycle_relief_3px.response,
            relief_10m=stats.cycle_relief_10m.mean,
            relief_10m_response=stats.cycle_relief_10m.response,
        )
        if self.reporter is not None:
            self.reporter.write_cycle(record)
        if (self.config.print_erosion_cycle and self.writer is not None
                and stats.cycle_erosion_field is not None):
            self.writer.write_cycle_erosion(
                cycle, self.grid, stats.cycle_erosion_field / stats.cycle_erosion.count,
            )
        if clock.cycle_steady_check:
            stats.cycle_record.append(mean_erosion)
        logger.info("Completed forcing cycle %d (mean erosion %.4g)", cycle, mean_erosion)
        stats.reset_cycle(clock.current_time)

    def print_frame(self, K: float | None = None, D: float | None = None) -> None:
        """Persist the current surface as the next numbered frame."""
        self.frame += 1
        self._printed_step = self.clock.steps
        K = self.current_K() if K is None else K
        D = self.current_D() if D is None else D
        if self.writer is not None:
            self.writer.write_frame(self.frame, self.grid, self._last_dt, self.network)
        if self.reporter is not None:
            self.reporter.write_frame(
                self.frame, self.clock.current_time, K, D, self.stats.erosion,
                float(np.max(self.grid.uplift_rate)),
            )

    def write_final_report(self, results: list[RunResult]) -> None:
        if self.reporter is None or not results:
            return
        last = results[-1]
        runs = len(results)
        run_time = last.time - last.time_delay
        if self.forcing_enabled:
            run_time -= self.schedule.periodicity
        total = sum(r.total_erosion for r in results)
        averaged = total / (run_time * runs) if run_time > 0 else float("nan")
        response = (
            sum(r.response for r in results) / runs
            if last.reached_steady_state else float("nan")
        )
        self.reporter.write_final(FinalRecord(
            erosion=total,
            averaged=averaged,
            response=response,
            K_amplitude=self.K_forcing.amplitude,
            D_amplitude=self.D_forcing.amplitude,
            periodicity=self.schedule.periodicity,
            overshoot=last.time - last.end_time,
        ))

    # ------------------------------------------------------------------
    # State checks
    # ------------------------------------------------------------------

    def check_recording(self) -> bool:
        """Start recording erosion once the forced response has settled."""
        clock = self.clock
        if clock.recording:
            return True
        if not clock.initial_steady_state:
            clock.recording = False
        elif not self.forcing_enabled:
            clock.recording = True
        else:
            cycles = (clock.current_time - clock.time_delay) / self.schedule.periodicity
            clock.recording = cycles >= 1
        return clock.recording

    def check_steady_state(self) -> bool:
        """Update and return the steady-state flag.

        With the cyclic check, steady state means the last
        :data:`CYCLE_RECORD_LENGTH` per-cycle mean erosion rates agree
        within tolerance.  Otherwise every cell must have changed by no
        more than the tolerance over the last step (until the optional
        steady-state time limit, after which the run counts as steady).
        """
        cfg = self.config
        clock = self.clock
        tol = cfg.steady_state_tolerance

        if clock.cycle_steady_check:
            record = self.stats.cycle_record
            steady = len(record) == CYCLE_RECORD_LENGTH and all(
                abs(b - a) <= tol for a, b in pairwise(record)
            )
        elif cfg.steady_state_limit < 0 or clock.current_time < cfg.steady_state_limit:
            valid = self.grid.valid_mask()
            change = np.abs(self.grid.elevation - self.grid.previous)[valid]
            steady = bool(np.all(change <= tol))
        else:
            steady = True

        clock.steady_state = steady
        if steady and not clock.initial_steady_state:
            clock.initial_steady_state = True
            clock.time_delay = clock.current_time
            self.state = RunState.STEADY_STATE_REACHED
            if clock.end_time_mode in (EndTimeMode.POST_STEADY, EndTimeMode.CYCLE_ALIGNED):
                clock.end_time += clock.time_delay
            logger.info("Steady state reached at t=%.6g", clock.current_time)
        return steady

    def _num_cycles(self) -> int:
        """Whole forcing cycles completed since steady state."""
        clock = self.clock
        if self.forcing_enabled:
            return clock.cycle_number - 1
        return int((clock.current_time - clock.time_delay) // self.schedule.periodicity)

    def check_end_condition(self) -> bool:
        clock = self.clock
        mode = clock.end_time_mode
        steady = clock.initial_steady_state

        if mode is EndTimeMode.POST_STEADY:
            return steady and clock.current_time > clock.end_time + clock.dt
        if mode is EndTimeMode.CYCLE_COUNT:
            return steady and self._num_cycles() > clock.end_time
        if mode is EndTimeMode.CYCLE_ALIGNED:
            p = self.schedule.periodicity
            cycles = math.ceil((clock.end_time - clock.time_delay) / p)
            if cycles == 1:
                cycles += 1
            adjusted = cycles * p + clock.time_delay
            return steady and clock.current_time >= adjusted + clock.dt
        return clock.current_time >= clock.end_time

    def check_if_hung(self) -> bool:
        """``True`` when a run waiting for steady state has run far too long."""
        clock = self.clock
        if clock.initial_steady_state:
            return False
        mode = clock.end_time_mode
        if mode in (EndTimeMode.POST_STEADY, EndTimeMode.CYCLE_ALIGNED):
            duration = max(clock.end_time, clock.dt)
            if self.forcing_enabled or clock.cycle_steady_check:
                duration = max(duration, self.schedule.periodicity)
            return clock.current_time > HANG_FACTOR * duration
        if mode is EndTimeMode.CYCLE_COUNT:
            limit = HANG_FACTOR * max(clock.end_time, 1.0)
            return clock.current_time / self.schedule.periodicity > limit
        return False

    def check_periodicity_switch(self) -> bool:
        """Swap the forcing periodicities once the switch time has passed."""
        clock = self.clock
        if not self.forcing_enabled or not self._forcing_active():
            return False
        if not self.schedule.switches:
            return False
        switch_at = self.schedule.switch_at(clock.end_time_mode)
        if clock.current_time - clock.time_delay > switch_at + clock.switch_delay:
            self.schedule.swap()
            clock.switch_delay = clock.current_time - clock.time_delay - clock.dt
            return True
        return False

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def run_components(
        self,
        end_time: float | None = None,
        end_time_mode: int | None = None,
        cycle_steady_check: bool = False,
    ) -> RunResult:
        """Step until the end condition holds or the run is found hung."""
        if self.adaptive_hillslope is not None:
            self.adaptive_hillslope.dt = self.config.dt
        self.clock = self._new_clock(end_time, end_time_mode, cycle_steady_check)
        self.stats = ErosionStatistics()
        self._printed_step = -1
        first_frame = self.frame
        self.state = RunState.STEPPING
        logger.info(
            "Starting run: end time %.6g (mode %d), dt %.6g",
            self.clock.end_time, self.clock.end_time_mode, self.clock.dt,
        )

        while True:
            if self.check_if_hung():
                self.state = RunState.ABORTED
                logger.warning(
                    "Run aborted at t=%.6g: no steady state after %dx its nominal duration",
                    self.clock.current_time, HANG_FACTOR,
                )
                break
            self.step()
            if self.check_end_condition():
                self.state = RunState.END_CONDITION_MET
                break

        if self._printed_step != self.clock.steps and self.print_interval > 0:
            self.print_frame()
        if self.reporter is not None:
            self.reporter.flush()
        if self.state is RunState.END_CONDITION_MET:
            self.state = RunState.TERMINATED
        logger.info("Run finished at t=%.6g after %d steps (%s)",
                    self.clock.current_time, self.clock.steps, self.state.value)

        return RunResult(
            state=self.state,
            time=self.clock.current_time,
            steps=self.clock.steps,
            frames=self.frame - first_frame,
            time_delay=self.clock.time_delay,
            end_time=self.clock.end_time,
            total_erosion=self.stats.total_erosion,
            response=self.stats.response,
            reached_steady_state=self.clock.initial_steady_state,
            cycles=self.clock.cycle_number - 1,
        )

    def reset_surface(self) -> None:
        """Restore the starting surface (the steady-state snapshot if present)."""
        if self.steady_state_data is not None:
            self.grid.elevation = self.steady_state_data.copy()
            self.grid.root_depth = self._steady_root.copy()
        else:
            self.grid.elevation = self._initial_elevation.copy()
            self.grid.root_depth = self._initial_root.copy()
        self.grid.snapshot()

    def run_model(self) -> list[RunResult]:
        """Perform ``config.num_runs`` independent runs from the starting surface."""
        results = []
        for run in range(1, self.config.num_runs + 1):
            self.reset_surface()
            logger.info("Run %d of %d", run, self.config.num_runs)
            results.append(self.run_components())
        self.write_final_report(results)
        return results

    def reach_steady_state(self) -> RunResult:
        """Spin the surface up to a dynamic steady state and keep it.

        The perturbed and filled surface is driven with a sinusoidal
        erodibility of a single periodicity until its per-cycle erosion
        settles, then run statically for ten steps.  Nothing is reported
        or printed while spinning up; the forcing, schedule and frame
        counter are restored afterwards.  The result becomes the starting
        surface of later runs.
        """
        cfg = self.config
        schedule = self.schedule
        saved_forcing = (self.K_forcing, self.D_forcing)
        saved_schedule = (schedule.periodicity, schedule.periodicity_2,
                          schedule.period_mode, schedule.switched)
        saved_output = (self.print_interval, self.frame)
        reporting = self.reporter.enabled if self.reporter is not None else False
        if self.reporter is not None:
            self.reporter.enabled = False
        self.print_interval = 0
        schedule.period_mode = PeriodMode.SINGLE

        try:
            add_surface_noise(self.grid, self.boundary, cfg.noise, self.rng)
            self.grid.elevation = fill_depressions(
                self.grid.elevation, self.boundary, dx=self.grid.dx,
                valid=self.grid.valid_mask(),
            )
            self.K_forcing = ParameterForcing(
                cfg.K, STEADY_STATE_AMPLITUDE * cfg.K, ForcingMode.SINUSOIDAL,
            )
            self.D_forcing = ParameterForcing(cfg.D)
            result = self.run_components(
                end_time=0.0, end_time_mode=EndTimeMode.POST_STEADY,
                cycle_steady_check=True,
            )

            self.K_forcing = ParameterForcing(cfg.K)
            self.run_components(
                end_time=10 * cfg.dt, end_time_mode=EndTimeMode.ABSOLUTE,
            )
        finally:
            self.K_forcing, self.D_forcing = saved_forcing
            (schedule.periodicity, schedule.periodicity_2,
             schedule.period_mode, schedule.switched) = saved_schedule
            self.print_interval, self.frame = saved_output
            if self.reporter is not None:
                self.reporter.enabled = reporting

        self.steady_state_data = self.grid.elevation.copy()
        self._steady_root = self.grid.root_depth.copy()
        logger.info("Stored steady-state surface (reached: %s)", result.reached_steady_state)
        return result

    def run_model_from_steady_state(self) -> list[RunResult]:
        """Run the configured runs starting from the steady-state surface."""
        if self.steady_state_data is None:
            self.reach_steady_state()
        return self.run_model()
