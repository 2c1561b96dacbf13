"""Tests for src/lemcore/controller.py."""

import dataclasses
import sys
from pathlib import Path

import numpy as np
import pytest

# Make src importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from lemcore.controller import EndTimeMode, RunResult, RunState, SimulationController
from lemcore.flow import build_flow_network
from lemcore.grid import GridState
from lemcore.reporting import read_report


def _controller(config, **changes):
    config = dataclasses.replace(config, **changes)
    grid = GridState.flat(config.nrows, config.ncols, dx=config.resolution)
    return SimulationController(config, grid, rng=np.random.default_rng(42))


def _mark_steady(controller, time):
    controller.clock.current_time = time
    controller.grid.snapshot()
    assert controller.check_steady_state()


# ── construction ────────────────────────────────────────────────────────────

class TestConstruction:

    def test_uplift_field_zero_on_base_level(self, small_config):
        c = _controller(small_config)
        assert np.all(c.grid.uplift_rate[0] == 0.0)
        assert np.all(c.grid.uplift_rate[1:-1] == pytest.approx(0.001))

    def test_forcing_amplitude_is_fraction_of_base(self, small_config):
        c = _controller(small_config, K_mode=1, K_amplitude=0.2)
        assert c.K_forcing.amplitude == pytest.approx(0.2 * small_config.K)
        assert c.forcing_enabled

    def test_parameters_constant_before_steady_state(self, small_config):
        c = _controller(small_config, K_mode=1, periodicity=1000.0)
        c.clock.current_time = 250.0
        assert c.current_K() == small_config.K
        _mark_steady(c, 0.0)
        c.clock.current_time = 250.0
        assert c.current_K() == pytest.approx(small_config.K * 1.1)


# ── state checks ────────────────────────────────────────────────────────────

class TestSteadyState:

    def test_unchanged_surface_is_steady(self, small_config):
        c = _controller(small_config)
        _mark_steady(c, 300.0)
        assert c.clock.initial_steady_state
        assert c.clock.time_delay == 300.0
        assert c.state is RunState.STEADY_STATE_REACHED

    def test_changing_surface_is_not_steady(self, small_config):
        c = _controller(small_config)
        c.grid.snapshot()
        c.grid.elevation[4, 4] += 1.0
        assert not c.check_steady_state()
        assert not c.clock.initial_steady_state

    def test_steady_limit_forces_steady(self, small_config):
        c = _controller(small_config, steady_state_limit=500.0)
        c.grid.snapshot()
        c.grid.elevation[4, 4] += 1.0
        c.clock.current_time = 600.0
        assert c.check_steady_state()

    def test_post_steady_end_time_shifted(self, small_config):
        c = _controller(small_config, end_time_mode=1, end_time=1000.0)
        _mark_steady(c, 400.0)
        assert c.clock.end_time == 1400.0

    def test_cyclic_check_needs_full_record(self, small_config):
        c = _controller(small_config)
        c.clock.cycle_steady_check = True
        c.stats.cycle_record.extend([1e-4, 1e-4, 1e-4, 1e-4])
        assert not c.check_steady_state()
        c.stats.cycle_record.append(1e-4)
        assert c.check_steady_state()
        c.stats.cycle_record.append(5e-3)
        assert not c.check_steady_state()


class TestEndCondition:

    def test_absolute(self, small_config):
        c = _controller(small_config, end_time=1000.0)
        c.clock.current_time = 900.0
        assert not c.check_end_condition()
        c.clock.current_time = 1000.0
        assert c.check_end_condition()

    def test_post_steady(self, small_config):
        c = _controller(small_config, end_time_mode=1, end_time=1000.0)
        c.clock.current_time = 1e6
        assert not c.check_end_condition()
        _mark_steady(c, 500.0)
        c.clock.current_time = 1600.0
        assert not c.check_end_condition()
        c.clock.current_time = 1700.0
        assert c.check_end_condition()

    def test_cycle_count(self, small_config):
        """Ends once more than two whole 10 kyr cycles have passed."""
        c = _controller(small_config, end_time_mode=2, end_time=2.0)
        _mark_steady(c, 0.0)
        c.clock.current_time = 29900.0
        assert c._num_cycles() == 2
        assert not c.check_end_condition()
        c.clock.current_time = 30000.0
        assert c._num_cycles() == 3
        assert c.check_end_condition()

    def test_cycle_count_same_with_and_without_forcing(self, small_config):
        unforced = _controller(small_config, end_time_mode=2, end_time=2.0)
        forced = _controller(small_config, end_time_mode=2, end_time=2.0, K_mode=1)
        for c in (unforced, forced):
            _mark_steady(c, 0.0)
        unforced.clock.current_time = 25000.0
        forced.clock.cycle_number = 3
        assert unforced._num_cycles() == forced._num_cycles() == 2
        assert isinstance(unforced._num_cycles(), int)

    def test_cycle_count_with_forcing_uses_closed_cycles(self, small_config):
        c = _controller(small_config, end_time_mode=2, end_time=2.0, K_mode=1)
        _mark_steady(c, 0.0)
        c.clock.cycle_number = 3
        assert not c.check_end_condition()
        c.clock.cycle_number = 4
        assert c.check_end_condition()

    @pytest.mark.parametrize("end_time", [5000.0, 15000.0])
    def test_cycle_aligned_rounds_to_whole_cycles(self, small_config, end_time):
        """Both end times round to two full 10 kyr cycles."""
        c = _controller(small_config, end_time_mode=3, end_time=end_time)
        _mark_steady(c, 0.0)
        c.clock.current_time = 20000.0
        assert not c.check_end_condition()
        c.clock.current_time = 20100.0
        assert c.check_end_condition()


class TestHung:

    def test_absolute_mode_never_hangs(self, small_config):
        c = _controller(small_config)
        c.clock.current_time = 1e12
        assert not c.check_if_hung()

    def test_post_steady_hangs(self, small_config):
        c = _controller(small_config, end_time_mode=1, end_time=100.0)
        c.clock.current_time = 10000.0
        assert not c.check_if_hung()
        c.clock.current_time = 10100.0
        assert c.check_if_hung()

    def test_run_aborted_when_never_steady(self, small_config):
        c = _controller(small_config, end_time_mode=1, end_time=100.0,
                        steady_state_tolerance=-1.0)
        result = c.run_components()
        assert result.state is RunState.ABORTED
        assert result.aborted
        assert result.steps == 101
        assert not result.reached_steady_state


class TestRecordingAndSwitch:

    def test_recording(self, small_config):
        c = _controller(small_config)
        assert not c.check_recording()
        _mark_steady(c, 0.0)
        assert c.check_recording()

    def test_recording_waits_one_cycle_with_forcing(self, small_config):
        c = _controller(small_config, K_mode=1, periodicity=1000.0)
        _mark_steady(c, 200.0)
        c.clock.current_time = 1100.0
        assert not c.check_recording()
        c.clock.current_time = 1200.0
        assert c.check_recording()

    def test_periodicity_switch(self, small_config):
        c = _controller(small_config, K_mode=1, period_mode=2, switch_time=500.0,
                        periodicity=1000.0, periodicity_2=3000.0)
        c.clock.current_time = 600.0
        assert not c.check_periodicity_switch()   # not yet steady
        _mark_steady(c, 0.0)
        c.clock.current_time = 600.0
        assert c.check_periodicity_switch()
        assert c.schedule.periodicity == 3000.0
        assert c.clock.switch_delay == 500.0
        assert not c.check_periodicity_switch()

    def test_no_switch_in_single_mode(self, small_config):
        c = _controller(small_config, K_mode=1, switch_time=500.0)
        _mark_steady(c, 0.0)
        c.clock.current_time = 600.0
        assert not c.check_periodicity_switch()


# ── full runs ───────────────────────────────────────────────────────────────

class TestRuns:

    def test_end_to_end_ridge(self, small_config):
        """Uplifted flat block evolves into a smooth ridge held at base level."""
        c = _controller(small_config, S_c=1.0)
        results = c.run_model()
        assert len(results) == 1
        result = results[0]
        assert result.state is RunState.TERMINATED
        assert result.steps == 100
        assert result.time == pytest.approx(10000.0)

        z = c.grid.elevation
        assert np.all(np.isfinite(z))
        np.testing.assert_array_equal(z[0], 0.0)
        np.testing.assert_array_equal(z[-1], 0.0)
        assert z.max() <= 0.001 * 10000.0 + 1e-3
        assert z[1:-1].min() > 0.0

        # no neighbour step steeper than the critical slope allows
        dx = small_config.resolution
        assert np.abs(np.diff(z, axis=0)).max() <= 1.0 * dx + 1e-3
        # no single-cell spikes above the surrounding cells
        padded = np.pad(z, 1, mode="edge")
        neighbours = np.stack([
            np.roll(np.roll(padded, dr, 0), dc, 1)[1:-1, 1:-1]
            for dr in (-1, 0, 1) for dc in (-1, 0, 1) if (dr, dc) != (0, 0)
        ])
        assert np.all(z <= neighbours.max(axis=0) + 0.001 * small_config.dt)

    def test_nonlinear_run_keeps_base_level(self, small_config):
        c = _controller(small_config, nonlinear=True, end_time=3000.0)
        c.run_model()
        np.testing.assert_array_equal(c.grid.elevation[0], 0.0)
        assert np.all(np.isfinite(c.grid.elevation))

    def test_adaptive_run(self, small_config):
        c = _controller(small_config, adaptive_timestep=True, end_time=3000.0)
        result = c.run_components()
        assert result.state is RunState.TERMINATED
        assert result.time >= 3000.0
        assert c.adaptive_hillslope.dt <= 10 * small_config.dt
        np.testing.assert_array_equal(c.grid.elevation[-1], 0.0)

    def test_isostasy_run(self, small_config):
        c = _controller(small_config, isostasy=True, flexure=True, end_time=2000.0)
        c.run_model()
        assert np.all(np.isfinite(c.grid.elevation))
        assert c.grid.root_depth[1:-1].mean() > 0.0
        np.testing.assert_array_equal(c.grid.root_depth[0], 0.0)

    def test_runs_are_independent(self, small_config):
        c = _controller(small_config, end_time=1000.0, num_runs=2)
        first, second = c.run_model()
        assert first.steps == second.steps == 10
        assert first.time == second.time

    def test_reach_steady_state(self, small_config):
        c = _controller(small_config, periodicity=1000.0,
                        steady_state_tolerance=1e-3, end_time=1000.0)
        result = c.reach_steady_state()
        assert result.reached_steady_state
        assert result.cycles >= 5
        np.testing.assert_array_equal(c.steady_state_data, c.grid.elevation)
        # forcing restored afterwards
        assert c.K_forcing.mode.value == small_config.K_mode

        results = c.run_model_from_steady_state()
        assert results[0].state is RunState.TERMINATED

    def test_reports_and_frames(self, small_config, tmp_path):
        config = dataclasses.replace(
            small_config, reporting=True, print_interval=50, print_hillshade=True,
        )
        with SimulationController.from_config(config, tmp_path,
                                              rng=np.random.default_rng(1)) as c:
            c.run_model()

        report = read_report(tmp_path / "test_report.txt")
        assert len(report["Time"]) == 100
        assert np.all(np.diff(report["Time"]) > 0)
        assert np.all((report["Drainage_20px"] >= 0) & (report["Drainage_20px"] <= 1))
        for name in ("test50.asc", "test100.asc", "test100_hillshade.asc",
                     "test_frame_metadata.txt", "test_final_report.txt"):
            assert (tmp_path / name).exists(), name
        frames = read_report(tmp_path / "test_frame_metadata.txt")
        np.testing.assert_array_equal(frames["Frame"], [1, 2])

    def test_forced_run_writes_cycles(self, small_config, tmp_path):
        config = dataclasses.replace(
            small_config, reporting=True, K_mode=1, periodicity=1000.0,
            end_time_mode=EndTimeMode.CYCLE_COUNT, end_time=2.0,
            steady_state_limit=0.0,
        )
        with SimulationController.from_config(config, tmp_path,
                                              rng=np.random.default_rng(1)) as c:
            result = c.run_components()
        assert result.state is RunState.TERMINATED
        assert result.cycles >= 2
        cycles = read_report(tmp_path / "test_cycle_report.txt")
        np.testing.assert_array_equal(cycles["Cycle"][:2], [1, 2])

    def test_adaptive_dt_reset_each_run(self, small_config):
        c = _controller(small_config, adaptive_timestep=True, end_time=100.0)
        c.adaptive_hillslope.dt = 700.0   # left over from an earlier run
        result = c.run_components()
        assert result.steps == 1
        assert result.time == pytest.approx(100.0)


# ── spin-up ─────────────────────────────────────────────────────────────────

class TestSpinUp:

    def test_switch_schedule_restored(self, small_config):
        c = _controller(small_config, periodicity=1000.0, periodicity_2=3000.0,
                        period_mode=2, switch_time=500.0,
                        steady_state_tolerance=1e-3, end_time=1000.0)
        c.reach_steady_state()
        assert c.schedule.periodicity == 1000.0
        assert c.schedule.periodicity_2 == 3000.0
        assert c.schedule.period_mode == 2
        assert not c.schedule.switched

    def test_no_frames_written(self, small_config, tmp_path):
        config = dataclasses.replace(
            small_config, reporting=True, print_interval=10, periodicity=1000.0,
            steady_state_tolerance=1e-3, end_time=1000.0,
        )
        with SimulationController.from_config(config, tmp_path,
                                              rng=np.random.default_rng(1)) as c:
            c.reach_steady_state()
            assert c.frame == 0
            assert c.print_interval == 10
            assert not list(tmp_path.glob("*.asc"))
            assert not (tmp_path / "test_report.txt").exists()

            c.run_model_from_steady_state()
        assert (tmp_path / "test1.asc").exists()
        frames = read_report(tmp_path / "test_frame_metadata.txt")
        assert frames["Frame"][0] == 1

    def test_noisy_surface_filled_before_spin_up(self, small_config, monkeypatch,
                                                 boundary):
        c = _controller(small_config, noise=1.0)
        surfaces = []

        def record(**kwargs):
            surfaces.append(c.grid.elevation.copy())
            return RunResult(RunState.TERMINATED, 0.0, 0, 0, 0.0, 0.0, 0.0, 0.0,
                             True, 0)

        monkeypatch.setattr(c, "run_components", record)
        c.reach_steady_state()
        network = build_flow_network(surfaces[0], boundary)
        interior = ~boundary.base_level_mask(surfaces[0].shape)
        # every cell off base level drains downhill
        assert np.all(network.length_code.reshape(surfaces[0].shape)[interior] > 0)
