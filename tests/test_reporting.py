"""Tests for src/lemcore/reporting.py."""

import sys
from pathlib import Path

import numpy as np
import pytest

# Make src importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from lemcore.reporting import (
    CYCLE_COLUMNS,
    STEP_COLUMNS,
    CycleRecord,
    FinalRecord,
    RunReporter,
    StepRecord,
    read_report,
)


def _step(time, erosion=1e-4, steady=False):
    return StepRecord(
        time=time, periodicity=1e4, K=2e-4, D=0.02, erosion=erosion,
        total_erosion=0.0, steady=steady, max_height=10.0, mean_height=5.0,
        relief_3px=1.0, relief_10m=1.0, drainage_20px=0.1, drainage_200px=0.0,
    )


class TestRunReporter:

    def test_step_report_columns(self, tmp_path):
        with RunReporter(tmp_path, "r") as reporter:
            reporter.write_step(_step(100.0))
            reporter.write_step(_step(200.0, steady=True))
        lines = (tmp_path / "r_report.txt").read_text().splitlines()
        assert lines[0].split("\t") == list(STEP_COLUMNS)
        assert len(lines) == 3
        data = read_report(tmp_path / "r_report.txt")
        np.testing.assert_array_equal(data["Time"], [100.0, 200.0])
        np.testing.assert_array_equal(data["Steady"], [0.0, 1.0])

    def test_report_delay(self, tmp_path):
        with RunReporter(tmp_path, "r", report_delay=150.0) as reporter:
            reporter.write_step(_step(100.0))
            reporter.write_step(_step(200.0))
        data = read_report(tmp_path / "r_report.txt")
        np.testing.assert_array_equal(data["Time"], [200.0])

    def test_disabled_writes_nothing(self, tmp_path):
        with RunReporter(tmp_path / "out", "r", enabled=False) as reporter:
            reporter.write_step(_step(100.0))
            reporter.write_frame(1, 100.0, 1.0, 1.0, 0.0, 0.001)
            assert reporter.write_final(FinalRecord(0, 0, 0, 0, 0, 0, 0)) is None
        assert not (tmp_path / "out").exists()

    def test_cycle_and_frame(self, tmp_path):
        with RunReporter(tmp_path, "r") as reporter:
            reporter.write_cycle(CycleRecord(1, 0.0, 1e4, 1e4, 1e-4, 2e-5,
                                             50.0, 1.0, 3.0, 0.1, 3.0, 0.1))
            reporter.write_frame(1, 1000.0, 2e-4, 0.02, 1e-4, 5e-4)
        cycle = read_report(reporter.path("cycle_report"))
        assert list(cycle) == list(CYCLE_COLUMNS)
        assert cycle["Cycle"][0] == 1
        frame = read_report(reporter.path("frame_metadata"))
        assert frame["Max_uplift"][0] == pytest.approx(5e-4)

    def test_final_report_overwritten(self, tmp_path):
        reporter = RunReporter(tmp_path, "r")
        reporter.write_final(FinalRecord(1.0, 0.1, float("nan"), 0, 0, 1e4, 0.0))
        path = reporter.write_final(FinalRecord(2.0, 0.2, 0.5, 0, 0, 1e4, 50.0))
        data = read_report(path)
        assert data["Erosion"].tolist() == [2.0]
        assert data["Overshoot"][0] == 50.0
