"""
Tabular run reports.

:class:`RunReporter` owns the report files of one simulation and writes
tab-separated rows:

- ``<run>_report.txt``: one row per time step.
- ``<run>_cycle_report.txt``: one row per completed forcing cycle.
- ``<run>_frame_metadata.txt``: one row per printed raster frame.
- ``<run>_final_report.txt``: summary written after all runs.

Files are opened on first use and closed by :meth:`RunReporter.close` (or
by leaving the ``with`` block).
"""

from __future__ import annotations

import csv
import logging
from dataclasses import astuple, dataclass
from pathlib import Path
from typing import IO, Any

import numpy as np

logger = logging.getLogger(__name__)

STEP_COLUMNS = (
    "Time", "Periodicity", "K", "D", "Erosion", "Total_erosion", "Steady",
    "Max_height", "Mean_height", "Relief_3px", "Relief_10m",
    "Drainage_20px", "Drainage_200px",
)
CYCLE_COLUMNS = (
    "Cycle", "Start_time", "End_time", "Periodicity",
    "Erosion", "Erosion_response", "Elevation", "Elevation_response",
    "Relief_3px", "Relief_3px_response", "Relief_10m", "Relief_10m_response",
)
FRAME_COLUMNS = ("Frame", "Time", "K", "D", "Erosion", "Max_uplift")
FINAL_COLUMNS = (
    "Erosion", "Averaged", "Response", "K_amp", "D_amp", "Periodicity", "Overshoot",
)


@dataclass
class StepRecord:
    """Scalar statistics of one time step, in :data:`STEP_COLUMNS` order."""

    time: float
    periodicity: float
    K: float
    D: float
    erosion: float
    total_erosion: float
    steady: bool
    max_height: float
    mean_height: float
    relief_3px: float
    relief_10m: float
    drainage_20px: float
    drainage_200px: float


@dataclass
class CycleRecord:
    """Means and ranges over one forcing cycle, in :data:`CYCLE_COLUMNS` order."""

    cycle: int
    start_time: float
    end_time: float
    periodicity: float
    erosion: float
    erosion_response: float
    elevation: float
    elevation_response: float
    relief_3px: float
    relief_3px_response: float
    relief_10m: float
    relief_10m_response: float


@dataclass
class FinalRecord:
    """Summary over all runs, in :data:`FINAL_COLUMNS` order."""

    erosion: float
    averaged: float
    response: float
    K_amplitude: float
    D_amplitude: float
    periodicity: float
    overshoot: float


def _format(value: Any) -> str:
    if isinstance(value, (bool, np.bool_)):
        return str(int(value))
    if isinstance(value, (int, np.integer)):
        return str(value)
    return f"{float(value):.8g}"


class RunReporter:
    """Writer for the report files of one simulation.

    Parameters
    ----------
    output_dir : str or Path
        Directory receiving the reports (created on first write).
    run_name : str
        Prefix of every report file.
    enabled : bool
        When ``False`` nothing is written.
    report_delay : float
        Step and cycle rows are only written once model time exceeds it.
    """

    def __init__(
        self,
        output_dir: str | Path,
        run_name: str,
        enabled: bool = True,
        report_delay: float = 0.0,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.run_name = run_name
        self.enabled = enabled
        self.report_delay = report_delay
        self._handles: dict[str, IO[str]] = {}
        self._writers: dict[str, Any] = {}

    def __enter__(self) -> "RunReporter":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def path(self, kind: str) -> Path:
        return self.output_dir / f"{self.run_name}_{kind}.txt"

    def _writer(self, kind: str, columns: tuple[str, ...]):
        if kind not in self._writers:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            fh = self.path(kind).open("w", newline="")
            writer = csv.writer(fh, delimiter="\t", lineterminator="\n")
            writer.writerow(columns)
            self._handles[kind] = fh
            self._writers[kind] = writer
            logger.debug("Opened %s", self.path(kind))
        return self._writers[kind]

    def _write(self, kind: str, columns: tuple[str, ...], values: tuple) -> None:
        self._writer(kind, columns).writerow([_format(v) for v in values])

    def write_step(self, record: StepRecord) -> None:
        if self.enabled and record.time > self.report_delay:
            self._write("report", STEP_COLUMNS, astuple(record))

    def write_cycle(self, record: CycleRecord) -> None:
        if self.enabled and record.end_time > self.report_delay:
            self._write("cycle_report", CYCLE_COLUMNS, astuple(record))

    def write_frame(
        self,
        frame: int,
        time: float,
        K: float,
        D: float,
        erosion: float,
        max_uplift: float,
    ) -> None:
        if self.enabled:
            self._write(
                "frame_metadata", FRAME_COLUMNS, (frame, time, K, D, erosion, max_uplift),
            )

    def write_final(self, record: FinalRecord) -> Path | None:
        """Write the final report (always overwritten, one data row)."""
        if not self.enabled:
            return None
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.path("final_report")
        with path.open("w", newline="") as fh:
            writer = csv.writer(fh, delimiter="\t", lineterminator="\n")
            writer.writerow(FINAL_COLUMNS)
            writer.writerow([_format(v) for v in astuple(record)])
        logger.info("Wrote final report %s", path)
        return path

    def flush(self) -> None:
        for fh in self._handles.values():
            fh.flush()

    def close(self) -> None:
        for fh in self._handles.values():
            fh.close()
        self._handles.clear()
        self._writers.clear()


def read_report(path: str | Path) -> dict[str, np.ndarray]:
    """Load a tab-separated report into a column-name → array mapping."""
    with Path(path).open() as fh:
        reader = csv.reader(fh, delimiter="\t")
        header = next(reader)
        rows = [[float(v) for v in row] for row in reader if row]
    data = np.array(rows, dtype=float).reshape(len(rows), len(header))
    return {name: data[:, i] for i, name in enumerate(header)}
