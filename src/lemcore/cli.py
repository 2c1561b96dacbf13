"""
Command-line entry point.

::

    lemcore run params.txt --output-dir out/ [--from-steady-state] [--plot]
    lemcore template params.txt
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import numpy as np

from .analysis import fit_slope_area, slope_area_data
from .config import ConfigError, load_parameter_file, write_template_parameter_file
from .controller import SimulationController
from .hillslope import SolverDivergenceError
from .io import RasterFormatError

logger = logging.getLogger("lemcore")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lemcore",
        description="Landscape evolution model driven by a parameter file.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the model described by a parameter file.")
    run.add_argument("parameter_file", type=Path)
    run.add_argument(
        "--output-dir", type=Path, default=Path("."),
        help="Directory for rasters and reports (default: current directory).",
    )
    run.add_argument(
        "--from-steady-state", action="store_true",
        help="Spin up to steady state before the configured runs.",
    )
    run.add_argument("--seed", type=int, default=None, help="Seed for surface noise.")
    run.add_argument(
        "--plot", action="store_true",
        help="Save a report figure and the final elevation frame as PNG.",
    )
    run.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")

    template = sub.add_parser("template", help="Write a parameter file with default values.")
    template.add_argument("path", type=Path)
    return parser


def _configure_logging(verbose: bool, quiet: bool) -> None:
    level = logging.INFO
    if quiet:
        level = logging.WARNING
    if verbose:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )


def _save_plots(controller: SimulationController, output_dir: Path) -> None:
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    from .plotting import (
        plot_elevation_frame,
        plot_report,
        plot_slope_area,
        set_nature_style,
    )

    set_nature_style()
    output_dir.mkdir(parents=True, exist_ok=True)
    name = controller.config.run_name
    report = controller.reporter.path("report") if controller.reporter else None
    if report is not None and report.exists():
        plt.close(plot_report(report, save_path=output_dir / f"{name}_report.png"))
    plt.close(plot_elevation_frame(
        controller.grid.elevation, controller.grid.dx,
        title=f"{name} t={controller.clock.current_time:g}",
        save_path=output_dir / f"{name}_elevation.png",
    ))
    if controller.network is not None:
        A, S = slope_area_data(controller.grid, controller.network)
        plt.close(plot_slope_area(A, S, save_path=output_dir / f"{name}_slope_area.png"))


def run(args: argparse.Namespace) -> int:
    try:
        config, _ = load_parameter_file(args.parameter_file)
    except ConfigError as exc:
        _configure_logging(args.verbose, quiet=False)
        logger.error("%s", exc)
        return 1
    _configure_logging(args.verbose, config.quiet)

    rng = np.random.default_rng(args.seed)
    try:
        controller = SimulationController.from_config(config, args.output_dir, rng=rng)
    except (ConfigError, RasterFormatError, OSError) as exc:
        logger.error("%s", exc)
        return 1

    with controller:
        try:
            if args.from_steady_state:
                results = controller.run_model_from_steady_state()
            else:
                results = controller.run_model()
        except (SolverDivergenceError, np.linalg.LinAlgError) as exc:
            logger.error("Run failed at t=%.6g: %s", controller.clock.current_time, exc)
            return 2

        if controller.network is not None:
            A, S = slope_area_data(controller.grid, controller.network)
            fit = fit_slope_area(A, S)
            if np.isfinite(fit["ks"]):
                logger.info(
                    "Slope-area fit: ks=%.4g theta=%.3f r2=%.3f (n=%d)",
                    fit["ks"], fit["theta"], fit["r2"], fit["n_good"],
                )
        if args.plot:
            controller.reporter.flush()
            _save_plots(controller, args.output_dir)

    if any(result.aborted for result in results):
        logger.error("At least one run was aborted before reaching steady state")
        return 2
    return 0


def template(args: argparse.Namespace) -> int:
    _configure_logging(False, quiet=False)
    try:
        write_template_parameter_file(args.path)
    except OSError as exc:
        logger.error("%s", exc)
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    if args.command == "run":
        return run(args)
    return template(args)


if __name__ == "__main__":
    sys.exit(main())
