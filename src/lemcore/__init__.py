"""Landscape evolution core: fluvial incision, hillslope creep and isostasy.

Modules
-------
boundary
    Edge codes (base level, periodic, no-flux) and neighbour lookup.
grid
    Elevation state, uplift fields and synthetic initial surfaces.
flow
    Steepest-descent receivers, topological stack and depression filling.
fluvial
    Implicit stream-power incision and channel wash-out.
hillslope
    Linear, nonlinear and adaptive-time-step implicit diffusion.
isostasy
    Airy and flexural isostatic compensation.
forcing
    Periodic and time-series forcing of erodibility and diffusivity.
controller
    Time stepping, steady-state detection and end-of-run policies.
config
    Parameter files and the run configuration.
io
    ASCII rasters and per-frame output.
reporting
    Step, cycle, frame and final reports.
analysis
    Slope-area extraction and regression.
plotting
    Report and elevation figures, Nature-style matplotlib configuration.
utils
    Hillshade and mean local relief of elevation grids.
cli
    ``lemcore`` command-line entry point.
"""

__version__ = "0.1.0"
