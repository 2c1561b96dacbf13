"""
Shared test fixtures for the landscape evolution core.

Provides small synthetic grids (10×10, dx = 10 m) with base-level north and
south edges and periodic east and west edges, a seeded random generator and
a fast model configuration.  No data files are needed.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Make src importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from lemcore.boundary import BoundaryConditions
from lemcore.config import ModelConfig
from lemcore.grid import GridState


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def ridge_surface(nrows: int, ncols: int, height: float = 10.0) -> np.ndarray:
    """Tent-shaped ridge along the middle row, zero on the first and last rows."""
    rows = np.arange(nrows, dtype=float)
    half = (nrows - 1) / 2.0
    profile = height * (1.0 - np.abs(rows - half) / half)
    return np.repeat(profile[:, None], ncols, axis=1)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(42)


@pytest.fixture
def boundary():
    """Base level north and south, periodic east and west."""
    return BoundaryConditions.from_code("bpbp")


@pytest.fixture
def dx():
    """Grid spacing in metres."""
    return 10.0


@pytest.fixture
def flat_grid(dx):
    """10×10 grid at zero elevation."""
    return GridState.flat(10, 10, dx=dx)


@pytest.fixture
def ridge_grid(dx):
    """10×10 east-west ridge draining north and south."""
    return GridState(ridge_surface(10, 10), dx=dx)


@pytest.fixture
def noisy_grid(dx, rng, boundary):
    """10×10 ridge with small random roughness off the base level."""
    z = ridge_surface(10, 10)
    interior = ~boundary.base_level_mask(z.shape)
    z[interior] += rng.uniform(0.0, 0.5, size=int(interior.sum()))
    return GridState(z, dx=dx)


@pytest.fixture
def small_config():
    """Fast configuration: 10×10 grid, 100 steps, nothing written."""
    return ModelConfig(
        run_name="test",
        dt=100.0,
        end_time=10000.0,
        nrows=10,
        ncols=10,
        resolution=10.0,
        noise=0.0,
        max_uplift=0.001,
        K=1e-4,
        D=0.01,
        reporting=False,
        print_interval=0,
    )
