"""
Pytest configuration and fixtures for LUT video transformer tests.

Provides .cube text builders, asset directories and sample frames.
"""

import pytest
import numpy as np
from typing import Callable, Iterable, Optional

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def cube_text(size: int, rows: Iterable[Iterable[float]], header: Optional[str] = None) -> str:
    """Render a .cube file from rows listed blue-slowest, red-fastest."""
    lines = [header or "TITLE \"test\"", f"LUT_3D_SIZE {size}"]
    lines.extend(" ".join(f"{v:.6f}" for v in row) for row in rows)
    return "\n".join(lines) + "\n"


def identity_rows(size: int):
    """Identity LUT rows in .cube order."""
    step = 1.0 / (size - 1)
    return [
        (r * step, g * step, b * step)
        for b in range(size)
        for g in range(size)
        for r in range(size)
    ]


# Eight triples listed blue-slowest, green-middle, red-fastest
SCENARIO_ROWS = [
    (0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (1.0, 1.0, 0.0),
    (0.0, 0.0, 1.0), (1.0, 0.0, 1.0), (0.0, 1.0, 1.0), (1.0, 1.0, 1.0),
]

# Maps black, red and green to themselves and every other lattice point to white
MARKER_ROWS = [
    (0.0, 0.0, 0.0),  # r=0 g=0 b=0
    (1.0, 0.0, 0.0),  # r=1 g=0 b=0
    (0.0, 1.0, 0.0),  # r=0 g=1 b=0
    (1.0, 1.0, 1.0),  # r=1 g=1 b=0
    (1.0, 1.0, 1.0),
    (1.0, 1.0, 1.0),
    (1.0, 1.0, 1.0),
    (1.0, 1.0, 1.0),
]


@pytest.fixture
def make_cube() -> Callable[..., str]:
    """Fixture returning the .cube text builder."""
    return cube_text


@pytest.fixture
def scenario_cube() -> str:
    """The 2x2x2 cube whose packed values are asserted throughout the tests."""
    return cube_text(2, SCENARIO_ROWS)


@pytest.fixture
def marker_cube() -> str:
    """2x2x2 cube with one distinct color per lattice point along each axis."""
    return cube_text(2, MARKER_ROWS)


@pytest.fixture
def identity_cube() -> Callable[[int], str]:
    """Fixture returning a builder for identity .cube text of a given size."""
    return lambda size: cube_text(size, identity_rows(size))


@pytest.fixture
def asset_dir(tmp_path, scenario_cube, marker_cube):
    """Asset directory holding luts/scenario.cube, luts/marker.cube and luts/identity.cube."""
    luts = tmp_path / "luts"
    luts.mkdir()
    (luts / "scenario.cube").write_text(scenario_cube)
    (luts / "marker.cube").write_text(marker_cube)
    (luts / "identity.cube").write_text(cube_text(2, identity_rows(2)))
    return tmp_path


@pytest.fixture
def gradient_frame():
    """64x48 RGB frame with distinct values per pixel."""
    h, w = 48, 64
    ys, xs = np.mgrid[0:h, 0:w]
    frame = np.zeros((h, w, 3), dtype=np.uint8)
    frame[..., 0] = (xs * 4) % 256
    frame[..., 1] = (ys * 5) % 256
    frame[..., 2] = (xs + ys * 3) % 256
    return frame


@pytest.fixture
def random_frame():
    """Random RGB frame for grading tests."""
    rng = np.random.default_rng(1234)
    return rng.integers(0, 256, (40, 30, 3), dtype=np.uint8)
