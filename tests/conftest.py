"""Pytest configuration and shared fixtures for the KD-tree tests."""

from __future__ import annotations

import logging
import sys
from dataclasses import replace
from pathlib import Path

import numpy as np
import pytest


# Add project root to path so imports work
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from kd_tree.constants import BuildConfig, default_config  # noqa: E402
from data_ingestion.synthetic_mesh import generate_scattered_triangles  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s [%(levelname)s] %(message)s",
    )


@pytest.fixture
def single_triangle() -> np.ndarray:
    """One right triangle in the z = 0 plane. Shape: (1, 3, 3)."""
    return np.array(
        [[[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]], dtype=np.float64
    )


@pytest.fixture
def scattered_100() -> np.ndarray:
    """100 axis-aligned unit triangles inside a 10 x 10 x 10 cube."""
    return generate_scattered_triangles(100, extent=10.0, size=1.0, seed=7)


@pytest.fixture
def scattered_400() -> np.ndarray:
    """400 axis-aligned unit triangles inside a 10 x 10 x 10 cube."""
    return generate_scattered_triangles(400, extent=10.0, size=1.0, seed=11)


@pytest.fixture
def serial_config() -> BuildConfig:
    cfg = default_config()
    return replace(cfg, kd_tree=replace(cfg.kd_tree, parallel=False))


@pytest.fixture
def parallel_config() -> BuildConfig:
    cfg = default_config()
    return replace(cfg, kd_tree=replace(cfg.kd_tree, parallel=True, max_workers=4))
