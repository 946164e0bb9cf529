"""Synthetic triangle soups for demos and validation.

Generates reproducible meshes without any input file:

- ``scattered``: small axis-aligned right triangles at random positions
  inside a cube, each lying in a plane normal to a random axis.
- ``grid``: a flat, regularly tessellated square in the z = 0 plane.
"""

from __future__ import annotations

import logging
from typing import Literal

import numpy as np

logger = logging.getLogger(__name__)


def generate_scattered_triangles(
    count: int,
    extent: float = 10.0,
    size: float = 1.0,
    seed: int = 42,
) -> np.ndarray:
    """Scatter axis-aligned right triangles inside ``[0, extent]^3``.

    Each triangle has two legs of length ``size`` along two coordinate
    axes, so it lies in a plane normal to the third axis.

    Parameters
    ----------
    count : int
        Number of triangles.
    extent : float
        Edge length of the enclosing cube.
    size : float
        Leg length of every triangle.
    seed : int
        Random seed for reproducibility.

    Returns
    -------
    np.ndarray
        Triangle vertices. Shape: (count, 3, 3), dtype: float64.
    """
    if size > extent:
        raise ValueError(f"Triangle size {size} exceeds cube extent {extent}")

    rng = np.random.default_rng(seed)
    origins = rng.uniform(0.0, extent - size, size=(count, 3))
    normal_axes = rng.integers(0, 3, size=count)

    triangles = np.repeat(origins[:, None, :], 3, axis=1)
    for i, axis in enumerate(normal_axes):
        u, v = [k for k in range(3) if k != axis]
        triangles[i, 1, u] += size
        triangles[i, 2, v] += size

    logger.info(
        "Generated %d scattered triangles in a %.1f cube (seed=%d)",
        count,
        extent,
        seed,
    )
    return triangles


def generate_grid_triangles(cells: int, extent: float = 1.0) -> np.ndarray:
    """Tessellate the square ``[0, extent]^2`` (z = 0) into ``2 * cells^2`` triangles.

    Each cell (i, j) is split along its diagonal:

        (i,j+1)---(i+1,j+1)
           |  T1  /  |
           |    /    |
           |  /  T0  |
        (i,j)-----(i+1,j)
    """
    step = extent / cells
    coords = np.arange(cells, dtype=np.float64) * step
    xx, yy = np.meshgrid(coords, coords, indexing="ij")
    x0 = xx.ravel()
    y0 = yy.ravel()
    zero = np.zeros_like(x0)

    p00 = np.column_stack([x0, y0, zero])
    p10 = np.column_stack([x0 + step, y0, zero])
    p11 = np.column_stack([x0 + step, y0 + step, zero])
    p01 = np.column_stack([x0, y0 + step, zero])

    triangles = np.empty((2 * cells * cells, 3, 3), dtype=np.float64)
    triangles[0::2] = np.stack([p00, p10, p11], axis=1)
    triangles[1::2] = np.stack([p00, p11, p01], axis=1)
    return triangles


def generate_synthetic_mesh(
    kind: Literal["scattered", "grid"],
    count: int,
    seed: int = 42,
) -> np.ndarray:
    """Dispatch to a generator by name.

    For ``grid`` the number of cells per side is chosen so that the mesh
    holds at least ``count`` triangles.

    Raises
    ------
    ValueError
        If ``kind`` is not recognized.
    """
    if kind == "scattered":
        return generate_scattered_triangles(count, seed=seed)
    if kind == "grid":
        cells = max(1, int(np.ceil(np.sqrt(count / 2.0))))
        return generate_grid_triangles(cells)
    raise ValueError(f"Unknown mesh kind '{kind}'. Valid options: ['scattered', 'grid']")
