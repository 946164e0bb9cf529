"""Axis-aligned bounding boxes.

Boxes are stored as two float64 corner vectors with ``minimum <= maximum``
componentwise. The root box of a mesh is its tight vertex bound expanded
by a fixed padding on every face so that triangles lying exactly on the
mesh boundary are never missed by the overlap test.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)

X_AXIS, Y_AXIS, Z_AXIS = 0, 1, 2


class EmptyMeshError(ValueError):
    """Raised when a tree is requested for a mesh without triangles."""


@dataclass(frozen=True, eq=False)
class AABB:
    """Axis-aligned bounding box.

    Attributes
    ----------
    minimum : np.ndarray
        Lower corner (x, y, z). Shape: (3,), dtype: float64.
    maximum : np.ndarray
        Upper corner (x, y, z). Shape: (3,), dtype: float64.
    """

    minimum: np.ndarray
    maximum: np.ndarray

    def __post_init__(self) -> None:
        lo = np.asarray(self.minimum, dtype=np.float64).reshape(3)
        hi = np.asarray(self.maximum, dtype=np.float64).reshape(3)
        if np.any(lo > hi):
            raise ValueError(f"Invalid AABB: min {lo} exceeds max {hi}")
        object.__setattr__(self, "minimum", lo)
        object.__setattr__(self, "maximum", hi)

    @property
    def diagonal(self) -> np.ndarray:
        """Extent vector ``maximum - minimum``."""
        return self.maximum - self.minimum

    def half_surface_area(self) -> float:
        """Half the surface area: ``dy*dz + dx*dy + dx*dz``."""
        dx, dy, dz = self.diagonal
        return float(dy * dz + dx * dy + dx * dz)

    def split(self, axis: int, position: float) -> tuple[AABB, AABB]:
        """Clip the box at an axis-aligned plane.

        Parameters
        ----------
        axis : int
            Plane normal axis (0 = x, 1 = y, 2 = z).
        position : float
            Plane coordinate along ``axis``.

        Returns
        -------
        (AABB, AABB)
            Left box (max replaced by ``position``) and right box
            (min replaced by ``position``).
        """
        left_max = self.maximum.copy()
        left_max[axis] = position
        right_min = self.minimum.copy()
        right_min[axis] = position
        return AABB(self.minimum, left_max), AABB(right_min, self.maximum)

    def contains_points(self, points: np.ndarray) -> bool:
        """True if every point of an (N, 3) array lies in the closed box."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return bool(np.all(pts >= self.minimum) and np.all(pts <= self.maximum))

    def contains_box(self, other: AABB) -> bool:
        """True if ``other`` lies entirely inside this box."""
        return bool(
            np.all(other.minimum >= self.minimum)
            and np.all(other.maximum <= self.maximum)
        )

    def union(self, other: AABB) -> AABB:
        """Smallest box enclosing both boxes."""
        return AABB(
            np.minimum(self.minimum, other.minimum),
            np.maximum(self.maximum, other.maximum),
        )

    def as_row(self) -> np.ndarray:
        """``[min_x, min_y, min_z, max_x, max_y, max_z]``."""
        return np.concatenate([self.minimum, self.maximum])

    def __repr__(self) -> str:
        return f"AABB(min={self.minimum.tolist()}, max={self.maximum.tolist()})"


def triangles_bounding_box(triangles: np.ndarray, padding: float = 0.001) -> AABB:
    """Bounding box of all triangle vertices, expanded by ``padding``.

    Parameters
    ----------
    triangles : np.ndarray
        Triangle vertices. Shape: (N, 3, 3).
    padding : float
        Distance added on every face of the box.

    Returns
    -------
    AABB
        Padded mesh bounding box.

    Raises
    ------
    EmptyMeshError
        If ``triangles`` holds no triangle; the bound would otherwise stay
        at +inf/-inf.
    """
    tris = np.asarray(triangles, dtype=np.float64)
    if tris.shape[0] == 0:
        raise EmptyMeshError("Cannot compute a bounding box for an empty mesh.")

    points = tris.reshape(-1, 3)
    lo = points.min(axis=0) - padding
    hi = points.max(axis=0) + padding
    logger.debug("Root box: min=%s max=%s", lo, hi)
    return AABB(lo, hi)
