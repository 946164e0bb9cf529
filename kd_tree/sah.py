"""Surface Area Heuristic (SAH) split-plane selection.

The split axis of a node is the dimension of its box with the largest
extent. Candidate planes are sampled at fixed fractions ``i / samples``
(``i = 1 .. samples - 1``) of that extent, and each candidate is scored

    cost = HSA(left) * N_left + HSA(right) * N_right

where HSA is the half surface area of the clipped child box
(``dy*dz + dx*dy + dx*dz`` with the split-axis extent scaled by the
fraction of the box on that side) and N counts the triangles that
overlap the child box. A triangle straddling the plane counts on both
sides. The lowest cost wins; ties keep the earliest candidate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from kd_tree.aabb import AABB, X_AXIS, Y_AXIS, Z_AXIS
from kd_tree.intersection import count_overlaps

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SplitPlane:
    """Chosen axis-aligned split plane.

    Attributes
    ----------
    axis : int
        Normal axis (0 = x, 1 = y, 2 = z).
    position : float
        Plane coordinate along ``axis``.
    cost : float
        SAH cost of the split.
    """

    axis: int
    position: float
    cost: float


def choose_split_axis(box: AABB) -> int:
    """Axis of largest extent.

    X wins only if strictly greater than both Y and Z; otherwise Y wins if
    strictly greater than Z; otherwise Z.
    """
    dx, dy, dz = box.diagonal
    if dx > dy and dx > dz:
        return X_AXIS
    if dy > dz:
        return Y_AXIS
    return Z_AXIS


def candidate_positions(box: AABB, axis: int, samples: int) -> np.ndarray:
    """Evenly spaced plane positions strictly inside the box along ``axis``.

    Returns
    -------
    np.ndarray
        ``min[axis] + extent[axis] * i / samples`` for ``i = 1 .. samples-1``.
        Shape: (samples - 1,).
    """
    fractions = np.arange(1, samples, dtype=np.float64) / float(samples)
    return box.minimum[axis] + box.diagonal[axis] * fractions


def sah_cost(
    tri_verts: np.ndarray,
    indices: np.ndarray,
    box: AABB,
    axis: int,
    position: float,
    epsilon: float,
) -> float:
    """SAH cost of splitting ``box`` at ``position`` along ``axis``.

    Parameters
    ----------
    tri_verts : np.ndarray
        All triangle vertices. Shape: (N, 3, 3).
    indices : np.ndarray
        Triangles held by the node. Shape: (M,), dtype: int64.
    box : AABB
        Node box.
    axis : int
        Split axis.
    position : float
        Plane coordinate.
    epsilon : float
        Zero tolerance for the overlap test.

    Returns
    -------
    float
        ``HSA(left) * N_left + HSA(right) * N_right``.
    """
    left_box, right_box = box.split(axis, position)

    left_count = count_overlaps(
        tri_verts, indices, left_box.minimum, left_box.maximum, epsilon
    )
    right_count = count_overlaps(
        tri_verts, indices, right_box.minimum, right_box.maximum, epsilon
    )

    return (
        left_box.half_surface_area() * left_count
        + right_box.half_surface_area() * right_count
    )


def find_best_split(
    tri_verts: np.ndarray,
    indices: np.ndarray,
    box: AABB,
    samples: int,
    epsilon: float,
) -> SplitPlane:
    """Pick the lowest-cost plane among the sampled candidates.

    Comparison is strict, so the first of several equal-cost candidates
    is kept.
    """
    axis = choose_split_axis(box)

    best_cost = np.inf
    best_position = float(box.minimum[axis])
    for position in candidate_positions(box, axis, samples):
        cost = sah_cost(tri_verts, indices, box, axis, float(position), epsilon)
        if cost < best_cost:
            best_cost = cost
            best_position = float(position)

    return SplitPlane(axis=axis, position=best_position, cost=float(best_cost))
