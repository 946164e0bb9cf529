"""Triangle / axis-aligned box overlap test.

Decides whether a triangle's surface overlaps a closed box volume using
two families of candidate separating planes:

1. The triangle's own plane. If every box corner lies strictly on one
   side of it, the box cannot touch the triangle. Corners within
   ``[-eps, eps]`` count as "on the plane" and establish no side.
2. The six box face planes. If all three triangle vertices lie strictly
   outside one face, that face separates the two shapes. A vertex on the
   face plane counts as overlapping.

All inner-loop functions are compiled with Numba ``@njit(cache=True)``;
``nogil=True`` lets the parallel subtree builds run them concurrently.

Notes
-----
- The nine triangle-edge x box-edge axes of a full separating axis test
  are NOT checked. A triangle grazing a box edge or corner may therefore
  be reported as overlapping without sharing any volume with it. Such a
  false positive only places the triangle in one extra leaf.
- A triangle lying exactly in one of the box's face planes is reported
  as NOT overlapping: the four corners on that face are "on the plane"
  and the other four all lie on one side, so the plane test finds no
  straddle. When a split plane coincides with a triangle's plane, the
  triangle overlaps neither child box and drops out of the tree. This is
  an open limitation; the builder logs a WARNING for every such drop.
- A degenerate triangle (collinear or coincident vertices) has a zero
  normal. Every corner then evaluates to 0 on its plane, no side is
  established, and the test returns False without raising.
- The plane normals are not normalized, so ``eps`` is a tolerance on the
  unnormalized plane equation.
"""

from __future__ import annotations

import logging

import numpy as np
from numba import njit

from kd_tree.aabb import AABB
from kd_tree.constants import DEFAULT_EPSILON

logger = logging.getLogger(__name__)

# ===================================================================
# BOX TOPOLOGY
# ===================================================================
# Corner i takes max[k] where _CORNER_PATTERN[i, k] == 1, else min[k].
#
#        5-------6
#       /|      /|        y
#      4-------7 |        |
#      | 0-----|-1        o--x
#      |/      |/        /
#      3-------2        z
_CORNER_PATTERN = np.array(
    [
        [0, 0, 0],
        [1, 0, 0],
        [1, 0, 1],
        [0, 0, 1],
        [0, 1, 1],
        [0, 1, 0],
        [1, 1, 0],
        [1, 1, 1],
    ],
    dtype=np.int64,
)

# Each face: three corners spanning its plane, then a corner on the
# opposite face that marks the inside.
_FACES = np.array(
    [
        [0, 1, 2, 4],  # y = min
        [4, 5, 6, 0],  # y = max
        [1, 2, 7, 0],  # x = max
        [2, 3, 4, 0],  # z = max
        [0, 3, 4, 7],  # x = min
        [0, 1, 6, 7],  # z = min
    ],
    dtype=np.int64,
)


# ===================================================================
# KERNELS (Numba JIT)
# ===================================================================


@njit(cache=True, nogil=True, fastmath=False)
def box_corners(box_min: np.ndarray, box_max: np.ndarray) -> np.ndarray:
    """Return the 8 corners of a box. Shape: (8, 3)."""
    corners = np.empty((8, 3), dtype=np.float64)
    for i in range(8):
        for k in range(3):
            if _CORNER_PATTERN[i, k] == 1:
                corners[i, k] = box_max[k]
            else:
                corners[i, k] = box_min[k]
    return corners


@njit(cache=True, nogil=True, fastmath=False)
def _strictly_outside(
    n_x: float,
    n_y: float,
    n_z: float,
    d: float,
    v: np.ndarray,
    inside_positive: bool,
    epsilon: float,
) -> bool:
    """True if point ``v`` lies beyond ``epsilon`` on the outer side of a plane."""
    side = n_x * v[0] + n_y * v[1] + n_z * v[2] + d
    # On the face plane: touching counts as overlap
    if side > -epsilon and side < epsilon:
        return False
    return (side > 0.0) != inside_positive


@njit(cache=True, nogil=True, fastmath=False)
def _face_separates(
    corners: np.ndarray,
    face: int,
    v0: np.ndarray,
    v1: np.ndarray,
    v2: np.ndarray,
    epsilon: float,
) -> bool:
    """True if all triangle vertices lie strictly outside one box face."""
    a = _FACES[face, 0]
    b = _FACES[face, 1]
    c = _FACES[face, 2]
    opposite = _FACES[face, 3]

    # Face normal = (A - B) × (A - C)
    e1_x = corners[a, 0] - corners[b, 0]
    e1_y = corners[a, 1] - corners[b, 1]
    e1_z = corners[a, 2] - corners[b, 2]
    e2_x = corners[a, 0] - corners[c, 0]
    e2_y = corners[a, 1] - corners[c, 1]
    e2_z = corners[a, 2] - corners[c, 2]

    n_x = e1_y * e2_z - e1_z * e2_y
    n_y = e1_z * e2_x - e1_x * e2_z
    n_z = e1_x * e2_y - e1_y * e2_x
    d = -(n_x * corners[a, 0] + n_y * corners[a, 1] + n_z * corners[a, 2])

    inside = (
        n_x * corners[opposite, 0]
        + n_y * corners[opposite, 1]
        + n_z * corners[opposite, 2]
        + d
    )
    inside_positive = inside > 0.0

    return (
        _strictly_outside(n_x, n_y, n_z, d, v0, inside_positive, epsilon)
        and _strictly_outside(n_x, n_y, n_z, d, v1, inside_positive, epsilon)
        and _strictly_outside(n_x, n_y, n_z, d, v2, inside_positive, epsilon)
    )


@njit(cache=True, nogil=True, fastmath=False)
def _overlaps_corners(
    v0: np.ndarray,
    v1: np.ndarray,
    v2: np.ndarray,
    corners: np.ndarray,
    epsilon: float,
) -> bool:
    """Overlap test against precomputed box corners."""
    # Triangle normal = (v0 - v1) × (v0 - v2)
    e1_x = v0[0] - v1[0]
    e1_y = v0[1] - v1[1]
    e1_z = v0[2] - v1[2]
    e2_x = v0[0] - v2[0]
    e2_y = v0[1] - v2[1]
    e2_z = v0[2] - v2[2]

    n_x = e1_y * e2_z - e1_z * e2_y
    n_y = e1_z * e2_x - e1_x * e2_z
    n_z = e1_x * e2_y - e1_y * e2_x
    d = -(n_x * v0[0] + n_y * v0[1] + n_z * v0[2])

    # --- Triangle plane vs. box corners ---
    box_sign = 0
    straddles = False
    for i in range(8):
        side = n_x * corners[i, 0] + n_y * corners[i, 1] + n_z * corners[i, 2] + d
        if side > -epsilon and side < epsilon:
            continue
        sign = 1 if side > 0.0 else -1
        if box_sign == 0:
            box_sign = sign
        elif sign != box_sign:
            straddles = True
            break

    if not straddles:
        return False

    # --- Box faces vs. triangle vertices ---
    for face in range(6):
        if _face_separates(corners, face, v0, v1, v2, epsilon):
            return False

    return True


@njit(cache=True, nogil=True, fastmath=False)
def triangle_box_overlap(
    v0: np.ndarray,
    v1: np.ndarray,
    v2: np.ndarray,
    box_min: np.ndarray,
    box_max: np.ndarray,
    epsilon: float,
) -> bool:
    """Test whether a triangle overlaps a closed axis-aligned box.

    Parameters
    ----------
    v0, v1, v2 : np.ndarray
        Triangle vertex positions. Shape: (3,) each.
    box_min, box_max : np.ndarray
        Box corners. Shape: (3,) each.
    epsilon : float
        Zero tolerance on plane equations.

    Returns
    -------
    bool
        True if no separating plane was found among the triangle plane
        and the six box faces.
    """
    corners = box_corners(box_min, box_max)
    return _overlaps_corners(v0, v1, v2, corners, epsilon)


@njit(cache=True, nogil=True, fastmath=False)
def overlap_mask(
    tri_verts: np.ndarray,
    indices: np.ndarray,
    box_min: np.ndarray,
    box_max: np.ndarray,
    epsilon: float,
) -> np.ndarray:
    """Overlap flags for a subset of triangles against one box.

    Parameters
    ----------
    tri_verts : np.ndarray
        All triangle vertices. Shape: (N, 3, 3).
    indices : np.ndarray
        Triangle indices to test. Shape: (M,), dtype: int64.
    box_min, box_max : np.ndarray
        Box corners. Shape: (3,) each.
    epsilon : float
        Zero tolerance.

    Returns
    -------
    np.ndarray
        Boolean flags aligned with ``indices``. Shape: (M,).
    """
    corners = box_corners(box_min, box_max)
    mask = np.zeros(indices.shape[0], dtype=np.bool_)
    for i in range(indices.shape[0]):
        t = indices[i]
        mask[i] = _overlaps_corners(
            tri_verts[t, 0], tri_verts[t, 1], tri_verts[t, 2], corners, epsilon
        )
    return mask


@njit(cache=True, nogil=True, fastmath=False)
def count_overlaps(
    tri_verts: np.ndarray,
    indices: np.ndarray,
    box_min: np.ndarray,
    box_max: np.ndarray,
    epsilon: float,
) -> int:
    """Number of triangles in ``indices`` overlapping the box."""
    corners = box_corners(box_min, box_max)
    count = 0
    for i in range(indices.shape[0]):
        t = indices[i]
        if _overlaps_corners(
            tri_verts[t, 0], tri_verts[t, 1], tri_verts[t, 2], corners, epsilon
        ):
            count += 1
    return count


# ===================================================================
# PYTHON API
# ===================================================================


def intersects(
    triangle: np.ndarray,
    box: AABB,
    epsilon: float = DEFAULT_EPSILON,
) -> bool:
    """Test a single triangle against a box.

    Parameters
    ----------
    triangle : np.ndarray
        Triangle vertices. Shape: (3, 3).
    box : AABB
        Closed box volume.
    epsilon : float
        Zero tolerance on plane equations.

    Returns
    -------
    bool
        True if the triangle overlaps the box.
    """
    tri = np.ascontiguousarray(triangle, dtype=np.float64).reshape(3, 3)
    return bool(
        triangle_box_overlap(
            tri[0], tri[1], tri[2], box.minimum, box.maximum, float(epsilon)
        )
    )


def triangles_in_box(
    tri_verts: np.ndarray,
    indices: np.ndarray,
    box: AABB,
    epsilon: float = DEFAULT_EPSILON,
) -> np.ndarray:
    """Subset of ``indices`` whose triangles overlap ``box``, order preserved."""
    mask = overlap_mask(tri_verts, indices, box.minimum, box.maximum, float(epsilon))
    return indices[mask]
