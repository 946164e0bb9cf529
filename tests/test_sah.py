"""Tests for SAH split-plane selection."""

from __future__ import annotations

import numpy as np
import pytest

from kd_tree.aabb import AABB, X_AXIS, Y_AXIS, Z_AXIS
from kd_tree.sah import (
    candidate_positions,
    choose_split_axis,
    find_best_split,
    sah_cost,
)

EPS = 1e-6


def _box(dx: float, dy: float, dz: float) -> AABB:
    return AABB(np.zeros(3), np.array([dx, dy, dz]))


@pytest.fixture
def long_box() -> AABB:
    """[0, 2] x [0, 1] x [0, 1]; x is the longest axis."""
    return _box(2.0, 1.0, 1.0)


@pytest.fixture
def small_left_triangle() -> np.ndarray:
    """One triangle spanning x in [0.2, 0.4] at z = 0.5. Shape: (1, 3, 3)."""
    return np.array(
        [[[0.2, 0.2, 0.5], [0.4, 0.2, 0.5], [0.3, 0.6, 0.5]]], dtype=np.float64
    )


class TestSAH:
    """Axis rule, candidate sampling and cost evaluation."""

    @pytest.mark.parametrize(
        "extents, expected",
        [
            ((3.0, 1.0, 1.0), X_AXIS),
            ((1.0, 3.0, 1.0), Y_AXIS),
            ((1.0, 1.0, 3.0), Z_AXIS),
            # Ties: X needs a strict lead over both, Y over Z
            ((2.0, 2.0, 1.0), Y_AXIS),
            ((2.0, 1.0, 2.0), Z_AXIS),
            ((1.0, 2.0, 2.0), Z_AXIS),
            ((1.0, 1.0, 1.0), Z_AXIS),
        ],
    )
    def test_split_axis_rule(self, extents: tuple, expected: int) -> None:
        assert choose_split_axis(_box(*extents)) == expected

    def test_candidate_positions(self) -> None:
        box = AABB(np.array([0.0, 0.0, 0.0]), np.array([16.0, 1.0, 1.0]))
        positions = candidate_positions(box, X_AXIS, 16)

        assert positions.shape == (15,)
        np.testing.assert_allclose(positions, np.arange(1, 16, dtype=np.float64))

    def test_candidate_positions_offset_box(self) -> None:
        box = AABB(np.array([0.0, -4.0, 0.0]), np.array([1.0, 4.0, 1.0]))
        positions = candidate_positions(box, Y_AXIS, 4)
        np.testing.assert_allclose(positions, [-2.0, 0.0, 2.0])

    def test_cost_counts_one_side(
        self, long_box: AABB, small_left_triangle: np.ndarray
    ) -> None:
        """Both halves are unit cubes (HSA 3); only the left one holds the triangle."""
        indices = np.arange(1, dtype=np.int64)
        cost = sah_cost(small_left_triangle, indices, long_box, X_AXIS, 1.0, EPS)
        assert cost == pytest.approx(3.0)

    def test_straddling_triangle_counts_on_both_sides(
        self, long_box: AABB, small_left_triangle: np.ndarray
    ) -> None:
        indices = np.arange(1, dtype=np.int64)
        cost = sah_cost(small_left_triangle, indices, long_box, X_AXIS, 0.3, EPS)

        # HSA(left) = 1 + 2 * 0.3, HSA(right) = 1 + 2 * 1.7
        assert cost == pytest.approx((1.0 + 0.6) + (1.0 + 3.4))

    def test_best_split_hugs_triangle(
        self, long_box: AABB, small_left_triangle: np.ndarray
    ) -> None:
        """The first plane past the triangle minimizes HSA(left) * 1."""
        indices = np.arange(1, dtype=np.int64)
        plane = find_best_split(small_left_triangle, indices, long_box, 16, EPS)

        assert plane.axis == X_AXIS
        assert plane.position == pytest.approx(0.5)
        assert plane.cost == pytest.approx(2.0)

    def test_ties_keep_first_candidate(self, long_box: AABB) -> None:
        """With no triangles every cost is zero; the lowest plane is kept."""
        tri_verts = np.zeros((1, 3, 3), dtype=np.float64)
        empty = np.zeros(0, dtype=np.int64)

        plane = find_best_split(tri_verts, empty, long_box, 16, EPS)

        assert plane.cost == 0.0
        assert plane.position == pytest.approx(2.0 / 16.0)

    def test_half_surface_area_of_clipped_box(self, long_box: AABB) -> None:
        left, right = long_box.split(X_AXIS, 0.5)

        assert left.half_surface_area() == pytest.approx(1.0 + 0.5 + 0.5)
        assert right.half_surface_area() == pytest.approx(1.0 + 1.5 + 1.5)
