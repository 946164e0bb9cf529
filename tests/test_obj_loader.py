"""Tests for the Wavefront OBJ loader and synthetic meshes."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pytest

from data_ingestion.obj_loader import count_degenerate, load_obj, parse_obj
from data_ingestion.synthetic_mesh import (
    generate_grid_triangles,
    generate_scattered_triangles,
    generate_synthetic_mesh,
)

SQUARE = """\
# unit square
v 0 0 0
v 1 0 0
v 1 1 0
v 0 1 0
"""


class TestObjLoader:
    """OBJ parsing."""

    def test_single_triangle(self) -> None:
        tris = parse_obj(SQUARE.splitlines() + ["f 1 2 3"])

        assert tris.shape == (1, 3, 3)
        np.testing.assert_array_equal(tris[0], [[0, 0, 0], [1, 0, 0], [1, 1, 0]])

    def test_quad_is_fan_triangulated(self) -> None:
        tris = parse_obj(SQUARE.splitlines() + ["f 1 2 3 4"])

        assert tris.shape == (2, 3, 3)
        np.testing.assert_array_equal(tris[1], [[0, 0, 0], [1, 1, 0], [0, 1, 0]])

    def test_slash_tokens_and_negative_indices(self) -> None:
        lines = SQUARE.splitlines() + [
            "vt 0 0",
            "vn 0 0 1",
            "f 1/1/1 2//1 3/1",
            "f -4 -2 -1",
        ]
        tris = parse_obj(lines)

        assert tris.shape == (2, 3, 3)
        np.testing.assert_array_equal(tris[0], [[0, 0, 0], [1, 0, 0], [1, 1, 0]])
        np.testing.assert_array_equal(tris[1], [[0, 0, 0], [1, 1, 0], [0, 1, 0]])

    def test_homogeneous_weight(self) -> None:
        lines = ["v 2 4 6 2", "v 1 0 0", "v 0 1 0", "f 1 2 3"]
        tris = parse_obj(lines)
        np.testing.assert_array_equal(tris[0, 0], [1.0, 2.0, 3.0])

    def test_comments_groups_and_tabs(self) -> None:
        lines = [
            "o thing  # object name",
            "g group",
            "usemtl stone",
            "v\t0 0 0",
            "v 1 0 0   # trailing comment",
            "v 0 0 1",
            "",
            "s off",
            "f 1 2 3",
        ]
        assert parse_obj(lines).shape == (1, 3, 3)

    def test_no_faces(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            tris = parse_obj(SQUARE.splitlines())
        assert tris.shape == (0, 3, 3)
        assert "no faces" in caplog.text

    def test_degenerate_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        lines = ["v 0 0 0", "v 1 1 1", "v 2 2 2", "f 1 2 3"]
        with caplog.at_level(logging.WARNING):
            tris = parse_obj(lines)
        assert count_degenerate(tris) == 1
        assert "degenerate" in caplog.text

    @pytest.mark.parametrize(
        "bad_line, message",
        [
            ("f 1 2", "at least 3"),
            ("f 1 2 9", "out of range"),
            ("f 0 1 2", "out of range"),
            ("f 1 2 x", "bad face index"),
            ("v 1 2", "3 coordinates"),
            ("v 1 2 zz", "bad vertex"),
            ("v 1 2 3 0", "weight"),
        ],
    )
    def test_errors_name_the_line(self, bad_line: str, message: str) -> None:
        lines = SQUARE.splitlines() + [bad_line]
        with pytest.raises(ValueError, match=message) as excinfo:
            parse_obj(lines, source="mesh.obj")
        assert "mesh.obj:6" in str(excinfo.value)

    def test_load_obj_file(self, tmp_path: Path) -> None:
        path = tmp_path / "square.obj"
        path.write_text(SQUARE + "f 1 2 3 4\n", encoding="utf-8")

        assert load_obj(path).shape == (2, 3, 3)

    def test_load_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_obj(tmp_path / "missing.obj")


class TestSyntheticMesh:
    """Synthetic triangle generators."""

    def test_scattered_shape_and_bounds(self) -> None:
        tris = generate_scattered_triangles(50, extent=5.0, size=0.5, seed=1)

        assert tris.shape == (50, 3, 3)
        assert tris.min() >= 0.0
        assert tris.max() <= 5.0
        assert count_degenerate(tris) == 0

    def test_scattered_is_reproducible(self) -> None:
        a = generate_scattered_triangles(20, seed=3)
        b = generate_scattered_triangles(20, seed=3)
        np.testing.assert_array_equal(a, b)

    def test_scattered_rejects_oversized(self) -> None:
        with pytest.raises(ValueError):
            generate_scattered_triangles(5, extent=1.0, size=2.0)

    def test_grid(self) -> None:
        tris = generate_grid_triangles(3, extent=3.0)

        assert tris.shape == (18, 3, 3)
        np.testing.assert_array_equal(tris[:, :, 2], 0.0)
        assert count_degenerate(tris) == 0

    def test_dispatch(self) -> None:
        assert generate_synthetic_mesh("grid", 10).shape[0] >= 10
        assert generate_synthetic_mesh("scattered", 10).shape == (10, 3, 3)
        with pytest.raises(ValueError, match="Unknown mesh kind"):
            generate_synthetic_mesh("sphere", 10)
