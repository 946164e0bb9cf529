"""End-to-end tests for the command line entry point and plots."""

from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

from kd_tree.builder import build_flattened
from kd_tree.constants import BuildConfig
from main import main, parse_args
from visualization.plotter import generate_all_plots


class TestCommandLine:
    def test_requires_a_source(self) -> None:
        with pytest.raises(SystemExit):
            parse_args([])

    def test_sources_are_exclusive(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["--mesh", "a.obj", "--synthetic", "10"])

    def test_synthetic_with_buffers(self, tmp_path: Path) -> None:
        out = tmp_path / "buffers"
        code = main(
            [
                "--synthetic", "200",
                "--depth", "6",
                "--serial",
                "--export-buffers", str(out),
                "--log-level", "WARNING",
            ]
        )

        assert code == 0
        meta = json.loads((out / "tree_meta.json").read_text())
        assert meta["node_count"] > 0
        nodes = (out / "nodes.bin").read_bytes()
        assert len(nodes) == 16 * meta["node_count"]

    def test_mesh_writes_cache(self, tmp_path: Path) -> None:
        mesh = tmp_path / "quad.obj"
        mesh.write_text(
            "v 0 0 0\nv 1 0 0\nv 1 1 0\nv 0 1 0\nf 1 2 3 4\n", encoding="utf-8"
        )

        assert main(["--mesh", str(mesh), "--log-level", "WARNING"]) == 0
        assert (tmp_path / "quad.tree").exists()

        assert main(["--mesh", str(mesh), "--no-cache", "--log-level", "WARNING"]) == 0


class TestPlotter:
    def test_generate_all_plots(
        self,
        scattered_100: np.ndarray,
        serial_config: BuildConfig,
        tmp_path: Path,
    ) -> None:
        tree = build_flattened(scattered_100, 6, serial_config)
        saved = generate_all_plots(tree, scattered_100, output_dir=tmp_path / "plots")

        assert [p.name for p in saved] == [
            "leaf_histogram.png",
            "depth_histogram.png",
            "leaf_boxes.png",
        ]
        for path in saved:
            assert path.exists() and path.stat().st_size > 0

    def test_single_leaf_plots(
        self, single_triangle: np.ndarray, tmp_path: Path
    ) -> None:
        tree = build_flattened(single_triangle)
        saved = generate_all_plots(tree, single_triangle, output_dir=tmp_path)
        assert len(saved) == 3
