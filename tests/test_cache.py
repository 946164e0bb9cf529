"""Tests for the side-car tree cache and the cached model loader."""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path

import numpy as np
import pytest

from kd_tree.builder import build_flattened
from kd_tree.constants import BuildConfig
from kd_tree.flatten import FlattenedTree
from pipeline.cache_codec import (
    MalformedCacheError,
    cache_path_for,
    decode,
    encode,
    load_cache,
    save_cache,
)
from pipeline.model_loader import load_or_build


@pytest.fixture
def small_tree(scattered_100: np.ndarray, serial_config: BuildConfig) -> FlattenedTree:
    return build_flattened(scattered_100, 6, serial_config)


def _write_obj(path: Path, triangles: np.ndarray) -> Path:
    """Write triangles as an unindexed OBJ (three vertices per face)."""
    lines = ["# generated for tests"]
    for tri in triangles:
        for v in tri:
            lines.append(f"v {float(v[0])!r} {float(v[1])!r} {float(v[2])!r}")
    for k in range(len(triangles)):
        lines.append(f"f {3 * k + 1} {3 * k + 2} {3 * k + 3}")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


# ===================================================================
# CODEC
# ===================================================================


class TestCacheCodec:
    """JSON encoding of flattened trees."""

    def test_round_trip_is_exact(self, small_tree: FlattenedTree) -> None:
        text = encode(small_tree)
        decoded = decode(text)

        assert decoded.equals(small_tree)
        assert encode(decoded) == text

    def test_single_leaf_round_trip(self, single_triangle: np.ndarray) -> None:
        tree = build_flattened(single_triangle)
        assert decode(encode(tree)).equals(tree)

    def test_document_layout(self, small_tree: FlattenedTree) -> None:
        document = json.loads(encode(small_tree, indent=2))

        assert set(document) == {"nodes", "leaves", "triangle_indices", "boxes"}
        assert set(document["nodes"][0]) == {"left", "right", "parent", "index"}
        assert set(document["leaves"][0]) == {"parent", "index", "start", "length"}
        assert set(document["boxes"][0]) == {
            "min_x", "min_y", "min_z", "max_x", "max_y", "max_z",
        }
        assert document["nodes"][0]["parent"] == -1

    def test_file_round_trip(self, small_tree: FlattenedTree, tmp_path: Path) -> None:
        path = save_cache(small_tree, tmp_path / "nested" / "mesh.tree", indent=1)
        assert path.exists()
        assert load_cache(path).equals(small_tree)

    def test_cache_path_for(self) -> None:
        assert cache_path_for("models/bunny.obj") == Path("models/bunny.tree")
        assert cache_path_for(Path("a/b/mesh.obj"), ".kdt") == Path("a/b/mesh.kdt")

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "not json at all",
            "[1, 2, 3]",
            '{"nodes": [], "leaves": [], "triangle_indices": []}',
            '{"nodes": {}, "leaves": [], "triangle_indices": [], "boxes": []}',
            '{"nodes": [], "leaves": [], "triangle_indices": [], "boxes": []}',
        ],
    )
    def test_malformed_text(self, text: str) -> None:
        with pytest.raises(MalformedCacheError):
            decode(text)

    def test_wrong_field_types(self, small_tree: FlattenedTree) -> None:
        document = json.loads(encode(small_tree))
        document["leaves"][0]["start"] = "zero"
        with pytest.raises(MalformedCacheError):
            decode(json.dumps(document))

        document = json.loads(encode(small_tree))
        document["triangle_indices"][0] = True
        with pytest.raises(MalformedCacheError):
            decode(json.dumps(document))

    def test_missing_record_key(self, small_tree: FlattenedTree) -> None:
        document = json.loads(encode(small_tree))
        del document["nodes"][0]["right"]
        with pytest.raises(MalformedCacheError):
            decode(json.dumps(document))

    def test_inconsistent_tree(self, small_tree: FlattenedTree) -> None:
        document = json.loads(encode(small_tree))
        document["leaves"][-1]["length"] += 1000
        with pytest.raises(MalformedCacheError, match="Inconsistent"):
            decode(json.dumps(document))

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(MalformedCacheError):
            load_cache(tmp_path / "absent.tree")

    def test_malformed_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            decode("{")


# ===================================================================
# MODEL LOADER
# ===================================================================


class TestModelLoader:
    """Cache hit, miss and recovery paths of load_or_build."""

    def test_miss_then_hit(
        self, scattered_100: np.ndarray, serial_config: BuildConfig, tmp_path: Path
    ) -> None:
        mesh = _write_obj(tmp_path / "scatter.obj", scattered_100)

        first = load_or_build(mesh, 6, serial_config)
        assert not first.from_cache
        assert first.cache_path == tmp_path / "scatter.tree"
        assert first.cache_path.exists()

        second = load_or_build(mesh, 6, serial_config)
        assert second.from_cache
        assert second.tree.equals(first.tree)
        np.testing.assert_array_equal(second.triangles, first.triangles)

    def test_loaded_tree_matches_direct_build(
        self, scattered_100: np.ndarray, serial_config: BuildConfig, tmp_path: Path
    ) -> None:
        mesh = _write_obj(tmp_path / "scatter.obj", scattered_100)
        model = load_or_build(mesh, 6, serial_config)
        assert model.tree.equals(build_flattened(scattered_100, 6, serial_config))

    def test_corrupt_cache_is_rebuilt(
        self,
        scattered_100: np.ndarray,
        serial_config: BuildConfig,
        tmp_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        mesh = _write_obj(tmp_path / "scatter.obj", scattered_100)
        cache = tmp_path / "scatter.tree"
        cache.write_text('{"nodes": [', encoding="utf-8")

        with caplog.at_level(logging.WARNING, logger="pipeline.model_loader"):
            model = load_or_build(mesh, 6, serial_config)

        assert not model.from_cache
        assert any("unusable" in r.getMessage() for r in caplog.records)
        assert load_cache(cache).equals(model.tree)

    def test_cache_is_not_tied_to_mesh_content(
        self, scattered_100: np.ndarray, serial_config: BuildConfig, tmp_path: Path
    ) -> None:
        """A parseable cache is trusted even after the mesh changes."""
        mesh = _write_obj(tmp_path / "scatter.obj", scattered_100)
        original = load_or_build(mesh, 6, serial_config)

        _write_obj(mesh, scattered_100[:50])
        reloaded = load_or_build(mesh, 6, serial_config)

        assert reloaded.from_cache
        assert reloaded.tree.equals(original.tree)
        assert reloaded.triangles.shape == (50, 3, 3)

    def test_cache_disabled(
        self, scattered_100: np.ndarray, serial_config: BuildConfig, tmp_path: Path
    ) -> None:
        mesh = _write_obj(tmp_path / "scatter.obj", scattered_100)
        config = replace(serial_config, cache=replace(serial_config.cache, enabled=False))

        model = load_or_build(mesh, 6, config)

        assert not model.from_cache
        assert model.cache_path is None
        assert not (tmp_path / "scatter.tree").exists()

    def test_missing_mesh(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_or_build(tmp_path / "nope.obj")
