"""Side-car cache for flattened KD-trees.

The cache is a human-inspectable JSON document holding the four arrays
of a :class:`~kd_tree.flatten.FlattenedTree`:

    {
      "nodes":            [{"left": 1, "right": 2, "parent": -1, "index": 0}, ...],
      "leaves":           [{"parent": 0, "index": 3, "start": 0, "length": 5}, ...],
      "triangle_indices": [0, 4, 7, ...],
      "boxes":            [{"min_x": ..., "min_y": ..., ..., "max_z": ...}, ...]
    }

Box coordinates are written as the exact decimal value of their float32
representation, so decode followed by encode reproduces the same bytes.

A cache is accepted whenever it parses and is structurally consistent;
it carries no fingerprint of the mesh it was built from.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import numpy as np

from kd_tree.flatten import (
    BOX_DTYPE,
    BOX_FIELDS,
    BUFFER_NAMES,
    INDEX_DTYPE,
    LEAF_DTYPE,
    NODE_DTYPE,
    FlattenedTree,
)

logger = logging.getLogger(__name__)


class MalformedCacheError(ValueError):
    """Cache file missing, unreadable or structurally invalid."""


def cache_path_for(mesh_path: str | Path, suffix: str = ".tree") -> Path:
    """Cache location for a mesh: same directory and stem, ``suffix`` appended."""
    return Path(mesh_path).with_suffix(suffix)


def encode(tree: FlattenedTree, indent: int | None = None) -> str:
    """Serialize a flattened tree to JSON text."""
    document = {
        "nodes": [_record_to_dict(r, NODE_DTYPE) for r in tree.nodes],
        "leaves": [_record_to_dict(r, LEAF_DTYPE) for r in tree.leaves],
        "triangle_indices": [int(i) for i in tree.triangle_indices],
        "boxes": [
            dict(zip(BOX_FIELDS, (float(v) for v in row)))
            for row in tree.boxes.astype(BOX_DTYPE)
        ],
    }
    return json.dumps(document, indent=indent)


def decode(text: str) -> FlattenedTree:
    """Parse JSON text into a validated flattened tree.

    Raises
    ------
    MalformedCacheError
        If the text is not valid JSON, fields are missing or mistyped, or
        the decoded tree is inconsistent.
    """
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedCacheError(f"Invalid JSON: {exc}") from exc

    if not isinstance(document, dict):
        raise MalformedCacheError("Cache root must be a JSON object.")
    missing = [name for name in BUFFER_NAMES if name not in document]
    if missing:
        raise MalformedCacheError(f"Missing fields: {missing}")

    try:
        nodes = _records_from_dicts(document["nodes"], NODE_DTYPE)
        leaves = _records_from_dicts(document["leaves"], LEAF_DTYPE)
        triangle_indices = np.array(
            [_as_int(v) for v in document["triangle_indices"]], dtype=INDEX_DTYPE
        )
        boxes = np.array(
            [[_as_float(box[k]) for k in BOX_FIELDS] for box in document["boxes"]],
            dtype=BOX_DTYPE,
        ).reshape(-1, 6)
    except (KeyError, TypeError, ValueError, OverflowError) as exc:
        raise MalformedCacheError(f"Bad cache record: {exc!r}") from exc

    tree = FlattenedTree(
        nodes=nodes,
        leaves=leaves,
        triangle_indices=triangle_indices,
        boxes=boxes,
    )
    try:
        tree.validate()
    except ValueError as exc:
        raise MalformedCacheError(f"Inconsistent tree: {exc}") from exc
    return tree


def save_cache(
    tree: FlattenedTree,
    path: str | Path,
    indent: int | None = None,
) -> Path:
    """Write a tree cache to ``path`` (parent directories are created)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    text = encode(tree, indent=indent)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    logger.info(
        "Tree cached to %s (%d nodes, %d leaves, %.1f kB)",
        path,
        tree.node_count,
        tree.leaf_count,
        len(text) / 1e3,
    )
    return path


def load_cache(path: str | Path) -> FlattenedTree:
    """Read and decode a tree cache.

    Raises
    ------
    MalformedCacheError
        If the file is missing, unreadable or fails to decode.
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise MalformedCacheError(f"Cannot read cache {path}: {exc}") from exc

    tree = decode(text)
    logger.debug(
        "Loaded cache %s: %d nodes, %d leaves", path, tree.node_count, tree.leaf_count
    )
    return tree


# ---------------------------------------------------------------------------
# Record helpers
# ---------------------------------------------------------------------------


def _record_to_dict(record: np.void, dtype: np.dtype) -> dict[str, int]:
    return {name: int(record[name]) for name in dtype.names}


def _records_from_dicts(items: Any, dtype: np.dtype) -> np.ndarray:
    if not isinstance(items, list):
        raise TypeError(f"expected a list of records, got {type(items).__name__}")
    rows = [tuple(_as_int(item[name]) for name in dtype.names) for item in items]
    return np.array(rows, dtype=dtype)


def _as_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected an integer, got {value!r}")
    if not -(2**31) <= value < 2**31:
        raise OverflowError(f"integer {value} does not fit in int32")
    return value


def _as_float(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected a number, got {value!r}")
    return float(value)
