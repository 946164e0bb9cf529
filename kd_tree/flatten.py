"""Breadth-first flattening of a built KD-tree into index-addressable arrays.

Design Notes
------------
- **Global ids**: internal nodes are numbered 0..N-1 in breadth-first
  discovery order (root = 0); leaves are numbered N..N+L-1 in the same
  traversal order. The numbering is produced by the same BFS pass that
  separates internal nodes from leaves.
- **Record layout** (little-endian, 16 bytes per record):
  - node: ``[left, right, parent, index]``   (int32 x 4)
  - leaf: ``[parent, index, start, length]`` (int32 x 4)
  - box:  ``[min_x, min_y, min_z, max_x, max_y, max_z]`` (float32 x 6)
- **Boxes** are positionally aligned: entries 0..N-1 belong to
  ``nodes[0..N-1]``, entries N..N+L-1 to ``leaves[0..L-1]``. They are
  rounded outward to float32 so an exported box never shrinks below the
  float64 box it was built from.
- **Leaf triangles** are concatenated into one ``triangle_indices`` array
  in leaf order; each leaf stores its ``(start, length)`` slice.
- A tree whose root was never split has no internal nodes: it flattens
  to a single leaf with global id 0 and parent -1.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from kd_tree.aabb import AABB

if TYPE_CHECKING:
    from kd_tree.builder import NodeArena

logger = logging.getLogger(__name__)

NO_PARENT: int = -1

NODE_DTYPE = np.dtype(
    [("left", "<i4"), ("right", "<i4"), ("parent", "<i4"), ("index", "<i4")]
)
LEAF_DTYPE = np.dtype(
    [("parent", "<i4"), ("index", "<i4"), ("start", "<i4"), ("length", "<i4")]
)
INDEX_DTYPE = np.dtype("<i4")
BOX_DTYPE = np.dtype("<f4")
BOX_FIELDS = ("min_x", "min_y", "min_z", "max_x", "max_y", "max_z")

BUFFER_NAMES = ("nodes", "leaves", "triangle_indices", "boxes")


@dataclass(eq=False)
class FlattenedTree:
    """Flattened KD-tree ready for upload as fixed-stride buffers.

    Attributes
    ----------
    nodes : np.ndarray
        Internal node records sorted by ``index``. Shape: (N,),
        dtype: :data:`NODE_DTYPE`.
    leaves : np.ndarray
        Leaf records sorted by ``index``. Shape: (L,),
        dtype: :data:`LEAF_DTYPE`.
    triangle_indices : np.ndarray
        Concatenated leaf triangle indices. Shape: (T,), dtype: int32.
    boxes : np.ndarray
        Node boxes followed by leaf boxes. Shape: (N + L, 6), dtype: float32.
    """

    nodes: np.ndarray
    leaves: np.ndarray
    triangle_indices: np.ndarray
    boxes: np.ndarray

    @property
    def node_count(self) -> int:
        """Number of internal nodes; first leaf global id."""
        return int(self.nodes.shape[0])

    @property
    def leaf_count(self) -> int:
        return int(self.leaves.shape[0])

    def leaf_triangles(self, position: int) -> np.ndarray:
        """Triangle indices of the leaf at array ``position``."""
        leaf = self.leaves[position]
        start = int(leaf["start"])
        return self.triangle_indices[start : start + int(leaf["length"])]

    def box_of(self, global_id: int) -> AABB:
        """Bounding box of the node or leaf with the given global id."""
        row = self.boxes[global_id].astype(np.float64)
        return AABB(row[:3], row[3:])

    def to_buffers(self) -> dict[str, bytes]:
        """Raw little-endian buffers keyed by name (see module notes)."""
        return {
            "nodes": self.nodes.astype(NODE_DTYPE).tobytes(),
            "leaves": self.leaves.astype(LEAF_DTYPE).tobytes(),
            "triangle_indices": self.triangle_indices.astype(INDEX_DTYPE).tobytes(),
            "boxes": self.boxes.astype(BOX_DTYPE).tobytes(),
        }

    def equals(self, other: FlattenedTree) -> bool:
        """Byte-for-byte equality of all four buffers."""
        return self.to_buffers() == other.to_buffers()

    def validate(self) -> None:
        """Check structural consistency.

        Raises
        ------
        ValueError
            If global ids are not a permutation of 0..N+L-1, a parent or
            child reference points to a missing internal node, a leaf range
            falls outside ``triangle_indices`` or the box count is wrong.
        """
        n, num_leaves = self.node_count, self.leaf_count
        total = n + num_leaves
        if total == 0:
            raise ValueError("Tree has neither nodes nor leaves.")

        if not np.array_equal(self.nodes["index"], np.arange(n)):
            raise ValueError("Node indices must be 0..N-1 in ascending order.")
        if not np.array_equal(self.leaves["index"], np.arange(n, total)):
            raise ValueError("Leaf indices must be N..N+L-1 in ascending order.")

        parents = np.concatenate([self.nodes["parent"], self.leaves["parent"]])
        roots = np.flatnonzero(parents == NO_PARENT)
        if roots.tolist() != [0]:
            raise ValueError("Exactly the record with global id 0 must be the root.")
        others = np.delete(parents, roots)
        if np.any((others < 0) | (others >= n)):
            raise ValueError("Parent references must point to internal nodes.")

        children = np.concatenate([self.nodes["left"], self.nodes["right"]])
        if np.any((children <= 0) | (children >= total)):
            raise ValueError("Child references out of range.")
        if n and np.any(children <= np.concatenate([self.nodes["index"]] * 2)):
            raise ValueError("Child ids must be greater than their parent's id.")

        starts = self.leaves["start"].astype(np.int64)
        ends = starts + self.leaves["length"].astype(np.int64)
        if np.any(starts < 0) or np.any(ends > self.triangle_indices.shape[0]):
            raise ValueError("Leaf triangle range outside triangle_indices.")

        if self.boxes.shape != (total, 6):
            raise ValueError(
                f"Expected {total} boxes of 6 floats, got shape {self.boxes.shape}"
            )

    def save_buffers(self, directory: Path | str) -> list[Path]:
        """Write each buffer to ``<name>.bin`` plus a ``tree_meta.json`` sidecar.

        Returns
        -------
        list[Path]
            Paths to all written files.
        """
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        saved: list[Path] = []
        for name, data in self.to_buffers().items():
            path = directory / f"{name}.bin"
            path.write_bytes(data)
            saved.append(path)
            logger.debug("Saved %s: %d bytes", path.name, len(data))

        meta = {
            "node_count": self.node_count,
            "leaf_count": self.leaf_count,
            "triangle_index_count": int(self.triangle_indices.shape[0]),
            "strides": {
                "nodes": NODE_DTYPE.itemsize,
                "leaves": LEAF_DTYPE.itemsize,
                "triangle_indices": INDEX_DTYPE.itemsize,
                "boxes": 6 * BOX_DTYPE.itemsize,
            },
        }
        meta_path = directory / "tree_meta.json"
        with open(meta_path, "w", encoding="utf-8") as f:
            json.dump(meta, f, indent=2)
        saved.append(meta_path)

        logger.info("Saved %d buffer files to %s", len(saved), directory)
        return saved


def boxes_to_float32(rows: np.ndarray) -> np.ndarray:
    """Convert float64 box rows to float32, rounding outward.

    Minimum components that rounded up are moved one float32 step down,
    maximum components that rounded down one step up, so every float32
    box encloses its float64 source.

    Parameters
    ----------
    rows : np.ndarray
        ``[min_x, min_y, min_z, max_x, max_y, max_z]`` rows. Shape: (M, 6).

    Returns
    -------
    np.ndarray
        Enclosing boxes. Shape: (M, 6), dtype: float32.
    """
    rows = np.asarray(rows, dtype=np.float64).reshape(-1, 6)
    boxes = rows.astype(BOX_DTYPE)

    lo, hi = boxes[:, :3], boxes[:, 3:]
    up = lo > rows[:, :3]
    down = hi < rows[:, 3:]
    lo[up] = np.nextafter(lo[up], np.float32(-np.inf))
    hi[down] = np.nextafter(hi[down], np.float32(np.inf))
    return boxes


def flatten(arena: NodeArena, root: int = 0) -> FlattenedTree:
    """Flatten an arena-backed tree by breadth-first traversal.

    Parameters
    ----------
    arena : NodeArena
        Built tree nodes.
    root : int
        Handle of the root node.

    Returns
    -------
    FlattenedTree
        Sorted node/leaf records, leaf triangle indices and aligned boxes.
    """
    # --- Pass 1: separate internal nodes from leaves, assign global ids ---
    internal: list[int] = []
    leaves: list[int] = []
    layer = [root]
    while layer:
        next_layer: list[int] = []
        for handle in layer:
            node = arena[handle]
            if node.is_leaf:
                leaves.append(handle)
            else:
                internal.append(handle)
                next_layer.append(node.left)
                next_layer.append(node.right)
        layer = next_layer

    global_id: dict[int, int] = {h: i for i, h in enumerate(internal)}
    offset = len(internal)
    global_id.update({h: offset + i for i, h in enumerate(leaves)})

    # --- Pass 2: emit records ---
    node_records: list[tuple[int, int, int, int]] = []
    leaf_records: list[tuple[int, int, int, int]] = []
    index_blocks: list[np.ndarray] = []
    cursor = 0

    def emit_leaf(handle: int, parent_id: int) -> None:
        nonlocal cursor
        indices = arena[handle].triangle_indices
        length = 0 if indices is None else int(indices.shape[0])
        leaf_records.append((parent_id, global_id[handle], cursor, length))
        if length:
            index_blocks.append(indices)
        cursor += length

    root_node = arena[root]
    if root_node.is_leaf:
        emit_leaf(root, NO_PARENT)
    else:
        node_records.append(
            (global_id[root_node.left], global_id[root_node.right], NO_PARENT, 0)
        )

    layer = [root]
    while layer:
        next_layer = []
        for handle in layer:
            node = arena[handle]
            if node.is_leaf:
                continue
            parent_id = global_id[handle]
            for child in (node.left, node.right):
                next_layer.append(child)
                child_node = arena[child]
                if child_node.is_leaf:
                    emit_leaf(child, parent_id)
                else:
                    node_records.append(
                        (
                            global_id[child_node.left],
                            global_id[child_node.right],
                            parent_id,
                            global_id[child],
                        )
                    )
        layer = next_layer

    nodes = np.array(node_records, dtype=NODE_DTYPE)
    leaf_array = np.array(leaf_records, dtype=LEAF_DTYPE)
    nodes = nodes[np.argsort(nodes["index"], kind="stable")]
    leaf_array = leaf_array[np.argsort(leaf_array["index"], kind="stable")]

    if index_blocks:
        triangle_indices = np.concatenate(index_blocks).astype(INDEX_DTYPE)
    else:
        triangle_indices = np.zeros(0, dtype=INDEX_DTYPE)

    boxes = boxes_to_float32(
        np.array([arena[h].box.as_row() for h in internal + leaves]).reshape(-1, 6)
    )

    logger.debug(
        "Flattened tree: %d nodes, %d leaves, %d triangle references",
        nodes.shape[0],
        leaf_array.shape[0],
        triangle_indices.shape[0],
    )

    return FlattenedTree(
        nodes=nodes,
        leaves=leaf_array,
        triangle_indices=triangle_indices,
        boxes=boxes,
    )


def tree_statistics(tree: FlattenedTree) -> dict:
    """Summary statistics of a flattened tree.

    Returns
    -------
    dict
        ``node_count``, ``leaf_count``, ``triangle_references``,
        ``max_leaf_triangles``, ``mean_leaf_triangles``, ``empty_leaves``,
        ``max_depth`` and ``leaf_depths`` (int array aligned with leaves).
    """
    n = tree.node_count
    total = n + tree.leaf_count
    depth = np.zeros(total, dtype=np.int64)

    # Parents always carry smaller ids than their children.
    parent_of = np.full(total, NO_PARENT, dtype=np.int64)
    parent_of[tree.nodes["index"]] = tree.nodes["parent"]
    parent_of[tree.leaves["index"]] = tree.leaves["parent"]
    for gid in range(1, total):
        depth[gid] = depth[parent_of[gid]] + 1

    lengths = tree.leaves["length"].astype(np.int64)
    leaf_depths = depth[n:]

    return {
        "node_count": n,
        "leaf_count": tree.leaf_count,
        "triangle_references": int(lengths.sum()),
        "max_leaf_triangles": int(lengths.max()) if lengths.size else 0,
        "mean_leaf_triangles": float(lengths.mean()) if lengths.size else 0.0,
        "empty_leaves": int(np.sum(lengths == 0)),
        "max_depth": int(leaf_depths.max()) if leaf_depths.size else 0,
        "leaf_depths": leaf_depths,
    }
