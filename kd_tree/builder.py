"""KD-tree construction: recursive SAH splitter and parallel build.

Design Notes
------------
- **Node arena**: nodes live in a flat list and reference each other by
  integer handle (position in the list). A handle is assigned when the
  node is created; the root is handle 0. Children are owned by their
  parent; ``parent`` is a back-reference used only when flattening.
- **Build context**: the triangle array and split parameters travel in
  an explicit :class:`BuildContext`; nothing is kept in module state.
- **Stopping rules**: a node at depth ``d`` is split only while
  ``d <= max_depth - 2``. After a split, a child is recursed into only if
  it holds more than ``max_leaf_triangles`` triangles. A child produced
  by a poor parent plane may therefore end at the depth limit with many
  triangles.
- **Straddling triangles** are referenced by both children; triangles are
  never clipped. A triangle lying exactly in the split plane (or a
  degenerate one) overlaps neither child and is dropped; every such drop
  is logged as a WARNING.
- **Parallel build**: levels 0-1 are split serially, producing up to four
  grandchildren. Each grandchild that still needs splitting is built in
  its own private arena on a thread pool and grafted back in a fixed
  order after every task has finished, so the result is identical to a
  serial build. If ``max_depth`` does not allow grandchildren to be split,
  the whole tree is built serially.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterator, Sequence

import numpy as np

from kd_tree.aabb import AABB, EmptyMeshError, triangles_bounding_box
from kd_tree.constants import PARALLEL_SPLIT_LEVELS, BuildConfig, default_config
from kd_tree.intersection import triangles_in_box
from kd_tree.sah import find_best_split

if TYPE_CHECKING:
    from kd_tree.flatten import FlattenedTree

logger = logging.getLogger(__name__)

ROOT: int = 0
NO_NODE: int = -1


class SubtreeBuildError(RuntimeError):
    """Raised when a parallel subtree build fails.

    The first failing task (in submission order) is attached as
    ``__cause__``. It is raised only after every task has completed.
    """


# ---------------------------------------------------------------------------
# Node storage
# ---------------------------------------------------------------------------


@dataclass
class BuildNode:
    """Transient tree node used during construction.

    Attributes
    ----------
    box : AABB
        Node bounding box.
    triangle_indices : np.ndarray or None
        Indices of the triangles overlapping ``box`` (int64). Released
        (set to None) once the node has been split.
    depth : int
        Distance from the root (root = 0).
    parent : int
        Handle of the parent node, or -1 for the root.
    left, right : int
        Child handles, or -1 for a leaf.
    """

    box: AABB
    triangle_indices: np.ndarray | None
    depth: int
    parent: int = NO_NODE
    left: int = NO_NODE
    right: int = NO_NODE

    @property
    def is_leaf(self) -> bool:
        return self.left == NO_NODE

    @property
    def triangle_count(self) -> int:
        if self.triangle_indices is None:
            return 0
        return int(self.triangle_indices.shape[0])


@dataclass
class NodeArena:
    """Flat node storage addressed by integer handles."""

    nodes: list[BuildNode] = field(default_factory=list)

    def add(self, node: BuildNode) -> int:
        self.nodes.append(node)
        return len(self.nodes) - 1

    def __getitem__(self, handle: int) -> BuildNode:
        return self.nodes[handle]

    def __len__(self) -> int:
        return len(self.nodes)

    def children(self, handle: int) -> tuple[int, ...]:
        node = self.nodes[handle]
        if node.is_leaf:
            return ()
        return (node.left, node.right)

    def graft(self, handle: int, subtree: NodeArena) -> None:
        """Attach a subtree whose root (handle 0) replaces node ``handle``.

        Subtree handles are remapped: its root becomes ``handle`` and the
        remaining nodes are appended after the current last node.
        """
        base = len(self.nodes)

        def remap(h: int) -> int:
            if h == NO_NODE:
                return NO_NODE
            if h == ROOT:
                return handle
            return base + h - 1

        sub_root = subtree.nodes[ROOT]
        target = self.nodes[handle]
        target.left = remap(sub_root.left)
        target.right = remap(sub_root.right)
        target.triangle_indices = sub_root.triangle_indices

        for node in subtree.nodes[1:]:
            node.parent = remap(node.parent)
            node.left = remap(node.left)
            node.right = remap(node.right)
            self.nodes.append(node)


@dataclass(frozen=True)
class BuildContext:
    """Per-build state shared (read-only) by all splitting calls.

    Attributes
    ----------
    tri_verts : np.ndarray
        Triangle vertices, shape (N, 3, 3), float64, C-contiguous.
    max_depth : int
        Requested maximum tree depth.
    max_leaf_triangles : int
        Children at or below this count are not split.
    sah_samples : int
        SAH candidate divisions per split.
    epsilon : float
        Overlap test tolerance.
    """

    tri_verts: np.ndarray
    max_depth: int
    max_leaf_triangles: int
    sah_samples: int
    epsilon: float

    def can_split(self, depth: int) -> bool:
        """Depth rule: the last two requested levels are never split."""
        return depth <= self.max_depth - 2


@dataclass
class KDTree:
    """Built tree: node arena plus the parameters that produced it."""

    arena: NodeArena
    triangle_count: int
    max_depth: int
    build_time_s: float = 0.0

    @property
    def root(self) -> BuildNode:
        return self.arena[ROOT]

    def leaf_handles(self) -> Iterator[int]:
        for handle, node in enumerate(self.arena.nodes):
            if node.is_leaf:
                yield handle

    def flatten(self) -> FlattenedTree:
        from kd_tree.flatten import flatten

        return flatten(self.arena, ROOT)


# ---------------------------------------------------------------------------
# Recursive splitter
# ---------------------------------------------------------------------------


def split_node(
    ctx: BuildContext,
    arena: NodeArena,
    handle: int,
    last_depth: int | None = None,
) -> None:
    """Recursively split a node and its over-full descendants.

    Parameters
    ----------
    ctx : BuildContext
        Triangles and split parameters.
    arena : NodeArena
        Arena holding ``handle``; children are appended to it.
    handle : int
        Node to split.
    last_depth : int, optional
        Additional cap: nodes deeper than this are left unsplit. Used by
        the parallel coordinator to build only the top levels.
    """
    node = arena[handle]
    if not ctx.can_split(node.depth):
        return
    if last_depth is not None and node.depth > last_depth:
        return

    indices = node.triangle_indices
    plane = find_best_split(
        ctx.tri_verts, indices, node.box, ctx.sah_samples, ctx.epsilon
    )
    left_box, right_box = node.box.split(plane.axis, plane.position)

    left_indices = triangles_in_box(ctx.tri_verts, indices, left_box, ctx.epsilon)
    right_indices = triangles_in_box(ctx.tri_verts, indices, right_box, ctx.epsilon)

    dropped = np.setdiff1d(
        indices, np.union1d(left_indices, right_indices), assume_unique=True
    )
    if dropped.size:
        logger.warning(
            "Split depth=%d axis=%d pos=%.9g: %d triangle(s) overlap neither "
            "child and are dropped (coplanar with the plane or degenerate): %s",
            node.depth,
            plane.axis,
            plane.position,
            dropped.size,
            dropped[:10].tolist(),
        )

    if node.depth < PARALLEL_SPLIT_LEVELS:
        logger.debug(
            "Split depth=%d axis=%d pos=%.6g cost=%.6g -> %d | %d triangles",
            node.depth,
            plane.axis,
            plane.position,
            plane.cost,
            left_indices.shape[0],
            right_indices.shape[0],
        )

    node.left = arena.add(
        BuildNode(left_box, left_indices, node.depth + 1, parent=handle)
    )
    node.right = arena.add(
        BuildNode(right_box, right_indices, node.depth + 1, parent=handle)
    )
    node.triangle_indices = None

    for child in (node.left, node.right):
        if arena[child].triangle_count > ctx.max_leaf_triangles:
            split_node(ctx, arena, child, last_depth)


# ---------------------------------------------------------------------------
# Build coordinator
# ---------------------------------------------------------------------------


def _as_triangle_array(triangles: np.ndarray | Sequence) -> np.ndarray:
    """Validate and convert input triangles to a (N, 3, 3) float64 array."""
    tris = np.ascontiguousarray(np.asarray(triangles, dtype=np.float64))
    if tris.size == 0:
        raise EmptyMeshError("Cannot build a KD-tree from zero triangles.")
    if tris.ndim != 3 or tris.shape[1:] != (3, 3):
        raise ValueError(
            f"Triangles must have shape (N, 3, 3), got {tris.shape}"
        )
    if not np.all(np.isfinite(tris)):
        raise ValueError("Triangle vertices must be finite.")
    return tris


def can_build_in_parallel(ctx: BuildContext) -> bool:
    """True if the depth limit lets the level-2 subtrees be split at all."""
    return ctx.can_split(PARALLEL_SPLIT_LEVELS)


def _subtree_roots(ctx: BuildContext, arena: NodeArena) -> list[int]:
    """Grandchildren of the root that still need splitting, left to right."""
    roots: list[int] = []
    for child in arena.children(ROOT):
        for grandchild in arena.children(child):
            if arena[grandchild].triangle_count > ctx.max_leaf_triangles:
                roots.append(grandchild)
    return roots


def _build_subtree(ctx: BuildContext, node: BuildNode) -> NodeArena:
    """Build one subtree in a private arena. Runs on a worker thread."""
    subtree = NodeArena()
    subtree.add(BuildNode(node.box, node.triangle_indices, node.depth))
    split_node(ctx, subtree, ROOT)
    logger.debug(
        "Subtree at depth %d built: %d nodes", node.depth, len(subtree)
    )
    return subtree


def _build_parallel(ctx: BuildContext, arena: NodeArena, max_workers: int) -> None:
    """Serial top levels, then one task per level-2 subtree."""
    split_node(ctx, arena, ROOT, last_depth=PARALLEL_SPLIT_LEVELS - 1)

    roots = _subtree_roots(ctx, arena)
    if not roots:
        return

    logger.debug("Launching %d subtree tasks", len(roots))
    with ThreadPoolExecutor(
        max_workers=max_workers, thread_name_prefix="kd-subtree"
    ) as pool:
        futures = [pool.submit(_build_subtree, ctx, arena[h]) for h in roots]
        wait(futures)

    for handle, future in zip(roots, futures):
        exc = future.exception()
        if exc is not None:
            failed = sum(1 for f in futures if f.exception() is not None)
            raise SubtreeBuildError(
                f"{failed} of {len(futures)} subtree builds failed; "
                f"first failure at node {handle}: {exc}"
            ) from exc

    for handle, future in zip(roots, futures):
        arena.graft(handle, future.result())


def build_tree(
    triangles: np.ndarray | Sequence,
    max_depth: int | None = None,
    config: BuildConfig | None = None,
) -> KDTree:
    """Build a KD-tree over a triangle mesh.

    Parameters
    ----------
    triangles : np.ndarray or sequence
        Triangle vertices, shape (N, 3, 3). Referenced by index only.
    max_depth : int, optional
        Requested maximum depth. Defaults to ``config.kd_tree.max_depth``.
    config : BuildConfig, optional
        Build parameters. Defaults to :func:`default_config`.

    Returns
    -------
    KDTree
        Arena-backed tree with the root at handle 0.

    Raises
    ------
    EmptyMeshError
        If no triangles are given.
    ValueError
        If the triangle array is malformed or ``max_depth < 1``.
    SubtreeBuildError
        If a parallel subtree build fails.
    """
    cfg = (config or default_config()).kd_tree
    depth = cfg.max_depth if max_depth is None else int(max_depth)
    if depth < 1:
        raise ValueError(f"max_depth must be >= 1, got {depth}")

    tri_verts = _as_triangle_array(triangles)
    num_triangles = tri_verts.shape[0]

    ctx = BuildContext(
        tri_verts=tri_verts,
        max_depth=depth,
        max_leaf_triangles=cfg.max_leaf_triangles,
        sah_samples=cfg.sah_samples,
        epsilon=cfg.epsilon,
    )
    parallel = cfg.parallel and can_build_in_parallel(ctx)

    logger.info(
        "Building KD-tree for %d triangles (max_depth=%d, leaf<=%d, %s)...",
        num_triangles,
        depth,
        cfg.max_leaf_triangles,
        "parallel" if parallel else "serial",
    )
    t0 = time.perf_counter()

    arena = NodeArena()
    arena.add(
        BuildNode(
            box=triangles_bounding_box(tri_verts, cfg.root_padding),
            triangle_indices=np.arange(num_triangles, dtype=np.int64),
            depth=0,
        )
    )

    if arena[ROOT].triangle_count > cfg.max_leaf_triangles:
        if parallel:
            _build_parallel(ctx, arena, cfg.max_workers)
        else:
            split_node(ctx, arena, ROOT)

    elapsed = time.perf_counter() - t0
    tree = KDTree(
        arena=arena,
        triangle_count=num_triangles,
        max_depth=depth,
        build_time_s=elapsed,
    )

    leaf_sizes = [arena[h].triangle_count for h in tree.leaf_handles()]
    logger.info(
        "KD-tree built: %d nodes (%d leaves), largest leaf %d triangles, %.2f s",
        len(arena),
        len(leaf_sizes),
        max(leaf_sizes),
        elapsed,
    )
    return tree


def build_flattened(
    triangles: np.ndarray | Sequence,
    max_depth: int | None = None,
    config: BuildConfig | None = None,
) -> FlattenedTree:
    """Build a KD-tree and flatten it into GPU-ready arrays."""
    return build_tree(triangles, max_depth, config).flatten()
