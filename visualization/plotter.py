"""Visualization module for built KD-trees.

Generates debug figures using matplotlib:
- Leaf occupancy histogram (triangles per leaf)
- Leaf depth histogram
- XY projection of leaf boxes over the mesh
"""

from __future__ import annotations

import logging
from pathlib import Path

import matplotlib

matplotlib.use("Agg")  # Non-interactive backend for headless rendering

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.collections import LineCollection, PolyCollection
from matplotlib.colors import Normalize

from kd_tree.flatten import FlattenedTree, tree_statistics

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Color Configuration
# ---------------------------------------------------------------------------

_FACE_COLOR = "#0f0f1a"
_BAR_COLOR = "#748ffc"
_BOX_CMAP = "viridis"
_MESH_COLOR = "#ff6b6b"
_DPI = 150


def _style_axes(ax: plt.Axes, title: str, xlabel: str, ylabel: str) -> None:
    ax.set_xlabel(xlabel, color="white", fontsize=12)
    ax.set_ylabel(ylabel, color="white", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold", color="white")
    ax.tick_params(colors="white")
    for spine in ax.spines.values():
        spine.set_edgecolor("#444")


def _save(fig: plt.Figure, output_path: Path | str | None, dpi: int, what: str) -> None:
    fig.tight_layout()
    if output_path is not None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, dpi=dpi, facecolor=fig.get_facecolor())
        logger.info("%s saved: %s", what, output_path)
    plt.close(fig)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def plot_leaf_histogram(
    tree: FlattenedTree,
    max_leaf_triangles: int = 8,
    title: str = "Triangles per Leaf",
    output_path: Path | str | None = None,
    dpi: int = _DPI,
) -> plt.Figure:
    """Histogram of leaf sizes with the split threshold marked.

    Parameters
    ----------
    tree : FlattenedTree
        Flattened tree.
    max_leaf_triangles : int
        Leaf threshold drawn as a vertical line.
    title : str
        Figure title.
    output_path : Path or str, optional
        If provided, save figure to this path.
    dpi : int
        Figure resolution.

    Returns
    -------
    matplotlib.figure.Figure
        The generated figure.
    """
    lengths = tree.leaves["length"].astype(np.int64)

    fig, ax = plt.subplots(1, 1, figsize=(10, 5), facecolor=_FACE_COLOR)
    ax.set_facecolor(_FACE_COLOR)

    bins = np.arange(0, max(int(lengths.max(initial=0)), max_leaf_triangles) + 2) - 0.5
    ax.hist(lengths, bins=bins, color=_BAR_COLOR, edgecolor="#1a1a2e")
    ax.axvline(
        max_leaf_triangles + 0.5,
        color="#ffd43b",
        linestyle="--",
        linewidth=1.0,
        label=f"Leaf threshold ({max_leaf_triangles})",
    )
    ax.grid(True, alpha=0.2, color="white")

    legend = ax.legend(facecolor="#1a1a2e", edgecolor="#444")
    for text in legend.get_texts():
        text.set_color("white")

    _style_axes(ax, title, "Triangles in leaf", "Leaves")
    _save(fig, output_path, dpi, "Leaf histogram")
    return fig


def plot_depth_histogram(
    tree: FlattenedTree,
    title: str = "Leaf Depth",
    output_path: Path | str | None = None,
    dpi: int = _DPI,
) -> plt.Figure:
    """Histogram of leaf depths (root = 0)."""
    depths = tree_statistics(tree)["leaf_depths"]

    fig, ax = plt.subplots(1, 1, figsize=(10, 5), facecolor=_FACE_COLOR)
    ax.set_facecolor(_FACE_COLOR)

    bins = np.arange(0, int(depths.max(initial=0)) + 2) - 0.5
    ax.hist(depths, bins=bins, color=_BAR_COLOR, edgecolor="#1a1a2e")
    ax.grid(True, alpha=0.2, color="white")

    _style_axes(ax, title, "Depth", "Leaves")
    _save(fig, output_path, dpi, "Depth histogram")
    return fig


def plot_leaf_boxes(
    tree: FlattenedTree,
    triangles: np.ndarray | None = None,
    title: str = "Leaf Boxes (XY projection)",
    output_path: Path | str | None = None,
    dpi: int = _DPI,
) -> plt.Figure:
    """Draw every leaf box projected onto the XY plane.

    Boxes are colored by their triangle count; the mesh edges are drawn
    on top when ``triangles`` is given.

    Parameters
    ----------
    tree : FlattenedTree
        Flattened tree.
    triangles : np.ndarray, optional
        Triangle vertices. Shape: (N, 3, 3).
    title : str
        Figure title.
    output_path : Path or str, optional
        If provided, save figure to this path.
    dpi : int
        Figure resolution.

    Returns
    -------
    matplotlib.figure.Figure
        The generated figure.
    """
    leaf_boxes = tree.boxes[tree.node_count :].astype(np.float64)
    lengths = tree.leaves["length"].astype(np.float64)

    fig, ax = plt.subplots(1, 1, figsize=(10, 8), facecolor=_FACE_COLOR)
    ax.set_facecolor(_FACE_COLOR)

    x0, y0 = leaf_boxes[:, 0], leaf_boxes[:, 1]
    x1, y1 = leaf_boxes[:, 3], leaf_boxes[:, 4]
    rects = np.stack(
        [
            np.column_stack([x0, y0]),
            np.column_stack([x1, y0]),
            np.column_stack([x1, y1]),
            np.column_stack([x0, y1]),
        ],
        axis=1,
    )

    norm = Normalize(vmin=0.0, vmax=max(float(lengths.max(initial=0.0)), 1.0))
    boxes = PolyCollection(
        rects,
        cmap=_BOX_CMAP,
        norm=norm,
        alpha=0.35,
        edgecolors="white",
        linewidths=0.3,
    )
    boxes.set_array(lengths)
    ax.add_collection(boxes)

    cbar = fig.colorbar(boxes, ax=ax, label="Triangles in leaf", shrink=0.8)
    cbar.ax.yaxis.label.set_color("white")
    cbar.ax.tick_params(colors="white")

    if triangles is not None and len(triangles) > 0:
        tris = np.asarray(triangles, dtype=np.float64)[:, :, :2]
        edges = np.concatenate(
            [tris[:, [0, 1]], tris[:, [1, 2]], tris[:, [2, 0]]], axis=0
        )
        ax.add_collection(
            LineCollection(edges, colors=_MESH_COLOR, linewidths=0.4, alpha=0.8)
        )

    root = tree.box_of(0)
    ax.set_xlim(root.minimum[0], root.maximum[0])
    ax.set_ylim(root.minimum[1], root.maximum[1])
    ax.set_aspect("equal")

    _style_axes(ax, title, "X", "Y")
    _save(fig, output_path, dpi, "Leaf box plot")
    return fig


def generate_all_plots(
    tree: FlattenedTree,
    triangles: np.ndarray | None = None,
    output_dir: Path | str = "output",
    max_leaf_triangles: int = 8,
    dpi: int = _DPI,
) -> list[Path]:
    """Generate all standard tree plots.

    Returns
    -------
    list[Path]
        Paths to all generated plot files.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    saved: list[Path] = []

    p = output_dir / "leaf_histogram.png"
    plot_leaf_histogram(tree, max_leaf_triangles, output_path=p, dpi=dpi)
    saved.append(p)

    p = output_dir / "depth_histogram.png"
    plot_depth_histogram(tree, output_path=p, dpi=dpi)
    saved.append(p)

    p = output_dir / "leaf_boxes.png"
    plot_leaf_boxes(tree, triangles, output_path=p, dpi=dpi)
    saved.append(p)

    logger.info("Generated %d plots in %s", len(saved), output_dir)
    return saved
