"""Build parameters and configuration loader.

All tunable values of the tree builder are loaded from YAML configuration
files. The defaults returned by :func:`default_config` match
``config/default_config.yaml``: a threshold of 8 triangles per leaf,
16 SAH sample divisions, 0.001 root padding and a 1e-6 zero tolerance.
"""

from __future__ import annotations

import logging
import platform
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np
import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Algorithm defaults
# ---------------------------------------------------------------------------

DEFAULT_MAX_LEAF_TRIANGLES: int = 8
DEFAULT_SAH_SAMPLES: int = 16
DEFAULT_ROOT_PADDING: float = 0.001
DEFAULT_EPSILON: float = 1e-6
DEFAULT_MAX_DEPTH: int = 16

# Number of levels built serially before subtrees are handed to workers.
PARALLEL_SPLIT_LEVELS: int = 2


# ---------------------------------------------------------------------------
# Configuration Data Classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KDTreeConfig:
    """Tree construction parameters.

    Attributes
    ----------
    max_depth : int
        Requested maximum tree depth. Nodes deeper than ``max_depth - 2``
        are never split.
    max_leaf_triangles : int
        A freshly created child holding this many triangles or fewer
        stays a leaf.
    sah_samples : int
        Number of divisions of the split axis; candidate planes lie at
        ``i / sah_samples`` for ``i = 1 .. sah_samples - 1``.
    root_padding : float
        Expansion of the mesh bounding box on every face.
    epsilon : float
        Zero tolerance of the triangle/box overlap test.
    parallel : bool
        Build independent level-2 subtrees concurrently.
    max_workers : int
        Thread pool size for the parallel build.
    """

    max_depth: int = DEFAULT_MAX_DEPTH
    max_leaf_triangles: int = DEFAULT_MAX_LEAF_TRIANGLES
    sah_samples: int = DEFAULT_SAH_SAMPLES
    root_padding: float = DEFAULT_ROOT_PADDING
    epsilon: float = DEFAULT_EPSILON
    parallel: bool = True
    max_workers: int = 4


@dataclass(frozen=True)
class CacheConfig:
    """Side-car cache configuration.

    Attributes
    ----------
    enabled : bool
        Read and write ``<mesh><suffix>`` caches.
    suffix : str
        File suffix replacing the mesh file's own suffix.
    indent : int or None
        JSON indentation of the written cache (None = compact).
    """

    enabled: bool = True
    suffix: str = ".tree"
    indent: int | None = None


@dataclass(frozen=True)
class BuildConfig:
    """Top-level configuration loaded from YAML."""

    kd_tree: KDTreeConfig
    cache: CacheConfig


# ---------------------------------------------------------------------------
# Configuration Loader
# ---------------------------------------------------------------------------


def default_config() -> BuildConfig:
    """Return the built-in configuration (same values as the default YAML)."""
    return BuildConfig(kd_tree=KDTreeConfig(), cache=CacheConfig())


def load_config(config_path: str | Path) -> BuildConfig:
    """Load and validate a build configuration from a YAML file.

    Missing keys fall back to the built-in defaults.

    Parameters
    ----------
    config_path : str or Path
        Path to the YAML configuration file.

    Returns
    -------
    BuildConfig
        Fully populated, typed configuration object.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    ValueError
        If a value is out of range.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}

    logger.info("Loading configuration from: %s", config_path)

    tree_raw = raw.get("kd_tree", {}) or {}
    cache_raw = raw.get("cache", {}) or {}

    kd_tree = KDTreeConfig(
        max_depth=int(tree_raw.get("max_depth", DEFAULT_MAX_DEPTH)),
        max_leaf_triangles=int(
            tree_raw.get("max_leaf_triangles", DEFAULT_MAX_LEAF_TRIANGLES)
        ),
        sah_samples=int(tree_raw.get("sah_samples", DEFAULT_SAH_SAMPLES)),
        root_padding=float(tree_raw.get("root_padding", DEFAULT_ROOT_PADDING)),
        epsilon=float(tree_raw.get("epsilon", DEFAULT_EPSILON)),
        parallel=bool(tree_raw.get("parallel", True)),
        max_workers=int(tree_raw.get("max_workers", 4)),
    )

    indent = cache_raw.get("indent")
    cache = CacheConfig(
        enabled=bool(cache_raw.get("enabled", True)),
        suffix=str(cache_raw.get("suffix", ".tree")),
        indent=None if indent is None else int(indent),
    )

    config = BuildConfig(kd_tree=kd_tree, cache=cache)
    _validate_config(config)

    logger.info(
        "Configuration loaded: max_depth=%d, leaf<=%d, sah_samples=%d",
        kd_tree.max_depth,
        kd_tree.max_leaf_triangles,
        kd_tree.sah_samples,
    )
    return config


def _validate_config(config: BuildConfig) -> None:
    """Validate value ranges of a configuration.

    Raises
    ------
    ValueError
        If any value is invalid.
    """
    tree = config.kd_tree
    if tree.max_depth < 1:
        raise ValueError(f"max_depth must be >= 1, got {tree.max_depth}")
    if tree.max_leaf_triangles < 1:
        raise ValueError(
            f"max_leaf_triangles must be >= 1, got {tree.max_leaf_triangles}"
        )
    if tree.sah_samples < 2:
        raise ValueError(f"sah_samples must be >= 2, got {tree.sah_samples}")
    if tree.root_padding < 0:
        raise ValueError("root_padding cannot be negative.")
    if tree.epsilon <= 0:
        raise ValueError("epsilon must be positive.")
    if tree.max_workers < 1:
        raise ValueError("max_workers must be >= 1.")
    if not config.cache.suffix.startswith("."):
        raise ValueError(f"Cache suffix must start with '.', got {config.cache.suffix!r}")

    logger.debug("Configuration validation passed.")


def log_platform_info() -> None:
    """Log platform and library version information for reproducibility."""
    import numba

    logger.info("=" * 70)
    logger.info("PLATFORM INFORMATION")
    logger.info("=" * 70)
    logger.info("  Python:    %s", sys.version)
    logger.info("  Platform:  %s", platform.platform())
    logger.info("  NumPy:     %s", np.__version__)
    logger.info("  Numba:     %s", numba.__version__)
    logger.info("=" * 70)
