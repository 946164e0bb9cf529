"""Mesh loading with a cached KD-tree.

Parses the mesh, then looks for ``<mesh stem><cache suffix>`` next to it.
A readable, well-formed cache is used as is; otherwise the tree is built
and the cache is (re)written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from data_ingestion.obj_loader import load_obj
from kd_tree.builder import build_flattened
from kd_tree.constants import BuildConfig, default_config
from kd_tree.flatten import FlattenedTree
from pipeline.cache_codec import (
    MalformedCacheError,
    cache_path_for,
    load_cache,
    save_cache,
)

logger = logging.getLogger(__name__)


@dataclass
class LoadedModel:
    """A mesh together with its flattened KD-tree.

    Attributes
    ----------
    triangles : np.ndarray
        Triangle vertices. Shape: (N, 3, 3).
    tree : FlattenedTree
        Flattened tree over ``triangles``.
    from_cache : bool
        True if ``tree`` was read from the side-car cache.
    cache_path : Path or None
        Cache location (None when caching is disabled).
    """

    triangles: np.ndarray
    tree: FlattenedTree
    from_cache: bool
    cache_path: Path | None


def load_or_build(
    mesh_path: str | Path,
    max_depth: int | None = None,
    config: BuildConfig | None = None,
) -> LoadedModel:
    """Load a mesh and obtain its KD-tree from cache or by building it.

    Parameters
    ----------
    mesh_path : str or Path
        Wavefront OBJ file.
    max_depth : int, optional
        Requested tree depth (defaults to the configured value).
    config : BuildConfig, optional
        Build and cache settings.

    Returns
    -------
    LoadedModel
        Triangles, tree and provenance.
    """
    cfg = config or default_config()
    mesh_path = Path(mesh_path)
    triangles = load_obj(mesh_path)

    if not cfg.cache.enabled:
        tree = build_flattened(triangles, max_depth, cfg)
        return LoadedModel(triangles, tree, from_cache=False, cache_path=None)

    cache_path = cache_path_for(mesh_path, cfg.cache.suffix)
    try:
        tree = load_cache(cache_path)
    except MalformedCacheError as exc:
        if cache_path.exists():
            logger.warning("Ignoring unusable tree cache: %s", exc)
        else:
            logger.info("No cached tree at %s", cache_path)
    else:
        logger.info("Cached tree found: %s", cache_path)
        return LoadedModel(triangles, tree, from_cache=True, cache_path=cache_path)

    logger.info("Building tree...")
    tree = build_flattened(triangles, max_depth, cfg)
    save_cache(tree, cache_path, indent=cfg.cache.indent)
    return LoadedModel(triangles, tree, from_cache=False, cache_path=cache_path)
