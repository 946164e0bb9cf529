"""KD-tree builder — CLI entry point.

Builds (or loads from its side-car cache) the KD-tree of a mesh and
optionally exports GPU-ready buffers and debug plots.

Usage
-----
    python main.py --mesh models/bunny.obj --depth 14
    python main.py --mesh models/bunny.obj --no-cache --serial
    python main.py --synthetic 5000 --depth 12 --plot output/
    python main.py --mesh models/bunny.obj --export-buffers output/buffers
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging."""
    fmt = "%(name)s [%(levelname)s] %(message)s"
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=fmt,
        stream=sys.stdout,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        prog="kdtree",
        description="SAH KD-tree builder for static triangle meshes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python main.py --mesh models/bunny.obj --depth 14\n"
            "  python main.py --synthetic 5000 --depth 12 --plot output/\n"
            "  python main.py --mesh models/bunny.obj --export-buffers output/buffers\n"
        ),
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--mesh",
        type=str,
        default=None,
        help="Path to a Wavefront OBJ mesh (cache: <mesh>.tree)",
    )
    source.add_argument(
        "--synthetic",
        type=int,
        default=None,
        metavar="N",
        help="Build over N synthetic scattered triangles instead of a mesh",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to build config YAML (default: built-in defaults)",
    )
    parser.add_argument(
        "--depth",
        type=int,
        default=None,
        help="Maximum tree depth (default: from config)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed for --synthetic (default: 42)",
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        default=False,
        help="Neither read nor write the side-car tree cache",
    )
    parser.add_argument(
        "--serial",
        action="store_true",
        default=False,
        help="Disable the parallel subtree build",
    )
    parser.add_argument(
        "--export-buffers",
        type=str,
        default=None,
        metavar="DIR",
        help="Write nodes/leaves/triangle_indices/boxes .bin buffers to DIR",
    )
    parser.add_argument(
        "--plot",
        type=str,
        default=None,
        metavar="DIR",
        help="Write debug plots to DIR",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    from dataclasses import replace as dc_replace

    from kd_tree.builder import build_flattened
    from kd_tree.constants import default_config, load_config, log_platform_info
    from kd_tree.flatten import tree_statistics

    logger = logging.getLogger("kdtree")
    log_platform_info()

    config = load_config(args.config) if args.config else default_config()
    if args.serial:
        config = dc_replace(config, kd_tree=dc_replace(config.kd_tree, parallel=False))
    if args.no_cache:
        config = dc_replace(config, cache=dc_replace(config.cache, enabled=False))

    if args.mesh:
        from pipeline.model_loader import load_or_build

        model = load_or_build(args.mesh, args.depth, config)
        triangles, tree = model.triangles, model.tree
    else:
        from data_ingestion.synthetic_mesh import generate_scattered_triangles

        triangles = generate_scattered_triangles(args.synthetic, seed=args.seed)
        tree = build_flattened(triangles, args.depth, config)

    saved: list[Path] = []
    if args.export_buffers:
        saved.extend(tree.save_buffers(args.export_buffers))

    if args.plot:
        from visualization.plotter import generate_all_plots

        saved.extend(
            generate_all_plots(
                tree,
                triangles,
                output_dir=args.plot,
                max_leaf_triangles=config.kd_tree.max_leaf_triangles,
            )
        )

    stats = tree_statistics(tree)
    logger.info("=" * 60)
    logger.info("  KD-TREE READY")
    logger.info("=" * 60)
    logger.info("  Triangles:       %d", len(triangles))
    logger.info("  Internal nodes:  %d", stats["node_count"])
    logger.info("  Leaves:          %d (%d empty)", stats["leaf_count"], stats["empty_leaves"])
    logger.info(
        "  Leaf size:       max=%d, mean=%.2f",
        stats["max_leaf_triangles"],
        stats["mean_leaf_triangles"],
    )
    logger.info("  Deepest leaf:    %d", stats["max_depth"])
    logger.info("  Index refs:      %d", stats["triangle_references"])
    if saved:
        logger.info("  Output files (%d):", len(saved))
        for p in saved:
            logger.info("    → %s", p)
    logger.info("=" * 60)

    return 0


if __name__ == "__main__":
    sys.exit(main())
