"""Wavefront OBJ loader — triangle soup for the KD-tree builder.

Reads only the geometry the builder needs:

- ``v x y z [w]``: vertex position; divided by ``w`` when present.
- ``f a b c ...``: face; each token may be ``i``, ``i/t``, ``i//n`` or
  ``i/t/n`` and only the position index ``i`` is used. Indices are
  1-based; negative indices count back from the last vertex read so far.
  Polygons with more than three vertices are fan-triangulated
  ``(0, k, k+1)``.

Every other statement (normals, texture coordinates, groups, materials)
is ignored. The result is a dense ``(N, 3, 3)`` float64 array, ordered
as the faces appear in the file.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)

_DEGENERATE_AREA = 1e-20


def parse_obj(lines: list[str] | tuple[str, ...], source: str = "<string>") -> np.ndarray:
    """Parse OBJ text into triangle vertices.

    Parameters
    ----------
    lines : sequence of str
        OBJ file lines.
    source : str
        Name used in error messages.

    Returns
    -------
    np.ndarray
        Triangle vertices. Shape: (N, 3, 3), dtype: float64.

    Raises
    ------
    ValueError
        On unparsable numbers, faces with fewer than three vertices or
        vertex references out of range.
    """
    vertices: list[tuple[float, float, float]] = []
    faces: list[tuple[int, int, int]] = []

    for line_no, raw in enumerate(lines, 1):
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        keyword, *fields = line.split()

        if keyword == "v":
            if len(fields) < 3:
                raise ValueError(f"{source}:{line_no}: vertex needs 3 coordinates")
            try:
                x, y, z = (float(c) for c in fields[:3])
                w = float(fields[3]) if len(fields) > 3 else 1.0
            except ValueError as exc:
                raise ValueError(f"{source}:{line_no}: bad vertex: {exc}") from exc
            if w == 0.0:
                raise ValueError(f"{source}:{line_no}: vertex weight is zero")
            vertices.append((x / w, y / w, z / w))

        elif keyword == "f":
            if len(fields) < 3:
                raise ValueError(f"{source}:{line_no}: face needs at least 3 vertices")
            polygon = [
                _resolve_index(token, len(vertices), source, line_no)
                for token in fields
            ]
            for k in range(1, len(polygon) - 1):
                faces.append((polygon[0], polygon[k], polygon[k + 1]))

    if not faces:
        logger.warning("%s: no faces found", source)
        return np.zeros((0, 3, 3), dtype=np.float64)

    vert_array = np.asarray(vertices, dtype=np.float64)
    triangles = vert_array[np.asarray(faces, dtype=np.int64)]

    degenerate = count_degenerate(triangles)
    if degenerate > 0:
        logger.warning(
            "%s: %d degenerate triangles detected (area < %.0e)",
            source,
            degenerate,
            _DEGENERATE_AREA,
        )

    logger.info(
        "Loaded %s: %d vertices, %d triangles", source, len(vertices), len(faces)
    )
    return triangles


def load_obj(path: str | Path) -> np.ndarray:
    """Load a Wavefront OBJ file as a ``(N, 3, 3)`` triangle array.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file content is malformed.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Mesh file not found: {path}")

    with open(path, "r", encoding="utf-8", errors="replace") as f:
        lines = f.readlines()
    return parse_obj(lines, source=str(path))


def count_degenerate(triangles: np.ndarray) -> int:
    """Number of triangles with (near) zero area."""
    e1 = triangles[:, 1] - triangles[:, 0]
    e2 = triangles[:, 2] - triangles[:, 0]
    areas = 0.5 * np.linalg.norm(np.cross(e1, e2), axis=1)
    return int(np.sum(areas < _DEGENERATE_AREA))


def _resolve_index(token: str, num_vertices: int, source: str, line_no: int) -> int:
    """Convert a face token to a 0-based vertex index."""
    head = token.split("/", 1)[0]
    try:
        index = int(head)
    except ValueError as exc:
        raise ValueError(f"{source}:{line_no}: bad face index {token!r}") from exc

    resolved = index - 1 if index > 0 else num_vertices + index
    if index == 0 or not (0 <= resolved < num_vertices):
        raise ValueError(
            f"{source}:{line_no}: face index {index} out of range "
            f"(have {num_vertices} vertices)"
        )
    return resolved
