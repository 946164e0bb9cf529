"""KD-tree acceleration structure for static triangle meshes.

SAH-guided spatial subdivision, a conservative triangle/box overlap test,
a parallel subtree build and breadth-first flattening into GPU-ready arrays.
"""
