"""Data Ingestion Package.

Wavefront OBJ parsing and synthetic triangle soups feeding the KD-tree
builder.
"""
