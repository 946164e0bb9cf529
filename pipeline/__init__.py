"""Pipeline Package.

Side-car tree caching and the load-or-build flow for mesh files.
"""
