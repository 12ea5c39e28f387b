"""Shared utilities: logging, geometry, spatial indexing and file loading."""
