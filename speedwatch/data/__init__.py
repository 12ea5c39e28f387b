"""Bundled sample topology."""
