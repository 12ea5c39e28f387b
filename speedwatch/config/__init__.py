"""Configuration management package.

This package provides functionality for loading and managing simulation and
enforcement configuration from YAML files.
"""

from speedwatch.config.config_loader import Config

__all__ = ['Config']
