# src/__init__.py — v1
"""QuickSight prefetch-and-cache core."""

from quicksight.version import __version__

__all__ = ["__version__"]
