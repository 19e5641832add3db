"""A/B partition set updater for Raspberry Pi tryboot systems."""

from .__version__ import __version__

__all__ = ["__version__"]
