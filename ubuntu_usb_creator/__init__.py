"""Bootable Ubuntu autoinstall media creator."""

from .__version__ import __version__


__all__ = ["__version__"]
