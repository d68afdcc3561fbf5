"""ISO acquisition services."""

from __future__ import annotations

from .acquisition import IsoResolver, resolve
from .iso_download import IsoDownloader
from .releases import RELEASES, get_release


__all__ = ["IsoDownloader", "IsoResolver", "RELEASES", "get_release", "resolve"]
