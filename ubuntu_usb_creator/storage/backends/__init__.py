"""Platform backends."""

from __future__ import annotations

import sys
from typing import Optional

from ubuntu_usb_creator.exceptions import ProvisioningError

from .base import CopyOutcome, DiskBackend, choose_handle


def get_backend(platform: Optional[str] = None) -> DiskBackend:
    """Return the backend for the running (or named) platform."""
    platform = platform or sys.platform
    if platform.startswith("linux"):
        from .linux import LinuxBackend

        return LinuxBackend()
    if platform.startswith("win"):
        from .windows import WindowsBackend

        return WindowsBackend()
    raise ProvisioningError(
        f"Unsupported platform: {platform}",
        step="startup",
        hint="Run on Linux or Windows.",
    )


__all__ = ["CopyOutcome", "DiskBackend", "choose_handle", "get_backend"]
