"""Scoped ISO attachment."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ubuntu_usb_creator.config import settings
from ubuntu_usb_creator.logging import LoggerFactory
from ubuntu_usb_creator.storage.backends.base import DiskBackend


log = LoggerFactory.for_media()


@contextmanager
def iso_mounted(
    backend: DiskBackend,
    iso_path: Path,
    timeout: float = settings.ISO_MOUNT_TIMEOUT_SECONDS,
) -> Iterator[Path]:
    """Attach the ISO for the duration of the block.

    The image is detached on every exit path, including exceptions raised
    inside the block. A failed detach is logged as a warning and never hides
    the original error.

    Yields:
        Filesystem root of the mounted image
    """
    root = backend.mount_iso(Path(iso_path), timeout)
    log.info(f"Mounted {iso_path} at {root}")
    try:
        yield root
    finally:
        if backend.unmount_iso(Path(iso_path), root):
            log.debug(f"Detached {iso_path}")
        else:
            log.warning(f"Could not detach {iso_path}; detach it manually")
