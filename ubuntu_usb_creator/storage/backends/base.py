"""Platform backend interface for disk and image operations."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from ubuntu_usb_creator.config import settings
from ubuntu_usb_creator.domain import ReadyDisk, TargetDisk
from ubuntu_usb_creator.exceptions import NoFreeHandleError
from ubuntu_usb_creator.logging import LoggerFactory


log = LoggerFactory.for_disk()


@dataclass(frozen=True)
class CopyOutcome:
    """Result of a bulk copy that the tool reported as successful."""

    tool: str
    returncode: int
    warnings: tuple[str, ...] = field(default_factory=tuple)


class DiskBackend(ABC):
    """Operations the provisioner and composer need from the host platform.

    Implementations check every tool's exit status and raise a
    ProvisioningError subclass on failure.
    """

    name = "base"
    handle_pool: tuple[str, ...] = ()

    @abstractmethod
    def require_privileges(self) -> None:
        """Raise PrivilegeError unless raw disks can be written."""

    @abstractmethod
    def list_disks(self) -> list[TargetDisk]:
        """Every whole disk on the system, including the OS disk."""

    @abstractmethod
    def raw_device_path(self, disk: TargetDisk) -> str:
        """Path that opens the whole raw device for writing."""

    def release_mounts(self, disk: TargetDisk) -> None:
        """Detach any mounted volumes of the disk before it is wiped."""

    def wipe_signatures(self, disk: TargetDisk, size: int = settings.WIPE_BYTES) -> None:
        """Overwrite the first bytes of the raw device with zeros.

        Raises:
            OSError: If the device cannot be opened or written
        """
        device_path = self.raw_device_path(disk)
        log.debug(f"Zeroing first {size} bytes of {device_path}")
        with open(device_path, "r+b", buffering=0) as device:
            device.write(b"\x00" * size)
            os.fsync(device.fileno())

    @abstractmethod
    def create_partition_table(self, disk: TargetDisk) -> str:
        """Create an MBR table with one active primary partition.

        Returns:
            Reference to the new partition (device path or number)
        """

    @abstractmethod
    def format_partition(self, disk: TargetDisk, partition: str, label: str) -> None:
        """Quick-format the partition as FAT32 with the given label."""

    @abstractmethod
    def handles_in_use(self) -> set[str]:
        """Drive letters or mount points currently occupied."""

    @abstractmethod
    def assign_handle(self, disk: TargetDisk, partition: str, handle: str) -> Path:
        """Attach the partition at handle and return its filesystem root."""

    @abstractmethod
    def mount_iso(self, iso_path: Path, timeout: float) -> Path:
        """Attach the ISO read-only and return its filesystem root."""

    @abstractmethod
    def unmount_iso(self, iso_path: Path, mount_root: Path) -> bool:
        """Detach the ISO. Returns False if the platform reported a failure."""

    @abstractmethod
    def bulk_copy(self, source: Path, destination: Path) -> CopyOutcome:
        """Copy the whole source tree onto destination."""

    def finalize(self, ready: ReadyDisk) -> None:
        """Flush and release the target so it can be removed."""


def choose_handle(pool: Iterable[str], in_use: Iterable[str]) -> str:
    """Pick the first handle from the preference pool that is not occupied.

    Comparison is case-insensitive so drive letters match regardless of how
    the platform reports them.

    Raises:
        NoFreeHandleError: If every handle in the pool is occupied
    """
    pool = list(pool)
    occupied = {str(handle).rstrip(":\\/").upper() for handle in in_use}
    for handle in pool:
        if handle.rstrip(":\\/").upper() not in occupied:
            return handle
    raise NoFreeHandleError(pool)
