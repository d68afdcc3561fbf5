"""Linux backend: lsblk, parted, mkfs.vfat, loop mounts and rsync."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from ubuntu_usb_creator.config import settings
from ubuntu_usb_creator.domain import ReadyDisk, TargetDisk
from ubuntu_usb_creator.exceptions import (
    CommandError,
    CopyError,
    DeviceError,
    FormatError,
    MountError,
    PartitionError,
    PrivilegeError,
)
from ubuntu_usb_creator.logging import LoggerFactory
from ubuntu_usb_creator.storage.backends.base import CopyOutcome, DiskBackend
from ubuntu_usb_creator.storage.commands import run_command
from ubuntu_usb_creator.storage.devices import LSBLK_COLUMNS, parse_lsblk_output
from ubuntu_usb_creator.util import retry, wait_for


log = LoggerFactory.for_disk()

RSYNC_OK = 0
RSYNC_PARTIAL_VANISHED = 24
RSYNC_RETRYABLE = {10, 11, 12, 30, 35}
PARTITION_APPEAR_TIMEOUT_SECONDS = 10


def partition_path(device_path: str, number: int = 1) -> str:
    """``/dev/sdb`` -> ``/dev/sdb1``; ``/dev/mmcblk0`` -> ``/dev/mmcblk0p1``."""
    if device_path[-1:].isdigit():
        return f"{device_path}p{number}"
    return f"{device_path}{number}"


def classify_rsync_exit(returncode: int, stderr: str = "") -> CopyOutcome:
    """Translate an rsync exit status.

    0 is success and 24 (source files vanished) is success with a warning.
    Everything else raises CopyError.
    """
    if returncode == RSYNC_OK:
        return CopyOutcome(tool="rsync", returncode=returncode)
    if returncode == RSYNC_PARTIAL_VANISHED:
        return CopyOutcome(
            tool="rsync",
            returncode=returncode,
            warnings=("some source files vanished during the copy",),
        )
    raise CopyError(
        f"rsync failed with exit code {returncode}",
        details=stderr.strip() or None,
    )


def _active_mountpoints() -> set[str]:
    try:
        with open("/proc/mounts", "r", encoding="utf-8") as mounts_file:
            return {
                parts[1]
                for parts in (line.split() for line in mounts_file)
                if len(parts) > 1
            }
    except FileNotFoundError:
        return set()


class LinuxBackend(DiskBackend):
    name = "linux"
    handle_pool = settings.LINUX_MOUNT_POINT_POOL

    def require_privileges(self) -> None:
        if os.geteuid() != 0:
            raise PrivilegeError("Root privileges are required to write raw disks")

    def list_disks(self) -> list[TargetDisk]:
        try:
            result = run_command(
                ["lsblk", "-J", "-b", "-o", LSBLK_COLUMNS],
                log_output=False,
            )
        except CommandError as error:
            raise DeviceError(
                "Could not list disks", step="enumerate disks", details=error.details
            ) from error
        return parse_lsblk_output(result.stdout)

    def raw_device_path(self, disk: TargetDisk) -> str:
        return disk.device_path or f"/dev/{disk.name}"

    def release_mounts(self, disk: TargetDisk) -> None:
        """Unmount every mounted partition of the disk.

        Raises:
            DeviceError: If a mountpoint is still active afterwards
        """
        if not disk.mount_handles:
            return
        run_command(["sync"], check=False)
        for mountpoint in disk.mount_handles:
            result = run_command(["umount", mountpoint], check=False)
            if result.returncode != 0:
                log.warning(f"umount {mountpoint} failed, trying lazy unmount")
                run_command(["umount", "-l", mountpoint], check=False)
        still_mounted = sorted(set(disk.mount_handles) & _active_mountpoints())
        if still_mounted:
            raise DeviceError(
                f"Could not unmount {', '.join(still_mounted)}",
                step="wipe disk",
                hint="Close programs using the drive and retry.",
            )
        log.info(f"Unmounted {len(disk.mount_handles)} mountpoint(s) on {disk.name}")

    def _settle(self, device_path: str) -> None:
        for command in (["partprobe", device_path], ["udevadm", "settle", "--timeout=5"]):
            try:
                result = run_command(command, check=False)
            except CommandError as error:
                log.debug(f"{command[0]} unavailable: {error}")
                continue
            if result.returncode != 0:
                log.debug(f"{command[0]} exited with {result.returncode}")

    def create_partition_table(self, disk: TargetDisk) -> str:
        device_path = self.raw_device_path(disk)
        steps = (
            ["parted", "-s", device_path, "mklabel", "msdos"],
            ["parted", "-s", device_path, "mkpart", "primary", "fat32", "1MiB", "100%"],
            ["parted", "-s", device_path, "set", "1", "boot", "on"],
        )
        for command in steps:
            try:
                run_command(command)
            except CommandError as error:
                raise PartitionError(
                    f"Partitioning {device_path} failed",
                    details=error.details,
                ) from error

        self._settle(device_path)
        partition = partition_path(device_path)
        if not wait_for(
            lambda: os.path.exists(partition), timeout=PARTITION_APPEAR_TIMEOUT_SECONDS
        ):
            raise PartitionError(
                f"Partition {partition} did not appear",
                hint="Re-insert the drive and retry.",
            )
        return partition

    def format_partition(self, disk: TargetDisk, partition: str, label: str) -> None:
        try:
            run_command(["mkfs.vfat", "-F", "32", "-n", label, partition])
        except CommandError as error:
            raise FormatError(
                f"Formatting {partition} as FAT32 failed", details=error.details
            ) from error

    def handles_in_use(self) -> set[str]:
        in_use = set(_active_mountpoints())
        for handle in self.handle_pool:
            # A non-empty directory is as unusable as an active mount.
            path = Path(handle)
            if path.is_dir() and any(path.iterdir()):
                in_use.add(handle)
        return in_use

    def assign_handle(self, disk: TargetDisk, partition: str, handle: str) -> Path:
        root = Path(handle)
        root.mkdir(parents=True, exist_ok=True)
        try:
            run_command(["mount", "-t", "vfat", partition, str(root)])
        except CommandError as error:
            raise DeviceError(
                f"Mounting {partition} at {root} failed",
                step="assign access handle",
                details=error.details,
            ) from error
        return root

    def mount_iso(self, iso_path: Path, timeout: float) -> Path:
        mount_root = Path(tempfile.mkdtemp(prefix="ubuntu-iso-"))
        try:
            run_command(["mount", "-o", "loop,ro", str(iso_path), str(mount_root)])
        except CommandError as error:
            mount_root.rmdir()
            raise MountError(f"Mounting {iso_path} failed", details=error.details) from error
        if not wait_for(lambda: os.path.ismount(mount_root), timeout=timeout):
            self.unmount_iso(iso_path, mount_root)
            raise MountError(f"{iso_path} did not appear at {mount_root} within {timeout}s")
        return mount_root

    def unmount_iso(self, iso_path: Path, mount_root: Path) -> bool:
        result = run_command(["umount", str(mount_root)], check=False)
        if result.returncode != 0:
            result = run_command(["umount", "-l", str(mount_root)], check=False)
        if result.returncode == 0:
            try:
                mount_root.rmdir()
            except OSError as error:
                log.debug(f"Could not remove {mount_root}: {error}")
        return result.returncode == 0

    def bulk_copy(self, source: Path, destination: Path) -> CopyOutcome:
        # Symlinks in the ISO (e.g. "ubuntu -> .") are skipped; FAT32 cannot hold them.
        command = [
            "rsync",
            "--recursive",
            "--times",
            "--modify-window=2",
            "--timeout=120",
            f"{source}/",
            f"{destination}/",
        ]

        def attempt():
            result = run_command(command, check=False, log_output=False)
            if result.returncode in RSYNC_RETRYABLE:
                raise CommandError(command, result.returncode, result.stdout, result.stderr)
            return result

        try:
            result = retry(
                attempt,
                attempts=3,
                base_delay=5.0,
                retry_on=(CommandError,),
                should_retry=lambda error: error.returncode in RSYNC_RETRYABLE,
                description="rsync copy",
            )
        except CommandError as error:
            raise CopyError(
                f"rsync failed with exit code {error.returncode}", details=error.details
            ) from error
        return classify_rsync_exit(result.returncode, result.stderr)

    def finalize(self, ready: ReadyDisk) -> None:
        """Flush writes and unmount the target so it can be unplugged.

        Raises:
            DeviceError: If the target cannot be unmounted
        """
        run_command(["sync"], check=False)
        try:
            run_command(["umount", str(ready.root)])
        except CommandError as error:
            raise DeviceError(
                f"Could not unmount {ready.root}",
                step="release target",
                details=error.details,
                hint="Close programs using the drive, then run 'sync' and unmount it by hand.",
            ) from error
        log.info(f"Unmounted {ready.root}; the drive can be removed")
