"""Windows backend: Get-Disk, diskpart, Mount-DiskImage and robocopy."""

from __future__ import annotations

import ctypes
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

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
from ubuntu_usb_creator.util import wait_for


log = LoggerFactory.for_disk()

ROBOCOPY_FAILURE_THRESHOLD = 8
ROBOCOPY_WARNING_BITS = {
    2: "extra files or directories exist at the destination",
    4: "mismatched files or directories were detected",
}

DISKPART_ERROR_MARKERS = (
    "DiskPart has encountered an error",
    "Virtual Disk Service error",
    "There is no disk selected",
    "The arguments specified for this command are not valid",
)

LIST_DISKS_SCRIPT = (
    "Get-Disk | ForEach-Object { "
    "$letters = @(Get-Partition -DiskNumber $_.Number -ErrorAction SilentlyContinue "
    "| Where-Object DriveLetter | ForEach-Object { [string]$_.DriveLetter }); "
    "[pscustomobject]@{ Number = $_.Number; FriendlyName = $_.FriendlyName; "
    "Size = $_.Size; BusType = [string]$_.BusType; IsSystem = $_.IsSystem; "
    "IsBoot = $_.IsBoot; PartitionCount = $_.NumberOfPartitions; Letters = $letters } "
    "} | ConvertTo-Json -Depth 3"
)


def powershell(script: str, *, check: bool = True, timeout: Optional[float] = None):
    return run_command(
        ["powershell", "-NoProfile", "-NonInteractive", "-Command", script],
        check=check,
        timeout=timeout,
    )


def ps_quote(value: str) -> str:
    """Single-quoted PowerShell literal."""
    return "'" + str(value).replace("'", "''") + "'"


def disk_from_windows(record: dict[str, Any]) -> TargetDisk:
    """Build a TargetDisk from one Get-Disk JSON record."""
    letters = record.get("Letters") or []
    if isinstance(letters, str):
        letters = [letters]
    number = int(record.get("Number"))
    return TargetDisk(
        index=number,
        name=str(number),
        bus_type=str(record.get("BusType") or "UNKNOWN"),
        size_bytes=int(record.get("Size") or 0),
        model=(record.get("FriendlyName") or "").strip(),
        mount_handles=tuple(f"{letter}:" for letter in letters if letter),
        is_system=bool(record.get("IsSystem")) or bool(record.get("IsBoot")),
        partitions=int(record.get("PartitionCount") or 0),
        device_path=rf"\\.\PhysicalDrive{number}",
    )


def parse_get_disk_output(output: str) -> list[TargetDisk]:
    """Parse ConvertTo-Json output of Get-Disk.

    A single disk is serialized as an object rather than an array.

    Raises:
        DeviceError: If the output is not valid JSON
    """
    if not output.strip():
        return []
    try:
        data = json.loads(output)
    except json.JSONDecodeError as error:
        raise DeviceError(
            "Could not parse disk list", step="enumerate disks", details=str(error)
        ) from error
    if isinstance(data, dict):
        data = [data]
    disks = sorted((disk_from_windows(record) for record in data), key=lambda d: d.index)
    log.debug(f"Get-Disk found {len(disks)} disks")
    return disks


def classify_robocopy_exit(returncode: int, output: str = "") -> CopyOutcome:
    """Translate a robocopy exit status.

    Values below 8 are success, possibly with warnings; 8 and above mean at
    least one file failed to copy and raise CopyError.
    """
    if returncode >= ROBOCOPY_FAILURE_THRESHOLD:
        raise CopyError(
            f"robocopy failed with exit code {returncode}",
            details=output.strip() or None,
        )
    warnings = tuple(
        message for bit, message in ROBOCOPY_WARNING_BITS.items() if returncode & bit
    )
    return CopyOutcome(tool="robocopy", returncode=returncode, warnings=warnings)


def diskpart_failed(output: str) -> bool:
    return any(marker.lower() in output.lower() for marker in DISKPART_ERROR_MARKERS)


class WindowsBackend(DiskBackend):
    name = "windows"
    handle_pool = settings.WINDOWS_DRIVE_LETTER_POOL

    def require_privileges(self) -> None:
        windll = getattr(ctypes, "windll", None)
        if windll is None or not windll.shell32.IsUserAnAdmin():
            raise PrivilegeError("Administrator privileges are required")

    def list_disks(self) -> list[TargetDisk]:
        try:
            result = powershell(LIST_DISKS_SCRIPT)
        except CommandError as error:
            raise DeviceError(
                "Could not list disks", step="enumerate disks", details=error.details
            ) from error
        return parse_get_disk_output(result.stdout)

    def raw_device_path(self, disk: TargetDisk) -> str:
        return disk.device_path or rf"\\.\PhysicalDrive{disk.index}"

    def run_diskpart(self, lines: list[str]) -> str:
        """Run a diskpart script and return its output.

        Raises:
            CommandError: If diskpart exits non-zero or reports an error
        """
        script = "\n".join(lines + ["exit"]) + "\n"
        handle, script_path = tempfile.mkstemp(prefix="diskpart-", suffix=".txt")
        try:
            with os.fdopen(handle, "w", encoding="ascii") as script_file:
                script_file.write(script)
            command = ["diskpart", "/s", script_path]
            result = run_command(command, check=False)
        finally:
            os.unlink(script_path)
        output = f"{result.stdout}\n{result.stderr}".strip()
        if result.returncode != 0 or diskpart_failed(output):
            raise CommandError(command, result.returncode, result.stdout, result.stderr)
        return output

    def create_partition_table(self, disk: TargetDisk) -> str:
        try:
            self.run_diskpart(
                [
                    f"select disk {disk.index}",
                    "clean",
                    "convert mbr",
                    "create partition primary",
                    "active",
                ]
            )
        except CommandError as error:
            raise PartitionError(
                f"Partitioning disk {disk.index} failed", details=error.details
            ) from error
        return "1"

    def format_partition(self, disk: TargetDisk, partition: str, label: str) -> None:
        hint = None
        if disk.size_bytes > settings.FAT32_FORMAT_CEILING_BYTES:
            hint = "Windows may refuse FAT32 on volumes over 32 GB; use a smaller drive."
        try:
            self.run_diskpart(
                [
                    f"select disk {disk.index}",
                    f"select partition {partition}",
                    f"format fs=fat32 quick label={label}",
                ]
            )
        except CommandError as error:
            raise FormatError(
                f"Formatting disk {disk.index} as FAT32 failed",
                details=error.details,
                hint=hint,
            ) from error

    def handles_in_use(self) -> set[str]:
        try:
            result = powershell("(Get-PSDrive -PSProvider FileSystem).Name")
        except CommandError as error:
            raise DeviceError(
                "Could not list drive letters",
                step="assign access handle",
                details=error.details,
            ) from error
        return {line.strip().upper() for line in result.stdout.splitlines() if line.strip()}

    def assign_handle(self, disk: TargetDisk, partition: str, handle: str) -> Path:
        letter = handle.rstrip(":\\").upper()
        try:
            self.run_diskpart(
                [
                    f"select disk {disk.index}",
                    f"select partition {partition}",
                    f"assign letter={letter}",
                ]
            )
        except CommandError as error:
            raise DeviceError(
                f"Assigning drive letter {letter}: failed",
                step="assign access handle",
                details=error.details,
            ) from error
        root = Path(f"{letter}:\\")
        if not wait_for(root.exists, timeout=settings.ISO_MOUNT_TIMEOUT_SECONDS):
            raise DeviceError(
                f"Drive {letter}: did not become available",
                step="assign access handle",
            )
        return root

    def _iso_drive_letter(self, iso_path: Path) -> Optional[str]:
        result = powershell(
            f"(Get-DiskImage -ImagePath {ps_quote(iso_path)} | Get-Volume).DriveLetter",
            check=False,
        )
        letter = result.stdout.strip()
        return letter[:1].upper() if result.returncode == 0 and letter else None

    def mount_iso(self, iso_path: Path, timeout: float) -> Path:
        try:
            powershell(f"Mount-DiskImage -ImagePath {ps_quote(iso_path)} | Out-Null")
        except CommandError as error:
            raise MountError(f"Mounting {iso_path} failed", details=error.details) from error
        letter = wait_for(lambda: self._iso_drive_letter(iso_path), timeout=timeout, interval=1.0)
        if not letter:
            self.unmount_iso(iso_path, Path("."))
            raise MountError(
                f"{iso_path} was attached but no drive letter appeared within {timeout}s"
            )
        return Path(f"{letter}:\\")

    def unmount_iso(self, iso_path: Path, mount_root: Path) -> bool:
        result = powershell(
            f"Dismount-DiskImage -ImagePath {ps_quote(iso_path)} | Out-Null", check=False
        )
        return result.returncode == 0

    def bulk_copy(self, source: Path, destination: Path) -> CopyOutcome:
        command = [
            "robocopy",
            str(source),
            str(destination),
            "/E",
            "/Z",
            "/R:3",
            "/W:5",
            "/NFL",
            "/NDL",
            "/NP",
        ]
        result = run_command(command, check=False, log_output=False)
        return classify_robocopy_exit(result.returncode, result.stdout)

    def finalize(self, ready: ReadyDisk) -> None:
        log.info(f"Use 'Safely Remove Hardware' to eject {ready.handle}: before unplugging")
