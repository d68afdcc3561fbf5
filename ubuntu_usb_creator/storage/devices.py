"""Disk enumeration and target filtering.

Devices come from the platform backend as TargetDisk objects. This module
turns raw lsblk JSON into TargetDisk objects on Linux and applies the
safety filter that decides which disks may be offered for erasure.

Filtering Logic:
    A disk is a candidate only when BOTH checks pass:

    1. Its bus type is on the allow-list (USB, SD, MMC), compared
       case-insensitively.
    2. It does not back the running OS. On Linux this means neither the disk
       nor any nested child is mounted at a system path (/, /boot,
       /boot/efi, /boot/firmware, swap).

    The two checks are independent; a disk's position in the list is never
    used to decide whether it is safe.

Example:
    >>> from ubuntu_usb_creator.storage import get_backend, list_candidates
    >>> for disk in list_candidates(get_backend()):
    ...     print(disk.format_label())
    [1] (none) - SanDisk Ultra - 14.3GB (USB)
"""

from __future__ import annotations

import json
from typing import Iterable, Optional

from ubuntu_usb_creator.config import settings
from ubuntu_usb_creator.domain import TargetDisk
from ubuntu_usb_creator.exceptions import DeviceError, DeviceNotFoundError, UnsafeDeviceError
from ubuntu_usb_creator.logging import LoggerFactory


log = LoggerFactory.for_disk()

ROOT_MOUNTPOINTS = {"/", "/boot", "/boot/efi", "/boot/firmware", "[SWAP]"}

LSBLK_COLUMNS = "NAME,TYPE,SIZE,MODEL,VENDOR,TRAN,RM,MOUNTPOINT,FSTYPE,LABEL,PATH"

TRANSPORT_BUS_TYPES = {
    "usb": "USB",
    "mmc": "MMC",
    "nvme": "NVMe",
    "sata": "SATA",
    "ata": "ATA",
    "scsi": "SCSI",
    "sas": "SAS",
    "virtio": "Virtual",
}


def human_size(size_bytes):
    if size_bytes is None:
        return "0B"
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PB"


def get_children(device: dict) -> list[dict]:
    return device.get("children", []) or []


def _device_mountpoints(device: dict) -> list[str]:
    # lsblk >= 2.37 reports "mountpoints" (a list); older releases "mountpoint".
    mountpoints = [mp for mp in device.get("mountpoints") or [] if mp]
    mountpoint = device.get("mountpoint")
    if mountpoint and mountpoint not in mountpoints:
        mountpoints.append(mountpoint)
    return mountpoints


def collect_mountpoints(device: dict) -> list[str]:
    """All mountpoints of the device and its nested children."""
    mountpoints = list(_device_mountpoints(device))
    for child in get_children(device):
        mountpoints.extend(collect_mountpoints(child))
    return mountpoints


def has_root_mountpoint(device: dict) -> bool:
    if any(mp in ROOT_MOUNTPOINTS for mp in _device_mountpoints(device)):
        return True
    for child in get_children(device):
        if has_root_mountpoint(child):
            return True
    return False


def bus_type_from_lsblk(device: dict) -> str:
    """Map the lsblk transport column onto a bus type name."""
    tran = (device.get("tran") or "").strip().lower()
    if tran:
        return TRANSPORT_BUS_TYPES.get(tran, tran.upper())
    if (device.get("name") or "").startswith("mmcblk"):
        return "MMC"
    return "UNKNOWN"


def disk_from_lsblk(index: int, device: dict) -> TargetDisk:
    """Build a TargetDisk from one lsblk ``type == disk`` entry."""
    name = device.get("name") or ""
    return TargetDisk(
        index=index,
        name=name,
        bus_type=bus_type_from_lsblk(device),
        size_bytes=int(device.get("size") or 0),
        model=(device.get("model") or "").strip(),
        vendor=(device.get("vendor") or "").strip(),
        mount_handles=tuple(
            mp for mp in collect_mountpoints(device) if mp != "[SWAP]"
        ),
        is_system=has_root_mountpoint(device),
        partitions=len(get_children(device)),
        device_path=device.get("path") or f"/dev/{name}",
    )


def parse_lsblk_output(output: str) -> list[TargetDisk]:
    """Parse ``lsblk -J -b`` output into whole-disk TargetDisks.

    Index is the position among whole disks in enumeration order, starting
    at 0. Partitions, loop devices and optical drives are skipped.

    Raises:
        DeviceError: If the output is not valid lsblk JSON
    """
    try:
        data = json.loads(output)
    except json.JSONDecodeError as error:
        raise DeviceError(
            "Could not parse disk list", step="enumerate disks", details=str(error)
        ) from error

    disks = []
    index = 0
    for device in data.get("blockdevices", []):
        if device.get("type") != "disk":
            continue
        disks.append(disk_from_lsblk(index, device))
        index += 1
    log.debug(f"lsblk found {len(disks)} disks: {', '.join(d.name for d in disks)}")
    return disks


def is_allowed_bus(disk: TargetDisk) -> bool:
    allowed = {bus.upper() for bus in settings.ALLOWED_BUS_TYPES}
    return disk.bus_type.upper() in allowed


def rejection_reason(disk: TargetDisk) -> Optional[str]:
    """Why the disk may not be offered, or None if it is a valid target."""
    if disk.is_system:
        return "it holds the running operating system"
    if not is_allowed_bus(disk):
        return f"bus type {disk.bus_type} is not removable media"
    return None


def filter_candidates(disks: Iterable[TargetDisk]) -> list[TargetDisk]:
    """Keep only removable, non-system disks. Pure; no side effects."""
    candidates = []
    for disk in disks:
        reason = rejection_reason(disk)
        if reason:
            log.debug(f"Skipping disk {disk.index} ({disk.name}): {reason}")
            continue
        candidates.append(disk)
    return candidates


def list_candidates(backend) -> list[TargetDisk]:
    """Enumerate disks through the backend and apply the safety filter."""
    disks = backend.list_disks()
    candidates = filter_candidates(disks)
    log.info(f"Found {len(candidates)} candidate disk(s) out of {len(disks)}")
    return candidates


def find_candidate(candidates: Iterable[TargetDisk], index: int) -> TargetDisk:
    """Look up an operator-chosen index among the candidates.

    Raises:
        DeviceNotFoundError: If no candidate has that index
    """
    for disk in candidates:
        if disk.index == index:
            return disk
    raise DeviceNotFoundError(str(index))


def ensure_safe_target(disk: TargetDisk) -> None:
    """Re-check a selected disk immediately before it is written.

    Raises:
        UnsafeDeviceError: If the disk fails the candidate filter
    """
    reason = rejection_reason(disk)
    if reason:
        raise UnsafeDeviceError(disk.name, reason)
