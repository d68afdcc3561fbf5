"""Domain model for bootable media provisioning.

Type-safe objects passed between the pipeline stages instead of raw dicts
from lsblk / PowerShell or environment variables.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional


def _frozen_mapping(values: Optional[Mapping[str, Any]] = None) -> Mapping[str, Any]:
    return MappingProxyType(dict(values or {}))


# ==============================================================================
# Install Configuration Domain
# ==============================================================================


class NetworkMode(Enum):
    DHCP = "dhcp"
    STATIC = "static"


@dataclass(frozen=True)
class NetworkConfig:
    """Network settings for the installed machine."""

    mode: NetworkMode = NetworkMode.DHCP
    address: str = "192.168.1.100"
    netmask: str = "255.255.255.0"
    gateway: str = "192.168.1.1"
    dns_servers: tuple[str, ...] = ("8.8.8.8", "8.8.4.4")

    @property
    def is_static(self) -> bool:
        return self.mode is NetworkMode.STATIC

    @property
    def prefix_length(self) -> int:
        """CIDR prefix length for the netmask (e.g., 255.255.255.0 -> 24)."""
        return ipaddress.IPv4Network(f"0.0.0.0/{self.netmask}").prefixlen

    @property
    def cidr_address(self) -> str:
        return f"{self.address}/{self.prefix_length}"


@dataclass(frozen=True)
class InstallConfig:
    """Validated settings for one provisioning run.

    Immutable once built by the loader; the plaintext password is never
    stored, only its salted hash.
    """

    username: str
    password_hash: str
    hostname: str
    timezone: str = "America/New_York"
    locale: str = "en_US.UTF-8"
    keyboard_layout: str = "us"
    install_gui: bool = False
    ssh_authorized_keys: tuple[str, ...] = ()
    network: NetworkConfig = field(default_factory=NetworkConfig)
    extra_packages: tuple[str, ...] = ()
    auto_mount_drives: bool = True
    features: Mapping[str, bool] = field(default_factory=_frozen_mapping)
    settings: Mapping[str, str] = field(default_factory=_frozen_mapping)
    extra: Mapping[str, str] = field(default_factory=_frozen_mapping)

    def __post_init__(self) -> None:
        # Callers may pass plain dicts; store read-only views.
        object.__setattr__(self, "features", _frozen_mapping(self.features))
        object.__setattr__(self, "settings", _frozen_mapping(self.settings))
        object.__setattr__(self, "extra", _frozen_mapping(self.extra))

    def summary_lines(self) -> list[str]:
        """Human-readable overview shown before the disk is written."""
        lines = [
            f"Username:     {self.username}",
            f"Hostname:     {self.hostname}",
            f"Timezone:     {self.timezone}",
            f"Install GUI:  {self.install_gui}",
            f"Static IP:    {self.network.is_static}",
        ]
        if self.network.is_static:
            lines.append(f"IP Address:   {self.network.cidr_address}")
        enabled = sorted(name for name, value in self.features.items() if value)
        if enabled:
            lines.append(f"Features:     {', '.join(enabled)}")
        return lines


# ==============================================================================
# Disk Domain
# ==============================================================================


@dataclass(frozen=True)
class TargetDisk:
    """A whole disk reported by the platform.

    Replaces the raw dict from lsblk / Get-Disk with a type-safe object.
    """

    index: int  # Windows disk number, or lsblk enumeration position on Linux
    name: str  # e.g., "sdb" or "2"
    bus_type: str  # e.g., "USB", "NVMe", "SATA"
    size_bytes: int
    model: str = ""
    vendor: str = ""
    mount_handles: tuple[str, ...] = ()  # drive letters or mount points
    is_system: bool = False  # backs the running OS
    partitions: int = 0
    device_path: str = ""

    @property
    def size_gb(self) -> float:
        """Size in gigabytes."""
        return self.size_bytes / (1024**3)

    @property
    def handles_label(self) -> str:
        return ",".join(self.mount_handles) if self.mount_handles else "(none)"

    def format_label(self) -> str:
        """Format a human-readable label for display.

        Returns: e.g., "[2] E: - SanDisk Ultra - 14.3GB (USB)"
        """
        parts = []
        if self.vendor:
            parts.append(self.vendor.strip())
        if self.model:
            parts.append(self.model.strip())
        vendor_model = " ".join(parts) or self.name
        return (
            f"[{self.index}] {self.handles_label} - {vendor_model} - "
            f"{self.size_gb:.1f}GB ({self.bus_type})"
        )


class ProvisionState(Enum):
    """Disk provisioning states, in the only order they may be visited."""

    UNSELECTED = 0
    CONFIRMED = 1
    WIPED = 2
    PARTITIONED = 3
    FORMATTED = 4
    READY = 5

    @property
    def label(self) -> str:
        return self.name.capitalize()


@dataclass(frozen=True)
class ReadyDisk:
    """A provisioned disk with a formatted, mounted FAT32 partition."""

    disk: TargetDisk
    partition: str  # partition device path or diskpart partition reference
    handle: str  # drive letter or mount point
    root: Path  # filesystem root of the partition


# ==============================================================================
# ISO Domain
# ==============================================================================


@dataclass(frozen=True)
class UbuntuRelease:
    """A pinned Ubuntu live-server image."""

    version: str  # e.g., "24.04"
    codename: str  # e.g., "Noble Numbat"
    iso_name: str  # e.g., "ubuntu-24.04.1-live-server-amd64.iso"
    base_url: str  # directory holding the ISO and SHA256SUMS

    @property
    def iso_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.iso_name}"

    @property
    def checksum_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/SHA256SUMS"

    @property
    def signature_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/SHA256SUMS.gpg"

    @property
    def label(self) -> str:
        return f"Ubuntu {self.version} LTS ({self.codename})"


@dataclass(frozen=True)
class IsoSource:
    """A resolved local installation image."""

    path: Path
    expected_sha256: Optional[str] = None
    actual_sha256: Optional[str] = None
    signature_verified: bool = False
    release: Optional[UbuntuRelease] = None

    @property
    def checksum_verified(self) -> bool:
        return (
            self.expected_sha256 is not None
            and self.actual_sha256 is not None
            and self.expected_sha256 == self.actual_sha256
        )


# ==============================================================================
# Media Domain
# ==============================================================================


@dataclass(frozen=True)
class AutoinstallManifest:
    """Rendered autoinstall payload for one run."""

    user_data: str
    meta_data: str
    instance_id: str
    hostname: str
    password_hash: str = ""


@dataclass(frozen=True)
class ComposedMedia:
    """Target media after the payload has been written."""

    root: Path
    disk: Optional[TargetDisk]
    manifest: AutoinstallManifest
    patched_boot_configs: tuple[Path, ...] = ()
    copied_scripts: tuple[str, ...] = ()
    copy_warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class VerificationReport:
    """Outcome of the post-composition checks."""

    root: Path
    missing: tuple[str, ...] = ()
    foreign: tuple[str, ...] = ()

    @property
    def passed(self) -> bool:
        return not self.missing and not self.foreign

    def summary_lines(self) -> list[str]:
        if self.passed:
            return ["All required boot artifacts present; no foreign boot files found."]
        lines = []
        for path in self.missing:
            lines.append(f"Missing required artifact: {path}")
        for path in self.foreign:
            lines.append(f"Foreign boot artifact present: {path}")
        if self.foreign:
            lines.append(
                "The earlier wipe did not fully succeed; retry on a different device."
            )
        return lines
