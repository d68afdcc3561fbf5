"""Domain models for bootable media provisioning."""

from __future__ import annotations

from .models import (
    AutoinstallManifest,
    ComposedMedia,
    InstallConfig,
    IsoSource,
    NetworkConfig,
    NetworkMode,
    ProvisionState,
    ReadyDisk,
    TargetDisk,
    UbuntuRelease,
    VerificationReport,
)


__all__ = [
    "AutoinstallManifest",
    "ComposedMedia",
    "InstallConfig",
    "IsoSource",
    "NetworkConfig",
    "NetworkMode",
    "ProvisionState",
    "ReadyDisk",
    "TargetDisk",
    "UbuntuRelease",
    "VerificationReport",
]
