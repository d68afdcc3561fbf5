"""
Pytest configuration and shared fixtures for ubuntu-usb-creator tests.

This module provides common fixtures and utilities used across all test modules.
"""

import json
import shutil
from pathlib import Path
from typing import Any, Dict, List

import pytest

from ubuntu_usb_creator.config import settings
from ubuntu_usb_creator.config.loader import build_config
from ubuntu_usb_creator.domain import ReadyDisk, TargetDisk
from ubuntu_usb_creator.storage.backends.base import CopyOutcome, DiskBackend


SAMPLE_GRUB_CFG = """\
set timeout=30

loadfont unicode

set menu_color_normal=white/black
set menu_color_highlight=black/light-gray

menuentry "Try or Install Ubuntu Server" {
\tset gfxpayload=keep
\tlinux\t/casper/vmlinuz  ---
\tinitrd\t/casper/initrd
}
menuentry "Ubuntu Server with the HWE kernel" {
\tset gfxpayload=keep
\tlinux\t/casper/hwe-vmlinuz  ---
\tinitrd\t/casper/hwe-initrd
}
"""


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Use the lowest bcrypt cost so config loading stays fast."""
    monkeypatch.setattr(settings, "BCRYPT_ROUNDS", 4)


# ==============================================================================
# Configuration Fixtures
# ==============================================================================


@pytest.fixture
def write_config(tmp_path):
    """Factory writing a .env file and returning its path."""

    def _write(text: str, name: str = ".env") -> Path:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def base_values() -> Dict[str, str]:
    """Minimal valid parsed configuration."""
    return {
        "INSTALL_USERNAME": "admin",
        "INSTALL_PASSWORD": "changeme",
        "INSTALL_HOSTNAME": "lab-01",
    }


@pytest.fixture
def install_config(base_values):
    """Validated DHCP InstallConfig."""
    return build_config(base_values)


@pytest.fixture
def static_install_config(base_values):
    """Validated static-IP InstallConfig."""
    values = dict(base_values)
    values.update(
        {
            "STATIC_IP": "true",
            "IP_ADDRESS": "10.0.0.50",
            "GATEWAY": "10.0.0.1",
            "DNS_SERVERS": "1.1.1.1,1.0.0.1",
        }
    )
    return build_config(values)


# ==============================================================================
# Device Mock Fixtures
# ==============================================================================


@pytest.fixture
def lsblk_devices() -> List[Dict[str, Any]]:
    """
    Block devices as reported by ``lsblk -J -b``.

    Contains an NVMe system disk, a mounted USB stick, an SD card without a
    transport, a SATA data disk and a loop device.
    """
    return [
        {
            "name": "nvme0n1",
            "path": "/dev/nvme0n1",
            "type": "disk",
            "size": "512110190592",
            "model": "Samsung SSD 970",
            "vendor": None,
            "tran": "nvme",
            "rm": "0",
            "mountpoint": None,
            "children": [
                {
                    "name": "nvme0n1p1",
                    "type": "part",
                    "size": "536870912",
                    "mountpoint": "/boot/efi",
                },
                {
                    "name": "nvme0n1p2",
                    "type": "part",
                    "size": "511571230720",
                    "mountpoint": None,
                    "children": [
                        {"name": "vg-root", "type": "lvm", "mountpoint": "/"},
                    ],
                },
            ],
        },
        {
            "name": "sda",
            "path": "/dev/sda",
            "type": "disk",
            "size": "16106127360",
            "model": "Ultra",
            "vendor": "SanDisk ",
            "tran": "usb",
            "rm": "1",
            "mountpoint": None,
            "children": [
                {
                    "name": "sda1",
                    "type": "part",
                    "size": "8053063680",
                    "mountpoint": "/media/usb",
                },
                {
                    "name": "sda2",
                    "type": "part",
                    "size": "8053063680",
                    "mountpoints": ["/media/usb2", None],
                },
            ],
        },
        {
            "name": "mmcblk0",
            "path": "/dev/mmcblk0",
            "type": "disk",
            "size": "31914983424",
            "model": "SD Card",
            "tran": None,
            "rm": "1",
            "mountpoint": None,
        },
        {
            "name": "sdb",
            "path": "/dev/sdb",
            "type": "disk",
            "size": "2000398934016",
            "model": "WDC WD20EZRZ",
            "tran": "sata",
            "rm": "0",
            "mountpoint": "/srv/data",
        },
        {
            "name": "loop0",
            "type": "loop",
            "size": "67108864",
            "mountpoint": "/snap/core/1",
        },
    ]


@pytest.fixture
def lsblk_output(lsblk_devices) -> str:
    return json.dumps({"blockdevices": lsblk_devices})


@pytest.fixture
def windows_disks() -> List[Dict[str, Any]]:
    """Get-Disk records as serialized by ConvertTo-Json."""
    return [
        {
            "Number": 0,
            "FriendlyName": "Samsung SSD 860 EVO",
            "Size": 500107862016,
            "BusType": "SATA",
            "IsSystem": True,
            "IsBoot": True,
            "PartitionCount": 4,
            "Letters": "C",
        },
        {
            "Number": 1,
            "FriendlyName": "Kingston DataTraveler",
            "Size": 31042043904,
            "BusType": "USB",
            "IsSystem": False,
            "IsBoot": False,
            "PartitionCount": 1,
            "Letters": ["E"],
        },
        {
            "Number": 2,
            "FriendlyName": "SD Reader",
            "Size": 15931539456,
            "BusType": "SD",
            "IsSystem": False,
            "IsBoot": False,
            "PartitionCount": 0,
            "Letters": None,
        },
    ]


@pytest.fixture
def usb_disk() -> TargetDisk:
    return TargetDisk(
        index=1,
        name="sda",
        bus_type="USB",
        size_bytes=16106127360,
        model="Ultra",
        vendor="SanDisk",
        device_path="/dev/sda",
    )


# ==============================================================================
# Media Fixtures
# ==============================================================================


@pytest.fixture
def fake_iso_tree(tmp_path) -> Path:
    """Directory laid out like a mounted Ubuntu live-server ISO."""
    root = tmp_path / "iso"
    for relative, content in {
        "EFI/boot/bootx64.efi": "efi",
        "EFI/boot/grubx64.efi": "grub",
        "boot/grub/grub.cfg": SAMPLE_GRUB_CFG,
        "boot/grub/loopback.cfg": SAMPLE_GRUB_CFG,
        "casper/vmlinuz": "kernel",
        "casper/initrd": "initrd",
        ".disk/info": "Ubuntu-Server 24.04.1 LTS",
    }.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def scripts_dir(tmp_path) -> Path:
    """First-boot scripts authored with Windows line endings."""
    directory = tmp_path / "scripts"
    directory.mkdir()
    (directory / "post-install.sh").write_bytes(b"#!/bin/bash\r\necho post-install\r\n")
    (directory / "mount-drives.sh").write_bytes(b"#!/bin/bash\r\necho mount\r\n")
    (directory / "README.txt").write_text("not a script")
    return directory


class FakeBackend(DiskBackend):
    """In-memory backend recording every call; copies with shutil."""

    name = "fake"
    handle_pool = ("/mnt/ubuntu-usb", "/mnt/ubuntu-usb-1")

    def __init__(self, iso_root: Path = None, target_root: Path = None, disks=None):
        self.iso_root = iso_root
        self.target_root = target_root
        self.disks = list(disks or [])
        self.calls: List[str] = []
        self.in_use: set = set()
        self.unmount_result = True
        self.wipe_error: Exception = None

    def require_privileges(self) -> None:
        self.calls.append("require_privileges")

    def list_disks(self):
        self.calls.append("list_disks")
        return list(self.disks)

    def raw_device_path(self, disk):
        return disk.device_path

    def release_mounts(self, disk):
        self.calls.append("release_mounts")

    def wipe_signatures(self, disk, size=settings.WIPE_BYTES):
        self.calls.append("wipe_signatures")
        if self.wipe_error:
            raise self.wipe_error

    def create_partition_table(self, disk):
        self.calls.append("create_partition_table")
        return "/dev/sda1"

    def format_partition(self, disk, partition, label):
        self.calls.append(f"format_partition:{partition}:{label}")

    def handles_in_use(self):
        self.calls.append("handles_in_use")
        return set(self.in_use)

    def assign_handle(self, disk, partition, handle):
        self.calls.append(f"assign_handle:{handle}")
        self.target_root.mkdir(parents=True, exist_ok=True)
        return self.target_root

    def mount_iso(self, iso_path, timeout):
        self.calls.append("mount_iso")
        return self.iso_root

    def unmount_iso(self, iso_path, mount_root):
        self.calls.append("unmount_iso")
        return self.unmount_result

    def bulk_copy(self, source, destination):
        self.calls.append("bulk_copy")
        shutil.copytree(source, destination, dirs_exist_ok=True)
        return CopyOutcome(tool="fake", returncode=0)

    def finalize(self, ready: ReadyDisk):
        self.calls.append("finalize")


@pytest.fixture
def fake_backend(fake_iso_tree, tmp_path, usb_disk) -> FakeBackend:
    return FakeBackend(
        iso_root=fake_iso_tree,
        target_root=tmp_path / "target",
        disks=[usb_disk],
    )
