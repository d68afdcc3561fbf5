"""
Tests for ubuntu_usb_creator.storage.provisioner module.

This test suite covers:
- The exact-match confirmation gate
- Ordered state transitions
- Best-effort signature wipe
- Access handle selection
- Scoped ISO attachment
"""

from dataclasses import replace

import pytest

from ubuntu_usb_creator.domain import ProvisionState
from ubuntu_usb_creator.exceptions import (
    FormatError,
    InvalidTransitionError,
    MountError,
    NoFreeHandleError,
    OperatorCancelled,
    UnsafeDeviceError,
)
from ubuntu_usb_creator.storage import (
    CONFIRMATION_WORD,
    DiskBackend,
    DiskProvisioner,
    choose_handle,
    iso_mounted,
)


DESTRUCTIVE_CALLS = {
    "release_mounts",
    "wipe_signatures",
    "create_partition_table",
    "handles_in_use",
}


class TestConfirmation:
    """Nothing destructive happens without the exact confirmation word."""

    def test_exact_word_confirms(self, fake_backend, usb_disk):
        provisioner = DiskProvisioner(fake_backend, usb_disk)
        provisioner.confirm(CONFIRMATION_WORD)
        assert provisioner.state is ProvisionState.CONFIRMED
        assert fake_backend.calls == []

    @pytest.mark.parametrize("answer", ["yes", "Yes", "", "Y", " YES", "YES ", "YES\n", "no"])
    def test_anything_else_cancels(self, fake_backend, usb_disk, answer):
        provisioner = DiskProvisioner(fake_backend, usb_disk)
        with pytest.raises(OperatorCancelled):
            provisioner.run(answer)
        assert provisioner.state is ProvisionState.UNSELECTED
        assert fake_backend.calls == []

    def test_system_disk_refused_after_confirmation(self, fake_backend, usb_disk):
        system = replace(usb_disk, is_system=True)
        provisioner = DiskProvisioner(fake_backend, system)
        with pytest.raises(UnsafeDeviceError):
            provisioner.confirm("YES")
        assert provisioner.state is ProvisionState.UNSELECTED

    def test_fixed_disk_refused_after_confirmation(self, fake_backend, usb_disk):
        provisioner = DiskProvisioner(fake_backend, replace(usb_disk, bus_type="NVMe"))
        with pytest.raises(UnsafeDeviceError):
            provisioner.run("YES")
        assert not DESTRUCTIVE_CALLS & set(fake_backend.calls)


class TestTransitions:
    """Steps may only run in order."""

    def test_full_run(self, fake_backend, usb_disk):
        provisioner = DiskProvisioner(fake_backend, usb_disk)
        ready = provisioner.run("YES")

        assert provisioner.state is ProvisionState.READY
        assert ready.partition == "/dev/sda1"
        assert ready.handle == "/mnt/ubuntu-usb"
        assert ready.root == fake_backend.target_root
        assert fake_backend.calls == [
            "release_mounts",
            "wipe_signatures",
            "create_partition_table",
            "format_partition:/dev/sda1:UBUNTU",
            "handles_in_use",
            "assign_handle:/mnt/ubuntu-usb",
        ]

    def test_wipe_before_confirm(self, fake_backend, usb_disk):
        provisioner = DiskProvisioner(fake_backend, usb_disk)
        with pytest.raises(InvalidTransitionError) as exc_info:
            provisioner.wipe()
        assert exc_info.value.current == "Unselected"
        assert exc_info.value.requested == "Wiped"
        assert fake_backend.calls == []

    def test_format_before_partition(self, fake_backend, usb_disk):
        provisioner = DiskProvisioner(fake_backend, usb_disk)
        provisioner.confirm("YES")
        provisioner.wipe()
        with pytest.raises(InvalidTransitionError):
            provisioner.format()
        assert provisioner.state is ProvisionState.WIPED

    def test_confirm_twice(self, fake_backend, usb_disk):
        provisioner = DiskProvisioner(fake_backend, usb_disk)
        provisioner.confirm("YES")
        with pytest.raises(InvalidTransitionError):
            provisioner.confirm("YES")

    def test_failure_stops_progress(self, fake_backend, usb_disk, mocker):
        mocker.patch.object(
            fake_backend, "format_partition", side_effect=FormatError("mkfs.vfat failed")
        )
        provisioner = DiskProvisioner(fake_backend, usb_disk)
        with pytest.raises(FormatError):
            provisioner.run("YES")
        assert provisioner.state is ProvisionState.PARTITIONED
        assert "handles_in_use" not in fake_backend.calls

    def test_custom_label(self, fake_backend, usb_disk):
        DiskProvisioner(fake_backend, usb_disk, label="INSTALL").run("YES")
        assert "format_partition:/dev/sda1:INSTALL" in fake_backend.calls


class TestWipe:
    """The signature wipe is best-effort."""

    def test_wipe_failure_continues(self, fake_backend, usb_disk):
        fake_backend.wipe_error = PermissionError("Access is denied")
        provisioner = DiskProvisioner(fake_backend, usb_disk)
        ready = provisioner.run("YES")
        assert ready.handle == "/mnt/ubuntu-usb"
        assert "create_partition_table" in fake_backend.calls

    def test_base_wipe_writes_zeros(self, fake_backend, usb_disk, tmp_path):
        device = tmp_path / "device.img"
        device.write_bytes(b"\xff" * 4096)
        disk = replace(usb_disk, device_path=str(device))
        DiskBackend.wipe_signatures(fake_backend, disk, size=1024)
        data = device.read_bytes()
        assert data[:1024] == b"\x00" * 1024
        assert data[1024:] == b"\xff" * 3072


class TestChooseHandle:
    """Tests for choose_handle()."""

    def test_first_free(self):
        assert choose_handle(["U", "V", "W"], {"C", "U"}) == "V"

    def test_case_and_separator_insensitive(self):
        assert choose_handle(["U", "V", "W"], ["u:", "V:\\"]) == "W"

    def test_mount_point_pool(self):
        pool = ("/mnt/ubuntu-usb", "/mnt/ubuntu-usb-1")
        assert choose_handle(pool, {"/", "/mnt/ubuntu-usb"}) == "/mnt/ubuntu-usb-1"

    def test_pool_exhausted(self):
        with pytest.raises(NoFreeHandleError) as exc_info:
            choose_handle(["U", "V"], {"U", "V", "C"})
        assert exc_info.value.pool == ["U", "V"]

    def test_provisioner_pool_exhausted(self, fake_backend, usb_disk):
        fake_backend.in_use = set(fake_backend.handle_pool)
        provisioner = DiskProvisioner(fake_backend, usb_disk)
        with pytest.raises(NoFreeHandleError):
            provisioner.run("YES")
        assert provisioner.state is ProvisionState.FORMATTED


class TestIsoMounted:
    """Tests for the iso_mounted() context manager."""

    def test_mounts_and_detaches(self, fake_backend, tmp_path):
        with iso_mounted(fake_backend, tmp_path / "ubuntu.iso") as root:
            assert root == fake_backend.iso_root
        assert fake_backend.calls == ["mount_iso", "unmount_iso"]

    def test_detaches_on_error(self, fake_backend, tmp_path):
        with pytest.raises(RuntimeError):
            with iso_mounted(fake_backend, tmp_path / "ubuntu.iso"):
                raise RuntimeError("copy failed")
        assert fake_backend.calls[-1] == "unmount_iso"

    def test_failed_detach_keeps_original_error(self, fake_backend, tmp_path):
        fake_backend.unmount_result = False
        with pytest.raises(RuntimeError, match="copy failed"):
            with iso_mounted(fake_backend, tmp_path / "ubuntu.iso"):
                raise RuntimeError("copy failed")

    def test_mount_failure_skips_detach(self, fake_backend, tmp_path, mocker):
        mocker.patch.object(fake_backend, "mount_iso", side_effect=MountError("no loop device"))
        with pytest.raises(MountError):
            with iso_mounted(fake_backend, tmp_path / "ubuntu.iso"):
                pass
        assert "unmount_iso" not in fake_backend.calls
