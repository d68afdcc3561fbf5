"""
Tests for ubuntu_usb_creator.storage.backends.windows module.

This test suite covers:
- Get-Disk JSON parsing (single object vs array, drive letter shapes)
- robocopy exit-status classification
- diskpart script execution and error-marker detection
- Drive letter and ISO attach handling
"""

import json
import subprocess
from dataclasses import replace
from pathlib import Path

import pytest

from ubuntu_usb_creator.exceptions import (
    CommandError,
    CopyError,
    DeviceError,
    FormatError,
    MountError,
    PartitionError,
    ProvisioningError,
)
from ubuntu_usb_creator.storage import filter_candidates, get_backend
from ubuntu_usb_creator.storage.backends import windows
from ubuntu_usb_creator.storage.backends.linux import LinuxBackend


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess([], returncode, stdout, stderr)


@pytest.fixture
def backend():
    return windows.WindowsBackend()


class TestGetBackend:
    """Tests for get_backend()."""

    def test_linux(self):
        assert isinstance(get_backend("linux"), LinuxBackend)

    def test_windows(self):
        assert isinstance(get_backend("win32"), windows.WindowsBackend)

    def test_unsupported(self):
        with pytest.raises(ProvisioningError, match="darwin"):
            get_backend("darwin")


class TestParseGetDiskOutput:
    """Tests for parse_get_disk_output()."""

    def test_array(self, windows_disks):
        disks = windows.parse_get_disk_output(json.dumps(windows_disks))
        assert [d.index for d in disks] == [0, 1, 2]
        assert disks[0].mount_handles == ("C:",)
        assert disks[0].is_system is True
        assert disks[1].mount_handles == ("E:",)
        assert disks[1].device_path == r"\\.\PhysicalDrive1"
        assert disks[2].mount_handles == ()

    def test_single_disk_object(self, windows_disks):
        disks = windows.parse_get_disk_output(json.dumps(windows_disks[1]))
        assert len(disks) == 1
        assert disks[0].bus_type == "USB"
        assert disks[0].model == "Kingston DataTraveler"

    def test_sorted_by_number(self, windows_disks):
        disks = windows.parse_get_disk_output(json.dumps(list(reversed(windows_disks))))
        assert [d.index for d in disks] == [0, 1, 2]

    def test_boot_disk_is_system(self):
        record = {"Number": 3, "BusType": "USB", "IsSystem": False, "IsBoot": True, "Size": 1}
        assert windows.disk_from_windows(record).is_system is True

    def test_empty_output(self):
        assert windows.parse_get_disk_output("  \r\n") == []

    def test_invalid_json(self):
        with pytest.raises(DeviceError):
            windows.parse_get_disk_output("Get-Disk : Access denied")

    def test_filter_keeps_usb_and_sd(self, windows_disks):
        disks = windows.parse_get_disk_output(json.dumps(windows_disks))
        assert [d.index for d in filter_candidates(disks)] == [1, 2]


class TestClassifyRobocopyExit:
    """Tests for classify_robocopy_exit()."""

    @pytest.mark.parametrize("code", [0, 1])
    def test_clean_success(self, code):
        outcome = windows.classify_robocopy_exit(code)
        assert outcome.warnings == ()

    def test_success_with_warnings(self):
        outcome = windows.classify_robocopy_exit(7)
        assert outcome.returncode == 7
        assert len(outcome.warnings) == 2

    @pytest.mark.parametrize("code", [8, 9, 16])
    def test_failure(self, code):
        with pytest.raises(CopyError) as exc_info:
            windows.classify_robocopy_exit(code, "ERROR 112 (0x00000070) not enough space")
        assert "not enough space" in exc_info.value.details


class TestDiskpart:
    """Tests for run_diskpart() and the diskpart-driven steps."""

    def test_error_markers(self):
        assert windows.diskpart_failed("DiskPart has encountered an error: Access is denied.")
        assert windows.diskpart_failed("virtual disk service error:\nThe volume is too big.")
        assert not windows.diskpart_failed("DiskPart successfully cleaned the disk.")

    def test_script_contents(self, backend, mocker):
        seen = {}

        def fake_run(command, **kwargs):
            seen["command"] = command
            seen["script"] = Path(command[2]).read_text(encoding="ascii")
            return completed(stdout="DiskPart succeeded")

        mocker.patch("ubuntu_usb_creator.storage.backends.windows.run_command", side_effect=fake_run)
        backend.run_diskpart(["select disk 1", "clean"])

        assert seen["command"][:2] == ["diskpart", "/s"]
        assert seen["script"] == "select disk 1\nclean\nexit\n"
        assert not Path(seen["command"][2]).exists()

    def test_error_marker_with_zero_exit(self, backend, mocker):
        mocker.patch(
            "ubuntu_usb_creator.storage.backends.windows.run_command",
            return_value=completed(stdout="Virtual Disk Service error:\nThe media is write protected."),
        )
        with pytest.raises(CommandError):
            backend.run_diskpart(["select disk 1", "clean"])

    def test_partition_sequence(self, backend, mocker, usb_disk):
        mock_diskpart = mocker.patch.object(backend, "run_diskpart", return_value="")
        assert backend.create_partition_table(usb_disk) == "1"
        lines = mock_diskpart.call_args.args[0]
        assert lines == [
            "select disk 1",
            "clean",
            "convert mbr",
            "create partition primary",
            "active",
        ]

    def test_partition_failure(self, backend, mocker, usb_disk):
        mocker.patch.object(
            backend, "run_diskpart", side_effect=CommandError(["diskpart"], 1, "Access is denied.")
        )
        with pytest.raises(PartitionError):
            backend.create_partition_table(usb_disk)

    def test_format_command(self, backend, mocker, usb_disk):
        mock_diskpart = mocker.patch.object(backend, "run_diskpart", return_value="")
        backend.format_partition(usb_disk, "1", "UBUNTU")
        assert mock_diskpart.call_args.args[0][-1] == "format fs=fat32 quick label=UBUNTU"

    def test_format_large_disk_hint(self, backend, mocker, usb_disk):
        large = replace(usb_disk, size_bytes=64 * 1024**3)
        mocker.patch.object(
            backend, "run_diskpart", side_effect=CommandError(["diskpart"], 1, "too big")
        )
        with pytest.raises(FormatError) as exc_info:
            backend.format_partition(large, "1", "UBUNTU")
        assert "32 GB" in exc_info.value.hint


class TestHandles:
    """Tests for drive letter handling."""

    def test_handles_in_use(self, backend, mocker):
        mocker.patch(
            "ubuntu_usb_creator.storage.backends.windows.run_command",
            return_value=completed(stdout="C\r\nd\r\nE\r\n\r\n"),
        )
        assert backend.handles_in_use() == {"C", "D", "E"}

    def test_assign_letter(self, backend, mocker, usb_disk):
        mock_diskpart = mocker.patch.object(backend, "run_diskpart", return_value="")
        mocker.patch("ubuntu_usb_creator.storage.backends.windows.wait_for", return_value=True)
        root = backend.assign_handle(usb_disk, "1", "u:")
        assert mock_diskpart.call_args.args[0][-1] == "assign letter=U"
        assert str(root).startswith("U:")

    def test_letter_never_appears(self, backend, mocker, usb_disk):
        mocker.patch.object(backend, "run_diskpart", return_value="")
        mocker.patch("ubuntu_usb_creator.storage.backends.windows.wait_for", return_value=None)
        with pytest.raises(DeviceError, match="did not become available"):
            backend.assign_handle(usb_disk, "1", "U")


class TestIsoMount:
    """Tests for mount_iso() and unmount_iso()."""

    def test_ps_quote(self):
        assert windows.ps_quote("C:\\it's.iso") == "'C:\\it''s.iso'"

    def test_mount_returns_drive_root(self, backend, mocker):
        mocker.patch(
            "ubuntu_usb_creator.storage.backends.windows.run_command",
            side_effect=[completed(), completed(stdout="f\r\n")],
        )
        root = backend.mount_iso(Path("ubuntu.iso"), timeout=5)
        assert str(root).startswith("F:")

    def test_mount_without_letter_dismounts(self, backend, mocker):
        mocker.patch(
            "ubuntu_usb_creator.storage.backends.windows.run_command",
            return_value=completed(),
        )
        mocker.patch("ubuntu_usb_creator.storage.backends.windows.wait_for", return_value=None)
        mock_unmount = mocker.patch.object(backend, "unmount_iso", return_value=True)
        with pytest.raises(MountError):
            backend.mount_iso(Path("ubuntu.iso"), timeout=5)
        mock_unmount.assert_called_once()

    def test_unmount_reports_failure(self, backend, mocker):
        mocker.patch(
            "ubuntu_usb_creator.storage.backends.windows.run_command",
            return_value=completed(returncode=1, stderr="not attached"),
        )
        assert backend.unmount_iso(Path("ubuntu.iso"), Path("F:\\")) is False


class TestBulkCopy:
    """Tests for bulk_copy()."""

    def test_robocopy_warning_is_success(self, backend, mocker):
        mock_run = mocker.patch(
            "ubuntu_usb_creator.storage.backends.windows.run_command",
            return_value=completed(returncode=3),
        )
        outcome = backend.bulk_copy(Path("F:\\"), Path("U:\\"))
        command = mock_run.call_args.args[0]
        assert command[0] == "robocopy"
        assert "/E" in command
        assert outcome.warnings == ("extra files or directories exist at the destination",)

    def test_robocopy_failure(self, backend, mocker):
        mocker.patch(
            "ubuntu_usb_creator.storage.backends.windows.run_command",
            return_value=completed(returncode=8),
        )
        with pytest.raises(CopyError):
            backend.bulk_copy(Path("F:\\"), Path("U:\\"))
