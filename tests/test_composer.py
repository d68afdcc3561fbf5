"""
Tests for ubuntu_usb_creator.media.composer and verifier modules.

This test suite covers:
- Copying the ISO tree and writing the autoinstall payload
- First-boot scripts with LF line endings
- FAT32 file size limit
- ISO detach on failure
- Post-composition verification
"""

from pathlib import Path

import pytest
import yaml

from ubuntu_usb_creator.config import settings
from ubuntu_usb_creator.domain import IsoSource, ReadyDisk
from ubuntu_usb_creator.exceptions import CopyError, OversizedFileError, PatchError, VerificationWarning
from ubuntu_usb_creator.media import build_manifest, compose, composer, verify
from ubuntu_usb_creator.media.bootloader import is_patched


@pytest.fixture
def ready(fake_backend, usb_disk):
    return ReadyDisk(
        disk=usb_disk,
        partition="/dev/sda1",
        handle="/mnt/ubuntu-usb",
        root=fake_backend.target_root,
    )


@pytest.fixture
def iso(tmp_path):
    path = tmp_path / "ubuntu.iso"
    path.write_bytes(b"iso")
    return IsoSource(path=path)


class TestFindOversizedFiles:
    """Tests for find_oversized_files()."""

    def test_small_limit(self, fake_iso_tree):
        assert composer.find_oversized_files(fake_iso_tree, limit=5) == [
            ".disk/info",
            "boot/grub/grub.cfg",
            "boot/grub/loopback.cfg",
            "casper/initrd",
            "casper/vmlinuz",
        ]

    def test_sparse_file_over_fat32_limit(self, tmp_path):
        with open(tmp_path / "filesystem.squashfs", "wb") as handle:
            handle.truncate(settings.FAT32_MAX_FILE_SIZE + 1)
        assert composer.find_oversized_files(tmp_path) == ["filesystem.squashfs"]

    def test_exact_limit_allowed(self, tmp_path):
        with open(tmp_path / "big", "wb") as handle:
            handle.truncate(settings.FAT32_MAX_FILE_SIZE)
        assert composer.find_oversized_files(tmp_path) == []


class TestCopyScripts:
    """Tests for copy_scripts()."""

    def test_lf_endings_and_only_shell_scripts(self, scripts_dir, tmp_path):
        destination = tmp_path / "out"
        copied = composer.copy_scripts(scripts_dir, destination)
        assert copied == ("mount-drives.sh", "post-install.sh")
        assert (destination / "post-install.sh").read_bytes() == b"#!/bin/bash\necho post-install\n"
        assert not (destination / "README.txt").exists()

    def test_missing_directory(self, tmp_path):
        assert composer.copy_scripts(tmp_path / "missing", tmp_path / "out") == ()


class TestCompose:
    """Tests for compose()."""

    def test_full_layout(self, fake_backend, ready, iso, install_config, scripts_dir):
        media = compose(fake_backend, ready, iso, install_config, scripts_dir=scripts_dir)
        root = fake_backend.target_root

        assert media.root == root
        assert (root / "casper/vmlinuz").read_text() == "kernel"
        user_data = (root / "autoinstall/user-data").read_bytes()
        assert user_data.startswith(b"#cloud-config\n")
        assert b"\r" not in user_data
        assert yaml.safe_load(user_data)["autoinstall"]["identity"]["hostname"] == "lab-01"
        meta_data = (root / "autoinstall/meta-data").read_text()
        assert meta_data == media.manifest.meta_data
        assert (root / "scripts/post-install.sh").read_bytes() == b"#!/bin/bash\necho post-install\n"
        assert (root / "scripts/config.env").read_text().startswith("# Auto-generated configuration")
        assert media.copied_scripts == ("mount-drives.sh", "post-install.sh")
        assert is_patched((root / "boot/grub/grub.cfg").read_text())
        assert len(media.patched_boot_configs) == 2
        assert fake_backend.calls == ["mount_iso", "bulk_copy", "unmount_iso"]

    def test_source_left_untouched(self, fake_backend, ready, iso, install_config, fake_iso_tree):
        original = (fake_iso_tree / "boot/grub/grub.cfg").read_text()
        compose(fake_backend, ready, iso, install_config, scripts_dir=None)
        assert (fake_iso_tree / "boot/grub/grub.cfg").read_text() == original

    def test_prebuilt_manifest_used(self, fake_backend, ready, iso, install_config):
        manifest = build_manifest(install_config, instance_id="fixed-id")
        media = compose(fake_backend, ready, iso, install_config, scripts_dir=None, manifest=manifest)
        assert "instance-id: fixed-id" in (media.root / "autoinstall/meta-data").read_text()

    def test_oversized_source_fails_before_copy(self, fake_backend, ready, iso, install_config, fake_iso_tree):
        with open(fake_iso_tree / "casper" / "filesystem.squashfs", "wb") as handle:
            handle.truncate(settings.FAT32_MAX_FILE_SIZE + 1)
        with pytest.raises(OversizedFileError) as exc_info:
            compose(fake_backend, ready, iso, install_config, scripts_dir=None)
        assert exc_info.value.paths == ["casper/filesystem.squashfs"]
        assert "bulk_copy" not in fake_backend.calls
        assert fake_backend.calls[-1] == "unmount_iso"

    def test_copy_failure_detaches_iso(self, fake_backend, ready, iso, install_config, mocker):
        mocker.patch.object(fake_backend, "bulk_copy", side_effect=CopyError("rsync failed"))
        with pytest.raises(CopyError):
            compose(fake_backend, ready, iso, install_config, scripts_dir=None)
        assert fake_backend.calls == ["mount_iso", "unmount_iso"]

    def test_missing_grub_cfg(self, fake_backend, ready, iso, install_config, fake_iso_tree):
        (fake_iso_tree / "boot/grub/grub.cfg").unlink()
        with pytest.raises(PatchError):
            compose(fake_backend, ready, iso, install_config, scripts_dir=None)


class TestVerify:
    """Tests for verify()."""

    def test_composed_media_passes(self, fake_backend, ready, iso, install_config, scripts_dir):
        media = compose(fake_backend, ready, iso, install_config, scripts_dir=scripts_dir)
        report = verify(media)
        assert report.passed
        assert report.summary_lines() == [
            "All required boot artifacts present; no foreign boot files found."
        ]

    def test_missing_artifacts_warn(self, fake_iso_tree):
        with pytest.warns(VerificationWarning):
            report = verify(fake_iso_tree)
        assert not report.passed
        assert report.missing == ("autoinstall/user-data", "autoinstall/meta-data")
        assert report.foreign == ()

    def test_foreign_windows_files(self, fake_backend, ready, iso, install_config):
        media = compose(fake_backend, ready, iso, install_config, scripts_dir=None)
        (media.root / "bootmgr").write_text("")
        (media.root / "Sources").mkdir()
        (media.root / "Sources" / "INSTALL.WIM").write_text("")
        with pytest.warns(VerificationWarning):
            report = verify(media)
        assert report.foreign == ("bootmgr", "sources/install.wim")
        assert any("different device" in line for line in report.summary_lines())

    def test_accepts_path(self, tmp_path):
        with pytest.warns(VerificationWarning):
            report = verify(Path(tmp_path))
        assert len(report.missing) == 6
