"""Payload composition onto a provisioned disk.

Copies the ISO tree onto the FAT32 partition, then writes the generated
autoinstall payload and first-boot scripts and patches the boot loader.

Target layout:
    <root>/...                     ISO contents
    <root>/autoinstall/user-data
    <root>/autoinstall/meta-data
    <root>/scripts/*.sh            first-boot scripts (LF endings)
    <root>/scripts/config.env
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from ubuntu_usb_creator.config import settings
from ubuntu_usb_creator.domain import (
    AutoinstallManifest,
    ComposedMedia,
    InstallConfig,
    IsoSource,
    ReadyDisk,
)
from ubuntu_usb_creator.exceptions import OversizedFileError
from ubuntu_usb_creator.logging import LoggerFactory
from ubuntu_usb_creator.media.bootloader import patch_boot_configs
from ubuntu_usb_creator.media.files import to_unix_newlines, write_unix_text
from ubuntu_usb_creator.media.manifest import build_manifest, render_config_env
from ubuntu_usb_creator.storage.backends.base import DiskBackend
from ubuntu_usb_creator.storage.mount import iso_mounted


log = LoggerFactory.for_media()


def find_oversized_files(root: Path, limit: int = settings.FAT32_MAX_FILE_SIZE) -> list[str]:
    """Relative paths of regular files larger than limit bytes."""
    root = Path(root)
    oversized = []
    for directory, _dirs, files in os.walk(root):
        for name in files:
            path = Path(directory) / name
            if path.is_symlink():
                continue
            if path.stat().st_size > limit:
                oversized.append(path.relative_to(root).as_posix())
    return sorted(oversized)


def copy_scripts(scripts_dir: Optional[Path], destination: Path) -> tuple[str, ...]:
    """Copy every ``*.sh`` file with its line endings converted to LF.

    A missing scripts directory is reported as a warning; the media still
    installs, only the first-boot stage has nothing to run.
    """
    if scripts_dir is None or not Path(scripts_dir).is_dir():
        log.warning(f"Scripts directory {scripts_dir} not found; no first-boot scripts copied")
        return ()
    copied = []
    for script in sorted(Path(scripts_dir).glob("*.sh")):
        text = script.read_text(encoding="utf-8", errors="surrogateescape")
        target = Path(destination) / script.name
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8", errors="surrogateescape", newline="\n") as output:
            output.write(to_unix_newlines(text))
        copied.append(script.name)
    log.info(f"Copied {len(copied)} first-boot script(s)")
    return tuple(copied)


def write_payload(
    root: Path,
    manifest: AutoinstallManifest,
    config: InstallConfig,
    scripts_dir: Optional[Path],
) -> tuple[str, ...]:
    """Write the generated files and scripts. Returns the copied script names."""
    root = Path(root)
    write_unix_text(root / "autoinstall" / "user-data", manifest.user_data)
    write_unix_text(root / "autoinstall" / "meta-data", manifest.meta_data)
    copied = copy_scripts(scripts_dir, root / "scripts")
    write_unix_text(root / "scripts" / "config.env", render_config_env(config))
    return copied


def compose(
    backend: DiskBackend,
    ready: ReadyDisk,
    iso: IsoSource,
    config: InstallConfig,
    *,
    scripts_dir: Optional[Path] = settings.SCRIPTS_DIR,
    manifest: Optional[AutoinstallManifest] = None,
) -> ComposedMedia:
    """Copy the image and payload onto the ready disk.

    Raises:
        MountError: If the ISO cannot be attached
        CopyError: If the copy tool fails or a file exceeds the FAT32 limit
        ComposeError: If the manifest cannot be rendered
        PatchError: If the boot loader patch cannot be confirmed
    """
    manifest = manifest or build_manifest(config)
    root = Path(ready.root)

    with iso_mounted(backend, iso.path) as source:
        oversized = find_oversized_files(source)
        if oversized:
            raise OversizedFileError(oversized, settings.FAT32_MAX_FILE_SIZE)
        log.info(f"Copying {source} to {root}")
        outcome = backend.bulk_copy(source, root)
        for warning in outcome.warnings:
            log.warning(f"{outcome.tool}: {warning}")

    oversized = find_oversized_files(root)
    if oversized:
        raise OversizedFileError(oversized, settings.FAT32_MAX_FILE_SIZE)

    copied = write_payload(root, manifest, config, scripts_dir)
    patched = patch_boot_configs(root)

    log.success(f"Media composed at {root}")
    return ComposedMedia(
        root=root,
        disk=ready.disk,
        manifest=manifest,
        patched_boot_configs=patched,
        copied_scripts=copied,
        copy_warnings=outcome.warnings,
    )
