"""GRUB configuration patching for unattended installs.

The patch is idempotent: applying it to an already patched file changes
nothing. It

    - adds the autoinstall kernel parameters to every ``linux`` line that
      lacks them, before the ``---`` separator,
    - sets a 5 second countdown,
    - appends one safe-graphics entry booting with ``nomodeset``.

After writing, the file is read back and must contain the keyword on a
kernel line; otherwise PatchError is raised.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, Optional

from ubuntu_usb_creator.config import settings
from ubuntu_usb_creator.exceptions import PatchError
from ubuntu_usb_creator.logging import LoggerFactory
from ubuntu_usb_creator.media.files import find_case_insensitive, to_unix_newlines


log = LoggerFactory.for_media()

AUTOINSTALL_KEYWORD = "autoinstall"
# GRUB treats an unescaped ';' as a command separator.
AUTOINSTALL_PARAMS = "autoinstall ds=nocloud\\;s=/cdrom/autoinstall/"
SAFE_GRAPHICS_TITLE = "Install Ubuntu Server (safe graphics, autoinstall)"

GRUB_CONFIGS = ("boot/grub/grub.cfg", "boot/grub/loopback.cfg")

KERNEL_LINE = re.compile(r"^(\s*)(linux(?:efi)?)(\s+)(\S+)(.*)$")
INITRD_LINE = re.compile(r"^\s*initrd(?:efi)?\s+(\S+)")
TIMEOUT_LINE = re.compile(r"^(\s*)set timeout=\S*", re.MULTILINE)
TIMEOUT_STYLE_LINE = re.compile(r"^(\s*)set timeout_style=\S*", re.MULTILINE)


def patch_kernel_line(line: str) -> str:
    match = KERNEL_LINE.match(line)
    if not match or AUTOINSTALL_KEYWORD in line:
        return line
    indent, command, space, kernel, args = match.groups()
    if "---" in args:
        before, _, after = args.rpartition("---")
        args = f"{before.rstrip()} {AUTOINSTALL_PARAMS} ---{after}"
    else:
        args = f"{args.rstrip()} {AUTOINSTALL_PARAMS}"
    return f"{indent}{command}{space}{kernel}{args}"


def _boot_files(lines: Iterable[str]) -> tuple[str, str]:
    kernel, initrd = "/casper/vmlinuz", "/casper/initrd"
    for line in lines:
        kernel_match = KERNEL_LINE.match(line)
        if kernel_match and kernel == "/casper/vmlinuz":
            kernel = kernel_match.group(4)
        initrd_match = INITRD_LINE.match(line)
        if initrd_match and initrd == "/casper/initrd":
            initrd = initrd_match.group(1)
    return kernel, initrd


def safe_graphics_entry(kernel: str, initrd: str) -> str:
    return (
        f'menuentry "{SAFE_GRAPHICS_TITLE}" {{\n'
        "\tset gfxpayload=keep\n"
        f"\tlinux\t{kernel} nomodeset {AUTOINSTALL_PARAMS} ---\n"
        f"\tinitrd\t{initrd}\n"
        "}\n"
    )


def patch_grub_text(text: str, timeout: int = settings.GRUB_TIMEOUT_SECONDS) -> str:
    """Return the patched configuration. Pure and idempotent."""
    lines = to_unix_newlines(text).split("\n")
    kernel, initrd = _boot_files(lines)
    patched = "\n".join(patch_kernel_line(line) for line in lines)

    if TIMEOUT_LINE.search(patched):
        patched = TIMEOUT_LINE.sub(lambda m: f"{m.group(1)}set timeout={timeout}", patched)
    else:
        patched = f"set timeout={timeout}\n{patched}"

    if TIMEOUT_STYLE_LINE.search(patched):
        patched = TIMEOUT_STYLE_LINE.sub(
            lambda m: f"{m.group(1)}set timeout_style=countdown", patched
        )
    else:
        patched = TIMEOUT_LINE.sub(
            lambda m: f"{m.group(0)}\n{m.group(1)}set timeout_style=countdown",
            patched,
            count=1,
        )

    has_kernel = any(KERNEL_LINE.match(line) for line in lines)
    if has_kernel and SAFE_GRAPHICS_TITLE not in patched:
        if not patched.endswith("\n"):
            patched += "\n"
        patched += "\n" + safe_graphics_entry(kernel, initrd)
    return patched


def is_patched(text: str) -> bool:
    """True if at least one kernel line carries the autoinstall keyword."""
    return any(
        KERNEL_LINE.match(line) and AUTOINSTALL_KEYWORD in line
        for line in to_unix_newlines(text).split("\n")
    )


def patch_grub_file(path: Path) -> bool:
    """Patch one GRUB configuration file in place.

    Returns:
        True if the file content changed

    Raises:
        PatchError: If the keyword is missing after writing
    """
    path = Path(path)
    original = path.read_text(encoding="utf-8", errors="surrogateescape")
    patched = patch_grub_text(original)
    changed = patched != original
    if changed:
        with open(path, "w", encoding="utf-8", errors="surrogateescape", newline="\n") as output:
            output.write(patched)

    confirmed = path.read_text(encoding="utf-8", errors="surrogateescape")
    if not is_patched(confirmed):
        raise PatchError(
            f"{path} has no kernel line carrying '{AUTOINSTALL_KEYWORD}' after patching",
            hint="The ISO may not be an Ubuntu live-server image.",
        )
    log.info(f"{'Patched' if changed else 'Already patched'}: {path}")
    return changed


def patch_boot_configs(root: Path, candidates: Optional[Iterable[str]] = None) -> tuple[Path, ...]:
    """Patch every GRUB configuration present under root.

    Raises:
        PatchError: If boot/grub/grub.cfg is absent, or any patch fails
    """
    candidates = tuple(candidates or GRUB_CONFIGS)
    patched = []
    for relative in candidates:
        path = find_case_insensitive(root, relative)
        if path is None or not path.is_file():
            if relative == candidates[0]:
                raise PatchError(f"{relative} not found on the target media")
            continue
        patch_grub_file(path)
        patched.append(path)
    return tuple(patched)
