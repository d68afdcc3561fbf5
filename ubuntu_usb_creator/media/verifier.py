"""Post-composition checks of the target media.

Verification reads the target; it never repairs it. A failed check is
reported as a VerificationWarning and the operator decides what to do.
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import Union

from ubuntu_usb_creator.domain import ComposedMedia, VerificationReport
from ubuntu_usb_creator.exceptions import VerificationWarning
from ubuntu_usb_creator.logging import LoggerFactory
from ubuntu_usb_creator.media.files import find_case_insensitive


log = LoggerFactory.for_media()

REQUIRED_ARTIFACTS = (
    "EFI/boot/bootx64.efi",
    "boot/grub/grub.cfg",
    "casper/vmlinuz",
    "casper/initrd",
    "autoinstall/user-data",
    "autoinstall/meta-data",
)

# Left behind by a Windows installer when the wipe did not take.
FOREIGN_ARTIFACTS = (
    "bootmgr",
    "bootmgr.efi",
    "boot/bcd",
    "efi/microsoft",
    "sources/install.wim",
    "sources/install.esd",
    "sources/boot.wim",
)


def verify(media: Union[ComposedMedia, Path]) -> VerificationReport:
    """Check required boot artifacts are present and foreign ones absent."""
    root = Path(media.root if isinstance(media, ComposedMedia) else media)
    missing = tuple(
        relative for relative in REQUIRED_ARTIFACTS if find_case_insensitive(root, relative) is None
    )
    foreign = tuple(
        relative for relative in FOREIGN_ARTIFACTS if find_case_insensitive(root, relative) is not None
    )
    report = VerificationReport(root=root, missing=missing, foreign=foreign)

    if report.passed:
        log.success(f"Verification passed for {root}")
    else:
        for line in report.summary_lines():
            log.warning(line)
        warnings.warn(
            f"Verification of {root} failed: "
            f"{len(missing)} missing, {len(foreign)} foreign artifact(s)",
            VerificationWarning,
            stacklevel=2,
        )
    return report
