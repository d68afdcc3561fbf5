"""Pinned Ubuntu Server releases.

Every entry names an exact point release so a run is reproducible; there is
no floating "latest" reference.
"""

from __future__ import annotations

from ubuntu_usb_creator.domain import UbuntuRelease
from ubuntu_usb_creator.exceptions import ValidationError


RELEASES: tuple[UbuntuRelease, ...] = (
    UbuntuRelease(
        version="24.04",
        codename="Noble Numbat",
        iso_name="ubuntu-24.04.1-live-server-amd64.iso",
        base_url="https://releases.ubuntu.com/24.04",
    ),
    UbuntuRelease(
        version="22.04",
        codename="Jammy Jellyfish",
        iso_name="ubuntu-22.04.5-live-server-amd64.iso",
        base_url="https://releases.ubuntu.com/22.04",
    ),
)

DEFAULT_RELEASE = RELEASES[0]


def menu_lines() -> list[str]:
    lines = []
    for number, release in enumerate(RELEASES, start=1):
        suffix = " (Recommended)" if release is DEFAULT_RELEASE else ""
        lines.append(f"{number}. {release.label}{suffix}")
    return lines


def get_release(choice: str) -> UbuntuRelease:
    """Resolve a menu number or version string to a pinned release.

    An empty choice selects the default release.

    Raises:
        ValidationError: If the choice names no known release
    """
    choice = (choice or "").strip()
    if not choice:
        return DEFAULT_RELEASE
    if choice.isdigit() and 1 <= int(choice) <= len(RELEASES):
        return RELEASES[int(choice) - 1]
    for release in RELEASES:
        if choice in (release.version, release.iso_name):
            return release
    known = ", ".join(release.version for release in RELEASES)
    raise ValidationError(
        f"Unknown Ubuntu release {choice!r}",
        step="select release",
        hint=f"Choose one of: {known}.",
    )
