"""File helpers for the FAT32 target."""

from __future__ import annotations

from pathlib import Path
from typing import Optional


def to_unix_newlines(text: str) -> str:
    """Convert CRLF and lone CR line endings to LF."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def write_unix_text(path: Path, text: str) -> Path:
    """Write text with LF endings, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="\n") as output:
        output.write(to_unix_newlines(text))
    return path


def find_case_insensitive(root: Path, relative: str) -> Optional[Path]:
    """Locate root/relative matching each component case-insensitively.

    FAT32 preserves case but ignores it, and ISO trees differ between
    releases (``EFI/boot`` vs ``efi/boot``).
    """
    current = Path(root)
    for part in Path(relative).parts:
        exact = current / part
        if exact.exists():
            current = exact
            continue
        if not current.is_dir():
            return None
        lowered = part.lower()
        for entry in current.iterdir():
            if entry.name.lower() == lowered:
                current = entry
                break
        else:
            return None
    return current
