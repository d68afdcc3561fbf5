"""Autoinstall payload composition and verification."""

from __future__ import annotations

from .bootloader import patch_boot_configs, patch_grub_file, patch_grub_text
from .composer import compose
from .manifest import build_manifest, render_config_env
from .templates import render, substitute
from .verifier import verify


__all__ = [
    "build_manifest",
    "compose",
    "patch_boot_configs",
    "patch_grub_file",
    "patch_grub_text",
    "render",
    "render_config_env",
    "substitute",
    "verify",
]
