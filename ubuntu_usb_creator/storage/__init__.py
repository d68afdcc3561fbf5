"""Disk enumeration, provisioning and image mounting."""

from __future__ import annotations

from .backends import CopyOutcome, DiskBackend, choose_handle, get_backend
from .devices import filter_candidates, find_candidate, human_size, list_candidates
from .mount import iso_mounted
from .provisioner import CONFIRMATION_WORD, DiskProvisioner


__all__ = [
    "CONFIRMATION_WORD",
    "CopyOutcome",
    "DiskBackend",
    "DiskProvisioner",
    "choose_handle",
    "filter_candidates",
    "find_candidate",
    "get_backend",
    "human_size",
    "iso_mounted",
    "list_candidates",
]
