"""Configuration loading for the install media.

The loader parses a strict KEY=VALUE file into an immutable InstallConfig.
Values are never evaluated.
"""

from __future__ import annotations

from .loader import (
    find_config_file,
    generate_hostname,
    hash_password,
    is_blocked_key,
    load,
    parse_env_file,
)


__all__ = [
    "find_config_file",
    "generate_hostname",
    "hash_password",
    "is_blocked_key",
    "load",
    "parse_env_file",
]
