"""Application settings and install-config defaults."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any


DEFAULT_CONFIG_CANDIDATES = (
    Path(os.environ.get("UBUNTU_USB_CREATOR_CONFIG", ".env")),
    Path("..") / ".." / ".env",
)

DOWNLOAD_DIR = Path(os.environ.get("UBUNTU_USB_CREATOR_DOWNLOAD_DIR", "downloads"))
SCRIPTS_DIR = Path(os.environ.get("UBUNTU_USB_CREATOR_SCRIPTS_DIR", "scripts"))

# Default values - use these constants instead of hardcoding values elsewhere
BCRYPT_ROUNDS = 12
HOSTNAME_SENTINEL = "random"
HOSTNAME_PREFIX = "ubuntu"
VOLUME_LABEL = "UBUNTU"
GRUB_TIMEOUT_SECONDS = 5

HTTP_CONNECT_TIMEOUT_SECONDS = 30
HTTP_READ_TIMEOUT_SECONDS = 60
CHECKSUM_FETCH_TIMEOUT_SECONDS = 30
CHECKSUM_FETCH_ATTEMPTS = 2
GPG_TIMEOUT_SECONDS = 60
ISO_MOUNT_TIMEOUT_SECONDS = 30

FAT32_MAX_FILE_SIZE = 4 * 1024**3 - 1
FAT32_FORMAT_CEILING_BYTES = 32 * 1024**3
WIPE_BYTES = 1024 * 1024

ALLOWED_BUS_TYPES = frozenset({"USB", "SD", "MMC"})

WINDOWS_DRIVE_LETTER_POOL = ("U", "V", "W", "X", "Y", "Z")
LINUX_MOUNT_POINT_POOL = (
    "/mnt/ubuntu-usb",
    "/mnt/ubuntu-usb-1",
    "/mnt/ubuntu-usb-2",
    "/mnt/ubuntu-usb-3",
)

# Keys consumed directly by the install config, with the defaults applied
# when a key is absent or empty.
DEFAULT_SETTINGS: dict[str, Any] = {
    "INSTALL_HOSTNAME": HOSTNAME_SENTINEL,
    "TIMEZONE": "America/New_York",
    "LOCALE": "en_US.UTF-8",
    "KEYBOARD_LAYOUT": "us",
    "INSTALL_GUI": "false",
    "SSH_AUTHORIZED_KEYS": "",
    "STATIC_IP": "false",
    "IP_ADDRESS": "192.168.1.100",
    "NETMASK": "255.255.255.0",
    "GATEWAY": "192.168.1.1",
    "DNS_SERVERS": "8.8.8.8,8.8.4.4",
    "EXTRA_PACKAGES": "htop,vim,curl,wget,git",
    "AUTO_MOUNT_DRIVES": "true",
}

# Boolean switches interpreted only by the first-boot scripts.
DEFAULT_FEATURE_FLAGS: dict[str, bool] = {
    "INSTALL_DOCKER": False,
    "INSTALL_PORTAINER": False,
    "INSTALL_COCKPIT": False,
    "INSTALL_WEBMIN": False,
    "INSTALL_PROMETHEUS": False,
    "INSTALL_NODE_EXPORTER": False,
    "INSTALL_GRAFANA": False,
    "INSTALL_SIGNOZ": False,
    "INSTALL_OTEL_COLLECTOR": False,
    "INSTALL_TAILSCALE": False,
    "INSTALL_ZEROTIER": False,
    "INSTALL_SAMBA": False,
    "INSTALL_NFS": False,
    "INSTALL_ANSIBLE": True,
    "INSTALL_DEV_TOOLS": False,
    "INSTALL_COMMON_TOOLS": False,
    "ENABLE_AUTO_UPDATES": False,
    "ENABLE_WAKE_ON_LAN": False,
    "SHOW_OPTIONAL_MENU": False,
}

# Non-boolean values the first-boot scripts read, kept as strings.
DEFAULT_ORCHESTRATOR_SETTINGS: dict[str, str] = {
    "SWAP_SIZE_GB": "4",
    "NFS_EXPORT_PATH": "/srv/nfs/share",
    "NFS_ALLOWED_NETWORK": "192.168.1.0/24",
    "SAMBA_SHARE_PATH": "/srv/samba/share",
    "OTEL_ENDPOINT": "",
}

# Environment names that would let a config value run code once the
# first-boot scripts load config.env.
BLOCKED_ENV_KEYS = frozenset(
    {
        "BASH_ENV",
        "ENV",
        "BASHOPTS",
        "SHELLOPTS",
        "PROMPT_COMMAND",
        "PS4",
        "IFS",
        "PATH",
        "CDPATH",
        "GLOBIGNORE",
        "PYTHONPATH",
        "PYTHONSTARTUP",
        "PYTHONHOME",
        "PERL5LIB",
        "PERL5OPT",
        "PERLLIB",
        "RUBYOPT",
        "RUBYLIB",
        "NODE_OPTIONS",
        "GCONV_PATH",
        "HOSTALIASES",
        "LOCALDOMAIN",
        "RES_OPTIONS",
    }
)
BLOCKED_ENV_PREFIXES = ("LD_", "DYLD_", "BASH_FUNC_")
