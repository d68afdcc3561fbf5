"""Autoinstall payload generation.

Produces the three generated text artifacts written to the media:

    autoinstall/user-data   cloud-config with the ``autoinstall:`` document
    autoinstall/meta-data   fresh instance id and the target hostname
    scripts/config.env      flat KEY=VALUE file read by the first-boot scripts

Example:
    >>> manifest = build_manifest(config)
    >>> manifest.meta_data.splitlines()[1]
    'local-hostname: ubuntu-3fa91c'
"""

from __future__ import annotations

import json
import shlex
import uuid
from typing import Iterable, Optional

import yaml

from ubuntu_usb_creator.domain import AutoinstallManifest, InstallConfig, NetworkConfig
from ubuntu_usb_creator.exceptions import ManifestSchemaError
from ubuntu_usb_creator.logging import LoggerFactory
from ubuntu_usb_creator.media.templates import load_template, render


log = LoggerFactory.for_media()

USER_DATA_TEMPLATE = "user-data.tmpl"

AUTOINSTALL_KEYS = (
    "version",
    "storage",
    "locale",
    "keyboard",
    "identity",
    "ssh",
    "network",
    "timezone",
    "apt",
    "packages",
    "late-commands",
)

BASE_PACKAGES = (
    "linux-firmware",
    "intel-microcode",
    "amd64-microcode",
    "build-essential",
    "dkms",
    "linux-headers-generic",
    "network-manager",
    "wpasupplicant",
    "ethtool",
    "net-tools",
    "nvme-cli",
    "smartmontools",
    "hdparm",
    "mdadm",
    "lvm2",
    "openssh-server",
    "curl",
    "wget",
    "git",
    "htop",
    "vim",
    "tmux",
    "unzip",
    "lm-sensors",
    "i2c-tools",
    "thermald",
    "powertop",
    "alsa-utils",
    "alsa-base",
    "usbutils",
    "pciutils",
    "fwupd",
)


def render_network_section(network: NetworkConfig) -> str:
    lines = [
        "  network:",
        "    version: 2",
        "    ethernets:",
        "      id0:",
        "        match:",
        '          driver: "*"',
    ]
    if network.is_static:
        lines += [
            "        dhcp4: false",
            "        addresses:",
            f"          - {network.cidr_address}",
            "        routes:",
            "          - to: default",
            f"            via: {network.gateway}",
            "        nameservers:",
            f"          addresses: [{', '.join(network.dns_servers)}]",
        ]
    else:
        lines += [
            "        dhcp4: true",
            "        dhcp6: true",
        ]
    return "\n".join(lines)


def install_packages(extra_packages: Iterable[str]) -> list[str]:
    """Base package set followed by extra packages, without duplicates."""
    return list(dict.fromkeys([*BASE_PACKAGES, *extra_packages]))


def render_packages_section(packages: Iterable[str]) -> str:
    return "\n".join(["  packages:", *(f"    - {package}" for package in packages)])


def template_values(config: InstallConfig) -> dict[str, str]:
    keys = list(config.ssh_authorized_keys)
    return {
        "LOCALE": config.locale,
        "KEYBOARD_LAYOUT": config.keyboard_layout,
        "INSTALL_HOSTNAME": config.hostname,
        "INSTALL_USERNAME": config.username,
        "PASSWORD_HASH": config.password_hash,
        "SSH_AUTHORIZED_KEYS_YAML": json.dumps(keys) if keys else "",
        "NETWORK_SECTION": render_network_section(config.network),
        "TIMEZONE": config.timezone,
        "PACKAGES_SECTION": render_packages_section(install_packages(config.extra_packages)),
    }


def validate_user_data(text: str) -> dict:
    """Parse user-data and check the autoinstall document structure.

    Raises:
        ManifestSchemaError: If the text is not valid autoinstall YAML
    """
    if not text.startswith("#cloud-config\n"):
        raise ManifestSchemaError("user-data must start with '#cloud-config'")
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as error:
        raise ManifestSchemaError("user-data is not valid YAML", details=str(error)) from error

    autoinstall = document.get("autoinstall") if isinstance(document, dict) else None
    if not isinstance(autoinstall, dict):
        raise ManifestSchemaError("user-data has no 'autoinstall' mapping")
    missing = [key for key in AUTOINSTALL_KEYS if key not in autoinstall]
    if missing:
        raise ManifestSchemaError(f"autoinstall is missing keys: {', '.join(missing)}")
    if autoinstall["version"] != 1:
        raise ManifestSchemaError(f"Unsupported autoinstall version {autoinstall['version']!r}")
    return document


def render_user_data(config: InstallConfig, template: Optional[str] = None) -> str:
    if template is None:
        template = load_template(USER_DATA_TEMPLATE)
    text = render(template, template_values(config))
    validate_user_data(text)
    return text


def render_meta_data(instance_id: str, hostname: str) -> str:
    return f"instance-id: {instance_id}\nlocal-hostname: {hostname}\n"


def build_manifest(
    config: InstallConfig,
    *,
    instance_id: Optional[str] = None,
    template: Optional[str] = None,
) -> AutoinstallManifest:
    """Render user-data and meta-data for one run.

    A new instance id is drawn for every call so cloud-init never mistakes a
    re-provisioned machine for one it has already configured.
    """
    instance_id = instance_id or str(uuid.uuid4())
    manifest = AutoinstallManifest(
        user_data=render_user_data(config, template),
        meta_data=render_meta_data(instance_id, config.hostname),
        instance_id=instance_id,
        hostname=config.hostname,
        password_hash=config.password_hash,
    )
    log.info(f"Rendered autoinstall manifest (instance {instance_id})")
    return manifest


def _bool(value: bool) -> str:
    return "true" if value else "false"


def config_env_values(config: InstallConfig) -> dict[str, str]:
    """Every value the first-boot scripts read, in file order."""
    network = config.network
    values = {
        "INSTALL_USERNAME": config.username,
        "INSTALL_HOSTNAME": config.hostname,
        "TIMEZONE": config.timezone,
        "LOCALE": config.locale,
        "KEYBOARD_LAYOUT": config.keyboard_layout,
        "INSTALL_GUI": _bool(config.install_gui),
        "SSH_AUTHORIZED_KEYS": "\n".join(config.ssh_authorized_keys),
        "STATIC_IP": _bool(network.is_static),
        "IP_ADDRESS": network.address,
        "NETMASK": network.netmask,
        "GATEWAY": network.gateway,
        "DNS_SERVERS": ",".join(network.dns_servers),
        "EXTRA_PACKAGES": ",".join(config.extra_packages),
        "AUTO_MOUNT_DRIVES": _bool(config.auto_mount_drives),
    }
    values.update({name: _bool(enabled) for name, enabled in config.features.items()})
    values.update(config.settings)
    for key in sorted(config.extra):
        values.setdefault(key, config.extra[key])
    return values


def render_config_env(config: InstallConfig) -> str:
    """Shell-quoted KEY=VALUE lines; the password is never included."""
    lines = ["# Auto-generated configuration"]
    for key, value in config_env_values(config).items():
        lines.append(f"{key}={shlex.quote(str(value))}")
    return "\n".join(lines) + "\n"
