"""Strict KEY=VALUE configuration loader.

The configuration file is parsed, never sourced: values are plain strings
with at most one pair of surrounding quotes removed. Keys that would let a
value inject code into the shell stages that later load config.env are
rejected outright.

Example:
    >>> from ubuntu_usb_creator.config import load
    >>> config = load(Path(".env"))
    >>> config.hostname
    'ubuntu-3fa91c'
"""

from __future__ import annotations

import ipaddress
import re
import secrets
from pathlib import Path
from typing import Iterable, Optional

import bcrypt

from ubuntu_usb_creator.config import settings
from ubuntu_usb_creator.domain import InstallConfig, NetworkConfig, NetworkMode
from ubuntu_usb_creator.exceptions import (
    BlockedKeyError,
    InvalidFieldError,
    MissingFieldError,
    NotFoundError,
    ValidationError,
)
from ubuntu_usb_creator.logging import LoggerFactory


log = LoggerFactory.for_config()

KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
USERNAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")
HOSTNAME_PATTERN = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")
LOCALE_PATTERN = re.compile(r"^[a-z]{2,3}_[A-Z]{2}(\.[A-Za-z0-9-]+)?(@[a-z]+)?$")
KEYBOARD_PATTERN = re.compile(r"^[a-z]{2,8}(\([a-z0-9_-]+\))?$")
TIMEZONE_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_+-]*(/[A-Za-z0-9_+-]+){0,2}$")
PACKAGE_PATTERN = re.compile(r"^[a-z0-9][a-z0-9+.-]+$")
SSH_KEY_PATTERN = re.compile(
    r"^(ssh-(rsa|ed25519|dss)|ecdsa-sha2-nistp(256|384|521)|"
    r"sk-(ssh-ed25519|ecdsa-sha2-nistp256)@openssh\.com) [A-Za-z0-9+/=]+( .*)?$"
)

# bcrypt only hashes the first 72 bytes; newer releases reject longer input.
BCRYPT_MAX_PASSWORD_BYTES = 72

TRUE_VALUES = {"true", "yes", "1", "on"}
FALSE_VALUES = {"false", "no", "0", "off"}


def normalize_key(raw_key: str) -> str:
    """Strip padding and an ``export`` prefix from a raw key."""
    key = raw_key.strip()
    if key[:7].lower() == "export " or key[:7].lower() == "export\t":
        key = key[7:].strip()
    return key


def is_blocked_key(key: str) -> bool:
    """Return True if the key names a blocked environment variable.

    Comparison is case-insensitive and runs on the normalized key so that
    padding, casing or an ``export`` prefix cannot smuggle a name through.
    """
    upper = normalize_key(key).upper()
    if upper in settings.BLOCKED_ENV_KEYS:
        return True
    return upper.startswith(settings.BLOCKED_ENV_PREFIXES)


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a KEY=VALUE file into a dict without evaluating anything.

    Args:
        path: Configuration file path

    Returns:
        Mapping of key to raw string value (last assignment wins)

    Raises:
        NotFoundError: If the file does not exist
        BlockedKeyError: If a key names a blocked environment variable
        InvalidFieldError: If a line is not a KEY=VALUE assignment
        ValidationError: If the file is not UTF-8 text
    """
    path = Path(path)
    if not path.is_file():
        raise NotFoundError(
            path,
            step="load configuration",
            hint="Copy .env.sample to .env and configure it.",
        )

    values: dict[str, str] = {}
    try:
        text = path.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as error:
        raise ValidationError(
            f"{path} is not valid UTF-8 (byte {error.start})",
            hint="Save the configuration file with UTF-8 encoding.",
        ) from error
    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            raise InvalidFieldError(
                f"line {line_number}", line, "expected KEY=VALUE"
            )
        raw_key, raw_value = line.split("=", 1)
        key = normalize_key(raw_key)
        if is_blocked_key(key):
            raise BlockedKeyError(key, line_number)
        if not KEY_PATTERN.match(key):
            raise InvalidFieldError(
                f"line {line_number}", key, "keys must be shell identifiers"
            )
        values[key.upper()] = _strip_quotes(raw_value.strip())

    log.debug(f"Parsed {len(values)} keys from {path}")
    return values


def find_config_file(candidates: Optional[Iterable[Path]] = None) -> Path:
    """Return the first existing configuration file from the candidates."""
    candidates = list(candidates or settings.DEFAULT_CONFIG_CANDIDATES)
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    raise NotFoundError(
        candidates[0],
        step="load configuration",
        hint="Copy .env.sample to .env and configure it.",
    )


def generate_hostname() -> str:
    """Random RFC1123 hostname such as ``ubuntu-3fa91c``."""
    return f"{settings.HOSTNAME_PREFIX}-{secrets.token_hex(3)}"


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    """Salted bcrypt hash accepted by the installer's crypt(3)."""
    salt = bcrypt.gensalt(rounds=rounds or settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("ascii")


def _get(values: dict[str, str], key: str) -> str:
    value = values.get(key, "")
    if value == "":
        return str(settings.DEFAULT_SETTINGS.get(key, ""))
    return value


def _parse_bool(key: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise InvalidFieldError(key, value, "expected true or false")


def _match(key: str, value: str, pattern: re.Pattern, reason: str) -> str:
    if not pattern.match(value):
        raise InvalidFieldError(key, value, reason)
    return value


def _parse_ipv4(key: str, value: str) -> str:
    try:
        return str(ipaddress.IPv4Address(value.strip()))
    except ipaddress.AddressValueError as error:
        raise InvalidFieldError(key, value, str(error)) from error


def _parse_netmask(key: str, value: str) -> str:
    value = value.strip()
    # Accepts both dotted (255.255.255.0) and prefix (24) notation.
    try:
        network = ipaddress.IPv4Network(f"0.0.0.0/{value}")
    except ValueError as error:
        raise InvalidFieldError(key, value, "not a valid IPv4 netmask") from error
    return str(network.netmask)


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in re.split(r"[,\s]+", value) if item.strip()]


def _parse_hostname(value: str) -> str:
    value = value.strip()
    if value == "" or value.lower() == settings.HOSTNAME_SENTINEL:
        hostname = generate_hostname()
        log.info(f"Generated random hostname {hostname}")
        return hostname
    return _match(
        "INSTALL_HOSTNAME",
        value.lower(),
        HOSTNAME_PATTERN,
        "must be an RFC1123 label (letters, digits, hyphens; max 63)",
    )


def _parse_network(values: dict[str, str]) -> NetworkConfig:
    static = _parse_bool("STATIC_IP", _get(values, "STATIC_IP"))
    dns_servers = tuple(
        _parse_ipv4("DNS_SERVERS", server)
        for server in _split_list(_get(values, "DNS_SERVERS"))
    )
    if static and not dns_servers:
        raise InvalidFieldError("DNS_SERVERS", "", "static networking needs a DNS server")
    return NetworkConfig(
        mode=NetworkMode.STATIC if static else NetworkMode.DHCP,
        address=_parse_ipv4("IP_ADDRESS", _get(values, "IP_ADDRESS")),
        netmask=_parse_netmask("NETMASK", _get(values, "NETMASK")),
        gateway=_parse_ipv4("GATEWAY", _get(values, "GATEWAY")),
        dns_servers=dns_servers,
    )


def _parse_ssh_keys(value: str) -> tuple[str, ...]:
    keys = []
    for candidate in re.split(r"[\n;]|\\n", value):
        candidate = candidate.strip()
        if not candidate:
            continue
        if "${" in candidate:
            raise InvalidFieldError(
                "SSH_AUTHORIZED_KEYS", candidate, "key comments may not contain '${'"
            )
        keys.append(
            _match(
                "SSH_AUTHORIZED_KEYS",
                candidate,
                SSH_KEY_PATTERN,
                "expected an OpenSSH public key line",
            )
        )
    return tuple(keys)


def _parse_packages(value: str) -> tuple[str, ...]:
    packages = []
    for package in _split_list(value):
        packages.append(
            _match(
                "EXTRA_PACKAGES",
                package,
                PACKAGE_PATTERN,
                "package names may contain only a-z, 0-9, '+', '-' and '.'",
            )
        )
    return tuple(dict.fromkeys(packages))


def build_config(values: dict[str, str], *, bcrypt_rounds: Optional[int] = None) -> InstallConfig:
    """Validate parsed values and build the immutable InstallConfig.

    Raises:
        MissingFieldError: If username or password is absent
        InvalidFieldError: If any value fails its format constraint
    """
    username = values.get("INSTALL_USERNAME", "").strip()
    if not username:
        raise MissingFieldError("INSTALL_USERNAME")
    password = values.get("INSTALL_PASSWORD", "")
    if not password:
        raise MissingFieldError("INSTALL_PASSWORD")
    if len(password.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
        raise InvalidFieldError(
            "INSTALL_PASSWORD",
            "<redacted>",
            f"must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes",
        )

    _match(
        "INSTALL_USERNAME",
        username,
        USERNAME_PATTERN,
        "must start with a-z or '_' and contain at most 32 of a-z, 0-9, '_', '-'",
    )

    features = {
        name: _parse_bool(name, values[name]) if values.get(name) else default
        for name, default in settings.DEFAULT_FEATURE_FLAGS.items()
    }
    orchestrator_settings = {
        name: values.get(name) or default
        for name, default in settings.DEFAULT_ORCHESTRATOR_SETTINGS.items()
    }
    known = (
        {"INSTALL_USERNAME", "INSTALL_PASSWORD"}
        | set(settings.DEFAULT_SETTINGS)
        | set(settings.DEFAULT_FEATURE_FLAGS)
        | set(settings.DEFAULT_ORCHESTRATOR_SETTINGS)
    )
    extra = {key: value for key, value in values.items() if key not in known}
    if extra:
        log.debug(f"Passing through unrecognised keys: {', '.join(sorted(extra))}")

    config = InstallConfig(
        username=username,
        password_hash=hash_password(password, rounds=bcrypt_rounds),
        hostname=_parse_hostname(_get(values, "INSTALL_HOSTNAME")),
        timezone=_match(
            "TIMEZONE", _get(values, "TIMEZONE"), TIMEZONE_PATTERN, "expected Area/Location"
        ),
        locale=_match(
            "LOCALE", _get(values, "LOCALE"), LOCALE_PATTERN, "expected e.g. en_US.UTF-8"
        ),
        keyboard_layout=_match(
            "KEYBOARD_LAYOUT",
            _get(values, "KEYBOARD_LAYOUT"),
            KEYBOARD_PATTERN,
            "expected a layout code such as us or de",
        ),
        install_gui=_parse_bool("INSTALL_GUI", _get(values, "INSTALL_GUI")),
        ssh_authorized_keys=_parse_ssh_keys(_get(values, "SSH_AUTHORIZED_KEYS")),
        network=_parse_network(values),
        extra_packages=_parse_packages(_get(values, "EXTRA_PACKAGES")),
        auto_mount_drives=_parse_bool("AUTO_MOUNT_DRIVES", _get(values, "AUTO_MOUNT_DRIVES")),
        features=features,
        settings=orchestrator_settings,
        extra=extra,
    )
    log.info(f"Configuration validated for {config.username}@{config.hostname}")
    return config


def load(path: Path, *, bcrypt_rounds: Optional[int] = None) -> InstallConfig:
    """Parse and validate a configuration file.

    Pure parse + validate: no disk or network side effects.

    Args:
        path: Configuration file path
        bcrypt_rounds: Override the bcrypt cost factor

    Returns:
        Validated, immutable InstallConfig
    """
    return build_config(parse_env_file(path), bcrypt_rounds=bcrypt_rounds)
