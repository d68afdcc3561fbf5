"""Custom exceptions for the provisioning pipeline.

Every fatal path raises a subclass of ProvisioningError carrying the step that
failed, the external tool's diagnostic output where one exists, and an
optional one-line remediation hint for known recoverable causes.

Exception Hierarchy:
    ProvisioningError (base)
        ├── ValidationError
        │   ├── MissingFieldError
        │   ├── InvalidFieldError
        │   └── BlockedKeyError
        ├── NetworkError
        ├── NotFoundError
        ├── IntegrityError
        │   ├── ChecksumMismatchError
        │   │   └── ChecksumNotListedError
        │   └── SignatureError
        ├── CommandError
        ├── DeviceError
        │   ├── PrivilegeError
        │   ├── DeviceNotFoundError
        │   ├── UnsafeDeviceError
        │   ├── InvalidTransitionError
        │   ├── PartitionError
        │   ├── FormatError
        │   └── NoFreeHandleError
        ├── MountError
        ├── CopyError
        │   └── OversizedFileError
        ├── ComposeError
        │   ├── UnresolvedPlaceholderError
        │   └── ManifestSchemaError
        └── PatchError

    OperatorCancelled      (voluntary cancellation, not an error)
    VerificationWarning    (UserWarning, reported but never fatal)

Usage:
    from ubuntu_usb_creator.exceptions import MissingFieldError

    if not username:
        raise MissingFieldError("INSTALL_USERNAME")
"""

from __future__ import annotations

from typing import Iterable, Optional


class ProvisioningError(Exception):
    """Base exception for all provisioning failures."""

    step = "provisioning"

    def __init__(
        self,
        message: str,
        *,
        step: Optional[str] = None,
        details: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        if step is not None:
            self.step = step
        self.details = details
        self.hint = hint
        super().__init__(message)

    def describe(self) -> list[str]:
        """Operator-facing lines: failed step, message, tool output, hint."""
        lines = [f"Step failed: {self.step}", str(self)]
        if self.details:
            lines.append(f"Tool output: {self.details.strip()}")
        if self.hint:
            lines.append(f"Hint: {self.hint}")
        return lines


class OperatorCancelled(Exception):
    """The operator declined to continue."""

    def __init__(self, reason: str = "Operation cancelled."):
        self.reason = reason
        super().__init__(reason)


class VerificationWarning(UserWarning):
    """Post-composition checks found a problem with the media."""


# ==============================================================================
# Configuration
# ==============================================================================


class ValidationError(ProvisioningError):
    """Configuration is missing or malformed."""

    step = "load configuration"


class MissingFieldError(ValidationError):
    """A required configuration key is absent or empty."""

    def __init__(self, field_name: str):
        self.field_name = field_name
        super().__init__(
            f"{field_name} is not set in the configuration file",
            hint="Copy .env.sample to .env and fill in the required values.",
        )


class InvalidFieldError(ValidationError):
    """A configuration value fails its format constraint."""

    def __init__(self, field_name: str, value: str, reason: str):
        self.field_name = field_name
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid value for {field_name} ({value!r}): {reason}")


class BlockedKeyError(ValidationError):
    """A configuration key names a blocked environment variable."""

    def __init__(self, key: str, line_number: Optional[int] = None):
        self.key = key
        self.line_number = line_number
        location = f" on line {line_number}" if line_number is not None else ""
        super().__init__(
            f"Refusing to set {key!r}{location}: the name can inject code "
            "into the first-boot scripts"
        )


# ==============================================================================
# ISO acquisition
# ==============================================================================


class NetworkError(ProvisioningError):
    """A download or checksum fetch failed."""

    step = "download"

    def __init__(self, message: str, url: Optional[str] = None, **kwargs):
        self.url = url
        kwargs.setdefault("hint", "Check the network connection and retry.")
        super().__init__(message, **kwargs)


class NotFoundError(ProvisioningError):
    """A local file that must exist does not."""

    step = "locate ISO"

    def __init__(self, path, **kwargs):
        self.path = path
        super().__init__(f"File not found: {path}", **kwargs)


class IntegrityError(ProvisioningError):
    """Checksum or signature verification failed."""

    step = "verify ISO"


class ChecksumMismatchError(IntegrityError):
    """Local image does not match the published SHA256."""

    def __init__(self, filename: str, expected: str, actual: str):
        self.filename = filename
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"SHA256 mismatch for {filename}: expected {expected}, got {actual}",
            hint="Delete the ISO and download it again.",
        )


class ChecksumNotListedError(ChecksumMismatchError):
    """The fetched SHA256SUMS listing has no entry for the image."""

    def __init__(self, filename: str, actual: str):
        self.filename = filename
        self.expected = None
        self.actual = actual
        IntegrityError.__init__(
            self,
            f"{filename} is not listed in the published SHA256SUMS (its SHA256 is {actual})",
            hint="Use an image named in the release's SHA256SUMS, or delete it and download again.",
        )


class SignatureError(IntegrityError):
    """Checksum listing signature could not be verified."""


# ==============================================================================
# External tools and devices
# ==============================================================================


class CommandError(ProvisioningError):
    """An external tool exited with a failure status."""

    step = "run command"

    def __init__(
        self,
        command: Iterable[str],
        returncode: int,
        stdout: str = "",
        stderr: str = "",
        **kwargs,
    ):
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        kwargs.setdefault("details", self.stderr.strip() or self.stdout.strip() or None)
        super().__init__(
            f"Command failed with exit code {returncode}: {' '.join(self.command)}",
            **kwargs,
        )


class DeviceError(ProvisioningError):
    """Base exception for device-related errors."""

    step = "provision disk"


class PrivilegeError(DeviceError):
    """The process lacks rights to write raw devices."""

    def __init__(self, message: str = "Administrator/root privileges are required"):
        super().__init__(
            message,
            step="check privileges",
            hint="Re-run from an elevated prompt (sudo or Run as Administrator).",
        )


class DeviceNotFoundError(DeviceError):
    """Device was not found or does not exist."""

    def __init__(self, device_name: str):
        self.device_name = device_name
        super().__init__(f"Device not found: {device_name}", step="select disk")


class UnsafeDeviceError(DeviceError):
    """Selected device is not an allowed removable target."""

    def __init__(self, device_name: str, reason: str):
        self.device_name = device_name
        self.reason = reason
        super().__init__(
            f"Refusing to use {device_name}: {reason}", step="select disk"
        )


class InvalidTransitionError(DeviceError):
    """A provisioning step was attempted out of order."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot move from {current} to {requested}", step=requested.lower()
        )


class PartitionError(DeviceError):
    """Partition table creation failed."""

    step = "partition disk"


class FormatError(DeviceError):
    """Filesystem creation failed."""

    step = "format partition"


class NoFreeHandleError(DeviceError):
    """Every drive letter or mount point in the pool is occupied."""

    def __init__(self, pool: Iterable[str]):
        self.pool = list(pool)
        super().__init__(
            f"No free access handle; all of {', '.join(self.pool)} are in use",
            step="assign access handle",
            hint="Eject or unmount another volume and re-run.",
        )


# ==============================================================================
# Media composition
# ==============================================================================


class MountError(ProvisioningError):
    """ISO image could not be attached or detached."""

    step = "mount ISO"


class CopyError(ProvisioningError):
    """Bulk copy of the ISO tree failed."""

    step = "copy ISO contents"


class OversizedFileError(CopyError):
    """A file exceeds the FAT32 maximum file size."""

    def __init__(self, paths: Iterable[str], limit: int):
        self.paths = list(paths)
        self.limit = limit
        super().__init__(
            f"{len(self.paths)} file(s) exceed the FAT32 limit of {limit} bytes: "
            + ", ".join(self.paths),
            hint="Use a different ISO; FAT32 media cannot hold files of 4 GiB or more.",
        )


class ComposeError(ProvisioningError):
    """Generated payload is invalid."""

    step = "generate autoinstall manifest"


class UnresolvedPlaceholderError(ComposeError):
    """Template output still contains ${...} placeholders."""

    def __init__(self, placeholders: Iterable[str]):
        self.placeholders = sorted(set(placeholders))
        super().__init__(
            "Unresolved template placeholders: " + ", ".join(self.placeholders)
        )


class ManifestSchemaError(ComposeError):
    """Rendered manifest is not valid autoinstall YAML."""


class PatchError(ProvisioningError):
    """Boot-loader configuration patch could not be confirmed."""

    step = "patch boot loader"
