"""ISO acquisition: resolve, download and verify the installation image.

Integrity policy:
    - If the SHA256SUMS listing can be fetched, the local image must match
      it. A mismatch raises ChecksumMismatchError unless the operator
      explicitly accepts it (override callback or --allow-unverified).
    - An unreachable listing is a warning; the image is then unverified.
    - The listing's detached signature is checked with gpg against the
      pinned Ubuntu CD image signing key. When gpg or the keyserver is
      unavailable the check is skipped with a logged note and the image is
      reported as unsigned; --require-signature turns that into an error.
"""

from __future__ import annotations

import asyncio
import hashlib
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Optional

from ubuntu_usb_creator.config import settings
from ubuntu_usb_creator.domain import IsoSource, UbuntuRelease
from ubuntu_usb_creator.exceptions import (
    ChecksumMismatchError,
    ChecksumNotListedError,
    CommandError,
    NetworkError,
    NotFoundError,
    SignatureError,
)
from ubuntu_usb_creator.logging import LoggerFactory
from ubuntu_usb_creator.services.iso_download import IsoDownloader
from ubuntu_usb_creator.services.releases import get_release
from ubuntu_usb_creator.storage.commands import run_command
from ubuntu_usb_creator.util import retry


log = LoggerFactory.for_iso()

# Ubuntu CD Image Automatic Signing Key (2012) <cdimage@ubuntu.com>
UBUNTU_CDIMAGE_KEY_FINGERPRINT = "843938DF228D22F7B3742BC0D94AA3F0EFE21092"
KEYSERVER = "hkps://keyserver.ubuntu.com"

HASH_CHUNK_SIZE = 4 * 1024 * 1024


def sha256_file(path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as source:
        for chunk in iter(lambda: source.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def parse_checksum_listing(text: str) -> dict[str, str]:
    """Parse ``<hash> [*]<filename>`` lines into {filename: lowercase hash}.

    Tolerates a BOM, CRLF endings, padding and the binary-mode ``*`` marker.
    """
    checksums: dict[str, str] = {}
    for raw_line in text.lstrip("\ufeff").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split(None, 1)
        if len(parts) != 2:
            continue
        digest, filename = parts
        checksums[filename.strip().lstrip("*")] = digest.strip().lower()
    return checksums


def checksums_match(expected: str, actual: str) -> bool:
    return expected.strip().lstrip("\ufeff").lower() == actual.strip().lower()


def parse_gpg_status(status_output: str, fingerprint: str) -> bool:
    """True if gpg reported a valid signature by the pinned key."""
    fingerprint = fingerprint.upper()
    for line in status_output.splitlines():
        fields = line.split()
        if fields[:2] == ["[GNUPG:]", "VALIDSIG"]:
            if fingerprint in (field.upper() for field in fields[2:]):
                return True
    return False


def verify_signature(
    listing: bytes,
    signature: bytes,
    *,
    fingerprint: str = UBUNTU_CDIMAGE_KEY_FINGERPRINT,
    keyserver: str = KEYSERVER,
    gpg: str = "gpg",
) -> bool:
    """Check the detached signature over the checksum listing.

    Runs gpg in a throw-away home directory so the operator's keyring is
    neither read nor modified.

    Returns:
        True if verified, False if verification could not be performed

    Raises:
        SignatureError: If gpg ran and rejected the signature
    """
    if shutil.which(gpg) is None:
        log.warning(f"{gpg} not found; skipping signature check of SHA256SUMS")
        return False

    with tempfile.TemporaryDirectory(prefix="ubuntu-usb-gpg-") as home:
        home_path = Path(home)
        listing_path = home_path / "SHA256SUMS"
        signature_path = home_path / "SHA256SUMS.gpg"
        listing_path.write_bytes(listing)
        signature_path.write_bytes(signature)
        base = [gpg, "--homedir", home, "--batch", "--no-tty"]

        try:
            run_command(
                base + ["--keyserver", keyserver, "--recv-keys", fingerprint],
                timeout=settings.GPG_TIMEOUT_SECONDS,
            )
        except CommandError as error:
            log.warning(
                f"Could not fetch signing key {fingerprint} from {keyserver}; "
                f"skipping signature check ({error.details or error})"
            )
            return False

        result = run_command(
            base + ["--status-fd", "1", "--verify", str(signature_path), str(listing_path)],
            check=False,
            timeout=settings.GPG_TIMEOUT_SECONDS,
        )

    if parse_gpg_status(result.stdout, fingerprint):
        log.success("SHA256SUMS signature verified")
        return True
    raise SignatureError(
        "SHA256SUMS signature is not valid for the Ubuntu CD image key",
        details=result.stderr.strip() or result.stdout.strip() or None,
        hint="Delete the downloaded files and retry; do not use this image.",
    )


class IsoResolver:
    """Turns a release choice or local path into a verified IsoSource."""

    def __init__(
        self,
        *,
        download_dir: Path = settings.DOWNLOAD_DIR,
        downloader: Optional[IsoDownloader] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
        on_mismatch: Optional[Callable[[ChecksumMismatchError], bool]] = None,
        allow_unverified: bool = False,
        require_signature: bool = False,
    ):
        self.download_dir = Path(download_dir)
        self.downloader = downloader or IsoDownloader()
        self.progress_callback = progress_callback
        self.on_mismatch = on_mismatch
        self.allow_unverified = allow_unverified
        self.require_signature = require_signature

    def resolve(self, version_choice: str = "", existing_path: Optional[Path] = None) -> IsoSource:
        """Resolve the installation image.

        Raises:
            NotFoundError: If existing_path does not exist
            NetworkError: If the ISO download fails (operator may retry)
            ChecksumMismatchError: On a mismatch the operator did not accept
            SignatureError: On a bad signature, or a missing one when required
        """
        if existing_path is not None:
            return self.use_existing(existing_path)

        release = get_release(version_choice)
        destination = self.download_dir / release.iso_name
        if destination.is_file():
            log.info(f"Reusing previously downloaded {destination}")
        else:
            asyncio.run(
                self.downloader.download(release.iso_url, destination, self.progress_callback)
            )
        return self.verify(destination, release)

    def use_existing(self, existing_path: Path) -> IsoSource:
        path = Path(existing_path).expanduser()
        if not path.is_file():
            raise NotFoundError(
                path,
                step="locate ISO",
                hint="Check the path or let the tool download the ISO.",
            )
        log.info(f"Using existing ISO {path}; no checksum listing to compare against")
        return IsoSource(path=path)

    def _fetch(self, url: str) -> bytes:
        return retry(
            lambda: asyncio.run(
                self.downloader.fetch_bytes(url, timeout=settings.CHECKSUM_FETCH_TIMEOUT_SECONDS)
            ),
            attempts=settings.CHECKSUM_FETCH_ATTEMPTS,
            base_delay=2.0,
            retry_on=(NetworkError,),
            description=f"fetch {url}",
        )

    def fetch_listing(self, release: UbuntuRelease) -> Optional[bytes]:
        try:
            return self._fetch(release.checksum_url)
        except NetworkError as error:
            log.warning(
                f"Could not fetch checksum listing: {error}. The image will not be "
                "verified; download SHA256SUMS manually to check it."
            )
            return None

    def check_checksum(self, path: Path, listing: bytes) -> tuple[Optional[str], str]:
        expected = parse_checksum_listing(listing.decode("utf-8-sig", errors="replace")).get(
            path.name
        )
        log.info(f"Computing SHA256 of {path.name}")
        actual = sha256_file(path)
        if expected is None:
            error = ChecksumNotListedError(path.name, actual)
        elif checksums_match(expected, actual):
            log.success(f"SHA256 verified for {path.name}")
            return expected, actual
        else:
            error = ChecksumMismatchError(path.name, expected, actual)

        if self.allow_unverified or (self.on_mismatch and self.on_mismatch(error)):
            log.warning(f"Continuing without a verified checksum: {error}")
            return expected, actual
        raise error

    def check_signature(self, release: UbuntuRelease, listing: bytes) -> bool:
        try:
            signature = self._fetch(release.signature_url)
        except NetworkError as error:
            log.warning(f"Could not fetch SHA256SUMS.gpg: {error}; skipping signature check")
            return False
        return verify_signature(listing, signature)

    def verify(self, path: Path, release: UbuntuRelease) -> IsoSource:
        """Compare the image with the published checksum and signature."""
        listing = self.fetch_listing(release)
        expected = actual = None
        signature_verified = False
        if listing is not None:
            expected, actual = self.check_checksum(path, listing)
            signature_verified = self.check_signature(release, listing)

        if not signature_verified and self.require_signature:
            raise SignatureError(
                "The checksum listing signature could not be verified",
                hint="Install GnuPG (gpg) and check network access, or drop --require-signature.",
            )
        return IsoSource(
            path=path,
            expected_sha256=expected,
            actual_sha256=actual,
            signature_verified=signature_verified,
            release=release,
        )


def resolve(version_choice: str = "", existing_path: Optional[Path] = None, **options) -> IsoSource:
    """Resolve an IsoSource with a default-configured IsoResolver."""
    return IsoResolver(**options).resolve(version_choice, existing_path)
