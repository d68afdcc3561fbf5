import argparse
import errno
import sys
from contextlib import contextmanager
from pathlib import Path

from ubuntu_usb_creator import __version__
from ubuntu_usb_creator.config import find_config_file, load, settings
from ubuntu_usb_creator.exceptions import (
    DeviceError,
    NetworkError,
    OperatorCancelled,
    ProvisioningError,
)
from ubuntu_usb_creator.logging import LoggerFactory, operation_context, setup_logging
from ubuntu_usb_creator.media import build_manifest, compose, verify
from ubuntu_usb_creator.services import IsoResolver, get_release
from ubuntu_usb_creator.storage import DiskProvisioner, get_backend, list_candidates
from ubuntu_usb_creator.ui import Prompter


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_VERIFICATION_FAILED = 3
EXIT_CANCELLED = 4

OS_ERROR_HINTS = {
    errno.ENOSPC: "The drive is full; use a larger USB drive.",
    errno.EACCES: "Re-run from an elevated prompt (sudo or Run as Administrator).",
    errno.EPERM: "Re-run from an elevated prompt (sudo or Run as Administrator).",
    errno.EROFS: "The drive is read-only; check its write-protect switch.",
}


def os_failure(error: OSError, step: str) -> ProvisioningError:
    """Describe a file system error as a failed pipeline step."""
    message = error.strerror or str(error)
    if error.filename:
        message = f"{message}: {error.filename}"
    return ProvisioningError(message, step=step, hint=OS_ERROR_HINTS.get(error.errno))


@contextmanager
def stage(operation, **details):
    """Timed pipeline stage whose OS errors name the stage that failed."""
    with operation_context(operation, **details) as log:
        try:
            yield log
        except OSError as error:
            raise os_failure(error, operation) from error


def build_parser():
    parser = argparse.ArgumentParser(
        prog="ubuntu-usb-creator",
        description="Create a bootable Ubuntu Server USB drive with an autoinstall payload",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-c", "--config", type=Path, help="Configuration file (default: .env)")
    parser.add_argument("-r", "--release", help="Ubuntu release: menu number or version, e.g. 24.04")
    parser.add_argument("--iso", type=Path, help="Use an existing ISO instead of downloading")
    parser.add_argument(
        "--download-dir",
        type=Path,
        default=settings.DOWNLOAD_DIR,
        help="Directory for downloaded ISOs",
    )
    parser.add_argument(
        "--scripts-dir",
        type=Path,
        default=settings.SCRIPTS_DIR,
        help="Directory holding the first-boot *.sh scripts",
    )
    parser.add_argument(
        "--allow-unverified",
        action="store_true",
        help="Continue without asking when the ISO checksum does not match",
    )
    parser.add_argument(
        "--require-signature",
        action="store_true",
        help="Fail unless the checksum listing signature can be verified",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Enable trace output (very verbose)")
    parser.add_argument("--log-dir", type=Path, help="Directory for log files")
    return parser


def acquire_iso(args, prompter, resolver):
    existing = args.iso
    version = args.release
    if existing is None:
        if version is None:
            version = prompter.choose_release()
        release = get_release(version)
        cached = resolver.download_dir / release.iso_name
        if cached.is_file():
            prompter.say(f"Found existing ISO: {cached}")
        elif not prompter.confirm_download(release):
            existing = prompter.ask_iso_path()

    while True:
        try:
            return resolver.resolve(version or "", existing)
        except NetworkError as error:
            if not prompter.ask_retry(error):
                raise


def release_target(backend, ready):
    """Finalize the target after a failed run without hiding the failure."""
    try:
        backend.finalize(ready)
    except ProvisioningError as error:
        LoggerFactory.for_disk().warning(
            f"Could not release {ready.root} after the failure: {error}; unmount it by hand"
        )


def run(args, prompter, backend=None):
    log = LoggerFactory.for_system()
    prompter.banner(__version__)

    with stage("configure"):
        config_path = args.config or find_config_file()
        log.info(f"Loading configuration from {config_path}")
        config = load(config_path)
        manifest = build_manifest(config)
    prompter.show_summary(config)

    backend = backend or get_backend()
    backend.require_privileges()

    resolver = IsoResolver(
        download_dir=args.download_dir,
        progress_callback=prompter.show_progress,
        on_mismatch=prompter.confirm_mismatch,
        allow_unverified=args.allow_unverified,
        require_signature=args.require_signature,
    )
    with stage("acquire"):
        iso = acquire_iso(args, prompter, resolver)

    prompter.say("", "Scanning for USB drives...")
    candidates = list_candidates(backend)
    if not candidates:
        raise DeviceError(
            "No USB drives found",
            step="select disk",
            hint="Insert a USB drive and try again.",
        )
    disk = prompter.choose_disk(candidates)

    provisioner = DiskProvisioner(backend, disk)
    provisioner.confirm(prompter.confirm_erase(disk))

    prompter.say("", "Creating bootable USB drive...")
    with stage("provision", disk=disk.name):
        ready = provisioner.provision()
    try:
        with stage("compose", root=str(ready.root)):
            media = compose(
                backend, ready, iso, config, scripts_dir=args.scripts_dir, manifest=manifest
            )
        with stage("verify"):
            report = verify(media)
    except (Exception, KeyboardInterrupt):
        release_target(backend, ready)
        raise
    backend.finalize(ready)

    prompter.show_report(report)
    if not report.passed:
        return EXIT_VERIFICATION_FAILED
    prompter.show_next_steps()
    return EXIT_OK


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)
    log = LoggerFactory.for_system()
    prompter = Prompter()

    try:
        return run(args, prompter)
    except OperatorCancelled as cancelled:
        prompter.say("", cancelled.reason)
        log.info(f"Cancelled by operator: {cancelled.reason}")
        return EXIT_CANCELLED
    except KeyboardInterrupt:
        prompter.say("", "Interrupted.")
        log.warning("Interrupted by operator")
        return EXIT_CANCELLED
    except ProvisioningError as error:
        prompter.show_error(error)
        log.error(f"{error.step}: {error}")
        return EXIT_FAILURE
    except OSError as error:
        failure = os_failure(error, "file access")
        prompter.show_error(failure)
        log.error(f"{failure.step}: {failure}")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
