"""Interactive terminal prompts.

All console input goes through one Prompter so the operator flow can be
driven by scripted answers in tests.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Sequence

from ubuntu_usb_creator.domain import (
    InstallConfig,
    TargetDisk,
    UbuntuRelease,
    VerificationReport,
)
from ubuntu_usb_creator.exceptions import ChecksumMismatchError, OperatorCancelled, ProvisioningError
from ubuntu_usb_creator.services.releases import menu_lines
from ubuntu_usb_creator.storage.devices import human_size
from ubuntu_usb_creator.storage.provisioner import CONFIRMATION_WORD


RULE = "   " + "-" * 60

NEXT_STEPS = (
    "Safely eject the USB drive",
    "Insert into target computer",
    "Boot from USB (usually F12, F2, or Del at startup)",
    "Select the target drive when prompted",
    "Installation will complete automatically",
)


class Prompter:
    """Operator-facing questions and messages."""

    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        output_func: Callable[..., None] = print,
    ):
        self._input = input_func
        self._output = output_func

    def say(self, *lines: str) -> None:
        for line in lines:
            self._output(line)

    def ask(self, prompt: str, strip: bool = True) -> str:
        try:
            answer = self._input(prompt)
        except EOFError as error:
            raise OperatorCancelled("Input closed; operation cancelled.") from error
        return answer.strip() if strip else answer

    def ask_yes_no(self, prompt: str, default: bool = False) -> bool:
        answer = self.ask(f"{prompt} ({'Y/n' if default else 'y/N'}): ").lower()
        if not answer:
            return default
        return answer in ("y", "yes")

    def banner(self, version: str) -> None:
        self.say(
            "=" * 62,
            f"  Ubuntu Auto Installer USB Creator {version}",
            "=" * 62,
            "",
        )

    def show_summary(self, config: InstallConfig) -> None:
        self.say("", "Installation Configuration:")
        self.say(*(f"   {line}" for line in config.summary_lines()))
        self.say("")

    def choose_release(self) -> str:
        self.say("", "Select Ubuntu Version:")
        self.say(*(f"  {line}" for line in menu_lines()))
        return self.ask("Enter choice [1]: ")

    def confirm_download(self, release: UbuntuRelease) -> bool:
        return self.ask_yes_no(f"ISO not found. Download {release.iso_name}?", default=True)

    def ask_iso_path(self) -> Path:
        path = self.ask("Enter path to existing Ubuntu ISO: ")
        if not path:
            raise OperatorCancelled("No ISO selected; operation cancelled.")
        return Path(path.strip('"'))

    def show_progress(self, done: int, total: int) -> None:
        if total:
            self._output(
                f"\r   Progress: {done * 100 / total:.1f}% "
                f"({done / 1024**3:.2f} GB / {total / 1024**3:.2f} GB)",
                end="",
                flush=True,
            )
            if done >= total:
                self._output("")
        else:
            self._output(f"\r   Downloaded {done / 1024**3:.2f} GB", end="", flush=True)

    def confirm_mismatch(self, error: ChecksumMismatchError) -> bool:
        self.say("", f"WARNING: {error}", "The image may be corrupt or tampered with.")
        return self.ask_yes_no("Continue with this image anyway?")

    def ask_retry(self, error: ProvisioningError) -> bool:
        self.say("", *error.describe())
        return self.ask_yes_no("Retry?", default=True)

    def choose_disk(self, candidates: Sequence[TargetDisk]) -> TargetDisk:
        """Ask for a disk number until it names a listed candidate.

        Raises:
            OperatorCancelled: On empty input
        """
        self.say("", "Available USB Drives:", RULE)
        self.say(*(f"   {disk.format_label()}" for disk in candidates))
        self.say(RULE, "", "WARNING: All data on the selected drive will be ERASED!")
        by_index = {disk.index: disk for disk in candidates}
        while True:
            answer = self.ask("Enter drive number to use: ")
            if not answer:
                raise OperatorCancelled("No drive selected; operation cancelled.")
            if answer.isdigit() and int(answer) in by_index:
                return by_index[int(answer)]
            self.say("Invalid drive number")

    def confirm_erase(self, disk: TargetDisk) -> str:
        self.say(
            "",
            "You are about to ERASE all data on:",
            f"   Drive: {disk.model or disk.name}",
            f"   Size:  {human_size(disk.size_bytes)}",
            f"   ID:    {disk.index} ({disk.device_path or disk.name})",
            f"   Mounted as: {disk.handles_label}",
            "",
        )
        return self.ask(f"Type '{CONFIRMATION_WORD}' to confirm: ", strip=False)

    def show_report(self, report: VerificationReport) -> None:
        self.say("", "Verification:")
        self.say(*(f"   {line}" for line in report.summary_lines()))

    def show_next_steps(self) -> None:
        self.say("", "USB drive created successfully!", "", "Next steps:")
        self.say(*(f"   {number}. {step}" for number, step in enumerate(NEXT_STEPS, start=1)))
        self.say("")

    def show_error(self, error: ProvisioningError) -> None:
        self.say("", *error.describe())
