"""Destructive provisioning of the selected target disk.

The provisioner is a linear state machine:

    UNSELECTED -> CONFIRMED -> WIPED -> PARTITIONED -> FORMATTED -> READY

Each transition is allowed only from its predecessor. Confirmation is the
single gate in front of every destructive command; nothing touches the disk
before the operator types the exact confirmation word.

Partitioning and formatting are never retried. The wipe step is best-effort:
its failure is logged and the later partition step surfaces any real fault.

Example:
    >>> provisioner = DiskProvisioner(backend, disk)
    >>> ready = provisioner.run(answer)
    >>> ready.root
    PosixPath('/mnt/ubuntu-usb')
"""

from __future__ import annotations

from typing import Optional

from ubuntu_usb_creator.config import settings
from ubuntu_usb_creator.domain import ProvisionState, ReadyDisk, TargetDisk
from ubuntu_usb_creator.exceptions import InvalidTransitionError, OperatorCancelled
from ubuntu_usb_creator.logging import LoggerFactory
from ubuntu_usb_creator.storage.backends.base import DiskBackend, choose_handle
from ubuntu_usb_creator.storage.devices import ensure_safe_target, human_size


log = LoggerFactory.for_disk()

CONFIRMATION_WORD = "YES"


class DiskProvisioner:
    """Drives one target disk from selection to a mounted FAT32 partition."""

    def __init__(self, backend: DiskBackend, disk: TargetDisk, *, label: str = settings.VOLUME_LABEL):
        self.backend = backend
        self.disk = disk
        self.label = label
        self.state = ProvisionState.UNSELECTED
        self.partition: Optional[str] = None
        self.ready: Optional[ReadyDisk] = None

    def _advance(self, requested: ProvisionState) -> None:
        if requested.value != self.state.value + 1:
            raise InvalidTransitionError(self.state.label, requested.label)

    def _enter(self, state: ProvisionState) -> None:
        log.info(f"Disk {self.disk.index}: {self.state.label} -> {state.label}")
        self.state = state

    def confirm(self, answer: str) -> None:
        """Accept the operator's answer to the destruction prompt.

        Raises:
            OperatorCancelled: Unless the answer is exactly the confirmation word
            UnsafeDeviceError: If the disk fails the safety filter
        """
        self._advance(ProvisionState.CONFIRMED)
        if answer != CONFIRMATION_WORD:
            log.info(f"Operator did not confirm erasure of disk {self.disk.index}")
            raise OperatorCancelled("Erase not confirmed; no changes were made.")
        ensure_safe_target(self.disk)
        self._enter(ProvisionState.CONFIRMED)

    def wipe(self) -> None:
        """Release mounts and zero the leading bytes of the disk."""
        self._advance(ProvisionState.WIPED)
        self.backend.release_mounts(self.disk)
        try:
            self.backend.wipe_signatures(self.disk)
        except OSError as error:
            log.warning(
                f"Could not zero the start of disk {self.disk.index}: {error}; "
                "continuing, partitioning will rewrite the table"
            )
        self._enter(ProvisionState.WIPED)

    def partition_disk(self) -> str:
        """Create the MBR table with one active primary partition."""
        self._advance(ProvisionState.PARTITIONED)
        self.partition = self.backend.create_partition_table(self.disk)
        self._enter(ProvisionState.PARTITIONED)
        return self.partition

    def format(self) -> None:
        """Quick-format the partition as FAT32."""
        self._advance(ProvisionState.FORMATTED)
        if self.disk.size_bytes > settings.FAT32_FORMAT_CEILING_BYTES:
            log.warning(
                f"Disk {self.disk.index} is {human_size(self.disk.size_bytes)}; "
                "some tools refuse FAT32 above 32 GB"
            )
        self.backend.format_partition(self.disk, self.partition, self.label)
        self._enter(ProvisionState.FORMATTED)

    def assign(self) -> ReadyDisk:
        """Attach the partition at the first free handle in the pool."""
        self._advance(ProvisionState.READY)
        handle = choose_handle(self.backend.handle_pool, self.backend.handles_in_use())
        root = self.backend.assign_handle(self.disk, self.partition, handle)
        self.ready = ReadyDisk(disk=self.disk, partition=self.partition, handle=handle, root=root)
        self._enter(ProvisionState.READY)
        log.success(f"Disk {self.disk.index} ready at {root}")
        return self.ready

    def provision(self) -> ReadyDisk:
        """Run the destructive steps of an already confirmed disk."""
        self.wipe()
        self.partition_disk()
        self.format()
        return self.assign()

    def run(self, answer: str) -> ReadyDisk:
        """Run every step in order, starting from the operator's answer."""
        self.confirm(answer)
        return self.provision()
