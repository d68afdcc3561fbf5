"""External tool invocation with explicit result checking.

Every call site receives the CompletedProcess or a CommandError; a failing
tool is never assumed innocuous by omission.
"""

from __future__ import annotations

import subprocess
from typing import Mapping, Optional, Sequence

from ubuntu_usb_creator.exceptions import CommandError
from ubuntu_usb_creator.logging import get_logger


log = get_logger(source="command", tags=["command"])


def run_command(
    command: Sequence[str],
    *,
    check: bool = True,
    input_text: Optional[str] = None,
    timeout: Optional[float] = None,
    env: Optional[Mapping[str, str]] = None,
    log_output: bool = True,
    log_command: bool = True,
) -> subprocess.CompletedProcess:
    """Run a command and capture its output.

    Args:
        command: Argument list (never a shell string)
        check: Raise CommandError on a non-zero exit status
        input_text: Text fed to stdin
        timeout: Seconds before the command is killed
        env: Environment for the child process
        log_output: Log stdout/stderr at DEBUG level
        log_command: Log the command line at DEBUG level

    Raises:
        CommandError: If check is True and the command fails, or the tool
            cannot be started or times out
    """
    command = list(command)
    if log_command:
        log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(
            command,
            input=input_text,
            text=True,
            capture_output=True,
            timeout=timeout,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError as error:
        raise CommandError(command, 127, stderr=str(error), hint=f"Install {command[0]}.") from error
    except subprocess.TimeoutExpired as error:
        raise CommandError(
            command, -1, stderr=f"timed out after {timeout}s"
        ) from error

    if result.stdout and (log_output or result.returncode != 0):
        log.debug(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        log.debug(f"stderr: {result.stderr.strip()}")
    if log_command:
        log.debug(f"Command completed with return code {result.returncode}")

    if check and result.returncode != 0:
        raise CommandError(command, result.returncode, result.stdout, result.stderr)
    return result
