"""Starting programs in their own process group and killing the whole group."""

from __future__ import annotations

import os
import signal
import subprocess
from typing import Optional


class ProcessNotStartedError(RuntimeError):
    """Raised when a command has no running process to act on."""


class Command:
    """A program to run in a new process group."""

    def __init__(self, name: str, args: tuple[str, ...] = ()) -> None:
        self.name = name
        self.args = tuple(args)
        self.process: Optional[subprocess.Popen] = None

    def __repr__(self) -> str:
        return f"Command({self.name!r}, {self.args!r})"

    def start(self) -> None:
        """Start the program; stdin, stdout and stderr go to the null device."""
        if self.process is not None:
            raise RuntimeError(f"{self!r} already started")
        self.process = subprocess.Popen(
            [self.name, *self.args],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )

    def wait(self) -> int:
        """Wait for the program to exit and return its return code."""
        if self.process is None:
            raise ProcessNotStartedError(f"{self!r} does not have a process handle")
        return self.process.wait()


def exec_command(name: str, *args: str) -> Command:
    """Create a command that will run in its own process group."""
    return Command(name, args)


def kill(command: Command) -> None:
    """Kill the command's process and all processes in its group."""
    if command.process is None:
        raise ProcessNotStartedError(f"{command!r} does not have a process handle")
    os.killpg(command.process.pid, signal.SIGKILL)