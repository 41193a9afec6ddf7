"""
context.py - Actor and process identity for a run.

Every event carries the acting username and the identity of the process
that produced it.  For file and network activity that process is edrtest
itself, so the context captures it once at start-up.
"""

from __future__ import annotations

import getpass
import logging
import os
import socket
import sys
from dataclasses import asdict, dataclass

from edrtest.platforms import detect_os_name
from edrtest.process_monitor import get_process_info

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunContext:
    """Identity stamped onto events.

    Attributes:
        username:        Acting user.
        hostname:        Host the run executes on.
        os_name:         ``"Linux"``, ``"macOS"``, ``"Windows"`` or ``"Unknown"``.
        process_name:    Name of the edrtest process.
        process_command: Full command line that invoked edrtest.
        process_id:      PID of the edrtest process.
    """

    username: str
    hostname: str
    os_name: str
    process_name: str
    process_command: str
    process_id: int

    @classmethod
    def current(cls) -> "RunContext":
        """Describe the running interpreter via psutil, falling back to ``sys``."""
        pid = os.getpid()
        info = get_process_info(pid)
        if info is None:
            logger.warning("psutil lookup failed for pid %d; using sys.argv", pid)
            name = os.path.basename(sys.argv[0]) or "python"
            command = " ".join([sys.executable, *sys.argv])
            username = getpass.getuser()
        else:
            name = info.name
            command = info.command_line
            username = info.username or getpass.getuser()

        return cls(
            username=username,
            hostname=socket.gethostname(),
            os_name=detect_os_name(),
            process_name=name,
            process_command=command,
            process_id=pid,
        )

    def process_attributes(self) -> dict[str, str | int]:
        """Attributes describing the edrtest process, for file/network events."""
        return {
            "process_name": self.process_name,
            "process_command": self.process_command,
            "process_id": self.process_id,
        }

    def as_dict(self) -> dict[str, str | int]:
        return asdict(self)
