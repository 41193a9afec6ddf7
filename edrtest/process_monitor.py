"""
process_monitor.py - Process inspection & termination utilities for edrtest.

Lightweight wrappers around ``psutil`` used by the run context (to describe
the tool's own process) and by the process probe (to force-terminate the
processes it launches).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

import psutil

logger = logging.getLogger(__name__)


@dataclass
class ProcessInfo:
    """Snapshot of a running process."""

    pid: int
    name: str = ""
    exe: str = ""
    cmdline: List[str] = field(default_factory=list)
    username: str = ""
    status: str = ""

    @property
    def command_line(self) -> str:
        return " ".join(self.cmdline) if self.cmdline else self.exe or self.name


def get_process_info(pid: int) -> ProcessInfo | None:
    """Return a :class:`ProcessInfo` for the given PID, or ``None``.

    Returns ``None`` if the process doesn't exist or can't be inspected.
    Fields psutil refuses to reveal (``exe`` on some platforms) are left
    blank rather than failing the whole lookup.
    """
    try:
        proc = psutil.Process(pid)
        with proc.oneshot():
            info = ProcessInfo(pid=proc.pid, name=proc.name(), status=proc.status())
            try:
                info.exe = proc.exe()
                info.cmdline = proc.cmdline()
                info.username = proc.username()
            except psutil.AccessDenied as exc:
                logger.debug("Partial info for pid %d: %s", pid, exc)
        return info
    except (psutil.NoSuchProcess, psutil.AccessDenied) as exc:
        logger.warning("Cannot inspect pid %d: %s", pid, exc)
        return None


def kill_process(pid: int, include_children: bool = True) -> bool:
    """Kill the process with the given PID (and, by default, its children).

    Returns ``True`` if a live process was killed, ``False`` if it had
    already exited or could not be touched.  A process that finished on
    its own before we got to it is the normal case for short commands.
    """
    try:
        proc = psutil.Process(pid)
        children = proc.children(recursive=True) if include_children else []
        for child in children:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                continue
        name = proc.name()
        proc.kill()
        logger.info("Killed process pid=%d (%s)", pid, name)
        return True
    except psutil.NoSuchProcess:
        logger.debug("Process pid=%d already exited", pid)
        return False
    except psutil.AccessDenied as exc:
        logger.error("Failed to kill pid %d: %s", pid, exc)
        return False
