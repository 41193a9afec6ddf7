"""
platforms.py - Per-OS process allow-lists and launch commands.

Each supported operating system gets a :class:`PlatformProfile` value that
knows which processes (and which arguments to them) may be launched, and
how to wrap a launch into an OS-appropriate command:

    Linux    direct invocation          ls -l
    macOS    LaunchServices wrapper     open -a TextEdit
    Windows  cmd.exe ``start`` wrapper  cmd /c start "" notepad.exe
"""

from __future__ import annotations

import shlex
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Callable, List, Mapping, Sequence, Tuple

from edrtest.errors import UsageError

LINUX = "Linux"
MACOS = "macOS"
WINDOWS = "Windows"
UNKNOWN = "Unknown"


def detect_os_name(platform: str | None = None) -> str:
    """Map ``sys.platform`` (or *platform*) onto one of the profile names."""
    platform = (platform or sys.platform).lower()
    if platform.startswith("darwin"):
        return MACOS
    if platform.startswith("linux"):
        return LINUX
    if platform.startswith(("win32", "cygwin", "msys")):
        return WINDOWS
    return UNKNOWN


# ---------------------------------------------------------------------------
# Launch-command builders
# ---------------------------------------------------------------------------

def _direct(name: str, args: Sequence[str]) -> List[str]:
    return [name, *args]


def _open_app(name: str, args: Sequence[str]) -> List[str]:
    argv = ["open", "-a", name]
    if args:
        argv += ["--args", *args]
    return argv


def _start(name: str, args: Sequence[str]) -> List[str]:
    # The empty string is start's window-title slot.
    return ["cmd", "/c", "start", "", name, *args]


@dataclass(frozen=True)
class PlatformProfile:
    """Process launch capability for one operating system.

    Attributes:
        name:      Profile name (``"Linux"``, ``"macOS"``, ``"Windows"``).
        allowed:   Process name -> the arguments it may be given.
        builder:   Turns ``(name, args)`` into an argv list.
        default:   ``(name, args)`` launched by the ``--all`` sequence.
    """

    name: str
    allowed: Mapping[str, frozenset[str]]
    builder: Callable[[str, Sequence[str]], List[str]] = field(repr=False)
    default: Tuple[str, Tuple[str, ...]]

    def resolve(self, process: str, args: Sequence[str] = ()) -> List[str]:
        """Validate *process* and *args* and return the launch argv.

        Raises:
            UsageError: for a process or argument outside the allow-list.
        """
        if process not in self.allowed:
            raise UsageError(
                f"Must provide valid process name. {process!r} is not allowed on "
                f"{self.name}; choose from {sorted(self.allowed)}"
            )
        rejected = [arg for arg in args if arg not in self.allowed[process]]
        if rejected:
            raise UsageError(
                f"Unsupported arguments for {process}: {rejected}; "
                f"allowed: {sorted(self.allowed[process]) or 'none'}"
            )
        return self.builder(process, list(args))

    def command_line(self, argv: Sequence[str]) -> str:
        if self.name == WINDOWS:
            return subprocess.list2cmdline(list(argv))
        return shlex.join(argv)


# ---------------------------------------------------------------------------
# Profiles (allow-lists are disjoint across operating systems)
# ---------------------------------------------------------------------------
PROFILES: dict[str, PlatformProfile] = {
    LINUX: PlatformProfile(
        name=LINUX,
        allowed={
            "ls": frozenset({"-l", "-a", "-la", "-lh"}),
            "pwd": frozenset(),
            "whoami": frozenset(),
            "id": frozenset({"-u", "-g", "-n"}),
            "date": frozenset({"-u"}),
            "uname": frozenset({"-a", "-r", "-s", "-m"}),
            "hostname": frozenset(),
            "uptime": frozenset(),
        },
        builder=_direct,
        default=("ls", ("-l",)),
    ),
    MACOS: PlatformProfile(
        name=MACOS,
        allowed={
            "TextEdit": frozenset(),
            "Calculator": frozenset(),
            "Notes": frozenset(),
            "Preview": frozenset(),
            "Safari": frozenset({"--private"}),
        },
        builder=_open_app,
        default=("TextEdit", ()),
    ),
    WINDOWS: PlatformProfile(
        name=WINDOWS,
        allowed={
            "notepad.exe": frozenset(),
            "calc.exe": frozenset(),
            "mspaint.exe": frozenset(),
            "write.exe": frozenset(),
            "msinfo32.exe": frozenset(),
        },
        builder=_start,
        default=("notepad.exe", ()),
    ),
}


def get_profile(os_name: str | None = None) -> PlatformProfile:
    """Return the profile for *os_name* (default: the running OS).

    Raises:
        UsageError: when the OS has no profile.
    """
    os_name = os_name or detect_os_name()
    try:
        return PROFILES[os_name]
    except KeyError:
        raise UsageError(
            f"Unsupported operating system {os_name!r}; "
            f"supported: {sorted(PROFILES)}"
        ) from None
