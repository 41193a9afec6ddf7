"""edrtest - Console display.

Start banner, per-event lines and the closing run summary.  Uses colorama
for cross-platform ANSI colours.
"""

import sys
from collections import Counter
from typing import Iterable, Sequence

from colorama import Fore, Style, init as colorama_init

from edrtest.context import RunContext
from edrtest.events import Event


def init_console() -> None:
    """Enable ANSI colours (translated to Win32 calls on Windows consoles)."""
    colorama_init(autoreset=True)


def _banner(char: str = "=", width: int = 56) -> str:
    return char * width


def _is_error(kind: str) -> bool:
    return kind.endswith("_error")


def show_banner(context: RunContext, json_path: object, text_path: object) -> None:
    """Print the run header."""
    print(f"{Fore.CYAN}{_banner()}{Style.RESET_ALL}")
    print(f"  EDR TELEMETRY TEST  -  {context.os_name} @ {context.hostname}")
    print(f"  User       : {context.username}")
    print(f"  Process    : {context.process_name} (pid {context.process_id})")
    print(f"  JSON log   : {json_path}")
    print(f"  Text log   : {text_path}")
    print(f"{Fore.CYAN}{_banner()}{Style.RESET_ALL}")


def show_event(event: Event) -> None:
    """One line per recorded event; errors in red."""
    colour = Fore.RED if _is_error(event.kind) else Fore.GREEN
    detail = event.get("error") or _describe(event)
    print(f"  {colour}[{event.kind}]{Style.RESET_ALL} {detail}")


def _describe(event: Event) -> str:
    if "file_path" in event.attributes:
        return f"{event['activity']} {event['file_path']}"
    if "protocol" in event.attributes:
        return (
            f"{event['protocol']} {event['source_addr']}:{event['source_port']} -> "
            f"{event['destination_addr']}:{event['destination_port']} "
            f"({event['data_in_bytes']} bytes)"
        )
    return f"{event.get('process_command')} (pid {event.get('process_id')})"


def show_failure(message: str) -> None:
    """Print a failure notice to stderr."""
    print(f"{Fore.RED}[X] {message}{Style.RESET_ALL}", file=sys.stderr)


def show_summary(events: Iterable[Event], failures: Sequence[str], json_path: object) -> None:
    """Print per-kind counts and the overall outcome."""
    counts = Counter(event.kind for event in events)
    print()
    print(_banner("-"))
    print("  Run Summary")
    print(_banner("-"))
    for kind, count in sorted(counts.items()):
        colour = Fore.RED if _is_error(kind) else Fore.GREEN
        print(f"  {colour}{kind:<22}{Style.RESET_ALL} {count}")
    print(f"  Persisted  : {json_path}")
    if failures:
        print(f"  {Fore.YELLOW}[!] {len(failures)} activity(ies) failed{Style.RESET_ALL}")
    else:
        print(f"  {Fore.GREEN}[OK] All activities recorded{Style.RESET_ALL}")
    print(_banner("-"))
