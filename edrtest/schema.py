"""
schema.py - Event taxonomy and required-attribute registry for edrtest.

Each event kind owns an ordered tuple of attribute names that a downstream
EDR comparison needs.  ``validate`` checks an attribute mapping against that
tuple without side effects; the recorder decides what to do with a failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Tuple


class EventKind(str, Enum):
    """Known event kinds.  Values are the strings written to the sinks."""

    PROCESS_EXECUTION = "process_execution"
    FILESYSTEM_ACTIVITY = "filesystem_activity"
    NETWORK_TCP = "network_tcp"
    NETWORK_HTTP = "network_http"
    NETWORK_UDP = "network_udp"

    LOGGING_ERROR = "logging_error"
    PROCESS_ERROR = "process_error"
    FILESYSTEM_ERROR = "filesystem_error"
    NETWORK_ERROR = "network_error"

    def __str__(self) -> str:
        return self.value


# ---------------------------------------------------------------------------
# Attribute sets (order matters - it is the order reported on failure)
# ---------------------------------------------------------------------------
BASE_ATTRIBUTES: Tuple[str, ...] = (
    "timestamp",
    "username",
    "process_name",
    "process_command",
    "process_id",
)

FILE_ATTRIBUTES: Tuple[str, ...] = BASE_ATTRIBUTES + (
    "file_path",
    "activity",
)

NETWORK_ATTRIBUTES: Tuple[str, ...] = BASE_ATTRIBUTES + (
    "protocol",
    "data_in_bytes",
    "destination_addr",
    "destination_port",
    "source_addr",
    "source_port",
)

ERROR_ATTRIBUTES: Tuple[str, ...] = ("timestamp", "username", "error")

REQUIRED_ATTRIBUTES: dict[str, Tuple[str, ...]] = {
    EventKind.PROCESS_EXECUTION.value: BASE_ATTRIBUTES,
    EventKind.FILESYSTEM_ACTIVITY.value: FILE_ATTRIBUTES,
    EventKind.NETWORK_TCP.value: NETWORK_ATTRIBUTES,
    EventKind.NETWORK_HTTP.value: NETWORK_ATTRIBUTES,
    EventKind.NETWORK_UDP.value: NETWORK_ATTRIBUTES,
    EventKind.LOGGING_ERROR.value: ERROR_ATTRIBUTES,
    EventKind.PROCESS_ERROR.value: ERROR_ATTRIBUTES,
    EventKind.FILESYSTEM_ERROR.value: ERROR_ATTRIBUTES,
    EventKind.NETWORK_ERROR.value: ERROR_ATTRIBUTES,
}

SCALAR_TYPES = (str, int, float, bool)


def required_attributes(kind: str) -> Tuple[str, ...]:
    """Return the required attribute names for *kind*.

    Raises:
        KeyError: if *kind* is not registered.
    """
    return REQUIRED_ATTRIBUTES[str(kind)]


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of :func:`validate`.

    Attributes:
        kind:    The event kind that was checked.
        missing: Required attributes absent from the mapping.
        empty:   Required attributes present but ``None`` or blank.
        invalid: Attributes whose value is not a scalar.
        known:   ``False`` if *kind* has no registered schema.
    """

    kind: str
    missing: Tuple[str, ...] = ()
    empty: Tuple[str, ...] = ()
    invalid: Tuple[str, ...] = ()
    known: bool = True

    @property
    def ok(self) -> bool:
        return self.known and not (self.missing or self.empty or self.invalid)

    def message(self) -> str:
        if self.ok:
            return f"{self.kind}: all required attributes present"
        if not self.known:
            return f"Unknown event kind: {self.kind!r}"
        parts = []
        if self.missing:
            parts.append(f"missing {list(self.missing)}")
        if self.empty:
            parts.append(f"empty {list(self.empty)}")
        if self.invalid:
            parts.append(f"non-scalar {list(self.invalid)}")
        return (
            f"Ensure you have provided all attributes for {self.kind}: "
            + "; ".join(parts)
        )


def _is_empty(value: Any) -> bool:
    return value is None or str(value) == ""


def validate(kind: str, attributes: Mapping[str, Any]) -> ValidationResult:
    """Check *attributes* against the schema registered for *kind*.

    Pure function: neither the mapping nor any store is touched.
    """
    kind = str(kind)
    try:
        required = required_attributes(kind)
    except KeyError:
        return ValidationResult(kind=kind, known=False)

    missing = tuple(name for name in required if name not in attributes)
    empty = tuple(
        name for name in required
        if name in attributes and _is_empty(attributes[name])
    )
    invalid = tuple(
        name for name, value in attributes.items()
        if value is not None and not isinstance(value, SCALAR_TYPES)
    )
    return ValidationResult(kind=kind, missing=missing, empty=empty, invalid=invalid)
