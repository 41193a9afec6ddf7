"""
events.py - Telemetry event record for edrtest.

Defines the canonical Event dataclass that the probes emit and the
recorder stores and persists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Union

Scalar = Union[str, int, float, bool]


@dataclass(frozen=True)
class Event:
    """A single validated telemetry record.

    Attributes:
        kind:       Event kind tag, e.g. ``"process_execution"``.
        attributes: Read-only mapping of attribute name to scalar value.
                    Always includes ``timestamp`` and ``username``.
    """

    kind: str
    attributes: Mapping[str, Scalar] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if "kind" in self.attributes:
            raise ValueError("'kind' is reserved for the event tag and can't be an attribute")
        # Freeze a private copy so the caller's dict can't mutate the event.
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def __hash__(self) -> int:
        return hash((self.kind, frozenset(self.attributes.items())))

    @property
    def timestamp(self) -> str:
        return str(self.attributes.get("timestamp", ""))

    @property
    def actor(self) -> str:
        return str(self.attributes.get("username", ""))

    def get(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)

    def __getitem__(self, name: str) -> Scalar:
        return self.attributes[name]

    def to_dict(self) -> dict[str, Scalar]:
        """Return the JSON-sink representation: ``kind`` plus every attribute."""
        return {"kind": self.kind, **self.attributes}
