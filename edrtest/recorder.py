"""
recorder.py - Telemetry recorder for edrtest.

The recorder is the single gateway between the probes and the two sinks:

  1. Stamp ``timestamp`` / ``username`` / ``hostname`` onto the attributes
     if missing.
  2. Validate against the schema registry.
  3. Append the Event to the in-memory store.
  4. Mirror one line to the text sink immediately.

At the end of the run :meth:`TelemetryRecorder.persist` writes the whole
store to the JSON sink in one go.  The text sink is flushed line by line, so
it survives a crash; the JSON sink is all-or-nothing.

A validation failure is recorded as a ``logging_error`` event and raised as
:class:`~edrtest.errors.ValidationError`.  Whether that ends the run is up
to the caller (the CLI treats it as fatal).
"""

from __future__ import annotations

import itertools
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Mapping

from edrtest.context import RunContext
from edrtest.errors import ValidationError
from edrtest.events import Event
from edrtest.schema import EventKind, ValidationResult, validate
from edrtest.store import EventStore

logger = logging.getLogger(__name__)

DEFAULT_JSON_LOG = "logs/edrtest_log.json"
DEFAULT_TEXT_LOG = "logs/edrtest_log.log"

TEXT_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
TEXT_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"

# Suffix for per-recorder logger names, so two recorders never share handlers.
_recorder_ids = itertools.count(1)


def now_iso() -> str:
    """Local time as ISO-8601 with offset and fixed microsecond precision."""
    return datetime.now().astimezone().isoformat(timespec="microseconds")


class TelemetryRecorder:
    """Validates, stores and persists the events of one run.

    Parameters:
        json_path: Destination of the JSON array written by :meth:`persist`.
        text_path: Destination of the incremental text trail.  Truncated on
                   construction.
        context:   Actor/process identity.  Defaults to the current process.
        clock:     Returns the timestamp string stamped onto events.
    """

    def __init__(
        self,
        json_path: str | Path = DEFAULT_JSON_LOG,
        text_path: str | Path = DEFAULT_TEXT_LOG,
        context: RunContext | None = None,
        clock: Callable[[], str] = now_iso,
    ) -> None:
        self.json_path = Path(json_path)
        self.text_path = Path(text_path)
        self.context = context or RunContext.current()
        self._clock = clock
        self._store = EventStore()
        self._text_logger, self._text_handler = self._configure_text_logger(self.text_path)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(self, kind: str, attributes: Mapping[str, Any] | None = None, **extra: Any) -> Event:
        """Validate and store one event.

        Args:
            kind:       Event kind, e.g. ``"network_tcp"``.
            attributes: Attribute mapping; keyword arguments are merged in.

        Returns:
            The stored :class:`Event`.

        Raises:
            ValidationError: if a required attribute is missing or empty.
                A ``logging_error`` event describing the failure has already
                been stored when this is raised.
        """
        kind = str(kind)
        attrs = dict(attributes or {})
        attrs.update(extra)
        attrs.setdefault("timestamp", self._clock())
        attrs.setdefault("username", self.context.username)
        attrs.setdefault("hostname", self.context.hostname)

        result = validate(kind, attrs)
        if not result.ok:
            self._record_logging_error(result)
            raise ValidationError(result)

        event = Event(kind=kind, attributes=attrs)
        self._store.append(event)
        self._text_logger.info("%s %s", kind, attrs)
        logger.debug("Recorded %s (%d events)", kind, len(self._store))
        return event

    def record_error(self, domain: str, message: str, **attributes: Any) -> Event:
        """Record a ``<domain>_error`` event carrying *message*."""
        return self.record(f"{domain}_error", {"error": message, **attributes})

    def _record_logging_error(self, result: ValidationResult) -> None:
        attrs = {
            "timestamp": self._clock(),
            "username": self.context.username,
            "hostname": self.context.hostname,
            "error": result.message(),
            "failed_kind": result.kind,
            "missing_attributes": ", ".join(result.missing + result.empty),
        }
        self._store.append(Event(kind=EventKind.LOGGING_ERROR.value, attributes=attrs))
        self._text_logger.error("%s %s", EventKind.LOGGING_ERROR.value, attrs)
        logger.error("Validation failed: %s", result.message())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def events(self) -> List[Event]:
        return self._store.snapshot()

    def events_of_kind(self, kind: str) -> List[Event]:
        """Stored events of *kind*, in insertion order (empty if none)."""
        return self._store.of_kind(kind)

    def __len__(self) -> int:
        return len(self._store)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def persist(self) -> Path:
        """Write every stored event to the JSON sink, replacing its content.

        The array is written to a sibling temp file first and moved into
        place, so readers never see a half-written file.  On failure the temp
        file is removed and the error propagates.
        """
        self.json_path.parent.mkdir(parents=True, exist_ok=True)
        payload = [event.to_dict() for event in self._store]
        tmp_path = self.json_path.with_name(self.json_path.name + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2)
                fh.write("\n")
            os.replace(tmp_path, self.json_path)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise

        self._text_logger.info("Persisted %d events to %s", len(payload), self.json_path)
        logger.info("Persisted %d events to %s", len(payload), self.json_path)
        return self.json_path

    def reset(self) -> None:
        """Drop every stored event.  Only meant for repeated-run scenarios."""
        self._store.clear()
        self._text_logger.info("Cleared all logged events")

    def close(self) -> None:
        """Release the text-sink file handle."""
        self._text_handler.close()
        self._text_logger.removeHandler(self._text_handler)

    def __enter__(self) -> "TelemetryRecorder":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Text sink
    # ------------------------------------------------------------------

    def _configure_text_logger(self, path: Path) -> tuple[logging.Logger, logging.Handler]:
        """Private, non-propagating logger writing to *path* (truncated).

        Built directly rather than through ``logging.getLogger`` so it is
        never registered with the logging manager and dies with the recorder.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        text_logger = logging.Logger(f"edrtest.telemetry.{next(_recorder_ids)}", logging.INFO)
        text_logger.propagate = False

        handler = logging.FileHandler(path, mode="w", encoding="utf-8")
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT))
        text_logger.addHandler(handler)
        return text_logger, handler
