"""
errors.py - Exception taxonomy for edrtest.

UsageError       Bad input, caught before any OS action.  Nothing is recorded.
ValidationError  A probe built an event that does not satisfy its schema.
                 Always fatal for the run.
ProbeError       The OS action itself failed.  The probe has already recorded
                 a ``<domain>_error`` event before raising.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from edrtest.schema import ValidationResult


class EdrTestError(Exception):
    """Base class for every error raised by edrtest."""


class UsageError(EdrTestError):
    """Malformed or unsupported input (unknown process, missing file, ...)."""


class ValidationError(EdrTestError):
    """An event is missing required attributes.

    Attributes:
        result: The failed :class:`~edrtest.schema.ValidationResult`.
    """

    def __init__(self, result: ValidationResult) -> None:
        super().__init__(result.message())
        self.result = result


class ProbeError(EdrTestError):
    """A probe's OS action failed.

    Attributes:
        domain: ``"process"``, ``"filesystem"`` or ``"network"``.
    """

    def __init__(self, domain: str, message: str) -> None:
        super().__init__(f"{domain} probe failed: {message}")
        self.domain = domain
