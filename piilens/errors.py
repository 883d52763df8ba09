"""Exception hierarchy and error-record helpers.

Only two things are raised out of the public API: ``InputValidationError``
(bad image source, checked before any layer runs) and the startup errors
``ConfigurationError`` / ``InitializationError``.  Everything that goes
wrong inside a detection layer is converted into a ``PIIError`` record via
:func:`make_error` and attached to the ``DetectionResult`` instead.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from piilens.models.schemas import PIIError, PIIErrorType

logger = logging.getLogger(__name__)

_NON_RECOVERABLE = frozenset({
    PIIErrorType.INITIALIZATION,
    PIIErrorType.CONFIGURATION,
})


class PIILensError(Exception):
    """Base class for every error raised by piilens."""

    error_type: PIIErrorType = PIIErrorType.PROCESSING

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_record(self, layer: Optional[str] = None) -> PIIError:
        return make_error(self.error_type, self.message, layer=layer, details=self.details)


class InitializationError(PIILensError):
    """A component could not be prepared at startup."""
    error_type = PIIErrorType.INITIALIZATION


class ConfigurationError(PIILensError):
    """Settings failed validation; raised once at startup."""
    error_type = PIIErrorType.CONFIGURATION


class InputValidationError(PIILensError, ValueError):
    """The caller supplied an empty or malformed image source."""
    error_type = PIIErrorType.VALIDATION


class OCRError(PIILensError):
    """The OCR collaborator could not read the image."""
    error_type = PIIErrorType.OCR


class LLMError(PIILensError):
    """Every enabled LLM provider failed.

    ``details["providers"]`` maps provider name to the last failure seen.
    """
    error_type = PIIErrorType.LLM


class ResponseParseError(PIILensError):
    """An LLM reply did not contain a usable JSON array."""
    error_type = PIIErrorType.VALIDATION


class ObscuringError(PIILensError, ValueError):
    """The requested obscuring technique cannot be applied."""
    error_type = PIIErrorType.PROCESSING


def is_recoverable(error_type: PIIErrorType) -> bool:
    return error_type not in _NON_RECOVERABLE


def make_error(
    error_type: PIIErrorType,
    message: str,
    layer: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> PIIError:
    """Build a ``PIIError`` record and log it at the matching level."""
    recoverable = is_recoverable(error_type)
    record = PIIError(
        type=error_type,
        message=message,
        layer=layer,
        details=details or {},
        recoverable=recoverable,
    )
    where = f" [{layer}]" if layer else ""
    extra = {"layer": layer, "error_type": error_type.value}
    if recoverable:
        logger.warning("%s error%s: %s", error_type.value, where, message, extra=extra)
    else:
        logger.error("%s error%s: %s", error_type.value, where, message, extra=extra)
    return record


def error_stats(errors: list[PIIError]) -> dict[str, Any]:
    """Count errors by type and recoverability."""
    by_type: dict[str, int] = {}
    for err in errors:
        by_type[err.type.value] = by_type.get(err.type.value, 0) + 1
    return {
        "total": len(errors),
        "by_type": by_type,
        "recoverable": sum(1 for e in errors if e.recoverable),
        "non_recoverable": sum(1 for e in errors if not e.recoverable),
    }
