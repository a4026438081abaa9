"""
Error taxonomy for the Emitter Operator.

Lookup failures coming back from the Kubernetes API are classified by
inspecting the HTTP status on the exception rather than assuming its type,
so an unexpected error value can never crash a reconcile.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Classification of errors seen during reconciliation."""

    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    DECODE = "decode"


class OperatorError(Exception):
    """Base class for errors raised by the operator itself."""

    kind = ErrorKind.TRANSIENT


class ManifestError(OperatorError):
    """The deployment manifest template could not be read."""

    kind = ErrorKind.DECODE


class ManifestDecodeError(ManifestError):
    """The deployment manifest template is not a valid Deployment."""


def status_code(exc: BaseException) -> Optional[int]:
    """Return the HTTP status carried by an API error, if any."""
    status = getattr(exc, "status", None)
    if isinstance(status, int):
        return status
    if isinstance(status, str) and status.isdigit():
        return int(status)
    return None


def classify(exc: BaseException) -> ErrorKind:
    """
    Classify an error.

    Never raises. Anything that cannot be identified is TRANSIENT so the
    trigger retries it with backoff.
    """
    if isinstance(exc, OperatorError):
        return exc.kind
    if status_code(exc) == 404:
        return ErrorKind.NOT_FOUND
    return ErrorKind.TRANSIENT


def is_not_found(exc: Optional[BaseException]) -> bool:
    """True if the error is an expected-absence lookup failure."""
    return exc is not None and classify(exc) is ErrorKind.NOT_FOUND


def ignore_not_found(exc: Optional[BaseException]) -> Optional[BaseException]:
    """Return None for NotFound errors, the error itself otherwise."""
    if exc is None or is_not_found(exc):
        return None
    return exc
