"""Exceptions raised by the quantized inference core."""


class QPolicyError(Exception):
    """Base class for all errors raised by qpolicy."""


class PreconditionError(QPolicyError, ValueError):
    """The caller passed something the core refuses to compute on.

    Raised before any work starts; the call must be fixed, not retried.
    """


class ModelNotReadyError(PreconditionError):
    """Inference was requested before any weights were wired."""


class WeightLengthError(PreconditionError):
    """A weight blob did not have the byte length its tensor requires."""

    def __init__(self, handle: str, expected: int, actual: int):
        super().__init__(f"Weight blob {handle!r}: expected {expected} bytes, got {actual}")
        self.handle = handle
        self.expected = expected
        self.actual = actual


class InvariantError(QPolicyError, RuntimeError):
    """An internal shape invariant broke; correct wiring never produces this."""
