"""Typed failures raised by the field engine."""


class FieldError(Exception):
    """Base class for all engine failures.

    Attributes:
        kind: Stable name of the failure, used by the server in error payloads.
    """
    kind = "FieldError"


class InvalidDimension(FieldError, ValueError):
    """Raised when initialize is asked for a grid that cannot exist."""
    kind = "InvalidDimension"


class UninitializedState(FieldError, RuntimeError):
    """Raised when the field is read or advanced before initialize."""
    kind = "UninitializedState"


class InvalidSnapshot(FieldError, ValueError):
    """Raised when persisted bytes do not decode to a valid field state."""
    kind = "InvalidSnapshot"
