"""Deterministic scalar-field simulator with auditable SHA-256 digests.

Subpackages:
    detfield.field        FieldState, initializer, dynamics, hashing, slices
    detfield.persistence  Snapshot files in the canonical layout
    detfield.audit        Audit trails and replay verification
    detfield.server       FastAPI HTTP front end
"""

from detfield.engine import Engine
from detfield.errors import FieldError, InvalidDimension, InvalidSnapshot, UninitializedState
from detfield.field.field import FieldState

__version__ = "0.1.0"

__all__ = [
    "Engine",
    "FieldState",
    "FieldError",
    "InvalidDimension",
    "InvalidSnapshot",
    "UninitializedState",
]
