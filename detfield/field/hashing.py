"""Canonical byte encoding of a FieldState and its SHA-256 digest.

Layout (all little-endian):

    offset  size        field
    0       4           dim    unsigned 32-bit
    4       8           step   unsigned 64-bit
    12      8           alpha  IEEE-754 double
    20      8*dim*dim   cells  IEEE-754 doubles, row-major

The same bytes are the persisted snapshot format, so hashing a snapshot file
gives the digest of the state it holds.
"""

import hashlib
import struct

import numpy as np

from detfield.errors import InvalidSnapshot
from detfield.field.field import FieldState, freeze_cells

HEADER = struct.Struct("<IQd")
HEADER_SIZE = HEADER.size  # 20
CELL_DTYPE = np.dtype("<f8")
DIGEST_SIZE = 32


def encode_state(field: FieldState) -> bytes:
    """Serialize a FieldState to its canonical bytes."""
    header = HEADER.pack(field.dim, field.step, field.alpha)
    return header + field.cells.astype(CELL_DTYPE, copy=False).tobytes()


def decode_state(data: bytes) -> FieldState:
    """Rebuild a FieldState from canonical bytes.

    Args:
        data: Bytes produced by encode_state (or read from a snapshot file).

    Returns:
        The decoded FieldState.

    Raises:
        InvalidSnapshot: If the header is truncated, dim is zero, or the
            payload length does not match dim * dim cells.
    """
    data = bytes(data)
    if len(data) < HEADER_SIZE:
        raise InvalidSnapshot(
            f"snapshot too short: {len(data)} bytes, header needs {HEADER_SIZE}"
        )
    dim, step, alpha = HEADER.unpack_from(data, 0)
    if dim == 0:
        raise InvalidSnapshot("snapshot has dim == 0")
    expected = HEADER_SIZE + CELL_DTYPE.itemsize * dim * dim
    if len(data) != expected:
        raise InvalidSnapshot(
            f"snapshot length {len(data)} does not match dim={dim} "
            f"(expected {expected} bytes)"
        )
    cells = np.frombuffer(data, dtype=CELL_DTYPE, offset=HEADER_SIZE)
    return FieldState(dim=dim, step=step, alpha=alpha, cells=freeze_cells(cells))


def digest(field: FieldState) -> bytes:
    """Return the 32-byte SHA-256 digest of the canonical encoding."""
    h = hashlib.sha256()
    h.update(HEADER.pack(field.dim, field.step, field.alpha))
    h.update(field.cells.astype(CELL_DTYPE, copy=False).tobytes())
    return h.digest()


def hexdigest(field: FieldState) -> str:
    """Return the digest as a lowercase hex string."""
    return digest(field).hex()
