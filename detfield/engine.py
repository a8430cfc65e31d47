"""Single-owner handle around the current FieldState.

The Engine is the only object that holds a FieldState between calls. Callers
mutate it through initialize, tick and restore, and read it through the query
methods, which return copies (ints, digest bytes, fresh arrays). Operations are
serialised with a lock and commit their result in a single assignment, so a
failing call never leaves a half-updated state behind.

Usage:
    engine = Engine()
    engine.initialize(dim=8, seed=7, alpha=0.05)
    engine.tick(100)
    engine.get_hash().hex()
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

import numpy as np

from detfield.errors import UninitializedState
from detfield.field.dynamics import evolve
from detfield.field.field import U64_MASK, FieldState, initialize
from detfield.field.hashing import decode_state, digest, encode_state
from detfield.field.ops import read_slice

if TYPE_CHECKING:
    from detfield.audit.trail import AuditTrail

logger = logging.getLogger(__name__)


class Engine:
    """Owner of the process-wide field state.

    Args:
        trail: Optional audit trail. When given, one entry is appended after
            every successful initialize, tick and restore.
    """

    def __init__(self, trail: AuditTrail | None = None) -> None:
        self._lock = threading.Lock()
        self._state: FieldState | None = None
        self._trail = trail
        self._warned_nonfinite = False

    @property
    def initialized(self) -> bool:
        """Whether initialize (or restore) has been called at least once."""
        return self._state is not None

    @property
    def state(self) -> FieldState:
        """The current FieldState. It is frozen and its cells are read-only."""
        return self._require()

    @property
    def trail(self) -> AuditTrail | None:
        """The attached audit trail, if any."""
        return self._trail

    def _require(self) -> FieldState:
        state = self._state
        if state is None:
            raise UninitializedState("engine not initialized; call initialize first")
        return state

    def _commit(self, state: FieldState, op: str, args: dict) -> None:
        self._state = state
        if self._trail is not None:
            self._trail.record(op, args, state.step, digest(state))

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    def initialize(self, dim: int, seed: int, alpha: float) -> None:
        """Replace any existing state with a fresh field at step 0.

        Raises:
            InvalidDimension: If dim is 0 or does not fit in 32 bits. The
                previous state, if any, is kept.
        """
        with self._lock:
            state = initialize(dim, seed, alpha)
            self._warned_nonfinite = False
            self._commit(
                state,
                "initialize",
                {"dim": state.dim, "seed": int(seed) & U64_MASK, "alpha": state.alpha},
            )
        logger.info("Initialized field dim=%d seed=%d alpha=%r", state.dim, seed, state.alpha)

    def tick(self, n: int = 1) -> None:
        """Advance the field by n steps.

        Raises:
            UninitializedState: If called before initialize.
            ValueError: If n is negative.
        """
        with self._lock:
            current = self._require()
            n = int(n)
            if n < 0:
                raise ValueError(f"tick count must be non-negative, got {n}")
            if n == 0:
                return
            state = evolve(current, n)
            self._commit(state, "tick", {"n": n})
            if not self._warned_nonfinite and not np.isfinite(state.cells).all():
                self._warned_nonfinite = True
                logger.warning(
                    "Field contains non-finite values at step %d (alpha=%r)",
                    state.step,
                    state.alpha,
                )
        logger.debug("Advanced %d steps to step %d", n, state.step)

    def restore(self, data: bytes) -> None:
        """Replace the state with one decoded from snapshot bytes.

        Raises:
            InvalidSnapshot: If the bytes are malformed. The previous state,
                if any, is kept.
        """
        data = bytes(data)
        with self._lock:
            state = decode_state(data)
            self._warned_nonfinite = False
            # Snapshot bytes go into the trail so a replay can restore them.
            self._commit(state, "restore", {"snapshot": data})
        logger.info("Restored field dim=%d step=%d", state.dim, state.step)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_step(self) -> int:
        """Number of steps applied since the last initialize."""
        with self._lock:
            return self._require().step

    def get_dim(self) -> int:
        """Grid side length."""
        with self._lock:
            return self._require().dim

    def get_hash(self) -> bytes:
        """32-byte SHA-256 digest of the canonical state encoding."""
        with self._lock:
            return digest(self._require())

    def get_field_slice(self, x0: int, y0: int, w: int, h: int) -> np.ndarray:
        """Copy of a w x h rectangle of cells, wrapping at the edges."""
        with self._lock:
            return read_slice(self._require(), x0, y0, w, h)

    def snapshot(self) -> bytes:
        """Canonical bytes of the current state (hashes to get_hash())."""
        with self._lock:
            return encode_state(self._require())
