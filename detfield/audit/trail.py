"""Recording and replay verification of engine runs.

An AuditTrail lists every mutating operation applied to an Engine together with
the step and digest right after it. Another node can load the trail, replay the
same operations on a fresh Engine and confirm that it reaches the same digests,
which is how two independent executions prove they agree.

Trails are stored as a single gzip-compressed MessagePack file:

    {"metadata": {...}, "entries": [{"op", "args", "step", "digest"}, ...]}

Usage:
    trail = AuditTrail()
    engine = Engine(trail=trail)
    engine.initialize(8, 7, 0.05)
    engine.tick(100)
    trail.save("audits/run.msgpack.gz")

    report = replay_trail(AuditTrail.load("audits/run.msgpack.gz"))
    assert report.ok
"""

from __future__ import annotations

import gzip
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import msgpack

from detfield.errors import FieldError

logger = logging.getLogger(__name__)

OPERATIONS = ("initialize", "tick", "restore")


@dataclass
class AuditEntry:
    """One mutating operation and the state it produced."""

    op: str
    args: dict[str, Any]
    step: int
    digest: bytes

    def to_dict(self) -> dict[str, Any]:
        return {
            "op": self.op,
            "args": dict(self.args),
            "step": self.step,
            "digest": self.digest,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> AuditEntry:
        return cls(
            op=d["op"],
            args=dict(d.get("args", {})),
            step=int(d["step"]),
            digest=bytes(d["digest"]),
        )


@dataclass
class Mismatch:
    """First point where a replay disagreed with the recorded trail."""

    index: int
    op: str
    expected_step: int
    actual_step: int | None
    expected_digest: bytes
    actual_digest: bytes | None
    error: str | None = None
    """Why the operation could not be replayed, if it raised."""

    def describe(self) -> str:
        head = (
            f"entry {self.index} ({self.op}): expected step {self.expected_step} "
            f"digest {self.expected_digest.hex()}"
        )
        if self.error is not None:
            return f"{head}, replay failed: {self.error}"
        actual_digest = self.actual_digest.hex() if self.actual_digest is not None else None
        return f"{head}, got step {self.actual_step} digest {actual_digest}"


@dataclass
class VerificationReport:
    """Outcome of replaying a trail."""

    checked: int
    total: int
    mismatch: Mismatch | None = None
    final_digest: bytes | None = None

    @property
    def ok(self) -> bool:
        return self.mismatch is None and self.checked == self.total


class AuditTrail:
    """Ordered record of operations and digests for one engine.

    Args:
        metadata: Free-form information stored alongside the entries
            (for example the node name). A "created_at" timestamp is added.
    """

    def __init__(self, metadata: dict[str, Any] | None = None) -> None:
        self._entries: list[AuditEntry] = []
        self._metadata: dict[str, Any] = dict(metadata or {})
        self._metadata.setdefault("created_at", time.time())

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> list[AuditEntry]:
        """Copy of the recorded entries."""
        return list(self._entries)

    @property
    def metadata(self) -> dict[str, Any]:
        return dict(self._metadata)

    @property
    def final_digest(self) -> bytes | None:
        """Digest after the last recorded operation, or None if empty."""
        if not self._entries:
            return None
        return self._entries[-1].digest

    def record(self, op: str, args: dict[str, Any], step: int, digest: bytes) -> AuditEntry:
        """Append an entry.

        Raises:
            ValueError: If op is not a known mutating operation.
        """
        if op not in OPERATIONS:
            raise ValueError(f"Unknown operation {op!r}, expected one of {OPERATIONS}")
        entry = AuditEntry(op=op, args=dict(args), step=int(step), digest=bytes(digest))
        self._entries.append(entry)
        return entry

    def save(self, path: str | Path) -> Path:
        """Write the trail to a gzip-compressed MessagePack file.

        Returns:
            Path of the written file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "metadata": self._metadata,
            "entries": [e.to_dict() for e in self._entries],
        }
        packed: bytes = msgpack.packb(payload, use_bin_type=True)
        tmp_path = path.with_name(path.name + ".tmp")
        with gzip.open(tmp_path, "wb") as f:
            f.write(packed)
        tmp_path.replace(path)
        logger.info("Saved audit trail to %s (%d entries)", path, len(self._entries))
        return path

    @classmethod
    def load(cls, path: str | Path) -> AuditTrail:
        """Read a trail written by save().

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file does not contain a trail.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Audit trail not found: {path}")
        with gzip.open(path, "rb") as f:
            raw = f.read()
        data = msgpack.unpackb(raw, raw=False)
        if not isinstance(data, dict) or "entries" not in data:
            raise ValueError(f"Not an audit trail: {path}")
        trail = cls(metadata=data.get("metadata") or {})
        trail._entries = [AuditEntry.from_dict(d) for d in data["entries"]]
        return trail


def _apply(engine: Any, entry: AuditEntry) -> None:
    args = entry.args
    if entry.op == "initialize":
        engine.initialize(args["dim"], args["seed"], args["alpha"])
    elif entry.op == "tick":
        engine.tick(args["n"])
    elif entry.op == "restore":
        engine.restore(args["snapshot"])
    else:
        raise ValueError(f"Unknown operation {entry.op!r} in audit trail")


def replay_trail(trail: AuditTrail) -> VerificationReport:
    """Re-execute a trail on a fresh Engine and compare every digest.

    Replay stops at the first entry whose step or digest differs, or whose
    operation raises (for example a tampered dim of 0, or a tick before any
    initialize). Such an entry is reported as a Mismatch carrying the error.

    Args:
        trail: The trail to verify.

    Returns:
        VerificationReport with the number of entries checked and the first
        mismatch, if any.
    """
    from detfield.engine import Engine

    engine = Engine()
    entries = trail.entries
    checked = 0
    for index, entry in enumerate(entries):
        error = None
        try:
            _apply(engine, entry)
        except (FieldError, ValueError, KeyError, TypeError) as exc:
            error = f"{type(exc).__name__}: {exc}"
        actual_step = engine.get_step() if engine.initialized else None
        actual_digest = engine.get_hash() if engine.initialized else None
        if error is not None or actual_step != entry.step or actual_digest != entry.digest:
            mismatch = Mismatch(
                index=index,
                op=entry.op,
                expected_step=entry.step,
                actual_step=actual_step,
                expected_digest=entry.digest,
                actual_digest=actual_digest,
                error=error,
            )
            logger.warning("Audit replay diverged at %s", mismatch.describe())
            return VerificationReport(
                checked=checked,
                total=len(entries),
                mismatch=mismatch,
                final_digest=actual_digest,
            )
        checked += 1

    final = engine.get_hash() if engine.initialized else None
    logger.info("Audit replay verified %d entries", checked)
    return VerificationReport(checked=checked, total=len(entries), final_digest=final)
