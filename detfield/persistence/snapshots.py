"""Snapshot files holding a FieldState in its canonical byte layout.

A snapshot file contains exactly the bytes that are hashed for the state's
digest, so `sha256(file) == digest(state)` and a restored state reproduces the
digest it had when it was saved.

Snapshot rotation: keeps the last N `step_*.bin` files in a directory and
deletes the oldest. A `latest.bin` symlink points at the newest file.
"""

import glob
import logging
import os

from detfield.field.field import FieldState
from detfield.field.hashing import decode_state, encode_state

logger = logging.getLogger(__name__)

LATEST_NAME = "latest.bin"


def snapshot_path(directory: str, step: int) -> str:
    """Return the conventional file name for a snapshot taken at step."""
    return os.path.join(directory, f"step_{step:012d}.bin")


def save_snapshot(
    path: str,
    state: FieldState,
    max_snapshots: int = 5,
) -> str:
    """Save a snapshot to disk.

    Args:
        path: File path for the snapshot (e.g. "snapshots/step_000000000100.bin").
        state: The FieldState to persist.
        max_snapshots: Maximum number of step_*.bin snapshots to keep in the
            same directory. Oldest are deleted. Set to 0 to disable rotation.

    Returns:
        The absolute path to the saved snapshot.
    """
    data = encode_state(state)

    parent_dir = os.path.dirname(path)
    if parent_dir:
        os.makedirs(parent_dir, exist_ok=True)

    # Write atomically: write to temp file then rename
    tmp_path = path + ".tmp"
    with open(tmp_path, "wb") as f:
        f.write(data)
    os.replace(tmp_path, path)
    logger.info("Saved snapshot step=%d to %s", state.step, path)

    if parent_dir:
        latest_path = os.path.join(parent_dir, LATEST_NAME)
        rel_target = os.path.basename(path)
        if rel_target != LATEST_NAME:
            if os.path.exists(latest_path) or os.path.islink(latest_path):
                os.remove(latest_path)
            os.symlink(rel_target, latest_path)

    if max_snapshots > 0 and parent_dir:
        _rotate_snapshots(parent_dir, max_snapshots, keep=path)

    return os.path.abspath(path)


def _rotate_snapshots(snapshot_dir: str, max_snapshots: int, keep: str | None = None) -> None:
    """Delete the oldest step_*.bin snapshots beyond max_snapshots.

    Files are ordered by save time, not by step. The latest.bin symlink is never deleted.

    Args:
        snapshot_dir: Directory containing snapshot files.
        max_snapshots: Maximum number of snapshot files to keep.
        keep: Snapshot that must survive, normally the one just written.
    """
    pattern = os.path.join(snapshot_dir, "step_*.bin")
    # Name breaks mtime ties on filesystems with coarse timestamps.
    snapshot_files = sorted(glob.glob(pattern), key=lambda p: (os.path.getmtime(p), p))
    if keep is not None:
        keep = os.path.abspath(keep)
        snapshot_files = [p for p in snapshot_files if os.path.abspath(p) != keep]
        max_snapshots -= 1

    while len(snapshot_files) > max_snapshots:
        oldest = snapshot_files.pop(0)
        os.remove(oldest)
        logger.debug("Rotated out snapshot %s", oldest)


def load_snapshot(path: str) -> FieldState:
    """Load a snapshot from disk.

    Args:
        path: Path to the snapshot file (a latest.bin symlink works too).

    Returns:
        The FieldState stored in the file.

    Raises:
        FileNotFoundError: If the snapshot file does not exist.
        InvalidSnapshot: If the file is truncated or otherwise malformed.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Snapshot not found: {path}")

    with open(path, "rb") as f:
        data = f.read()
    return decode_state(data)
