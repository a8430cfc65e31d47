"""Read-only access to field cells."""

import numpy as np

from detfield.field.field import FieldState


def read_slice(field: FieldState, x0: int, y0: int, w: int, h: int) -> np.ndarray:
    """Read a w x h rectangle of cells starting at (x0, y0).

    Coordinates wrap modulo dim in both axes, matching the torus used by the
    dynamics, so rectangles that run past the edge (or are larger than the
    grid) continue from the opposite side instead of failing.

    Args:
        field: Current field state.
        x0: Column of the top-left cell.
        y0: Row of the top-left cell.
        w: Rectangle width (>= 0).
        h: Rectangle height (>= 0).

    Returns:
        Fresh float64 array of length w * h in row-major order, element
        j * w + i holding cell (x0 + i, y0 + j).

    Raises:
        ValueError: If w or h is negative.
    """
    w, h = int(w), int(h)
    if w < 0 or h < 0:
        raise ValueError(f"slice extent must be non-negative, got w={w}, h={h}")
    dim = field.dim
    cols = (int(x0) + np.arange(w, dtype=np.int64)) % dim
    rows = (int(y0) + np.arange(h, dtype=np.int64)) % dim
    # Fancy indexing copies, so the result never aliases the state.
    return field.grid[np.ix_(rows, cols)].ravel()

