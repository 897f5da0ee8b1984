import math
from dataclasses import dataclass
from typing import List, Tuple


@dataclass(frozen=True)
class Rect:
    x: int
    y: int
    width: int
    height: int

    def as_dict(self) -> dict:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
        }


def grid_shape(count: int) -> Tuple[int, int]:
    """Return ``(cols, rows)`` for a near-square grid holding ``count`` cells."""
    if count <= 0:
        return 0, 0
    cols = math.ceil(math.sqrt(count))
    rows = math.ceil(count / cols)
    return cols, rows


def _edge(index: int, total: int, extent: int) -> int:
    # Integer split point of ``extent`` into ``total`` spans; spans tile exactly.
    return (index * extent + total // 2) // total


def grid_cells(count: int, width: int, height: int) -> List[Rect]:
    """Row-major cells of a ``grid_shape(count)`` grid covering ``width x height``.

    When the canvas divides evenly every cell has the same size. Otherwise
    neighbouring cells differ by at most one pixel so a row still spans the
    full width and a column the full height.
    """
    cols, rows = grid_shape(count)
    if cols == 0:
        return []
    if width <= 0 or height <= 0:
        raise ValueError("canvas size must be positive")
    cells = []
    for index in range(count):
        row, col = divmod(index, cols)
        left = _edge(col, cols, width)
        right = _edge(col + 1, cols, width)
        top = _edge(row, rows, height)
        bottom = _edge(row + 1, rows, height)
        cells.append(Rect(left, top, right - left, bottom - top))
    return cells
