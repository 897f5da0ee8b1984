from shared.utils.geometry import Rect, grid_cells, grid_shape
from shared.utils.files import atomic_write_text, remove_file

__all__ = [
    "Rect",
    "grid_cells",
    "grid_shape",
    "atomic_write_text",
    "remove_file",
]
