from pathlib import Path
from typing import Union

PathLike = Union[str, Path]


def atomic_write_text(path: PathLike, text: str) -> Path:
    """Write ``text`` next to ``path`` and rename it into place.

    Readers either see the previous file or the complete new one.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = Path(str(path) + ".tmp")
    try:
        tmp_path.write_text(text, encoding="utf-8", newline="")
        tmp_path.replace(path)
    except OSError:
        try:
            tmp_path.unlink()
        except OSError:
            pass
        raise
    return path


def remove_file(path: PathLike) -> bool:
    """Delete ``path``; return False when it was already gone."""
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return False
    return True
