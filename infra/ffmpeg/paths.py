import os
import shutil
from pathlib import Path
from typing import Optional


class FfmpegNotFound(RuntimeError):
    pass


def resolve_ffmpeg_path(configured: Optional[str], tools_root: Path) -> str:
    if configured:
        return configured
    ffmpeg_name = "ffmpeg.exe" if os.name == "nt" else "ffmpeg"
    bundled_root = tools_root / "ffmpeg"
    direct = bundled_root / ffmpeg_name
    if direct.exists():
        return str(direct)
    bin_path = bundled_root / "bin" / ffmpeg_name
    if bin_path.exists():
        return str(bin_path)
    for candidate in bundled_root.glob("*/bin/{}".format(ffmpeg_name)):
        if candidate.exists():
            return str(candidate)
    return "ffmpeg"


def require_binary(path: str, label: str = "ffmpeg") -> None:
    if Path(path).exists():
        return
    if shutil.which(path) is None:
        raise FfmpegNotFound("{} not found: {}".format(label, path))
