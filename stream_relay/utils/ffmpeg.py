# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import logging
import shutil
from pathlib import Path
from typing import Optional

# Cache for the resolved executable
_ffmpeg_exe_cache: Optional[str] = None


def get_ffmpeg_exe_path(configured: Optional[str] = None) -> Optional[str]:
    """Find FFmpeg executable path.

    An explicitly configured path wins; otherwise PATH is searched, then the
    binary bundled with imageio-ffmpeg if that package is installed.
    """
    global _ffmpeg_exe_cache

    if configured:
        if Path(configured).is_file() or shutil.which(configured):
            return configured
        logging.getLogger("transcoder").warning(f"configured ffmpeg not found: {configured}")
        return None

    if _ffmpeg_exe_cache:
        return _ffmpeg_exe_cache

    exe = shutil.which("ffmpeg")
    if not exe:
        try:
            import imageio_ffmpeg  # type: ignore[import]  # imageio-ffmpeg has no type stubs
            exe = imageio_ffmpeg.get_ffmpeg_exe()
        except Exception:
            exe = None

    _ffmpeg_exe_cache = exe
    return exe
