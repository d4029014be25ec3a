# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Utility modules for field definitions, metrics, and ffmpeg discovery."""

from .ffmpeg import get_ffmpeg_exe_path
from .fields import RESOLUTIONS, FieldDef, SessionFields
from .metrics import IngestStats, RateMeter


__all__ = [
    # Fields
    "RESOLUTIONS",
    "FieldDef",
    "SessionFields",
    # Metrics
    "IngestStats",
    "RateMeter",
    # FFmpeg
    "get_ffmpeg_exe_path",
]
