# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Relay sessions, their transcoder processes, and the session registry.

This module handles:
- Session configuration parsing and the session lifecycle
- Spawning and supervising one transcoder per session
- Process-wide session bookkeeping
"""

from .exceptions import (
    ConfigurationError,
    InvalidTransitionError,
    MissingDestinationError,
    RelayError,
    TranscoderError,
    TranscoderSpawnError,
    TranscoderWriteError,
)
from .registry import SessionRegistry
from .session import Connection, RelaySession, SessionConfig, SessionState
from .transcoder import TranscoderProcess, TranscoderSettings, build_ffmpeg_args


__all__ = [
    "ConfigurationError",
    "Connection",
    "InvalidTransitionError",
    "MissingDestinationError",
    "RelayError",
    "RelaySession",
    "SessionConfig",
    "SessionRegistry",
    "SessionState",
    "TranscoderError",
    "TranscoderProcess",
    "TranscoderSettings",
    "TranscoderSpawnError",
    "TranscoderWriteError",
    "build_ffmpeg_args",
]
