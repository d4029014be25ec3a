# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""WebSocket to RTMP stream relay."""

__version__ = "1.0.0"
