# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""HTTP application: relay WebSocket plus introspection endpoints."""

from .server import create_app, start_unified_server


__all__ = ["create_app", "start_unified_server"]
