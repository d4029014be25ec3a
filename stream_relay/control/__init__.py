# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Relay protocol handling and its WebSocket transport."""

from .protocol import RelayProtocol
from .websocket import WebSocketConnection, WebSocketRelayHandler, websocket_handler


__all__ = ["RelayProtocol", "WebSocketConnection", "WebSocketRelayHandler", "websocket_handler"]
