# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import contextlib
import json
import logging
from typing import Any, Iterable

from aiohttp import WSMsgType, web
from aiohttp.web_ws import WebSocketResponse

from ..config import Config
from ..relay.exceptions import RelayError
from ..relay.session import Connection, RelaySession, SessionState, error_message
from .protocol import RelayProtocol


RELAY_PROTOCOL_KEY = web.AppKey("relay_protocol", RelayProtocol)


def is_benign_disconnect(exc: BaseException) -> bool:
    """Check if an exception represents a benign disconnection."""
    if isinstance(exc, OSError) and getattr(exc, "winerror", None) in (64, 121):
        return True
    if isinstance(exc, ConnectionResetError):
        return True
    return False


def origin_allowed(origin: str | None, allowed: Iterable[str]) -> bool:
    """Whether a handshake Origin header passes the allow-list.

    Requests without an Origin header come from non-browser clients and are
    always accepted.
    """
    if not origin:
        return True
    allowed = list(allowed)
    return "*" in allowed or origin.rstrip("/") in (a.rstrip("/") for a in allowed)


class WebSocketConnection(Connection):
    """aiohttp WebSocket side of a relay session."""

    def __init__(self, ws: WebSocketResponse):
        self.ws = ws

    @property
    def closed(self) -> bool:
        return self.ws.closed

    async def send_json(self, message: dict[str, Any]) -> bool:
        if self.ws.closed:
            return False
        try:
            await self.ws.send_str(json.dumps(message, separators=(",", ":")))
            return True
        except (ConnectionResetError, OSError):
            return False

    async def close(self, code: int = 1000, message: bytes = b"") -> None:
        with contextlib.suppress(ConnectionResetError, OSError):
            await self.ws.close(code=code, message=message)


class WebSocketRelayHandler:
    """Drives one relay session from an aiohttp WebSocket."""

    def __init__(self, protocol: RelayProtocol):
        self.protocol = protocol

    async def handle_websocket(self, ws: WebSocketResponse, request: web.Request) -> None:
        """Serve a connection until it closes, then tear its session down."""
        session = self.protocol.open_session(WebSocketConnection(ws), client_ip=request.remote or "unknown")

        try:
            await self._handle_message_loop(session, ws)
        except Exception as exc:
            if is_benign_disconnect(exc):
                reason = str(exc) if exc.args else ''
                logging.getLogger('websocket').info(f"[{session.id}] disconnect ({type(exc).__name__}: {reason})")
            else:
                logging.getLogger('websocket').warning(f"[{session.id}] websocket error: {exc!r}")
        finally:
            await self.protocol.close_session(session)

    async def _handle_message_loop(self, session: RelaySession, ws: WebSocketResponse) -> None:
        """Feed inbound messages to the protocol one at a time."""
        async for msg in ws:
            if msg.type in (WSMsgType.BINARY, WSMsgType.TEXT):
                payload = msg.data
            elif msg.type == WSMsgType.ERROR:
                logging.getLogger('websocket').warning(f'[{session.id}] WebSocket error: {ws.exception()}')
                break
            else:
                logging.getLogger('websocket').debug(f'[{session.id}] ignoring {msg.type} frame')
                continue

            try:
                await self.protocol.handle_message(session, payload)
            except RelayError as e:
                logging.getLogger('websocket').warning(f"[{session.id}] {type(e).__name__}: {e}")
                if e.fatal:
                    await session.teardown(SessionState.FAILED, notice=error_message(e.client_message))
                else:
                    await session.send_error(e.client_message)
            except Exception as e:
                # Scoped to this session; the connection stays up
                logging.getLogger('websocket').exception(f"[{session.id}] error processing message")
                await session.send_error(str(e) or type(e).__name__)

        logging.getLogger('websocket').info(f"[{session.id}] connection closed (code={ws.close_code})")


async def websocket_handler(request: web.Request) -> WebSocketResponse:
    """Handle relay WebSocket upgrade requests."""
    config = Config()
    origin = request.headers.get("Origin")
    if not origin_allowed(origin, config.get("server.allowed_origins")):
        logging.getLogger('websocket').warning(f"rejected connection from {request.remote}: origin {origin} not allowed")
        raise web.HTTPForbidden(text="Origin not allowed")

    ws = WebSocketResponse(
        heartbeat=float(config.get("server.heartbeat_s")) or None,
        max_msg_size=int(config.get("server.max_msg_size")),
        autoping=True,
    )
    await ws.prepare(request)

    protocol = request.app[RELAY_PROTOCOL_KEY]
    await WebSocketRelayHandler(protocol).handle_websocket(ws, request)

    return ws
