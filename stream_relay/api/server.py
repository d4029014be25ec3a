# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import logging
from typing import Optional

from aiohttp import web

from ..config import Config
from ..control.protocol import RelayProtocol
from ..control.websocket import RELAY_PROTOCOL_KEY, origin_allowed, websocket_handler
from ..relay.registry import SessionRegistry
from ..relay.transcoder import TranscoderSettings


REGISTRY_KEY = web.AppKey("registry", SessionRegistry)


async def health_check_handler(request):
    """Process uptime and number of active relay sessions."""
    registry = request.app[REGISTRY_KEY]
    return web.json_response({
        "status": "ok",
        "activeSessions": len(registry),
        "uptime": registry.uptime,
    })


async def sessions_handler(request):
    """Summaries of all active relay sessions."""
    registry = request.app[REGISTRY_KEY]
    return web.json_response({"sessions": registry.list()})


@web.middleware
async def cors_middleware(request, handler):
    """Echo allowed origins back on plain HTTP responses."""
    origin = request.headers.get("Origin")
    allowed = Config().get("server.allowed_origins")

    if request.method == "OPTIONS" and origin:
        response = web.Response(status=204)
    else:
        response = await handler(request)

    if origin and origin_allowed(origin, allowed) and isinstance(response, web.Response):
        response.headers["Access-Control-Allow-Origin"] = "*" if "*" in allowed else origin
        response.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
        response.headers["Vary"] = "Origin"
    return response


async def _shutdown_sessions(app: web.Application) -> None:
    count = await app[REGISTRY_KEY].shutdown("server shutdown")
    if count:
        logging.getLogger('server').info(f"closed {count} session(s) on shutdown")


async def create_app(registry: Optional[SessionRegistry] = None,
                     settings: Optional[TranscoderSettings] = None) -> web.Application:
    """Create and configure the unified HTTP/WebSocket application."""
    if registry is None:
        registry = SessionRegistry()

    app = web.Application(middlewares=[cors_middleware])
    app[REGISTRY_KEY] = registry
    app[RELAY_PROTOCOL_KEY] = RelayProtocol(registry, settings)

    # Relay WebSocket endpoint
    app.router.add_get(Config().get("server.ws_path"), websocket_handler)

    # Introspection
    app.router.add_get('/health', health_check_handler)
    app.router.add_get('/sessions', sessions_handler)

    # Safety net; main() normally empties the registry before cleanup
    app.on_shutdown.append(_shutdown_sessions)

    return app


async def start_unified_server(host: str = "0.0.0.0", port: int = 8080,
                               registry: Optional[SessionRegistry] = None) -> web.AppRunner:
    """Start the unified HTTP/WebSocket server."""
    app = await create_app(registry)

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    ws_path = Config().get("server.ws_path")
    logging.getLogger('server').info(
        f"Relay server on http://{host}:{port}/ (WebSocket: {ws_path}, health: /health, sessions: /sessions)"
    )

    return runner
