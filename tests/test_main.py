# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import json
import sys

import aiohttp
import pytest
from aiohttp import WSMsgType
from aiohttp.test_utils import unused_port

from stream_relay.main import main
from tests.helpers import CONFIG_MESSAGE, FAKE_TRANSCODER


async def wait_for_health(http, url, timeout=10.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        try:
            async with http.get(url) as resp:
                return await resp.json()
        except aiohttp.ClientConnectionError:
            if asyncio.get_running_loop().time() > deadline:
                raise
            await asyncio.sleep(0.05)


@pytest.mark.asyncio
async def test_stop_event_ends_sessions_before_listener_closes(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config_path = tmp_path / "relay.json"
    command = [sys.executable, str(FAKE_TRANSCODER), "--mode", "drain", "--"]
    config_path.write_text(json.dumps({"transcoder": {"command": command}}))

    port = unused_port()
    base = f"http://127.0.0.1:{port}"
    argv = ["--host", "127.0.0.1", "--port", str(port), "--config", str(config_path), "--log-level", "warning"]
    stop_event = asyncio.Event()
    server = asyncio.create_task(main(argv, stop_event=stop_event))

    try:
        async with aiohttp.ClientSession() as http:
            await wait_for_health(http, f"{base}/health")

            streams = []
            for _ in range(2):
                ws = await http.ws_connect(f"{base}/stream")
                await ws.send_str(json.dumps(CONFIG_MESSAGE))
                assert (await ws.receive_json(timeout=5))["type"] == "ready"
                streams.append(ws)

            stop_event.set()
            for ws in streams:
                assert await ws.receive_json(timeout=5) == {"type": "ended"}

            # Sessions are gone but the listener is still serving
            health = await wait_for_health(http, f"{base}/health")
            assert health["activeSessions"] == 0

            for ws in streams:
                msg = await ws.receive(timeout=5)
                assert msg.type == WSMsgType.CLOSE
                assert ws.close_code == 1001
                await ws.close()

            await asyncio.wait_for(server, timeout=10)

            with pytest.raises(aiohttp.ClientConnectionError):
                async with http.get(f"{base}/health"):
                    pass
    finally:
        stop_event.set()
        if not server.done():
            server.cancel()
