# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import sys
from pathlib import Path
from typing import Any

from stream_relay.relay.session import Connection
from stream_relay.relay.transcoder import TranscoderSettings


FAKE_TRANSCODER = Path(__file__).resolve().parent / "fake_transcoder.py"

CONFIG_MESSAGE = {"rtmpUrl": "rtmp://example/live/", "streamKey": "abc123"}


def fake_settings(mode: str = "drain", *extra: str, **overrides: Any) -> TranscoderSettings:
    """TranscoderSettings that launch tests/fake_transcoder.py instead of ffmpeg."""
    command = (sys.executable, str(FAKE_TRANSCODER), "--mode", mode, *extra, "--")
    params = {"stop_timeout_s": 2.0, "write_timeout_s": 5.0}
    params.update(overrides)
    return TranscoderSettings(command=command, **params)


class FakeConnection(Connection):
    """In-memory connection recording every outbound message."""

    def __init__(self):
        self.messages: list[dict[str, Any]] = []
        self.close_code: int | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send_json(self, message: dict[str, Any]) -> bool:
        if self._closed:
            return False
        self.messages.append(message)
        return True

    async def close(self, code: int = 1000, message: bytes = b"") -> None:
        self._closed = True
        self.close_code = code

    def drop(self) -> None:
        """Simulate the peer going away."""
        self._closed = True

    def types(self) -> list[str]:
        return [m["type"] for m in self.messages]


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.02) -> None:
    """Poll until predicate() is true or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(interval)
