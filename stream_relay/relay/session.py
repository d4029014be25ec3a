# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import json
import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from ..config import Config
from ..utils.fields import DestinationFields, EncodingFields, SessionFields
from ..utils.metrics import IngestStats
from .exceptions import ConfigurationError, InvalidTransitionError, MissingDestinationError

if TYPE_CHECKING:
    from .registry import SessionRegistry
    from .transcoder import TranscoderProcess


class SessionState(Enum):
    """Relay session lifecycle."""

    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    ENDED = "ended"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.ENDED, SessionState.FAILED)


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.UNCONFIGURED: frozenset({SessionState.CONFIGURED, SessionState.ENDED, SessionState.FAILED}),
    SessionState.CONFIGURED: frozenset({SessionState.ENDED, SessionState.FAILED}),
    SessionState.ENDED: frozenset(),
    SessionState.FAILED: frozenset(),
}


@dataclass(frozen=True)
class SessionConfig:
    """Destination and encoding parameters sent as a session's first message."""

    rtmp_url: str
    stream_key: str
    platform: str
    resolution: str
    fps: int
    bitrate: int

    @property
    def destination(self) -> str:
        """Full ingest address: base URL followed directly by the stream key."""
        return f"{self.rtmp_url}{self.stream_key}"

    @property
    def redacted_destination(self) -> str:
        return f"{self.rtmp_url}****"

    @classmethod
    def from_params(cls, params: Any, config: Config | None = None) -> "SessionConfig":
        """Build a SessionConfig from a decoded JSON object.

        Raises MissingDestinationError when the object has no usable RTMP URL
        or stream key, and ConfigurationError when an optional field is present
        but invalid. Absent optional fields take their configured defaults.
        """
        if not isinstance(params, dict):
            raise MissingDestinationError(f"config must be a JSON object, got {type(params).__name__}")

        missing = SessionFields.missing_required(params)
        if missing:
            raise MissingDestinationError(f"missing {', '.join(missing)}", fields=missing)

        invalid = SessionFields.invalid_optional(params)
        if invalid:
            raise ConfigurationError(f"invalid {', '.join(invalid)}", fields=invalid)

        config = config or Config()
        return cls(
            rtmp_url=DestinationFields.RTMP_URL.resolve(params, config),
            stream_key=DestinationFields.STREAM_KEY.resolve(params, config),
            platform=str(EncodingFields.PLATFORM.resolve(params, config)),
            resolution=str(EncodingFields.RESOLUTION.resolve(params, config)),
            fps=int(EncodingFields.FPS.resolve(params, config)),
            bitrate=int(EncodingFields.BITRATE.resolve(params, config)),
        )

    @classmethod
    def from_message(cls, payload: bytes | str, config: Config | None = None) -> "SessionConfig":
        """Decode a raw WebSocket message (text or binary) as a SessionConfig."""
        if isinstance(payload, (bytes, bytearray, memoryview)):
            try:
                payload = bytes(payload).decode("utf-8")
            except UnicodeDecodeError as e:
                raise MissingDestinationError("config message is not UTF-8 text") from e

        try:
            params = json.loads(payload)
        except ValueError as e:
            raise MissingDestinationError(f"config message is not JSON: {e}") from e

        return cls.from_params(params, config)


class Connection(ABC):
    """Client side of a relay session (message-oriented, JSON out)."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        pass

    @abstractmethod
    async def send_json(self, message: dict[str, Any]) -> bool:
        """Send one message. Returns False if the connection could not take it."""
        pass

    @abstractmethod
    async def close(self, code: int = 1000, message: bytes = b"") -> None:
        pass


def ready_message(session_id: str) -> dict[str, Any]:
    return {"type": "ready", "sessionId": session_id, "message": "Stream relay ready"}


def stats_message(stats: IngestStats) -> dict[str, Any]:
    return {"type": "stats", **stats.snapshot()}


def error_message(text: str) -> dict[str, Any]:
    return {"type": "error", "message": text}


def ended_message() -> dict[str, Any]:
    return {"type": "ended", "message": "Stream ended"}


class RelaySession:
    """One client connection plus its transcoder process.

    The session exclusively owns its transcoder. Teardown is idempotent: the
    first call picks the final state and runs the cleanup, later calls wait
    for that cleanup to finish.
    """

    def __init__(self, connection: Connection, registry: "SessionRegistry", *, client_ip: str = "unknown",
                 session_id: str | None = None):
        self.id = session_id or secrets.token_hex(6)
        self.connection = connection
        self.registry = registry
        self.client_ip = client_ip
        self.config: Optional[SessionConfig] = None
        self.transcoder: Optional["TranscoderProcess"] = None
        self.created_at = time.time()
        self.stats = IngestStats()
        self.state = SessionState.UNCONFIGURED
        self.last_error_notice = float("-inf")

        self._send_lock = asyncio.Lock()
        self._terminal_sent = False
        self._teardown_task: Optional[asyncio.Task] = None

    def __repr__(self):
        return f"RelaySession(id={self.id}, ip={self.client_ip}, state={self.state.value})"

    @property
    def configured(self) -> bool:
        return self.config is not None

    @property
    def closing(self) -> bool:
        """True once teardown has begun."""
        return self._teardown_task is not None

    @property
    def is_live(self) -> bool:
        return self.state is SessionState.CONFIGURED and not self.closing

    @property
    def frame_count(self) -> int:
        return self.stats.frame_count

    @property
    def bytes_received(self) -> int:
        return self.stats.bytes_received

    def transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(f"{self.state.value} -> {new_state.value}", session_id=self.id)
        logging.getLogger("relay").debug(f"[{self.id}] {self.state.value} -> {new_state.value}")
        self.state = new_state

    def configure(self, config: SessionConfig) -> None:
        self.transition(SessionState.CONFIGURED)
        self.config = config
        self.stats.start()

    # ------------------------------------------------------------------
    # Outbound messages
    # ------------------------------------------------------------------
    async def send(self, message: dict[str, Any], *, terminal: bool = False) -> bool:
        """Send a message unless a terminal message already went out."""
        async with self._send_lock:
            if self._terminal_sent:
                return False
            if terminal:
                self._terminal_sent = True
            if self.connection.closed:
                return False
            return await self.connection.send_json(message)

    async def send_ready(self) -> bool:
        return await self.send(ready_message(self.id))

    async def send_stats(self) -> bool:
        if not self.is_live:
            return False
        return await self.send(stats_message(self.stats))

    async def send_error(self, text: str) -> bool:
        return await self.send(error_message(text))

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    async def teardown(self, final_state: SessionState = SessionState.ENDED,
                       notice: dict[str, Any] | None = None) -> bool:
        """Stop the transcoder and leave the registry.

        ``notice`` is sent as the session's terminal message before cleanup
        if this call is the one that starts teardown. Returns True for that
        first call, False for every later one.
        """
        if self._teardown_task is not None:
            # Called back from the transcoder's own exit path: the running
            # teardown is already waiting on that path, so don't wait on it.
            if self.transcoder is None or not self.transcoder.in_exit_callback():
                await asyncio.shield(self._teardown_task)
            return False

        if not self.state.is_terminal:
            self.transition(final_state)
        self._teardown_task = asyncio.create_task(self._run_teardown(notice), name=f"teardown-{self.id}")
        await asyncio.shield(self._teardown_task)
        return True

    async def _run_teardown(self, notice: dict[str, Any] | None) -> None:
        log = logging.getLogger("relay")
        if notice is not None:
            await self.send(notice, terminal=True)
        else:
            # No terminal message may follow the start of teardown
            async with self._send_lock:
                self._terminal_sent = True

        try:
            if self.transcoder is not None:
                await self.transcoder.stop()
        except Exception as e:
            log.error(f"[{self.id}] transcoder cleanup error: {e!r}")
        finally:
            self.registry.deregister(self.id)

        log.info(
            f"[{self.id}] session {self.state.value}: frames={self.frame_count} bytes={self.bytes_received} "
            f"active={len(self.registry)}"
        )

    async def shutdown(self, reason: str = "server shutdown") -> None:
        """Server-initiated end: notify the client, tear down, close the socket."""
        logging.getLogger("relay").info(f"[{self.id}] shutting down ({reason})")
        await self.teardown(SessionState.ENDED, notice=ended_message())
        if not self.connection.closed:
            await self.connection.close(code=1001, message=b"server shutdown")

    def summary(self) -> dict[str, Any]:
        """Introspection view of this session."""
        return {
            "id": self.id,
            "platform": self.config.platform if self.config else None,
            "startTime": int(self.created_at * 1000),
            "frameCount": self.frame_count,
            "bytesReceived": self.bytes_received,
        }
