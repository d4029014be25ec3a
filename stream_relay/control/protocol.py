# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import logging
import time
from functools import partial
from typing import Optional

from ..config import Config
from ..relay.exceptions import ConfigurationError, TranscoderSpawnError, TranscoderWriteError
from ..relay.registry import SessionRegistry
from ..relay.session import Connection, RelaySession, SessionConfig, SessionState, ended_message, error_message
from ..relay.transcoder import TranscoderProcess, TranscoderSettings


ENCODING_ERROR = "Stream encoding error"


class RelayProtocol:
    """Transport-independent relay message handling.

    The first valid message of a connection configures the session and starts
    its transcoder; every message after that is media forwarded to it. Callers
    must deliver one session's messages serially.
    """

    def __init__(self, registry: SessionRegistry, settings: Optional[TranscoderSettings] = None):
        config = Config()
        self.registry = registry
        self.settings = settings if settings is not None else TranscoderSettings.from_config(config)
        self.stats_interval = max(1, int(config.get("relay.stats_interval")))
        self.error_notice_interval_s = float(config.get("transcoder.error_notice_interval_s"))

    def open_session(self, connection: Connection, client_ip: str = "unknown") -> RelaySession:
        session = RelaySession(connection, self.registry, client_ip=client_ip)
        logging.getLogger("relay").info(f"[{session.id}] new connection from {client_ip}")
        return session

    async def handle_message(self, session: RelaySession, payload: bytes | str) -> None:
        """Dispatch one inbound message according to the session's state."""
        if session.closing or session.state.is_terminal:
            logging.getLogger("relay").debug(f"[{session.id}] ignoring message after teardown")
            return

        if session.state is SessionState.UNCONFIGURED:
            await self.handle_configure(session, payload)
        else:
            await self.handle_media(session, payload)

    async def handle_configure(self, session: RelaySession, payload: bytes | str) -> None:
        log = logging.getLogger("relay")
        try:
            config = SessionConfig.from_message(payload)
        except ConfigurationError as e:
            log.warning(f"[{session.id}] rejected configuration: {e}")
            await session.send_error(e.client_message)
            return

        session.configure(config)
        transcoder = TranscoderProcess(config, self.settings, label=session.id)
        session.transcoder = transcoder

        try:
            await transcoder.start()
        except TranscoderSpawnError as e:
            log.error(f"[{session.id}] {e}")
            await session.teardown(SessionState.FAILED, notice=error_message(e.client_message))
            return
        except Exception:
            # Any failure building the command line counts as a spawn failure
            log.exception(f"[{session.id}] transcoder start failed")
            await session.teardown(SessionState.FAILED, notice=error_message(TranscoderSpawnError.client_message))
            return

        self.registry.register(session)
        await session.send_ready()
        transcoder.watch(
            on_exit=partial(self._on_transcoder_exit, session),
            on_diagnostic_error=partial(self._on_diagnostic_error, session),
        )

        log.info(
            f"[{session.id}] configured: {config.platform} stream to {config.redacted_destination} "
            f"({config.resolution} {config.fps}fps {config.bitrate}kbps)"
        )

    async def handle_media(self, session: RelaySession, payload: bytes | str) -> None:
        data = payload.encode("utf-8") if isinstance(payload, str) else payload
        count = session.stats.record_frame(len(data))

        transcoder = session.transcoder
        try:
            written = transcoder is not None and await transcoder.write(data)
        except TranscoderWriteError as e:
            logging.getLogger("relay").error(f"[{session.id}] {e}")
            await session.teardown(SessionState.FAILED, notice=error_message(e.client_message))
            return

        if not written:
            session.stats.record_drop()

        if count % self.stats_interval == 0 and await session.send_stats():
            meter = session.stats.meter
            logging.getLogger("relay").info(
                f"[{session.id}] frames={count} bytes={session.bytes_received} "
                f"fps={meter.rate_hz():.1f} kbps={meter.bitrate_kbps():.0f} drops={session.stats.dropped_frames}"
            )

    async def close_session(self, session: RelaySession) -> None:
        """Connection went away: tear down without messaging the client."""
        final_state = SessionState.ENDED if not session.state.is_terminal else session.state
        await session.teardown(final_state)

    async def _on_transcoder_exit(self, session: RelaySession, returncode: int) -> None:
        if session.closing:
            return

        if returncode == 0:
            await session.teardown(SessionState.ENDED, notice=ended_message())
        else:
            text = f"Stream encoder exited unexpectedly (code {returncode})"
            await session.teardown(SessionState.FAILED, notice=error_message(text))

    async def _on_diagnostic_error(self, session: RelaySession, line: str) -> None:
        if not session.is_live:
            return
        now = time.monotonic()
        if now - session.last_error_notice < self.error_notice_interval_s:
            return
        session.last_error_notice = now
        await session.send_error(ENCODING_ERROR)
