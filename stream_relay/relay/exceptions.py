# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Relay-layer exceptions.

Each exception carries the human-readable text that is sent to the client in
an ``error`` message (``client_message``), separate from the detailed text
used for logging (``str(exc)``).

Design Pattern:
    Configuration errors are recoverable: the session stays unconfigured and
    the client may send a corrected configuration. Transcoder errors are
    fatal to the session and always lead to teardown.
"""


class RelayError(Exception):
    """Base exception for stream relay errors.

    Attributes:
        client_message: Text reported to the client
        fatal: Whether the session must be torn down
    """

    client_message = "Stream relay error"
    fatal = False

    def __init__(self, message: str | None = None, *, session_id: str | None = None):
        super().__init__(message or self.client_message)
        self.session_id = session_id


class ConfigurationError(RelayError):
    """The first message could not be used as a session configuration."""

    client_message = "Invalid stream configuration"

    def __init__(self, message: str | None = None, *, fields: list[str] | None = None, session_id: str | None = None):
        super().__init__(message, session_id=session_id)
        self.fields = fields or []
        if fields:
            self.client_message = f"Invalid stream configuration: {', '.join(fields)}"


class MissingDestinationError(ConfigurationError):
    """Undecodable configuration, or no RTMP URL / stream key."""

    client_message = "Missing RTMP configuration"

    def __init__(self, message: str | None = None, *, fields: list[str] | None = None, session_id: str | None = None):
        super().__init__(message, fields=fields, session_id=session_id)
        # Always the fixed wire text, regardless of which field was missing
        self.client_message = MissingDestinationError.client_message


class TranscoderError(RelayError):
    """Base exception for transcoder process failures (fatal)."""

    client_message = "Stream encoder error"
    fatal = True


class TranscoderSpawnError(TranscoderError):
    """The external transcoder could not be started."""

    client_message = "Failed to start stream encoder"


class TranscoderWriteError(TranscoderError):
    """The transcoder's input stream rejected a media frame."""

    client_message = "Stream write failed"


class InvalidTransitionError(RelayError):
    """A session state change not allowed by the lifecycle."""

    client_message = "Internal session state error"
    fatal = True
