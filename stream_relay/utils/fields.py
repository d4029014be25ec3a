# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, ClassVar


# Resolution class -> ffmpeg frame size
RESOLUTIONS: dict[str, str] = {
    "1080p": "1920x1080",
    "720p": "1280x720",
    "480p": "854x480",
}
FALLBACK_RESOLUTION = "720p"

MAX_FPS = 240
MAX_BITRATE_KBPS = 100_000


def _is_int(value: Any) -> bool:
    # bool is an int subclass; "true" is never a frame rate
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        return value.is_integer()
    return isinstance(value, int | str) and str(value).strip().lstrip("+").isdigit()


def _non_empty(value: Any) -> bool:
    return isinstance(value, str) and len(value.strip()) > 0


@dataclass(frozen=True)
class FieldDef:
    """One key of the client's configuration message."""

    name: str
    validator: Callable[[Any], bool]
    default_key: str | None = None  # config key supplying the value when absent
    transformer: Callable[[Any], Any] | None = None
    description: str = ""

    def is_present(self, params: dict[str, Any]) -> bool:
        return params.get(self.name) is not None

    def is_valid(self, value: Any) -> bool:
        try:
            return bool(self.validator(value))
        except (ValueError, TypeError):
            return False

    def resolve(self, params: dict[str, Any], config) -> Any:
        """Transformed client value, or the configured default when absent."""
        if not self.is_present(params):
            return config.get(self.default_key) if self.default_key else None
        value = params[self.name]
        return self.transformer(value) if self.transformer else value


class DestinationFields:
    """Fields naming the remote ingest point."""

    RTMP_URL = FieldDef("rtmpUrl", _non_empty, transformer=str.strip, description="RTMP ingest base URL")
    STREAM_KEY = FieldDef("streamKey", _non_empty, transformer=str.strip, description="Ingest credential")


class EncodingFields:
    """Fields controlling the transcoder invocation."""

    PLATFORM = FieldDef(
        "platform",
        lambda x: isinstance(x, str),
        default_key="stream.platform",
        description="Declared source platform",
    )

    # Unknown resolution classes are kept; the transcoder falls back to 720p
    RESOLUTION = FieldDef(
        "resolution",
        lambda x: isinstance(x, str),
        default_key="stream.resolution",
        description="Target resolution class (1080p, 720p, 480p)",
    )

    FPS = FieldDef(
        "fps",
        lambda x: _is_int(x) and 0 < int(x) <= MAX_FPS,
        default_key="stream.fps",
        transformer=int,
        description="Target frame rate",
    )

    BITRATE = FieldDef(
        "bitrate",
        lambda x: _is_int(x) and 0 < int(x) <= MAX_BITRATE_KBPS,
        default_key="stream.bitrate",
        transformer=int,
        description="Target video bitrate in kbps",
    )


class SessionFields:
    """All fields accepted in a session configuration message."""

    REQUIRED: ClassVar[tuple[FieldDef, ...]] = (DestinationFields.RTMP_URL, DestinationFields.STREAM_KEY)
    OPTIONAL: ClassVar[tuple[FieldDef, ...]] = (
        EncodingFields.PLATFORM,
        EncodingFields.RESOLUTION,
        EncodingFields.FPS,
        EncodingFields.BITRATE,
    )

    @classmethod
    def missing_required(cls, params: dict[str, Any]) -> list[str]:
        """Names of required fields that are absent or empty."""
        return [f.name for f in cls.REQUIRED if not f.is_present(params) or not f.is_valid(params[f.name])]

    @classmethod
    def invalid_optional(cls, params: dict[str, Any]) -> list[str]:
        """Names of optional fields that are present but invalid."""
        return [f.name for f in cls.OPTIONAL if f.is_present(params) and not f.is_valid(params[f.name])]
