# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, ClassVar

import tomllib
import yaml
from dotenv import find_dotenv, load_dotenv


DEFAULT_CONFIG: dict[str, Any] = {
    "server": {
        "host": "0.0.0.0",
        "port": 8080,
        "ws_path": "/stream",
        # Origins allowed to open a relay WebSocket ("*" allows any)
        "allowed_origins": ["http://localhost:3000"],
        "heartbeat_s": 20.0,
        "max_msg_size": 16 * 1024 * 1024,
    },
    "relay": {
        "stats_interval": 100,  # frames between stats messages
        "write_timeout_s": 10.0,  # 0 = wait for the transcoder forever
    },
    # Defaults applied when the client's config message omits a key
    "stream": {
        "platform": "custom",
        "resolution": "720p",
        "fps": 30,
        "bitrate": 2500,
    },
    "transcoder": {
        "ffmpeg_path": None,  # None = search PATH
        "command": None,  # full launcher prefix, replaces the ffmpeg executable
        "loglevel": "warning",
        "preset": "veryfast",
        "audio_bitrate": "128k",
        "audio_rate": 44100,
        "stop_timeout_s": 3.0,
        "error_notice_interval_s": 0.0,  # min seconds between "Stream encoding error" notices
        "stderr_tail_lines": 20,
    },
    "log": {
        "level": "info",
    },
}

# Environment variable -> (config key, parser)
ENV_OVERRIDES: dict[str, tuple[str, Any]] = {
    "PORT": ("server.port", int),
    "HOST": ("server.host", str),
    "ALLOWED_ORIGINS": ("server.allowed_origins", lambda v: [o.strip() for o in v.split(",") if o.strip()]),
    "FFMPEG_PATH": ("transcoder.ffmpeg_path", str),
    "LOG_LEVEL": ("log.level", str),
}


def _read_yaml(path: Path) -> Any:
    with path.open(encoding="utf-8") as f:
        return yaml.safe_load(f)


def _read_toml(path: Path) -> Any:
    with path.open("rb") as f:
        return tomllib.load(f)


def _read_json(path: Path) -> Any:
    with path.open(encoding="utf-8") as f:
        return json.load(f)


_READERS = {".yaml": _read_yaml, ".yml": _read_yaml, ".toml": _read_toml, ".json": _read_json}


def load_config_file(path: str) -> dict[str, Any]:
    """Read a YAML, TOML or JSON config file; unreadable files count as empty."""
    logger = logging.getLogger("config")
    file_path = Path(path)

    reader = _READERS.get(file_path.suffix.lower())
    if reader is None:
        logger.warning(f"Unsupported config file type: {path}")
        return {}
    if not file_path.exists():
        logger.warning(f"Config file not found: {path}")
        return {}

    try:
        data = reader(file_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.warning(f"Could not parse {path}: {e}")
        return {}

    if not isinstance(data, dict):
        if data is not None:
            logger.warning(f"Ignoring {path}: top level is not a mapping")
        return {}
    return data


def deep_update(dst: dict[str, Any], src: dict[str, Any]) -> dict[str, Any]:
    """Merge ``src`` into ``dst`` section by section; scalars and lists replace."""
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            deep_update(dst[k], v)
        else:
            dst[k] = v
    return dst


def env_overrides(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Build a nested override dict from recognised environment variables."""
    environ = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}

    for var, (key, parse) in ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            value = parse(raw)
        except ValueError:
            logging.getLogger("config").warning(f"Ignoring invalid {var}={raw!r}")
            continue

        target = overrides
        *parents, leaf = key.split(".")
        for k in parents:
            target = target.setdefault(k, {})
        target[leaf] = value

    return overrides


def load_config(path: str | None = None, *, use_env: bool = True) -> dict[str, Any]:
    """Defaults, then the optional file, then the environment (and ``.env``)."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)

    if path:
        deep_update(cfg, load_config_file(path))

    if use_env:
        # .env never overrides variables already present in the environment
        dotenv_path = find_dotenv(usecwd=True)
        if dotenv_path:
            load_dotenv(dotenv_path, override=False)
        deep_update(cfg, env_overrides())

    return cfg


class Config:
    """Process-wide relay settings, addressed by dotted keys.

    Every ``Config()`` is the same object. Reads before ``load()`` see the
    built-in defaults.
    """

    _instance: ClassVar["Config | None"] = None
    _config: ClassVar[dict[str, Any]] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def load(cls, path: str | None = None, *, use_env: bool = True) -> None:
        cls._config = load_config(path, use_env=use_env)

    @classmethod
    def get(cls, key: str | None = None, default: Any = KeyError) -> Any:
        """Value at ``key`` (e.g. ``"relay.stats_interval"``), or the whole tree."""
        if not cls._config:
            cls._config = load_config(use_env=False)

        if key is None:
            return cls._config

        node: Any = cls._config
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                if default is KeyError:
                    raise KeyError(f"Unknown config key: {key}")
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        *sections, leaf = key.split(".")
        node = self.get()
        for part in sections:
            node = node.setdefault(part, {})
        node[leaf] = value

    def __getitem__(self, key: str) -> Any:
        return self.get(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)
