# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import json
import sys

import pytest

from stream_relay.config import Config, env_overrides, load_config
from stream_relay.main import parse_args, resolve_bind
from stream_relay.relay.transcoder import TranscoderSettings


def test_defaults():
    cfg = load_config(use_env=False)

    assert cfg["server"]["port"] == 8080
    assert cfg["server"]["allowed_origins"] == ["http://localhost:3000"]
    assert cfg["relay"]["stats_interval"] == 100
    assert cfg["stream"] == {"platform": "custom", "resolution": "720p", "fps": 30, "bitrate": 2500}


@pytest.mark.parametrize("suffix", [".yaml", ".json", ".toml"])
def test_file_overrides_merge_with_defaults(tmp_path, suffix):
    path = tmp_path / f"relay{suffix}"
    if suffix == ".yaml":
        path.write_text("server:\n  port: 9000\nstream:\n  bitrate: 4500\n")
    elif suffix == ".json":
        path.write_text(json.dumps({"server": {"port": 9000}, "stream": {"bitrate": 4500}}))
    else:
        path.write_text("[server]\nport = 9000\n\n[stream]\nbitrate = 4500\n")

    cfg = load_config(str(path), use_env=False)

    assert cfg["server"]["port"] == 9000
    assert cfg["server"]["host"] == "0.0.0.0"
    assert cfg["stream"]["bitrate"] == 4500
    assert cfg["stream"]["fps"] == 30


def test_missing_file_falls_back_to_defaults(tmp_path):
    cfg = load_config(str(tmp_path / "absent.yaml"), use_env=False)
    assert cfg["server"]["port"] == 8080


def test_environment_overrides():
    overrides = env_overrides({
        "PORT": "3001",
        "ALLOWED_ORIGINS": "https://a.example, https://b.example,",
        "FFMPEG_PATH": "/opt/ffmpeg/bin/ffmpeg",
        "LOG_LEVEL": "",
    })

    assert overrides == {
        "server": {"port": 3001, "allowed_origins": ["https://a.example", "https://b.example"]},
        "transcoder": {"ffmpeg_path": "/opt/ffmpeg/bin/ffmpeg"},
    }


def test_invalid_environment_value_ignored():
    assert env_overrides({"PORT": "eighty"}) == {}


def test_environment_applied_on_load(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PORT", "3002")

    assert load_config()["server"]["port"] == 3002


def test_config_singleton_access(relay_config):
    relay_config["relay.stats_interval"] = 50

    assert Config().get("relay.stats_interval") == 50
    assert relay_config["relay.stats_interval"] == 50
    assert Config.get("relay.missing", None) is None
    with pytest.raises(KeyError):
        Config.get("relay.missing")


def test_transcoder_command_override(relay_config):
    relay_config.set("transcoder.command", f"{sys.executable} -u wrapper.py")
    relay_config.set("relay.write_timeout_s", 0)

    settings = TranscoderSettings.from_config()

    assert settings.command == (sys.executable, "-u", "wrapper.py")
    assert settings.write_timeout_s == 0.0
    assert settings.loglevel == "warning"


def test_configured_ffmpeg_path(relay_config):
    relay_config.set("transcoder.ffmpeg_path", sys.executable)
    assert TranscoderSettings.from_config().command == (sys.executable,)


def test_missing_ffmpeg_gives_empty_command(relay_config):
    relay_config.set("transcoder.ffmpeg_path", "/nonexistent/ffmpeg")
    assert TranscoderSettings.from_config().command == ()


def test_cli_arguments():
    args = parse_args(["--port", "9100", "--log-level", "DEBUG", "--config", "relay.yaml"])

    assert args.port == 9100
    assert args.host is None
    assert args.log_level == "debug"
    assert args.config == "relay.yaml"


def test_bind_address_from_config(relay_config):
    relay_config.set("server.host", "10.0.0.5")
    relay_config.set("server.port", 9000)

    assert resolve_bind(parse_args([]), relay_config) == ("10.0.0.5", 9000)


def test_falsy_bind_arguments_win(relay_config):
    args = parse_args(["--host", "", "--port", "0"])

    assert resolve_bind(args, relay_config) == ("", 0)
