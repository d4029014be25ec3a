# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import pytest

from stream_relay.config import Config
from stream_relay.relay.registry import SessionRegistry


@pytest.fixture(autouse=True)
def relay_config():
    """Fresh default configuration (no file, no environment) for every test."""
    Config.load(use_env=False)
    config = Config()
    yield config
    Config.load(use_env=False)


@pytest.fixture
def registry():
    return SessionRegistry()
