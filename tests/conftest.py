"""Shared fixtures."""

import pytest

from roomcall.core.config import ClientConfig
from roomcall.webrtc.media import MediaCapture
from roomcall.webrtc.peer_session import PeerSession

from tests.fakes import PeerConnectionFactory, PlayerFactory


CONFIG_ENV_VARS = (
    "SIGNALING_URL",
    "SIGNALING_HANDSHAKE_TIMEOUT",
    "TURN_URL",
    "TURN_USERNAME",
    "TURN_CREDENTIAL",
    "STUN_URLS",
    "REARM_DELAY_SECONDS",
    "CAMERA_DEVICE",
    "CAMERA_FORMAT",
    "MICROPHONE_DEVICE",
    "MICROPHONE_FORMAT",
    "VIDEO_SIZE",
    "LOG_LEVEL",
    "CALL_LOG_LIMIT",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config(clean_env) -> ClientConfig:
    return ClientConfig(
        signaling_url="ws://relay.test/api/socket",
        signaling_handshake_timeout=0.5,
        turn_url="turn:turn.example.org:3478",
        turn_username="user",
        turn_credential="secret",
        rearm_delay=0.05,
    )


@pytest.fixture
def pc_factory() -> PeerConnectionFactory:
    return PeerConnectionFactory()


@pytest.fixture
def player_factory() -> PlayerFactory:
    return PlayerFactory()


@pytest.fixture
def media(config, player_factory) -> MediaCapture:
    return MediaCapture(config, player_factory=player_factory)


@pytest.fixture
def session(config, media, pc_factory) -> PeerSession:
    return PeerSession(config, media, pc_factory=pc_factory)
