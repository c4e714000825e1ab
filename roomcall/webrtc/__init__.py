"""
WebRTC module for the RoomCall client.
Handles local media, relay-only peer connections and their lifecycle.
"""

from .media import LocalMediaHandle, MediaCapture
from .peer_session import (
    ConnectionStatus,
    PeerConnectionInstance,
    PeerSession,
    RemoteMedia,
    SessionState,
)
from .tracks import SwitchableTrack

__all__ = [
    'LocalMediaHandle',
    'MediaCapture',
    'ConnectionStatus',
    'PeerConnectionInstance',
    'PeerSession',
    'RemoteMedia',
    'SessionState',
    'SwitchableTrack',
]
