"""
RoomCall: two-party audio/video calls over a signaling relay with relay-only
WebRTC transport.
"""

from .client import RoomCallClient
from .core.config import ClientConfig

__version__ = "0.1.0"

__all__ = [
    'RoomCallClient',
    'ClientConfig',
]
