"""
Signaling module: wire protocol and the relay channel.
"""

from .channel import SignalingChannel
from .protocol import SignalingMessage

__all__ = [
    'SignalingChannel',
    'SignalingMessage',
]
