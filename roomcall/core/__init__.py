"""
Core module for the RoomCall client.
Contains configuration, logging, errors and validation helpers.
"""

from .config import ClientConfig
from .logging import setup_logging, debug_log, LoggerMixin
from .exceptions import (
    RoomCallError,
    AuthError,
    SignalingError,
    NotReadyError,
    ProtocolError,
    MediaAccessError,
    SessionInitError,
    NegotiationError,
    IceError,
)
from .validation_utils import ValidationUtils

__all__ = [
    'ClientConfig',
    'setup_logging',
    'debug_log',
    'LoggerMixin',
    'RoomCallError',
    'AuthError',
    'SignalingError',
    'NotReadyError',
    'ProtocolError',
    'MediaAccessError',
    'SessionInitError',
    'NegotiationError',
    'IceError',
    'ValidationUtils',
]
