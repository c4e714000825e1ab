"""
Custom exception classes for the RoomCall client.
"""


class RoomCallError(Exception):
    """Base exception for the RoomCall client."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{super().__str__()} - {self.details}"
        return super().__str__()


class AuthError(RoomCallError):
    """Raised when the signaling channel has no valid identity. Fatal to the room visit."""
    pass


class SignalingError(RoomCallError):
    """Raised when the signaling relay cannot be reached or drops the handshake."""
    pass


class NotReadyError(RoomCallError):
    """Raised when sending on a signaling channel that is not ready. The message is dropped."""
    pass


class ProtocolError(RoomCallError):
    """Raised when a signaling message cannot be decoded."""
    pass


class MediaAccessError(RoomCallError):
    """Raised when camera/microphone capture cannot be acquired."""
    pass


class SessionInitError(RoomCallError):
    """Raised when a peer connection cannot be opened."""
    pass


class NegotiationError(RoomCallError):
    """Raised when an offer/answer step fails."""
    pass


class IceError(RoomCallError):
    """Raised when a remote ICE candidate is rejected. Soft failure."""
    pass
