"""
Configuration management for the RoomCall client.
"""
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from aiortc import RTCConfiguration, RTCIceServer


DEFAULT_STUN_URLS = "stun:stun.l.google.com:19302,stun:stun1.l.google.com:19302"


@dataclass
class ClientConfig:
    """Client configuration settings."""

    # Signaling relay
    signaling_url: str = "ws://localhost:3001/api/socket"
    signaling_handshake_timeout: float = 10.0

    # TURN server configuration
    turn_url: Optional[str] = None
    turn_username: Optional[str] = None
    turn_credential: Optional[str] = None

    # STUN servers
    stun_urls: List[str] = field(default_factory=list)

    # Settling delay between closing a peer connection and opening the next one
    rearm_delay: float = 0.5

    # Local capture devices
    camera_device: str = "/dev/video0"
    camera_format: Optional[str] = "v4l2"
    microphone_device: str = "default"
    microphone_format: Optional[str] = "pulse"
    video_size: str = "640x480"

    # Diagnostics
    log_level: str = "INFO"
    call_log_limit: int = 150

    def __post_init__(self):
        """Initialize configuration from environment variables."""
        self.signaling_url = os.environ.get('SIGNALING_URL', self.signaling_url)
        self.signaling_handshake_timeout = float(os.environ.get('SIGNALING_HANDSHAKE_TIMEOUT', self.signaling_handshake_timeout))

        self.turn_url = os.environ.get('TURN_URL', self.turn_url)
        self.turn_username = os.environ.get('TURN_USERNAME', self.turn_username)
        self.turn_credential = os.environ.get('TURN_CREDENTIAL', self.turn_credential)

        if not self.stun_urls:
            stun_env = os.environ.get('STUN_URLS', DEFAULT_STUN_URLS)
            self.stun_urls = [url.strip() for url in stun_env.split(',') if url.strip()]

        self.rearm_delay = float(os.environ.get('REARM_DELAY_SECONDS', self.rearm_delay))

        self.camera_device = os.environ.get('CAMERA_DEVICE', self.camera_device)
        self.camera_format = os.environ.get('CAMERA_FORMAT', self.camera_format) or None
        self.microphone_device = os.environ.get('MICROPHONE_DEVICE', self.microphone_device)
        self.microphone_format = os.environ.get('MICROPHONE_FORMAT', self.microphone_format) or None
        self.video_size = os.environ.get('VIDEO_SIZE', self.video_size)

        self.log_level = os.environ.get('LOG_LEVEL', self.log_level)
        self.call_log_limit = int(os.environ.get('CALL_LOG_LIMIT', self.call_log_limit))

    @property
    def has_turn_server(self) -> bool:
        """Whether a TURN server with credentials is configured."""
        return all([self.turn_url, self.turn_username, self.turn_credential])

    def build_rtc_configuration(self) -> RTCConfiguration:
        """Build the peer connection configuration (STUN + TURN servers)."""
        ice_servers = [RTCIceServer(urls=url) for url in self.stun_urls]

        if self.has_turn_server:
            ice_servers.append(
                RTCIceServer(
                    urls=self.turn_url,
                    username=self.turn_username,
                    credential=self.turn_credential
                )
            )

        return RTCConfiguration(iceServers=ice_servers)

    def get_signaling_headers(self, token: str) -> Dict[str, str]:
        """Get headers for the signaling relay handshake."""
        return {'Authorization': f'Bearer {token}'}

    def __str__(self) -> str:
        """String representation of configuration."""
        return f"ClientConfig(signaling_url={self.signaling_url}, turn={self.has_turn_server}, rearm_delay={self.rearm_delay})"
