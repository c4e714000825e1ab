"""
RoomCall client: wires configuration, signaling, media and the orchestrator
together for one room visit.
"""
from typing import Callable, Optional

from aiortc import RTCPeerConnection
from aiortc.contrib.media import MediaBlackhole, MediaPlayer

from .calls.call_log import CallLog
from .calls.orchestrator import CallOrchestrator
from .core.config import ClientConfig
from .core.logging import debug_log
from .signaling.channel import SignalingChannel
from .webrtc.media import MediaCapture
from .webrtc.peer_session import ConnectionStatus, PeerSession, RemoteMedia


class RoomCallClient:
    """Headless two-party call client."""

    def __init__(self, config: Optional[ClientConfig] = None, user_email: Optional[str] = None,
                 connector: Optional[Callable] = None,
                 pc_factory: Callable = RTCPeerConnection,
                 player_factory: Callable = MediaPlayer):
        self.config = config or ClientConfig()
        self.call_log = CallLog(limit=self.config.call_log_limit, user_email=user_email)

        self.channel = SignalingChannel(self.config, connector=connector)
        self.media = MediaCapture(self.config, player_factory=player_factory)
        self.session = PeerSession(self.config, self.media, pc_factory=pc_factory)
        self.orchestrator = CallOrchestrator(
            self.config,
            self.channel,
            self.session,
            call_log=self.call_log,
            on_status_change=self._on_status_change,
            on_remote_media=self._on_remote_media,
        )

        # Rendering is external; remote tracks are drained so their decoders keep up
        self._sink: Optional[MediaBlackhole] = None

        debug_log(f"🚀 [Client] RoomCall client initialized", {"config": str(self.config)})

    async def start(self, identity_token: str):
        """Connect to the signaling relay."""
        await self.channel.connect(identity_token)
        debug_log(f"✅ [Client] Connected as participant", {"participant_id": self.channel.self_id})

    async def run(self, room_id: str, identity_token: str) -> Optional[str]:
        """Join ``room_id`` and serve calls until the room visit ends; returns the exit reason."""
        await self.start(identity_token)
        try:
            await self.orchestrator.join_room(room_id)
            return await self.orchestrator.wait_until_exit()
        finally:
            await self.cleanup()

    async def cleanup(self):
        """Leave the room (if still in it) and close the relay connection."""
        debug_log(f"🧹 [Client] Cleaning up client")
        await self.orchestrator.leave_room()
        await self._stop_sink()
        await self.channel.close()
        debug_log(f"🧹 [Client] Client cleanup completed")

    def _on_status_change(self, status: ConnectionStatus):
        debug_log(f"📶 [Client] Connection status: {status.value}")

    async def _on_remote_media(self, remote: Optional[RemoteMedia]):
        if remote is None:
            await self._stop_sink()
            return

        if self._sink is None:
            self._sink = MediaBlackhole()
        for track in remote.tracks:
            self._sink.addTrack(track)
        await self._sink.start()

    async def _stop_sink(self):
        sink, self._sink = self._sink, None
        if sink is not None:
            await sink.stop()
