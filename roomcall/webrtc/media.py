"""
Local media capture.

The captured camera and microphone tracks live for a whole room visit. Each
peer connection gets its own relay subscription wrapped in a
:class:`SwitchableTrack`, so closing a peer connection never stops the devices
and a new peer can be served without capturing again.
"""
from typing import Any, Callable, Dict, List, Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer, MediaRelay
from av.error import FFmpegError

from ..core.config import ClientConfig
from ..core.exceptions import MediaAccessError
from ..core.logging import LoggerMixin, debug_log
from .tracks import SwitchableTrack


MEDIA_KINDS = ("audio", "video")


class LocalMediaHandle(LoggerMixin):
    """Captured audio/video tracks plus their enabled flags."""

    def __init__(self, audio: MediaStreamTrack, video: MediaStreamTrack, players: Optional[List[Any]] = None):
        super().__init__()
        self._sources: Dict[str, MediaStreamTrack] = {"audio": audio, "video": video}
        self._players = players or []
        self._relay = MediaRelay()
        self._enabled: Dict[str, bool] = {kind: True for kind in MEDIA_KINDS}
        self._subscriptions: List[SwitchableTrack] = []
        self.stopped = False

    @property
    def tracks(self) -> List[MediaStreamTrack]:
        return [self._sources[kind] for kind in MEDIA_KINDS]

    @property
    def audio_enabled(self) -> bool:
        return self._enabled["audio"]

    @property
    def video_enabled(self) -> bool:
        return self._enabled["video"]

    def is_enabled(self, kind: str) -> bool:
        return self._enabled[kind]

    def set_enabled(self, kind: str, enabled: bool):
        self._enabled[kind] = bool(enabled)

    def subscribe_tracks(self) -> List[SwitchableTrack]:
        """Create one switchable relay subscription per captured track."""
        if self.stopped:
            raise MediaAccessError("Local media has been stopped")

        tracks = []
        for kind in MEDIA_KINDS:
            proxy = self._relay.subscribe(self._sources[kind], buffered=False)
            tracks.append(SwitchableTrack(proxy, lambda kind=kind: self._enabled[kind]))
        self._subscriptions.extend(tracks)
        return tracks

    def stop(self):
        """Stop all subscriptions and release the capture devices."""
        if self.stopped:
            return
        self.stopped = True

        for track in self._subscriptions:
            track.stop()
        self._subscriptions.clear()

        for track in self.tracks:
            track.stop()

        debug_log(f"🎥 [Media] Local media stopped", {"players": len(self._players)})


class MediaCapture(LoggerMixin):
    """Acquires the local camera and microphone once per room visit."""

    def __init__(self, config: ClientConfig, player_factory: Callable[..., Any] = MediaPlayer):
        super().__init__()
        self.config = config
        self._player_factory = player_factory
        self._handle: Optional[LocalMediaHandle] = None

    @property
    def handle(self) -> Optional[LocalMediaHandle]:
        """Current handle, or None when nothing is captured."""
        if self._handle is not None and self._handle.stopped:
            return None
        return self._handle

    async def acquire(self) -> LocalMediaHandle:
        """Capture camera and microphone; reuses the existing handle when there is one."""
        if self.handle is not None:
            self.log_debug(f"🎥 [Media] Reusing local media")
            return self._handle

        debug_log(f"🎥 [Media] Requesting local media (camera/microphone)", {
            "camera": self.config.camera_device,
            "microphone": self.config.microphone_device
        })

        try:
            video_player = self._player_factory(
                self.config.camera_device,
                format=self.config.camera_format,
                options={'video_size': self.config.video_size}
            )
            audio_player = self._player_factory(
                self.config.microphone_device,
                format=self.config.microphone_format
            )
        except (FFmpegError, OSError, ValueError) as e:
            self.log_error(f"❌ [Media] Local media access failed", {
                "error": str(e),
                "error_type": type(e).__name__
            })
            raise MediaAccessError("Could not access camera/microphone", {"error": str(e)})

        if video_player.video is None or audio_player.audio is None:
            raise MediaAccessError("Capture device produced no usable track", {
                "has_video": video_player.video is not None,
                "has_audio": audio_player.audio is not None
            })

        self._handle = LocalMediaHandle(
            audio=audio_player.audio,
            video=video_player.video,
            players=[video_player, audio_player]
        )
        debug_log(f"✅ [Media] Local media acquired")
        return self._handle

    def release(self):
        """Stop the captured tracks (room exit)."""
        if self._handle is not None:
            self._handle.stop()
            self._handle = None
