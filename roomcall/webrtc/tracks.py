"""
Local track wrappers.

Muting is done on the media path rather than in the session description: a
disabled track keeps producing frames with the same timing, but silent or
black, so the remote side never sees a renegotiation.
"""
from typing import Callable

from aiortc import MediaStreamTrack
from av import AudioFrame, VideoFrame


def silence_like(frame: AudioFrame) -> AudioFrame:
    """Build a silent audio frame with the same layout and timing as ``frame``."""
    silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
    for plane in silent.planes:
        plane.update(bytes(plane.buffer_size))
    silent.sample_rate = frame.sample_rate
    silent.pts = frame.pts
    silent.time_base = frame.time_base
    return silent


def black_like(frame: VideoFrame) -> VideoFrame:
    """Build a black yuv420p video frame with the same size and timing as ``frame``."""
    black = VideoFrame(width=frame.width, height=frame.height, format="yuv420p")
    luma, *chroma = black.planes
    luma.update(bytes(luma.buffer_size))
    for plane in chroma:
        plane.update(b"\x80" * plane.buffer_size)
    black.pts = frame.pts
    black.time_base = frame.time_base
    return black


class SwitchableTrack(MediaStreamTrack):
    """Forwards frames from a source track, blanking them while its kind is disabled.

    Attributes:
        source: relay subscription of the captured device track
        is_enabled: callable returning the current enabled flag for this kind
    """

    def __init__(self, source: MediaStreamTrack, is_enabled: Callable[[], bool]):
        super().__init__()
        self.kind = source.kind
        self.source = source
        self.is_enabled = is_enabled

    async def recv(self):
        frame = await self.source.recv()
        if self.is_enabled():
            return frame
        if self.kind == "audio":
            return silence_like(frame)
        return black_like(frame)

    def stop(self):
        super().stop()
        # Only ends this relay subscription, the captured device keeps running
        self.source.stop()
