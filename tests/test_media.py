"""Unit tests for local media capture and switchable tracks."""

from fractions import Fraction

import pytest
from aiortc import MediaStreamTrack
from av import AudioFrame, VideoFrame

from roomcall.core.exceptions import MediaAccessError
from roomcall.webrtc.media import MediaCapture
from roomcall.webrtc.tracks import SwitchableTrack, black_like, silence_like

from tests.fakes import PlayerFactory


def noisy_audio_frame() -> AudioFrame:
    frame = AudioFrame(format="s16", layout="mono", samples=960)
    for plane in frame.planes:
        plane.update(b"\x01" * plane.buffer_size)
    frame.sample_rate = 48000
    frame.pts = 4800
    frame.time_base = Fraction(1, 48000)
    return frame


def bright_video_frame() -> VideoFrame:
    frame = VideoFrame(width=64, height=48, format="yuv420p")
    for plane in frame.planes:
        plane.update(b"\xff" * plane.buffer_size)
    frame.pts = 9000
    frame.time_base = Fraction(1, 90000)
    return frame


class StaticTrack(MediaStreamTrack):
    def __init__(self, kind: str, frame):
        super().__init__()
        self.kind = kind
        self.frame = frame

    async def recv(self):
        return self.frame


class TestFrameSubstitution:
    """Test silent / black frame builders."""

    def test_silence_keeps_timing(self) -> None:
        source = noisy_audio_frame()
        silent = silence_like(source)

        assert silent.samples == source.samples
        assert silent.sample_rate == 48000
        assert silent.pts == source.pts
        assert silent.time_base == source.time_base
        assert set(bytes(silent.planes[0])) == {0}

    def test_black_keeps_size_and_timing(self) -> None:
        source = bright_video_frame()
        black = black_like(source)

        assert (black.width, black.height) == (64, 48)
        assert black.pts == source.pts
        assert black.time_base == source.time_base
        assert set(bytes(black.planes[0])) == {0}
        assert set(bytes(black.planes[1])) == {0x80}


class TestSwitchableTrack:
    """Test mute by frame substitution."""

    @pytest.mark.asyncio
    async def test_enabled_forwards_source_frames(self) -> None:
        frame = bright_video_frame()
        track = SwitchableTrack(StaticTrack("video", frame), lambda: True)

        assert track.kind == "video"
        assert await track.recv() is frame

    @pytest.mark.asyncio
    async def test_disabled_video_is_black(self) -> None:
        enabled = {"video": True}
        track = SwitchableTrack(StaticTrack("video", bright_video_frame()), lambda: enabled["video"])

        enabled["video"] = False
        frame = await track.recv()

        assert set(bytes(frame.planes[0])) == {0}

    @pytest.mark.asyncio
    async def test_disabled_audio_is_silent(self) -> None:
        track = SwitchableTrack(StaticTrack("audio", noisy_audio_frame()), lambda: False)
        frame = await track.recv()
        assert set(bytes(frame.planes[0])) == {0}

    def test_stop_ends_subscription(self) -> None:
        source = StaticTrack("audio", noisy_audio_frame())
        track = SwitchableTrack(source, lambda: True)

        track.stop()

        assert track.readyState == "ended"
        assert source.readyState == "ended"


class TestMediaCapture:
    """Test local media acquisition."""

    @pytest.mark.asyncio
    async def test_acquire_opens_camera_and_microphone(self, config, player_factory) -> None:
        capture = MediaCapture(config, player_factory=player_factory)

        handle = await capture.acquire()

        devices = [call[0] for call in player_factory.calls]
        assert devices == ["/dev/video0", "default"]
        assert player_factory.calls[0][2] == {"video_size": "640x480"}
        assert [track.kind for track in handle.tracks] == ["audio", "video"]

    @pytest.mark.asyncio
    async def test_acquire_is_idempotent(self, config, player_factory) -> None:
        capture = MediaCapture(config, player_factory=player_factory)

        first = await capture.acquire()
        second = await capture.acquire()

        assert first is second
        assert len(player_factory.calls) == 2

    @pytest.mark.asyncio
    async def test_device_failure_is_media_access_error(self, config) -> None:
        capture = MediaCapture(config, player_factory=PlayerFactory(error=OSError("no such device")))

        with pytest.raises(MediaAccessError):
            await capture.acquire()
        assert capture.handle is None

    @pytest.mark.asyncio
    async def test_release_stops_sources(self, config, player_factory) -> None:
        capture = MediaCapture(config, player_factory=player_factory)
        handle = await capture.acquire()
        subscriptions = handle.subscribe_tracks()

        capture.release()

        assert capture.handle is None
        assert all(track.readyState == "ended" for track in handle.tracks)
        assert all(track.readyState == "ended" for track in subscriptions)

    @pytest.mark.asyncio
    async def test_subscriptions_are_independent(self, config, player_factory) -> None:
        capture = MediaCapture(config, player_factory=player_factory)
        handle = await capture.acquire()

        first = handle.subscribe_tracks()
        second = handle.subscribe_tracks()
        for track in first:
            track.stop()

        assert all(track.readyState == "live" for track in second)
        assert all(track.readyState == "live" for track in handle.tracks)

    @pytest.mark.asyncio
    async def test_enabled_flags(self, config, player_factory) -> None:
        handle = await MediaCapture(config, player_factory=player_factory).acquire()

        handle.set_enabled("audio", False)
        assert handle.audio_enabled is False
        assert handle.video_enabled is True

        handle.set_enabled("audio", True)
        assert handle.audio_enabled is True
