"""
Peer session: one peer connection at a time plus the room's local media.

Each call to :meth:`PeerSession.open` builds a fresh
:class:`PeerConnectionInstance` with its own generation number. An instance is
never reused: :meth:`PeerSession.close` detaches its listeners, stops its
transceivers and drops the reference, and the next peer gets a new one.
"""
import asyncio
import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from aiortc import MediaStreamTrack, RTCPeerConnection, RTCSessionDescription

from ..core.config import ClientConfig
from ..core.exceptions import IceError, NegotiationError, SessionInitError
from ..core.logging import LoggerMixin, debug_log
from ..core.validation_utils import ValidationUtils
from .media import LocalMediaHandle, MediaCapture
from .relay_policy import filter_relay_candidates, parse_remote_candidate, relay_candidates


class ConnectionStatus(str, Enum):
    """Simplified connection status exposed to the UI."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


ICE_STATE_STATUS = {
    "new": ConnectionStatus.CONNECTING,
    "checking": ConnectionStatus.CONNECTING,
    "connected": ConnectionStatus.CONNECTED,
    "completed": ConnectionStatus.CONNECTED,
    "disconnected": ConnectionStatus.DISCONNECTED,
    "failed": ConnectionStatus.FAILED,
    "closed": ConnectionStatus.CLOSED,
}


def project_ice_state(ice_state: Optional[str]) -> ConnectionStatus:
    """Map an ICE connection state onto a ConnectionStatus."""
    if ice_state is None:
        return ConnectionStatus.CLOSED
    return ICE_STATE_STATUS.get(ice_state, ConnectionStatus.CONNECTING)


class SessionState(str, Enum):
    """Lifecycle of a single peer connection instance."""
    UNOPENED = "unopened"
    OPENING = "opening"
    OFFERING = "offering"
    AWAITING_OFFER = "awaiting-offer"
    NEGOTIATED = "negotiated"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


PRE_NEGOTIATION_STATES = (SessionState.OPENING, SessionState.OFFERING, SessionState.AWAITING_OFFER)


@dataclass
class RemoteMedia:
    """Tracks received from the remote participant on the current instance."""
    tracks: List[MediaStreamTrack] = field(default_factory=list)

    def add(self, track: MediaStreamTrack):
        self.tracks.append(track)

    def _first(self, kind: str) -> Optional[MediaStreamTrack]:
        for track in self.tracks:
            if track.kind == kind:
                return track
        return None

    @property
    def audio(self) -> Optional[MediaStreamTrack]:
        return self._first("audio")

    @property
    def video(self) -> Optional[MediaStreamTrack]:
        return self._first("video")


class PeerConnectionInstance:
    """One peer connection and the negotiation bookkeeping that belongs to it."""

    def __init__(self, generation: int, pc: RTCPeerConnection):
        self.generation = generation
        self.pc = pc
        self.state = SessionState.OPENING
        self.local_offer_committed = False
        self.remote_description_set = False
        # (sender_id, candidate) pairs held until the remote description lands
        self.pending_candidates: List[Tuple[Optional[str], Any]] = []
        self.local_tracks: List[MediaStreamTrack] = []
        self.remote_media = RemoteMedia()

    @property
    def ice_connection_state(self) -> str:
        return self.pc.iceConnectionState

    def __repr__(self):
        return f"PeerConnectionInstance(generation={self.generation}, state={self.state.value})"


class PeerSession(LoggerMixin):
    """Owns the current peer connection and the local media handle."""

    def __init__(self, config: ClientConfig, media: Optional[MediaCapture] = None,
                 pc_factory: Callable[..., Any] = RTCPeerConnection):
        super().__init__()
        self.config = config
        self.media = media or MediaCapture(config)
        self._pc_factory = pc_factory
        self._generation = 0
        self._instance: Optional[PeerConnectionInstance] = None

        self._on_remote_track: Optional[Callable] = None
        self._on_local_ice_candidate: Optional[Callable] = None
        self._on_log: Optional[Callable] = None
        self._on_status_change: Optional[Callable] = None

    @property
    def instance(self) -> Optional[PeerConnectionInstance]:
        return self._instance

    @property
    def generation(self) -> int:
        """Generation of the current (or most recently closed) instance."""
        return self._generation

    @property
    def state(self) -> SessionState:
        if self._instance is None:
            return SessionState.UNOPENED if self._generation == 0 else SessionState.CLOSED
        return self._instance.state

    @property
    def media_handle(self) -> Optional[LocalMediaHandle]:
        return self.media.handle

    @property
    def remote_media(self) -> Optional[RemoteMedia]:
        """Remote stream of the current instance, None until a track arrives."""
        if self._instance is None or not self._instance.remote_media.tracks:
            return None
        return self._instance.remote_media

    def is_current(self, instance: Optional[PeerConnectionInstance]) -> bool:
        return instance is not None and instance is self._instance

    async def acquire_local_media(self) -> LocalMediaHandle:
        """Capture camera and microphone, reusing the handle held for this room visit."""
        return await self.media.acquire()

    async def open(self, on_remote_track: Callable, on_local_ice_candidate: Callable,
                   on_log: Callable, on_status_change: Optional[Callable] = None) -> PeerConnectionInstance:
        """Create a relay-only peer connection carrying the local tracks."""
        if self._instance is not None:
            raise SessionInitError("Previous peer connection is still open", {
                "generation": self._instance.generation
            })

        handle = self.media.handle
        if handle is None:
            raise SessionInitError("Local media is not available")

        if not self.config.has_turn_server:
            raise SessionInitError("Relay-only transport requires a TURN server", {
                "turn_url": self.config.turn_url
            })

        try:
            pc = self._pc_factory(configuration=self.config.build_rtc_configuration())
        except Exception as e:
            raise SessionInitError("Could not create peer connection", {"error": str(e)})

        self._generation += 1
        instance = PeerConnectionInstance(self._generation, pc)

        try:
            instance.local_tracks = handle.subscribe_tracks()
            for track in instance.local_tracks:
                pc.addTrack(track)
        except Exception as e:
            for track in instance.local_tracks:
                track.stop()
            await pc.close()
            raise SessionInitError("Could not attach local tracks", {"error": str(e)})

        self._on_remote_track = on_remote_track
        self._on_local_ice_candidate = on_local_ice_candidate
        self._on_log = on_log
        self._on_status_change = on_status_change
        self._register_handlers(instance)

        instance.state = SessionState.AWAITING_OFFER
        self._instance = instance

        debug_log(f"🔗 [PeerSession] Peer connection opened", {
            "generation": instance.generation,
            "tracks": [track.kind for track in instance.local_tracks],
            "timestamp": datetime.datetime.now().isoformat()
        })
        await self._log("Peer connection created (relay-only)", "webrtc")
        return instance

    def _register_handlers(self, instance: PeerConnectionInstance):
        pc = instance.pc

        @pc.on("track")
        async def on_track(track):
            if not self.is_current(instance):
                return
            instance.remote_media.add(track)
            await self._log(f"Remote {track.kind} track received", "webrtc")
            await self._invoke(self._on_remote_track, track)

        @pc.on("iceconnectionstatechange")
        async def on_ice_connection_state_change():
            if not self.is_current(instance):
                return
            ice_state = pc.iceConnectionState
            status = project_ice_state(ice_state)

            if status == ConnectionStatus.CONNECTED:
                instance.state = SessionState.CONNECTED
            elif status == ConnectionStatus.DISCONNECTED:
                instance.state = SessionState.DISCONNECTED
            elif status == ConnectionStatus.FAILED:
                instance.state = SessionState.FAILED

            kind = "error" if status == ConnectionStatus.FAILED else "webrtc"
            await self._log(f"ICE connection state: {ice_state}", kind)
            await self._invoke(self._on_status_change, status)

        @pc.on("icegatheringstatechange")
        def on_ice_gathering_state_change():
            debug_log(f"🧊 [PeerSession] ICE gathering state changed", {
                "generation": instance.generation,
                "ice_gathering_state": pc.iceGatheringState
            })

        @pc.on("signalingstatechange")
        def on_signaling_state_change():
            debug_log(f"📡 [PeerSession] Signaling state changed", {
                "generation": instance.generation,
                "signaling_state": pc.signalingState
            })

        @pc.on("connectionstatechange")
        def on_connection_state_change():
            debug_log(f"🔗 [PeerSession] Connection state changed", {
                "generation": instance.generation,
                "connection_state": pc.connectionState
            })

    async def create_offer(self) -> Dict[str, str]:
        """Create an offer and commit it as the local description."""
        instance = self._require_instance("create an offer")
        if instance.state != SessionState.AWAITING_OFFER:
            raise NegotiationError("Cannot create an offer in the current state", {
                "state": instance.state.value
            })

        pc = instance.pc
        try:
            offer = await pc.createOffer()
            await pc.setLocalDescription(offer)
        except Exception as e:
            await self._log(f"Failed to create offer: {e}", "error")
            raise NegotiationError("Could not create offer", {"error": str(e)})

        self._ensure_still_current(instance, "offer")
        instance.local_offer_committed = True
        instance.state = SessionState.OFFERING

        await self._log("Offer created", "webrtc")
        return await self._publish_local_description(instance)

    async def create_answer(self, remote_offer: Dict[str, Any]) -> Dict[str, str]:
        """Apply a remote offer, then create and commit the answer."""
        error = ValidationUtils.validate_session_description(remote_offer, "offer")
        if error:
            raise NegotiationError(error)

        instance = self._require_instance("answer an offer")
        pc = instance.pc
        try:
            await pc.setRemoteDescription(RTCSessionDescription(
                sdp=filter_relay_candidates(remote_offer["sdp"]),
                type="offer"
            ))
        except Exception as e:
            await self._log(f"Failed to apply remote offer: {e}", "error")
            raise NegotiationError("Could not apply remote offer", {"error": str(e)})

        self._ensure_still_current(instance, "answer")
        instance.remote_description_set = True
        await self._flush_pending_candidates(instance)

        try:
            answer = await pc.createAnswer()
            await pc.setLocalDescription(answer)
        except Exception as e:
            await self._log(f"Failed to create answer: {e}", "error")
            raise NegotiationError("Could not create answer", {"error": str(e)})

        self._ensure_still_current(instance, "answer")
        self._mark_negotiated(instance)

        await self._log("Answer created", "webrtc")
        return await self._publish_local_description(instance)

    async def apply_remote_answer(self, remote_answer: Dict[str, Any]) -> None:
        """Apply the remote answer to the committed local offer."""
        error = ValidationUtils.validate_session_description(remote_answer, "answer")
        if error:
            raise NegotiationError(error)

        instance = self._require_instance("apply an answer")
        if not instance.local_offer_committed:
            raise NegotiationError("No local offer has been committed")
        if instance.remote_description_set:
            raise NegotiationError("Remote answer already applied")

        try:
            await instance.pc.setRemoteDescription(RTCSessionDescription(
                sdp=filter_relay_candidates(remote_answer["sdp"]),
                type="answer"
            ))
        except Exception as e:
            await self._log(f"Failed to apply remote answer: {e}", "error")
            raise NegotiationError("Could not apply remote answer", {"error": str(e)})

        self._ensure_still_current(instance, "answer")
        instance.remote_description_set = True
        self._mark_negotiated(instance)
        await self._log("Remote answer applied", "webrtc")
        await self._flush_pending_candidates(instance)

    async def add_remote_ice_candidate(self, candidate: Dict[str, Any], sender_id: Optional[str] = None) -> bool:
        """Submit a remote candidate. Rejections are logged, never raised.

        Candidates that arrive before the remote description are queued with
        their ``sender_id`` so a later peer never inherits them.
        """
        instance = self._instance
        if instance is None:
            await self._log("ICE candidate received with no open peer connection", "error")
            return False

        try:
            error = ValidationUtils.validate_ice_candidate(candidate)
            if error:
                raise IceError(error)
            parsed = parse_remote_candidate(candidate)
        except IceError as e:
            await self._log(f"Rejected ICE candidate: {e.message}", "error")
            return False

        if not instance.remote_description_set:
            instance.pending_candidates.append((sender_id, parsed))
            self.log_debug(f"🧊 [PeerSession] Queued ICE candidate until remote description is set", {
                "generation": instance.generation,
                "sender_id": sender_id,
                "queued": len(instance.pending_candidates)
            })
            return True

        return await self._submit_candidate(instance, parsed)

    def retain_pending_candidates(self, sender_id: str) -> int:
        """Drop queued candidates from anyone but ``sender_id``; returns how many were dropped."""
        instance = self._instance
        if instance is None:
            return 0
        kept = [entry for entry in instance.pending_candidates if entry[0] == sender_id]
        dropped = len(instance.pending_candidates) - len(kept)
        instance.pending_candidates = kept
        if dropped:
            self.log_debug(f"🧊 [PeerSession] Discarded queued ICE candidates from other participants", {
                "generation": instance.generation,
                "kept_sender": sender_id,
                "dropped": dropped
            })
        return dropped

    def discard_pending_candidates(self, sender_id: str) -> int:
        """Drop queued candidates from ``sender_id``; returns how many were dropped."""
        instance = self._instance
        if instance is None:
            return 0
        before = len(instance.pending_candidates)
        instance.pending_candidates = [entry for entry in instance.pending_candidates if entry[0] != sender_id]
        return before - len(instance.pending_candidates)

    def set_audio_enabled(self, enabled: bool) -> None:
        self._set_enabled("audio", enabled)

    def set_video_enabled(self, enabled: bool) -> None:
        self._set_enabled("video", enabled)

    def _set_enabled(self, kind: str, enabled: bool):
        handle = self.media.handle
        if handle is None:
            self.log_warning(f"⚠️ [PeerSession] No local media to toggle", {"kind": kind})
            return
        handle.set_enabled(kind, enabled)
        self.log_info(f"🎙️ [PeerSession] Local track toggled", {"kind": kind, "enabled": enabled})

    async def close(self, stop_media: bool = False) -> None:
        """Tear down the current peer connection; with ``stop_media`` also release the devices."""
        instance, self._instance = self._instance, None
        if instance is not None:
            pc = instance.pc
            pc.remove_all_listeners()

            for transceiver in pc.getTransceivers():
                try:
                    await transceiver.stop()
                except Exception as e:
                    self.log_warning(f"⚠️ [PeerSession] Transceiver stop failed", {"error": str(e)})

            await pc.close()

            for track in instance.local_tracks:
                track.stop()
            instance.pending_candidates.clear()
            instance.state = SessionState.CLOSED

            debug_log(f"🔌 [PeerSession] Peer connection closed", {
                "generation": instance.generation,
                "timestamp": datetime.datetime.now().isoformat()
            })

        if stop_media:
            self.media.release()

    def connection_status(self) -> ConnectionStatus:
        if self._instance is None:
            return ConnectionStatus.CLOSED
        return project_ice_state(self._instance.ice_connection_state)

    def _require_instance(self, action: str) -> PeerConnectionInstance:
        if self._instance is None:
            raise NegotiationError(f"No open peer connection to {action}")
        return self._instance

    def _ensure_still_current(self, instance: PeerConnectionInstance, step: str):
        if not self.is_current(instance):
            raise NegotiationError("Peer connection closed during negotiation", {
                "step": step,
                "generation": instance.generation
            })

    def _mark_negotiated(self, instance: PeerConnectionInstance):
        if instance.state in PRE_NEGOTIATION_STATES:
            instance.state = SessionState.NEGOTIATED

    async def _publish_local_description(self, instance: PeerConnectionInstance) -> Dict[str, str]:
        """Announce relay candidates and return the filtered local description."""
        local = instance.pc.localDescription
        candidates = relay_candidates(local.sdp)
        if not candidates:
            await self._log("No relay candidates gathered, check the TURN server", "error")

        for candidate in candidates:
            await self._invoke(self._on_local_ice_candidate, candidate)

        return {"type": local.type, "sdp": filter_relay_candidates(local.sdp)}

    async def _flush_pending_candidates(self, instance: PeerConnectionInstance):
        pending, instance.pending_candidates = instance.pending_candidates, []
        if pending:
            self.log_debug(f"🧊 [PeerSession] Flushing queued ICE candidates", {"count": len(pending)})
        for _, candidate in pending:
            await self._submit_candidate(instance, candidate)

    async def _submit_candidate(self, instance: PeerConnectionInstance, candidate) -> bool:
        try:
            await instance.pc.addIceCandidate(candidate)
        except Exception as e:
            await self._log(f"Error adding ICE candidate: {e}", "error")
            return False
        return True

    async def _log(self, message: str, kind: str = "info"):
        self.log_debug(f"🔗 [PeerSession] {message}")
        await self._invoke(self._on_log, message, kind)

    async def _invoke(self, callback: Optional[Callable], *args):
        if callback is None:
            return
        try:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            self.log_error(f"❌ [PeerSession] Callback failed", {
                "callback": getattr(callback, "__name__", repr(callback)),
                "error": str(e),
                "error_type": type(e).__name__
            })
