"""
Call orchestrator.

Binds signaling events to the peer session for one room visit and serves
participants one at a time. Everything that changes call state goes through a
single ``asyncio.Queue`` consumed by :meth:`CallOrchestrator._run`; handlers
never run concurrently. Peer-connection callbacks carry the generation of the
instance that raised them and are dropped once that instance is gone.
"""
import asyncio
import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from ..core.config import ClientConfig
from ..core.exceptions import (
    MediaAccessError,
    NegotiationError,
    NotReadyError,
    ProtocolError,
    RoomCallError,
    SessionInitError,
)
from ..core.logging import LoggerMixin, debug_log
from ..signaling.channel import SignalingChannel
from ..signaling import protocol
from ..signaling.protocol import SignalingMessage
from ..webrtc.peer_session import ConnectionStatus, PeerSession, RemoteMedia, SessionState
from . import events
from .call_log import CallLog, short_id
from .events import CallEvent
from .roles import should_initiate


class CallState(str, Enum):
    IDLE = "idle"
    JOINING_ROOM = "joining-room"
    AWAITING_PEER = "awaiting-peer"
    NEGOTIATING = "negotiating"
    IN_CALL = "in-call"
    PEER_LEFT = "peer-left"
    HUNG_UP = "hung-up"
    LEFT_ROOM = "left-room"


# Reasons reported through on_exit
EXIT_LEFT = "left"
EXIT_ROOM_FULL = "room-full"
EXIT_MEDIA_ERROR = "media-error"


class CallOrchestrator(LoggerMixin):
    """Drives a PeerSession from signaling events for one room visit."""

    def __init__(self, config: ClientConfig, channel: SignalingChannel, session: PeerSession,
                 call_log: Optional[CallLog] = None,
                 on_status_change: Optional[Callable] = None,
                 on_remote_media: Optional[Callable] = None,
                 on_exit: Optional[Callable] = None):
        super().__init__()
        self.config = config
        self.channel = channel
        self.session = session
        self.call_log = call_log or CallLog(limit=config.call_log_limit)

        self.on_status_change = on_status_change
        self.on_remote_media = on_remote_media
        self.on_exit = on_exit

        self.room_id: Optional[str] = None
        self.peer_id: Optional[str] = None
        self.state = CallState.IDLE
        self.status = ConnectionStatus.CLOSED
        self.remote_media: Optional[RemoteMedia] = None
        self.exit_reason: Optional[str] = None

        self._queue: asyncio.Queue = asyncio.Queue()
        self._loop_task: Optional[asyncio.Task] = None
        self._unsubscribers: List[Callable[[], None]] = []
        self._exited = asyncio.Event()
        # Coroutine UI callbacks scheduled by _fire
        self._callback_tasks: Set[asyncio.Task] = set()

        self._signal_handlers = {
            protocol.PEER_JOINED: self._on_peer_joined,
            protocol.PEER_LEFT: self._on_peer_left,
            protocol.ROOM_FULL: self._on_room_full,
            protocol.OFFER: self._on_offer,
            protocol.ANSWER: self._on_answer,
            protocol.ICE_CANDIDATE: self._on_ice_candidate,
            protocol.HANG_UP: self._on_hang_up,
        }

    @property
    def self_id(self) -> Optional[str]:
        return self.channel.self_id

    @property
    def audio_enabled(self) -> bool:
        handle = self.session.media_handle
        return handle.audio_enabled if handle else False

    @property
    def video_enabled(self) -> bool:
        handle = self.session.media_handle
        return handle.video_enabled if handle else False

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    # User actions

    async def join_room(self, room_id: str) -> None:
        """Capture media, open a peer connection and announce ourselves in ``room_id``."""
        if self.state != CallState.IDLE:
            raise RoomCallError("Orchestrator already used for a room visit", {"state": self.state.value})

        self.room_id = room_id
        self._subscribe()
        self._loop_task = asyncio.create_task(self._run())
        await self._submit(events.JOIN)

    def set_audio_enabled(self, enabled: bool) -> None:
        self.session.set_audio_enabled(enabled)
        self.call_log.add(f"Audio {'enabled' if enabled else 'muted'}.", "info")

    def set_video_enabled(self, enabled: bool) -> None:
        self.session.set_video_enabled(enabled)
        self.call_log.add(f"Video {'enabled' if enabled else 'disabled'}.", "info")

    def toggle_audio(self) -> bool:
        enabled = not self.audio_enabled
        self.set_audio_enabled(enabled)
        return enabled

    def toggle_video(self) -> bool:
        enabled = not self.video_enabled
        self.set_video_enabled(enabled)
        return enabled

    async def hang_up(self) -> None:
        """End the current call and stay in the room for the next participant."""
        await self._submit(events.HANG_UP)

    async def leave_room(self) -> None:
        """Leave the room, release local media and stop the loop."""
        if not self.is_running:
            return
        await self._submit(events.LEAVE)

    async def wait_until_exit(self) -> Optional[str]:
        """Block until the room visit ends; returns the exit reason."""
        await self._exited.wait()
        return self.exit_reason

    # Event loop

    def _post(self, kind: str, payload: Any = None, generation: Optional[int] = None):
        self._queue.put_nowait(CallEvent(kind=kind, payload=payload, generation=generation))

    async def _submit(self, kind: str, payload: Any = None):
        if self._loop_task is None or self._loop_task.done():
            self.log_warning(f"⚠️ [Orchestrator] Event loop not running, action ignored", {"action": kind})
            return
        done = asyncio.get_running_loop().create_future()
        await self._queue.put(CallEvent(kind=kind, payload=payload, done=done))
        await done

    def _is_live_generation(self, generation: Optional[int]) -> bool:
        return self.session.instance is not None and generation == self.session.generation

    async def _run(self):
        debug_log(f"🚀 [Orchestrator] Event loop started", {"room_id": self.room_id})
        while self.state != CallState.LEFT_ROOM:
            event = await self._queue.get()
            try:
                await self._handle(event)
            except Exception as e:
                self.log_error(f"❌ [Orchestrator] Event handling failed", {
                    "event": event.kind,
                    "error": str(e),
                    "error_type": type(e).__name__
                })
                event.resolve(e)
            else:
                event.resolve()

        # Anything still queued belongs to a finished room visit
        while not self._queue.empty():
            self._queue.get_nowait().resolve()
        debug_log(f"🛑 [Orchestrator] Event loop stopped", {"room_id": self.room_id})

    async def _handle(self, event: CallEvent):
        if event.kind in events.PEER_CONNECTION_EVENTS and not self._is_live_generation(event.generation):
            self.log_debug(f"🗑️ [Orchestrator] Dropping stale peer connection event", {
                "event": event.kind,
                "generation": event.generation,
                "current": self.session.generation
            })
            return

        if event.kind == events.SIGNAL:
            await self._handle_signal(event.payload)
        elif event.kind == events.REMOTE_TRACK:
            self._on_remote_track()
        elif event.kind == events.LOCAL_CANDIDATE:
            await self._on_local_candidate(event.payload)
        elif event.kind == events.STATUS_CHANGE:
            self._on_status_change(event.payload)
        elif event.kind == events.JOIN:
            await self._join()
        elif event.kind == events.HANG_UP:
            await self._hang_up()
        elif event.kind == events.LEAVE:
            await self._leave(EXIT_LEFT, notify=True)
        elif event.kind == events.CHANNEL_LOST:
            if self.state != CallState.LEFT_ROOM:
                self.call_log.add("Signaling connection lost.", "error")

    def _subscribe(self):
        for event_name in protocol.INBOUND_EVENTS:
            self._unsubscribers.append(
                self.channel.subscribe(event_name, self._signal_receiver(event_name))
            )
        self._unsubscribers.append(
            self.channel.subscribe(protocol.DISCONNECT, lambda data: self._post(events.CHANNEL_LOST))
        )

    def _signal_receiver(self, event_name: str) -> Callable[[Dict[str, Any]], None]:
        def receive(data: Dict[str, Any]):
            try:
                message = SignalingMessage.from_wire(event_name, data)
            except ProtocolError as e:
                self.call_log.add(f"Malformed '{event_name}' message dropped: {e.message}", "error")
                return
            self._post(events.SIGNAL, message)

        return receive

    def _unsubscribe(self):
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    # Signaling events

    async def _handle_signal(self, message: SignalingMessage):
        if self.state == CallState.LEFT_ROOM:
            return
        if not message.is_actionable(self.room_id, self.self_id):
            self.log_debug(f"📥 [Orchestrator] Ignoring non-actionable message", {
                "kind": message.kind,
                "room_id": message.room_id,
                "sender_id": message.sender_id
            })
            return

        await self._signal_handlers[message.kind](message)

    async def _on_peer_joined(self, message: SignalingMessage):
        peer = message.sender_id
        self.call_log.add(
            f"Participant {short_id(peer)} joined the room ({message.participant_count} present).", "success"
        )

        # Equal ids are indistinguishable from our own join echo; neither side initiates
        if peer == self.self_id:
            self.call_log.add("You joined the room.", "info")
            return

        if self.peer_id is not None:
            if peer != self.peer_id:
                self.call_log.add(
                    f"Already serving {short_id(self.peer_id)}, ignoring {short_id(peer)}.", "info"
                )
            return

        self.call_log.add(f"New participant {short_id(peer)} detected, preparing the call.", "info")

        # The peer is tracked only once a connection is open
        if not await self._ensure_session_open():
            return
        self._adopt_peer(peer)

        if should_initiate(self.self_id, peer):
            await self._send_offer(peer)
        else:
            self.call_log.add(f"Waiting for an offer from {short_id(peer)}.", "webrtc")

    async def _on_offer(self, message: SignalingMessage):
        sender = message.sender_id
        self.call_log.add(f"Offer received from {short_id(sender)}.", "webrtc")

        if self.peer_id is not None and sender != self.peer_id:
            self.call_log.add(
                f"Offer from {short_id(sender)} dropped, already serving {short_id(self.peer_id)}.", "error"
            )
            return

        if self.session.state not in (SessionState.AWAITING_OFFER, SessionState.UNOPENED, SessionState.CLOSED):
            self.call_log.add(
                f"Offer from {short_id(sender)} dropped, negotiation already {self.session.state.value}.", "error"
            )
            return

        if not await self._ensure_session_open():
            return

        if self.peer_id is None:
            self._adopt_peer(sender)
            self.call_log.add(f"Participant {short_id(sender)} adopted from offer.", "info")

        self._begin_negotiation()
        generation = self.session.generation
        try:
            answer = await self.session.create_answer(message.payload)
        except NegotiationError as e:
            self.call_log.add(f"Answer creation failed: {e.message}", "error")
            return

        if not self._still_current(sender, generation):
            return

        self.call_log.add("Answer created, sending it to the relay.", "webrtc")
        await self._send(protocol.answer_message(self.room_id, self.self_id, sender, answer))

    async def _on_answer(self, message: SignalingMessage):
        sender = message.sender_id
        if sender != self.peer_id:
            self.call_log.add(
                f"Answer from {short_id(sender)} dropped, not the current participant.", "error"
            )
            return

        self.call_log.add(f"Answer received from {short_id(sender)}.", "webrtc")
        try:
            await self.session.apply_remote_answer(message.payload)
        except NegotiationError as e:
            self.call_log.add(f"Applying the answer failed: {e.message}", "error")
            return

        self.call_log.add("Remote description set (answer accepted).", "success")

    async def _on_ice_candidate(self, message: SignalingMessage):
        sender = message.sender_id
        self.log_debug(f"🧊 [Orchestrator] ICE candidate received", {"sender_id": sender})
        if self.peer_id is not None and sender != self.peer_id:
            self.log_debug(f"🧊 [Orchestrator] ICE candidate from untracked participant dropped", {
                "sender_id": sender,
                "peer_id": self.peer_id
            })
            return
        await self.session.add_remote_ice_candidate(message.payload, sender_id=sender)

    async def _on_peer_left(self, message: SignalingMessage):
        peer = message.sender_id
        self.call_log.add(f"Participant {short_id(peer)} left the room.", "error")
        if peer != self.peer_id:
            self.session.discard_pending_candidates(peer)
            return

        self.call_log.add("The other participant left, closing the connection.", "info")
        await self._end_call(CallState.PEER_LEFT)

    async def _on_hang_up(self, message: SignalingMessage):
        if message.sender_id != self.peer_id:
            self.log_debug(f"📥 [Orchestrator] Hang-up from untracked participant ignored", {
                "sender_id": message.sender_id
            })
            return

        self.call_log.add(f"{short_id(message.sender_id)} ended the call.", "info")
        await self._end_call(CallState.HUNG_UP)

    async def _on_room_full(self, message: SignalingMessage):
        self.call_log.add(f"Could not join: room '{message.room_id}' is full.", "error")
        await self._leave(EXIT_ROOM_FULL, notify=False)

    # Peer connection events

    def _on_remote_track(self):
        remote = self.session.remote_media
        if remote is None:
            return
        if self.remote_media is None:
            self.call_log.add("Remote stream received.", "success")
        # Fired once per track; the stream object stays the same
        self.remote_media = remote
        self._fire(self.on_remote_media, remote)

    async def _on_local_candidate(self, candidate: Dict[str, Any]):
        if self.peer_id is None:
            self.log_debug(f"🧊 [Orchestrator] No participant for local ICE candidate, dropped")
            return
        self.log_debug(f"🧊 [Orchestrator] Sending ICE candidate", {"target_id": self.peer_id})
        await self._send(protocol.ice_candidate_message(self.room_id, self.self_id, self.peer_id, candidate))

    def _on_status_change(self, status: ConnectionStatus):
        self._set_status(status)
        if status == ConnectionStatus.CONNECTED and self.state == CallState.NEGOTIATING:
            self._set_state(CallState.IN_CALL)
            self.call_log.add(f"Connected to {short_id(self.peer_id)}.", "success")
        elif status == ConnectionStatus.FAILED:
            self.call_log.add("Peer connection failed.", "error")

    # Local actions

    async def _join(self):
        self._set_state(CallState.JOINING_ROOM)
        self.call_log.add(f"Starting WebRTC for room {self.room_id}...", "webrtc")

        try:
            await self.session.acquire_local_media()
        except MediaAccessError as e:
            self.call_log.add(f"Camera/microphone unavailable: {e.message}", "error")
            await self._leave(EXIT_MEDIA_ERROR, notify=False)
            raise

        self.call_log.add("Local media acquired.", "success")
        await self._open_session()

        if await self._send(SignalingMessage(kind=protocol.JOIN_ROOM, room_id=self.room_id)):
            self.call_log.add(f"Join request for room '{self.room_id}' sent.", "socket")
        self._set_state(CallState.AWAITING_PEER)

    async def _hang_up(self):
        if self.peer_id is None:
            self.call_log.add("No active call to hang up.", "info")
            return

        self.call_log.add("Ending the call (user request)...", "info")
        await self._send(protocol.hang_up_message(self.room_id, self.self_id, self.peer_id))
        await self._end_call(CallState.HUNG_UP)

    async def _leave(self, reason: str, notify: bool):
        if self.state == CallState.LEFT_ROOM:
            return

        self.call_log.add("Leaving the room, cleaning up the connection.", "info")
        if notify and await self._send(SignalingMessage(kind=protocol.LEAVE_ROOM, room_id=self.room_id)):
            self.call_log.add(f"Leave request for room '{self.room_id}' sent.", "socket")

        self._unsubscribe()
        await self.session.close(stop_media=True)
        self.peer_id = None
        self._set_remote_media(None)
        self._set_status(ConnectionStatus.CLOSED)
        self._set_state(CallState.LEFT_ROOM)

        self.exit_reason = reason
        self._exited.set()
        await self._notify(self.on_exit, reason)

    # Session lifecycle

    async def _open_session(self) -> bool:
        # open() assigns the next generation; callbacks are pinned to it here
        generation = self.session.generation + 1
        try:
            await self.session.open(
                on_remote_track=lambda track: self._post(events.REMOTE_TRACK, track, generation),
                on_local_ice_candidate=lambda c: self._post(events.LOCAL_CANDIDATE, c, generation),
                on_log=self.call_log.add,
                on_status_change=lambda s: self._post(events.STATUS_CHANGE, s, generation),
            )
        except SessionInitError as e:
            self.call_log.add(f"WebRTC initialization failed: {e.message}", "error")
            return False

        # Status stays CLOSED until negotiation starts
        return True

    async def _ensure_session_open(self) -> bool:
        if self.session.instance is not None:
            return True
        self.call_log.add("No open peer connection, creating one.", "webrtc")
        return await self._open_session()

    def _adopt_peer(self, peer: str):
        self.peer_id = peer
        self.session.retain_pending_candidates(peer)

    def _begin_negotiation(self):
        self._set_state(CallState.NEGOTIATING)
        self._set_status(ConnectionStatus.CONNECTING)

    async def _send_offer(self, peer: str):
        self._begin_negotiation()
        self.call_log.add(f"Creating an offer for {short_id(peer)} in room '{self.room_id}'...", "webrtc")

        generation = self.session.generation
        try:
            offer = await self.session.create_offer()
        except NegotiationError as e:
            self.call_log.add(f"Offer creation failed: {e.message}", "error")
            return

        if not self._still_current(peer, generation):
            return

        self.call_log.add("Offer created, sending it to the relay.", "webrtc")
        await self._send(protocol.offer_message(self.room_id, self.self_id, peer, offer))

    async def _end_call(self, reason: CallState):
        """Close the current peer connection and re-arm for the next participant."""
        self._set_state(reason)
        self.peer_id = None
        await self.session.close()
        self._set_remote_media(None)
        self._set_status(ConnectionStatus.CLOSED)

        if self.session.media_handle is None:
            return

        self.call_log.add("Preparing WebRTC for a new participant...", "webrtc")
        # Settling delay: the closed instance must be fully released before a new one attaches tracks
        await asyncio.sleep(self.config.rearm_delay)

        if await self._open_session():
            self._set_state(CallState.AWAITING_PEER)
            self.call_log.add("WebRTC re-armed for a new participant.", "success")

    def _still_current(self, peer: str, generation: int) -> bool:
        if self.peer_id == peer and self.session.generation == generation and self.session.instance is not None:
            return True
        self.call_log.add(f"Negotiation result for {short_id(peer)} discarded, participant changed.", "info")
        return False

    async def _send(self, message: SignalingMessage) -> bool:
        try:
            await self.channel.send_message(message)
        except NotReadyError as e:
            self.call_log.add(f"Could not send '{message.kind}': {e.message}", "error")
            return False
        return True

    # State projections

    def _set_state(self, state: CallState):
        if state == self.state:
            return
        debug_log(f"🔄 [Orchestrator] Call state changed", {
            "from": self.state.value,
            "to": state.value,
            "peer_id": self.peer_id,
            "timestamp": datetime.datetime.now().isoformat()
        })
        self.state = state

    def _set_status(self, status: ConnectionStatus):
        if status == self.status:
            return
        self.status = status
        self._fire(self.on_status_change, status)

    def _set_remote_media(self, remote: Optional[RemoteMedia]):
        if remote is self.remote_media:
            return
        self.remote_media = remote
        self._fire(self.on_remote_media, remote)

    def _fire(self, callback: Optional[Callable], *args):
        if callback is None:
            return
        try:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                task = asyncio.ensure_future(result)
                self._callback_tasks.add(task)
                task.add_done_callback(self._callback_done)
        except Exception as e:
            self.log_error(f"❌ [Orchestrator] UI callback failed", {
                "error": str(e),
                "error_type": type(e).__name__
            })

    def _callback_done(self, task: asyncio.Task):
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.log_error(f"❌ [Orchestrator] UI callback failed", {
                "error": str(error),
                "error_type": type(error).__name__
            })

    async def _notify(self, callback: Optional[Callable], *args):
        if callback is None:
            return
        try:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            self.log_error(f"❌ [Orchestrator] Exit callback failed", {
                "error": str(e),
                "error_type": type(e).__name__
            })
