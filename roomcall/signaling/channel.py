"""
Signaling channel to the relay.

A single authenticated WebSocket connection carrying named events. The relay
assigns the local participant id in a ``session`` event right after the
handshake; the channel reports itself ready only once that id is known.
"""
import asyncio
import datetime
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Set

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus, InvalidURI

from ..core.config import ClientConfig
from ..core.exceptions import AuthError, NotReadyError, ProtocolError, SignalingError
from ..core.logging import LoggerMixin, debug_log
from .protocol import CONNECT, DISCONNECT, SESSION, SignalingMessage, decode_frame, encode_frame


# Close codes / HTTP statuses the relay uses to reject an identity
AUTH_REJECT_STATUSES = (401, 403)
AUTH_REJECT_CLOSE_CODE = 4001


class SignalingChannel(LoggerMixin):
    """Persistent, ordered event transport scoped to one client identity."""

    def __init__(self, config: ClientConfig, connector: Optional[Callable] = None):
        super().__init__()
        self.config = config
        self._connector = connector or connect
        self._websocket = None
        self._listener_task: Optional[asyncio.Task] = None
        self._handshake: Optional[asyncio.Future] = None
        self._handlers: Dict[str, List[Callable]] = defaultdict(list)
        self._self_id: Optional[str] = None
        self._ready = False
        # Coroutine readiness handlers still running
        self._handler_tasks: Set[asyncio.Task] = set()

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def self_id(self) -> Optional[str]:
        """Participant id assigned by the relay for this connection."""
        return self._self_id

    async def connect(self, identity_token: str) -> 'SignalingChannel':
        """Open the relay connection and wait for the participant id."""
        if not identity_token:
            raise AuthError("No identity token available for the signaling channel")

        debug_log(f"📡 [Signaling] Connecting to relay", {
            "url": self.config.signaling_url,
            "timestamp": datetime.datetime.now().isoformat()
        })

        try:
            self._websocket = await self._connector(
                self.config.signaling_url,
                additional_headers=self.config.get_signaling_headers(identity_token),
                ping_interval=30,
                ping_timeout=10,
                close_timeout=10
            )
        except InvalidStatus as e:
            status = e.response.status_code
            if status in AUTH_REJECT_STATUSES:
                raise AuthError("Relay rejected the identity token", {"status": status})
            raise SignalingError("Relay refused the connection", {"status": status})
        except (InvalidURI, InvalidHandshake, OSError) as e:
            raise SignalingError("Could not reach the signaling relay", {
                "url": self.config.signaling_url,
                "error": str(e)
            })

        self._handshake = asyncio.get_running_loop().create_future()
        self._listener_task = asyncio.create_task(self._listen(self._websocket))

        try:
            await asyncio.wait_for(asyncio.shield(self._handshake), self.config.signaling_handshake_timeout)
        except asyncio.TimeoutError:
            await self.close()
            raise SignalingError("Relay did not assign a participant id", {
                "timeout": self.config.signaling_handshake_timeout
            })
        except (AuthError, SignalingError):
            await self.close()
            raise

        return self

    def subscribe(self, event: str, handler: Callable) -> Callable[[], None]:
        """Register a handler for an event; returns a function that removes it."""
        self._handlers[event].append(handler)

        def unsubscribe():
            if handler in self._handlers.get(event, []):
                self._handlers[event].remove(handler)

        return unsubscribe

    async def send(self, event: str, payload: Dict[str, Any]) -> None:
        """Send one event to the relay. Raises NotReadyError and drops the message when not ready."""
        if not self._ready or self._websocket is None:
            self.log_warning(f"⚠️ [Signaling] Channel not ready, message dropped", {"event": event})
            raise NotReadyError("Signaling channel is not ready", {"event": event})

        try:
            await self._websocket.send(encode_frame(event, payload))
        except ConnectionClosed as e:
            self._set_ready(False)
            self.log_warning(f"⚠️ [Signaling] Connection closed while sending, message dropped", {
                "event": event,
                "error": str(e)
            })
            raise NotReadyError("Signaling channel closed", {"event": event})

        self.log_debug(f"📤 [Signaling] Sent event", {"event": event})

    async def send_message(self, message: SignalingMessage) -> None:
        event, data = message.to_wire()
        await self.send(event, data)

    async def close(self):
        """Close the relay connection and stop the listener."""
        if self._handshake is not None and not self._handshake.done():
            self._handshake.cancel()
        self._set_ready(False)
        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            await websocket.close()

        task, self._listener_task = self._listener_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        debug_log(f"🔌 [Signaling] Channel closed")

    async def _listen(self, websocket):
        """Read frames until the connection ends and dispatch them to subscribers."""
        close_code = None
        try:
            async for raw in websocket:
                try:
                    event, data = decode_frame(raw)
                except ProtocolError as e:
                    self.log_error(f"❌ [Signaling] Dropping malformed frame", {"error": str(e)})
                    continue

                if event == SESSION:
                    self._handle_session(data)
                    continue

                await self._dispatch(event, data)
        except ConnectionClosed as e:
            close_code = e.rcvd.code if e.rcvd is not None else None
            self.log_warning(f"🔌 [Signaling] Relay connection closed", {"code": close_code})
        finally:
            if self._handshake is not None and not self._handshake.done():
                if close_code == AUTH_REJECT_CLOSE_CODE:
                    self._handshake.set_exception(AuthError("Relay rejected the identity token", {"code": close_code}))
                else:
                    self._handshake.set_exception(SignalingError("Relay closed before assigning a participant id", {"code": close_code}))
            self._set_ready(False)

    def _handle_session(self, data: Dict[str, Any]):
        participant_id = data.get('participantId')
        if not participant_id:
            self.log_error(f"❌ [Signaling] Session event without participantId", data)
            return

        self._self_id = str(participant_id)
        debug_log(f"✅ [Signaling] Participant id assigned", {"participant_id": self._self_id})
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_result(self._self_id)
        self._set_ready(True)

    def _set_ready(self, ready: bool):
        if ready == self._ready:
            return
        self._ready = ready
        event = CONNECT if ready else DISCONNECT
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler({'participantId': self._self_id})
                if asyncio.iscoroutine(result):
                    task = asyncio.ensure_future(result)
                    self._handler_tasks.add(task)
                    task.add_done_callback(lambda t, event=event: self._readiness_handler_done(t, event))
            except Exception as e:
                self.log_error(f"❌ [Signaling] Error in readiness handler", {
                    "event": event,
                    "error": str(e),
                    "error_type": type(e).__name__
                })

    def _readiness_handler_done(self, task: asyncio.Task, event: str):
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.log_error(f"❌ [Signaling] Error in readiness handler", {
                "event": event,
                "error": str(error),
                "error_type": type(error).__name__
            })

    async def _dispatch(self, event: str, data: Dict[str, Any]):
        handlers = list(self._handlers.get(event, []))
        if not handlers:
            self.log_debug(f"📥 [Signaling] No subscribers for event", {"event": event})
            return

        for handler in handlers:
            try:
                result = handler(data)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self.log_error(f"❌ [Signaling] Error in event handler", {
                    "event": event,
                    "error": str(e),
                    "error_type": type(e).__name__
                })
