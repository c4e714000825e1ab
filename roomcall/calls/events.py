"""
Messages consumed by the orchestrator loop.

Signaling events, peer-connection callbacks and user actions are all turned
into :class:`CallEvent` objects and applied one at a time by a single
consumer, so call state has exactly one writer.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Optional


# Inbound signaling message (payload is a SignalingMessage)
SIGNAL = 'signal'
CHANNEL_LOST = 'channel-lost'

# Peer-connection callbacks, tagged with the instance generation
REMOTE_TRACK = 'remote-track'
LOCAL_CANDIDATE = 'local-candidate'
STATUS_CHANGE = 'status-change'

# User actions
JOIN = 'join'
HANG_UP = 'hang-up'
LEAVE = 'leave'

PEER_CONNECTION_EVENTS = (REMOTE_TRACK, LOCAL_CANDIDATE, STATUS_CHANGE)


@dataclass
class CallEvent:
    kind: str
    payload: Any = None
    # Generation of the peer connection that produced the event
    generation: Optional[int] = None
    # Resolved once the event has been applied (user actions only)
    done: Optional[asyncio.Future] = None

    def resolve(self, error: Optional[BaseException] = None):
        if self.done is None or self.done.done():
            return
        if error is None:
            self.done.set_result(None)
        else:
            self.done.set_exception(error)
