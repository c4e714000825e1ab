"""
Signaling wire protocol.

Every frame exchanged with the relay is a JSON text message of the form
``{"event": <name>, "data": {...}}``. Field names inside ``data`` follow the
relay's camelCase convention.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ..core.exceptions import ProtocolError
from ..core.validation_utils import ValidationUtils


# client -> relay
JOIN_ROOM = 'join-room'
LEAVE_ROOM = 'leave-room'

# relay -> client
SESSION = 'session'
PEER_JOINED = 'user-joined'
PEER_LEFT = 'user-left'
ROOM_FULL = 'room-full'

# client <-> relay <-> client
OFFER = 'offer'
ANSWER = 'answer'
ICE_CANDIDATE = 'ice-candidate'
HANG_UP = 'hang-up'

# Local readiness transitions, never sent on the wire
CONNECT = 'connect'
DISCONNECT = 'disconnect'

# Messages addressed from one participant to another
PEER_ADDRESSED_EVENTS = (OFFER, ANSWER, ICE_CANDIDATE, HANG_UP)
ROOM_EVENTS = (PEER_JOINED, PEER_LEFT, ROOM_FULL)
INBOUND_EVENTS = ROOM_EVENTS + PEER_ADDRESSED_EVENTS

# event -> name of the payload field
PAYLOAD_FIELDS = {
    OFFER: 'sdpOffer',
    ANSWER: 'sdpAnswer',
    ICE_CANDIDATE: 'candidate',
}


@dataclass
class SignalingMessage:
    """A decoded signaling message."""

    kind: str
    room_id: str
    sender_id: Optional[str] = None
    target_id: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    # Only set on user-joined notifications
    participant_count: Optional[int] = None

    @classmethod
    def from_wire(cls, event: str, data: Dict[str, Any]) -> 'SignalingMessage':
        """Decode the ``data`` of an inbound event."""
        if event not in INBOUND_EVENTS:
            raise ProtocolError("Unknown signaling event", {"event": event})
        if not isinstance(data, dict):
            raise ProtocolError("Signaling data must be an object", {"event": event})

        error = ValidationUtils.validate_required_fields(data, ['roomId'])
        if error:
            raise ProtocolError(error, {"event": event})

        if event in (PEER_JOINED, PEER_LEFT):
            error = ValidationUtils.validate_required_fields(data, ['peerId'])
            if error:
                raise ProtocolError(error, {"event": event})
            count = data.get('participantCount')
            return cls(
                kind=event,
                room_id=str(data['roomId']),
                sender_id=str(data['peerId']),
                participant_count=int(count) if count is not None else None,
            )

        if event == ROOM_FULL:
            return cls(kind=event, room_id=str(data['roomId']))

        error = ValidationUtils.validate_required_fields(data, ['senderId'])
        if error:
            raise ProtocolError(error, {"event": event})

        payload = None
        payload_field = PAYLOAD_FIELDS.get(event)
        if payload_field:
            payload = data.get(payload_field)
            if not isinstance(payload, dict):
                raise ProtocolError("Missing or invalid payload", {"event": event, "field": payload_field})

        target_id = data.get('targetId')
        return cls(
            kind=event,
            room_id=str(data['roomId']),
            sender_id=str(data['senderId']),
            target_id=str(target_id) if target_id is not None else None,
            payload=payload,
        )

    def to_wire(self) -> Tuple[str, Dict[str, Any]]:
        """Encode as an ``(event, data)`` pair."""
        data: Dict[str, Any] = {'roomId': self.room_id}

        if self.kind in (PEER_JOINED, PEER_LEFT):
            data['peerId'] = self.sender_id
            if self.participant_count is not None:
                data['participantCount'] = self.participant_count
            return self.kind, data

        if self.sender_id is not None:
            data['senderId'] = self.sender_id
        if self.target_id is not None:
            data['targetId'] = self.target_id

        payload_field = PAYLOAD_FIELDS.get(self.kind)
        if payload_field and self.payload is not None:
            data[payload_field] = self.payload

        return self.kind, data

    def is_actionable(self, room_id: str, self_id: Optional[str]) -> bool:
        """A message is actionable only for our room and, when peer-addressed, not from ourselves."""
        if self.room_id != room_id:
            return False
        if self.kind in PEER_ADDRESSED_EVENTS:
            if self.sender_id is None or self.sender_id == self_id:
                return False
            if self.target_id is not None and self_id is not None and self.target_id != self_id:
                return False
        return True


def encode_frame(event: str, data: Dict[str, Any]) -> str:
    """Serialize one event into a wire frame."""
    return json.dumps({'event': event, 'data': data})


def decode_frame(raw: Any) -> Tuple[str, Dict[str, Any]]:
    """Parse one wire frame into ``(event, data)``."""
    if isinstance(raw, bytes):
        raw = raw.decode('utf-8')
    try:
        frame = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise ProtocolError("Failed to parse signaling frame as JSON", {"error": str(e)})

    if not isinstance(frame, dict) or not isinstance(frame.get('event'), str):
        raise ProtocolError("Signaling frame missing event name")

    data = frame.get('data')
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ProtocolError("Signaling frame data must be an object", {"event": frame['event']})
    return frame['event'], data


def offer_message(room_id: str, sender_id: str, target_id: str, offer: Dict[str, Any]) -> SignalingMessage:
    return SignalingMessage(kind=OFFER, room_id=room_id, sender_id=sender_id, target_id=target_id, payload=offer)


def answer_message(room_id: str, sender_id: str, target_id: str, answer: Dict[str, Any]) -> SignalingMessage:
    return SignalingMessage(kind=ANSWER, room_id=room_id, sender_id=sender_id, target_id=target_id, payload=answer)


def ice_candidate_message(room_id: str, sender_id: str, target_id: str, candidate: Dict[str, Any]) -> SignalingMessage:
    return SignalingMessage(kind=ICE_CANDIDATE, room_id=room_id, sender_id=sender_id, target_id=target_id, payload=candidate)


def hang_up_message(room_id: str, sender_id: str, target_id: str) -> SignalingMessage:
    return SignalingMessage(kind=HANG_UP, room_id=room_id, sender_id=sender_id, target_id=target_id)
