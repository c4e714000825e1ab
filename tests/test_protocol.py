"""Unit tests for the signaling wire protocol."""

import json

import pytest

from roomcall.core.exceptions import ProtocolError
from roomcall.signaling import protocol
from roomcall.signaling.protocol import SignalingMessage, decode_frame, encode_frame

from tests.fakes import offer_payload, relay_candidate


class TestFromWire:
    """Test decoding of inbound events."""

    def test_user_joined_maps_peer_to_sender(self) -> None:
        msg = SignalingMessage.from_wire("user-joined", {"roomId": "R", "peerId": "b2", "participantCount": 2})

        assert msg.kind == protocol.PEER_JOINED
        assert msg.room_id == "R"
        assert msg.sender_id == "b2"
        assert msg.participant_count == 2
        assert msg.target_id is None

    def test_user_left(self) -> None:
        msg = SignalingMessage.from_wire("user-left", {"roomId": "R", "peerId": "b2"})

        assert msg.kind == protocol.PEER_LEFT
        assert msg.sender_id == "b2"
        assert msg.participant_count is None

    def test_room_full(self) -> None:
        msg = SignalingMessage.from_wire("room-full", {"roomId": "R"})
        assert msg.kind == protocol.ROOM_FULL
        assert msg.sender_id is None

    def test_offer_carries_payload(self) -> None:
        offer = offer_payload()
        msg = SignalingMessage.from_wire(
            "offer", {"roomId": "R", "senderId": "a1", "targetId": "b2", "sdpOffer": offer}
        )

        assert msg.kind == protocol.OFFER
        assert msg.sender_id == "a1"
        assert msg.target_id == "b2"
        assert msg.payload == offer

    def test_ice_candidate_payload(self) -> None:
        candidate = relay_candidate()
        msg = SignalingMessage.from_wire(
            "ice-candidate", {"roomId": "R", "senderId": "a1", "targetId": "b2", "candidate": candidate}
        )
        assert msg.payload == candidate

    def test_hang_up_without_payload(self) -> None:
        msg = SignalingMessage.from_wire("hang-up", {"roomId": "R", "senderId": "b2", "targetId": "a1"})
        assert msg.kind == protocol.HANG_UP
        assert msg.payload is None

    def test_unknown_event_rejected(self) -> None:
        with pytest.raises(ProtocolError, match="Unknown signaling event"):
            SignalingMessage.from_wire("renegotiate", {"roomId": "R"})

    def test_missing_room_rejected(self) -> None:
        with pytest.raises(ProtocolError, match="roomId"):
            SignalingMessage.from_wire("user-joined", {"peerId": "b2"})

    def test_missing_sender_rejected(self) -> None:
        with pytest.raises(ProtocolError, match="senderId"):
            SignalingMessage.from_wire("answer", {"roomId": "R", "sdpAnswer": {"type": "answer", "sdp": "x"}})

    def test_missing_payload_rejected(self) -> None:
        with pytest.raises(ProtocolError, match="payload"):
            SignalingMessage.from_wire("offer", {"roomId": "R", "senderId": "a1"})


class TestToWire:
    """Test encoding of outbound events."""

    def test_offer_fields(self) -> None:
        offer = offer_payload()
        event, data = protocol.offer_message("R", "a1", "b2", offer).to_wire()

        assert event == "offer"
        assert data == {"roomId": "R", "senderId": "a1", "targetId": "b2", "sdpOffer": offer}

    def test_join_room_only_carries_room(self) -> None:
        event, data = SignalingMessage(kind=protocol.JOIN_ROOM, room_id="R").to_wire()
        assert event == "join-room"
        assert data == {"roomId": "R"}

    def test_hang_up_fields(self) -> None:
        event, data = protocol.hang_up_message("R", "a1", "b2").to_wire()
        assert event == "hang-up"
        assert data == {"roomId": "R", "senderId": "a1", "targetId": "b2"}

    def test_answer_decodes_back(self) -> None:
        original = protocol.answer_message("R", "b2", "a1", {"type": "answer", "sdp": "v=0 answer"})
        event, data = original.to_wire()
        assert SignalingMessage.from_wire(event, data) == original


class TestIsActionable:
    """Test the room / sender filter."""

    def test_other_room_not_actionable(self) -> None:
        msg = protocol.hang_up_message("other", "b2", "a1")
        assert msg.is_actionable("R", "a1") is False

    def test_own_message_not_actionable(self) -> None:
        msg = protocol.offer_message("R", "a1", "b2", offer_payload())
        assert msg.is_actionable("R", "a1") is False

    def test_message_for_someone_else_not_actionable(self) -> None:
        msg = protocol.offer_message("R", "c3", "b2", offer_payload())
        assert msg.is_actionable("R", "a1") is False

    def test_addressed_to_self_actionable(self) -> None:
        msg = protocol.offer_message("R", "b2", "a1", offer_payload())
        assert msg.is_actionable("R", "a1") is True

    def test_room_event_about_self_still_actionable(self) -> None:
        msg = SignalingMessage.from_wire("user-joined", {"roomId": "R", "peerId": "a1"})
        assert msg.is_actionable("R", "a1") is True


class TestFraming:
    """Test JSON frame encoding."""

    def test_encode_frame(self) -> None:
        raw = encode_frame("join-room", {"roomId": "R"})
        assert json.loads(raw) == {"event": "join-room", "data": {"roomId": "R"}}

    def test_decode_bytes_frame(self) -> None:
        event, data = decode_frame(b'{"event": "room-full", "data": {"roomId": "R"}}')
        assert event == "room-full"
        assert data == {"roomId": "R"}

    def test_decode_missing_data_defaults_to_empty(self) -> None:
        assert decode_frame('{"event": "session"}') == ("session", {})

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"data": {}}', '{"event": "x", "data": [1]}'])
    def test_decode_malformed(self, raw: str) -> None:
        with pytest.raises(ProtocolError):
            decode_frame(raw)
