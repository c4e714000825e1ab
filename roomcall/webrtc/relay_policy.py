"""
Relay-only transport policy.

aiortc gathers every candidate type and has no transport-policy switch, so the
policy is applied to what crosses the wire: session descriptions lose their
non-relay ``a=candidate`` lines (and the end-of-candidates marker, so that
trickled candidates stay acceptable), local candidates are only announced when
they are relayed, and remote candidates of any other type are refused.
"""
from typing import Any, Dict, List, Optional

from aiortc import RTCIceCandidate
from aiortc.sdp import candidate_from_sdp

from ..core.exceptions import IceError


RELAY_TYPE = "relay"
CANDIDATE_PREFIX = "candidate:"


def _candidate_type(candidate_line: str) -> Optional[str]:
    bits = candidate_line.split()
    for i in range(len(bits) - 1):
        if bits[i] == "typ":
            return bits[i + 1]
    return None


def filter_relay_candidates(sdp: str) -> str:
    """Return ``sdp`` with only relay candidate lines and no end-of-candidates marker."""
    kept = []
    for line in sdp.splitlines():
        if line.startswith("a=end-of-candidates"):
            continue
        if line.startswith("a=" + CANDIDATE_PREFIX) and _candidate_type(line) != RELAY_TYPE:
            continue
        kept.append(line)
    return "\r\n".join(kept) + "\r\n"


def relay_candidates(sdp: str) -> List[Dict[str, Any]]:
    """Extract relay candidates from a session description as candidate init dicts."""
    candidates = []
    mline_index = -1
    mid = None
    pending: List[str] = []

    def flush():
        for value in pending:
            candidates.append({
                "candidate": value,
                "sdpMid": mid,
                "sdpMLineIndex": mline_index
            })
        pending.clear()

    for line in sdp.splitlines():
        if line.startswith("m="):
            flush()
            mline_index += 1
            mid = None
        elif line.startswith("a=mid:"):
            mid = line[len("a=mid:"):].strip()
        elif line.startswith("a=" + CANDIDATE_PREFIX) and mline_index >= 0:
            if _candidate_type(line) == RELAY_TYPE:
                pending.append(line[2:])
    flush()

    return candidates


def parse_remote_candidate(candidate: Dict[str, Any]) -> RTCIceCandidate:
    """Turn a received candidate init dict into an RTCIceCandidate, refusing non-relay paths."""
    value = (candidate.get("candidate") or "").strip()
    if not value:
        raise IceError("ICE candidate string is empty")

    if value.startswith(CANDIDATE_PREFIX):
        value = value[len(CANDIDATE_PREFIX):]

    try:
        parsed = candidate_from_sdp(value)
    except (AssertionError, ValueError, IndexError) as e:
        raise IceError("Malformed ICE candidate", {"candidate": value, "error": str(e)})

    if parsed.type != RELAY_TYPE:
        raise IceError("Non-relay ICE candidate refused", {"type": parsed.type})

    parsed.sdpMid = candidate.get("sdpMid")
    parsed.sdpMLineIndex = candidate.get("sdpMLineIndex")
    if parsed.sdpMid is None and parsed.sdpMLineIndex is None:
        raise IceError("ICE candidate has neither sdpMid nor sdpMLineIndex")

    return parsed
