"""
Validation utilities for signaling payloads.
"""

from typing import Dict, Any, List, Optional


class ValidationUtils:
    """Common validation utilities."""

    @staticmethod
    def validate_required_fields(data: Dict[str, Any], required_fields: List[str]) -> Optional[str]:
        """Validate that all required fields are present in the data."""
        missing_fields = [field for field in required_fields if field not in data or data[field] is None]
        if missing_fields:
            return f"Missing required fields: {', '.join(missing_fields)}"
        return None

    @staticmethod
    def validate_session_description(description: Any, expected_type: str) -> Optional[str]:
        """Validate an SDP description dict ({"type", "sdp"})."""
        if not isinstance(description, dict):
            return "Session description must be an object"
        if description.get('type') != expected_type:
            return f"Expected session description of type '{expected_type}', got '{description.get('type')}'"
        sdp = description.get('sdp')
        if not isinstance(sdp, str) or len(sdp) < 10:
            return "Session description has no usable SDP"
        return None

    @staticmethod
    def validate_ice_candidate(candidate: Any) -> Optional[str]:
        """Validate an ICE candidate init dict ({"candidate", "sdpMid", "sdpMLineIndex"})."""
        if not isinstance(candidate, dict):
            return "ICE candidate must be an object"
        if not candidate.get('candidate'):
            return "ICE candidate string is empty"
        if candidate.get('sdpMid') is None and candidate.get('sdpMLineIndex') is None:
            return "ICE candidate must have either sdpMid or sdpMLineIndex"
        return None
