"""
Initiator role assignment.
"""
from typing import Optional


def should_initiate(self_id: Optional[str], peer_id: Optional[str]) -> bool:
    """Return True when ``self_id`` is the side that sends the first offer.

    The participant whose id sorts lower initiates. Swapping the two ids swaps
    the result, so exactly one side offers. Equal (or missing) ids never
    initiate.
    """
    if not self_id or not peer_id:
        return False
    return self_id < peer_id
