"""
Call log: the bounded, newest-first diagnostic list shown next to a call.
"""
import datetime
import itertools
import re
from dataclasses import dataclass
from typing import List, Optional

from ..core.logging import debug_log


LOG_KINDS = ("info", "error", "success", "socket", "webrtc")

# call log kind -> logging level of the mirrored record
KIND_LEVELS = {
    "info": "INFO",
    "error": "ERROR",
    "success": "INFO",
    "socket": "DEBUG",
    "webrtc": "DEBUG",
}


def short_id(participant_id: Optional[str]) -> str:
    """Abbreviate a participant id for display."""
    if not participant_id:
        return "?"
    return f"{participant_id[:6]}..."


@dataclass
class LogEntry:
    id: int
    timestamp: datetime.datetime
    message: str
    kind: str = "info"


class CallLog:
    """Newest-first log of call events with the user's e-mail masked."""

    def __init__(self, limit: int = 150, user_email: Optional[str] = None):
        self.limit = limit
        self.user_email = user_email
        self._entries: List[LogEntry] = []
        self._ids = itertools.count(1)

    @property
    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def mask(self, message: str) -> str:
        if not self.user_email:
            return message
        return re.sub(re.escape(self.user_email), f"{self.user_email[:3]}...", message)

    def add(self, message: str, kind: str = "info") -> LogEntry:
        if kind not in LOG_KINDS:
            kind = "info"

        entry = LogEntry(
            id=next(self._ids),
            timestamp=datetime.datetime.now(),
            message=self.mask(message),
            kind=kind
        )
        self._entries.insert(0, entry)
        del self._entries[self.limit:]

        debug_log(f"📝 [CallLog] ({kind}) {entry.message}", level=KIND_LEVELS[kind])
        return entry

    def clear(self):
        self._entries.clear()

    def __len__(self):
        return len(self._entries)
