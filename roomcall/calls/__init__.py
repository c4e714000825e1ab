"""
Calls module: initiator role, orchestration loop and the call log.
"""

from .call_log import CallLog, LogEntry
from .orchestrator import CallOrchestrator, CallState
from .roles import should_initiate

__all__ = [
    'CallLog',
    'LogEntry',
    'CallOrchestrator',
    'CallState',
    'should_initiate',
]
