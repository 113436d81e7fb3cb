from pfm.backends.base import AgentDispatcher, DispatchError, DispatchMode, ExitOutcome
from pfm.backends.claude import ClaudeCodeDispatcher

__all__ = [
    "AgentDispatcher",
    "ClaudeCodeDispatcher",
    "DispatchError",
    "DispatchMode",
    "ExitOutcome",
]
