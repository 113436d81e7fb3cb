from pfm.adapters.base import AdapterError, CommandAdapter
from pfm.adapters.groot import GrootAdapter
from pfm.adapters.tmux import TmuxAdapter

__all__ = ["AdapterError", "CommandAdapter", "GrootAdapter", "TmuxAdapter"]
