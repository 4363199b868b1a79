"""
Execution core: tick context, input events, tree and scheduler.
"""

from .context import TickContext
from .events import EventKind, InputEvent
from .scheduler import Scheduler, TickResult
from .tree import ActionTree, TreeStatus

__all__ = [
    "ActionTree",
    "EventKind",
    "InputEvent",
    "Scheduler",
    "TickContext",
    "TickResult",
    "TreeStatus",
]
