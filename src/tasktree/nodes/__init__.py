"""
Action node implementations.

Base (base.py): Action, LeafAction, CompositeAction, DecoratorAction
Basic leaves (leaves.py): Nil, Wait
Composites (composites.py): Sequence, Parallel, Horizontal, Vertical
Decorators (decorators.py): Timeout, Delayed, Repeat, Until, Switch
Data (data.py): Clock, Function, Merge
Loggers (loggers.py): Logger, KeyLogger, EventLogger
Inputs (inputs.py): EventWait, Reaction
Stimuli (stimuli.py): Instruction, Image, Fixation, Counter, Rect, Pointer
"""

from .base import NODE_ID_PATTERN, Action, CompositeAction, DecoratorAction, LeafAction
from .composites import Horizontal, Parallel, ParallelPolicy, Sequence, Vertical
from .data import Clock, Function, Merge
from .decorators import Delayed, Repeat, Switch, Timeout, Until
from .inputs import EventWait, Reaction
from .leaves import Nil, Wait, check_duration
from .loggers import EventLogger, KeyLogger, Logger
from .stimuli import Counter, Fixation, Image, Instruction, Pointer, PointerMode, Rect

__all__ = [
    "Action",
    "Clock",
    "Counter",
    "CompositeAction",
    "DecoratorAction",
    "Delayed",
    "EventLogger",
    "EventWait",
    "Fixation",
    "Function",
    "Horizontal",
    "Image",
    "Instruction",
    "KeyLogger",
    "LeafAction",
    "Logger",
    "Merge",
    "NODE_ID_PATTERN",
    "Nil",
    "Parallel",
    "ParallelPolicy",
    "Pointer",
    "PointerMode",
    "Reaction",
    "Rect",
    "Repeat",
    "Sequence",
    "Switch",
    "Timeout",
    "Until",
    "Vertical",
    "Wait",
    "check_duration",
]
