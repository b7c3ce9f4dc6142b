"""Pure domain value objects: clock, workflow definitions, actor."""

from mfg_kernel.domain.actor import Actor
from mfg_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from mfg_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "Actor",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "Guard",
    "Transition",
    "Workflow",
]
