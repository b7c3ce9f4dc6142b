"""
Canonical workflow types (``mfg_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for document status machines.  RFQ, Quote, Purchase
Order and Work Order each declare one ``Workflow``; the workflow executor
is the only code that changes a document's status, and it does so by
looking edges up here.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
* Every transition names the permission an actor must hold to fire it.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the owning service does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid status edge in a workflow.

    ``manual=False`` marks an edge that only the engine itself may take
    (the work order's auto-completion, the quote's conversion); asking for
    it through ``transition()`` is an invalid transition.
    ``posts_entry=True`` marks an edge whose side effect writes the ledger.
    """
    from_state: str
    to_state: str
    action: str
    permission: str
    guard: Guard | None = None
    posts_entry: bool = False
    manual: bool = True


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state} "
                "is not a declared state"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action} references "
                    f"undeclared state ({t.from_state} -> {t.to_state})"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state} "
                    "has an outgoing transition"
                )

    def find_transition(self, from_state: str, to_state: str) -> Transition | None:
        """Return the edge from_state -> to_state, or None."""
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None

    def targets_from(self, from_state: str) -> tuple[str, ...]:
        """Statuses reachable in one step from from_state."""
        return tuple(t.to_state for t in self.transitions if t.from_state == from_state)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states
