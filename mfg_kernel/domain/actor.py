"""
Actor -- the authenticated principal performing an operation.

Identity and sessions live outside the engine; the API layer resolves the
caller and hands the engine an Actor.  Authorization only ever asks which
roles the actor holds.
"""

from dataclasses import dataclass, field
from uuid import UUID


@dataclass(frozen=True)
class Actor:
    """Principal with roles (e.g. admin, manager, operator, viewer)."""

    actor_id: UUID
    roles: frozenset[str] = field(default_factory=frozenset)
    display_name: str | None = None

    def __post_init__(self):
        if not isinstance(self.roles, frozenset):
            object.__setattr__(self, "roles", frozenset(self.roles))
