"""
mfg_services.rbac_authority -- Runtime RBAC enforcement at the operation boundary.

Responsibility:
    Answer the single question every gated operation asks: does this actor
    hold permission P?  Roles map to permission patterns in configuration
    (``rbac.roles`` in the engine YAML).

Architecture position:
    Services layer.  Consumes ``RbacConfig`` from mfg_config.  Called by
    WorkflowExecutor for every status edge and by module services for every
    ledger operation.

Invariants:
    - The engine is identity-agnostic; callers supply an Actor with roles.
    - Fail closed: an actor with no roles, or only unknown roles, holds no
      permissions.
"""

from __future__ import annotations

from collections.abc import Iterable

from mfg_config.schema import RbacConfig
from mfg_kernel.domain.actor import Actor
from mfg_kernel.exceptions import UnauthorizedError
from mfg_kernel.logging_config import get_logger

logger = get_logger("services.rbac")


def pattern_grants(pattern: str, permission: str) -> bool:
    """``*`` grants everything; ``a.b.*`` grants every permission under ``a.b.``."""
    if pattern == "*":
        return True
    if pattern.endswith(".*"):
        return permission.startswith(pattern[:-1])
    return pattern == permission


def check_rbac(
    rbac: RbacConfig,
    assigned_roles: Iterable[str],
    required_permission: str,
) -> tuple[bool, str]:
    """Check whether any of the actor's roles grants the permission.

    Returns:
        (allowed, reason). reason is empty when allowed, or a short message
        when denied.
    """
    roles = tuple(sorted(assigned_roles))
    if not roles:
        return (False, "RBAC: actor has no roles")

    for role in roles:
        for pattern in rbac.patterns_for(role):
            if pattern_grants(pattern, required_permission):
                return (True, "")

    return (False, f"RBAC: permission '{required_permission}' not granted to roles {list(roles)}")


class RbacAuthority:
    """The ``actor has permission P`` predicate backed by configuration."""

    def __init__(self, rbac: RbacConfig):
        self._rbac = rbac

    def is_allowed(self, actor: Actor, permission: str) -> bool:
        allowed, _ = check_rbac(self._rbac, actor.roles, permission)
        return allowed

    def require(self, actor: Actor, permission: str) -> None:
        """Raise UnauthorizedError unless the actor holds the permission."""
        allowed, reason = check_rbac(self._rbac, actor.roles, permission)
        if not allowed:
            logger.warning(
                "permission_denied",
                extra={
                    "actor_id": str(actor.actor_id),
                    "permission": permission,
                    "roles": sorted(actor.roles),
                },
            )
            raise UnauthorizedError(str(actor.actor_id), permission, reason)
