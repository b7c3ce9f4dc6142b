"""
mfg_services.workflow_executor -- Central document status transitions.

Responsibility:
    The only code path that changes a document's ``status``.  Given a locked
    document row, its ``Workflow`` and a target status, the executor:

      1. finds the (current, target) edge, or raises InvalidTransitionError;
      2. refuses engine-only edges requested by a caller;
      3. evaluates the edge guard, if any;
      4. checks the actor holds the edge permission (UnauthorizedError);
      5. runs the side effect inside the caller's transaction;
      6. sets the status and stamps ``<status>_at`` / ``<status>_by_id``;
      7. flushes, mapping a stale version to OptimisticLockError.

    Every outcome emits one ``workflow_transition`` trace record.

Architecture position:
    Services layer.  Called by module services, which own the transaction
    and commit or roll back around the call.

Invariants enforced:
    - A rejected transition leaves the document untouched: checks run
      before any mutation and side effects raise before the status is set.
    - Transitions on one document serialize on its row lock (lock_document).
"""

from __future__ import annotations

import time
from typing import Any, Callable, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from mfg_kernel.domain.actor import Actor
from mfg_kernel.domain.clock import Clock, SystemClock
from mfg_kernel.domain.workflow import Guard, Transition, Workflow
from mfg_kernel.exceptions import (
    DocumentNotFoundError,
    InvalidTransitionError,
    OptimisticLockError,
    UnauthorizedError,
)
from mfg_kernel.logging_config import LogContext, get_logger
from mfg_services.rbac_authority import RbacAuthority

logger = get_logger("services.workflow_executor")

TRACE_TYPE_WORKFLOW_TRANSITION = "WORKFLOW_TRANSITION"
OUTCOME_SUCCESS = "success"
OUTCOME_INVALID_TRANSITION = "invalid_transition"
OUTCOME_GUARD_FAILED = "guard_failed"
OUTCOME_UNAUTHORIZED = "unauthorized"
OUTCOME_SIDE_EFFECT_FAILED = "side_effect_failed"

DocumentT = TypeVar("DocumentT")


def _emit_workflow_trace(
    workflow_name: str,
    document_type: str,
    document_id: Any,
    from_state: str,
    to_state: str,
    outcome: str,
    reason: str,
    duration_ms: float,
    actor: Actor,
    action: str | None = None,
    posts_entry: bool = False,
) -> None:
    """Emit a structured workflow transition record."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_WORKFLOW_TRANSITION,
        "workflow": workflow_name,
        "action": action,
        "entity_type": document_type,
        "entity_id": str(document_id),
        "from_state": from_state,
        "to_state": to_state,
        "outcome": outcome,
        "reason": reason,
        "duration_ms": round(duration_ms, 3),
        "posts_entry": posts_entry,
        "transition_actor_id": str(actor.actor_id),
    }
    level_fn = logger.info if outcome == OUTCOME_SUCCESS else logger.warning
    level_fn("workflow_transition", extra=record)


# ---------------------------------------------------------------------------
# Guard evaluation
# ---------------------------------------------------------------------------


def _get_attr(context: Any, key: str, default: Any = None) -> Any:
    """Get attribute from context (object or dict)."""
    if context is None:
        return default
    if isinstance(context, dict):
        return context.get(key, default)
    return getattr(context, key, default)


def _has_lines(context: Any) -> bool:
    return (_get_attr(context, "line_count", 0) or 0) > 0


def _quote_valid(context: Any) -> bool:
    """Quote approve: an expiry date, when set, is not in the past."""
    valid_until = _get_attr(context, "valid_until")
    today = _get_attr(context, "today")
    if valid_until is None or today is None:
        return True
    return valid_until >= today


class GuardExecutor:
    """Evaluates workflow guards against a context.

    Guards are declared on transitions by name; this executor holds the
    evaluation logic per name.  An unknown guard name fails closed.
    """

    def __init__(self) -> None:
        self._evaluators: dict[str, Callable[[Any], bool]] = {}

    def register(self, guard_name: str, evaluator: Callable[[Any], bool]) -> None:
        self._evaluators[guard_name] = evaluator

    def evaluate(self, guard: Guard, context: Any = None) -> bool:
        fn = self._evaluators.get(guard.name)
        if fn is None:
            logger.warning("guard_no_evaluator", extra={"guard_name": guard.name})
            return False
        return bool(fn(context))


def default_guard_executor() -> GuardExecutor:
    """Return a GuardExecutor with built-in evaluators registered."""
    ex = GuardExecutor()
    ex.register("has_lines", _has_lines)
    ex.register("quote_valid", _quote_valid)
    return ex


# ---------------------------------------------------------------------------
# WorkflowExecutor
# ---------------------------------------------------------------------------


class WorkflowExecutor:
    """Applies status transitions with permission and guard enforcement."""

    def __init__(
        self,
        authority: RbacAuthority,
        clock: Clock | None = None,
        guard_executor: GuardExecutor | None = None,
    ) -> None:
        self._authority = authority
        self._clock = clock or SystemClock()
        self._guard_executor = guard_executor or default_guard_executor()

    @property
    def authority(self) -> RbacAuthority:
        return self._authority

    @staticmethod
    def lock_document(
        session: Session,
        model_cls: type[DocumentT],
        document_type: str,
        document_id: Any,
    ) -> DocumentT:
        """SELECT ... FOR UPDATE one document row, refreshing stale state."""
        document = session.execute(
            select(model_cls)
            .where(model_cls.id == document_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if document is None:
            raise DocumentNotFoundError(document_type, str(document_id))
        return document

    def apply_transition(
        self,
        session: Session,
        *,
        workflow: Workflow,
        document_type: str,
        document: Any,
        target_status: str,
        actor: Actor,
        side_effect: Callable[[Transition], None] | None = None,
        context: Any = None,
        internal: bool = False,
    ) -> Transition:
        """
        Move ``document`` to ``target_status``.

        ``internal=True`` is reserved for the engine's own edges (work order
        auto-completion, quote conversion); a caller-requested transition
        can never take them.

        Raises:
            InvalidTransitionError: not an edge, engine-only edge, or guard failed.
            UnauthorizedError: actor lacks the edge permission.
            OptimisticLockError: document changed underneath the lock.
        """
        t0 = time.monotonic()
        from_state = document.status
        document_id = document.id

        def trace(outcome: str, reason: str, transition: Transition | None = None) -> None:
            _emit_workflow_trace(
                workflow_name=workflow.name,
                document_type=document_type,
                document_id=document_id,
                from_state=from_state,
                to_state=target_status,
                outcome=outcome,
                reason=reason,
                duration_ms=(time.monotonic() - t0) * 1000,
                actor=actor,
                action=transition.action if transition else None,
                posts_entry=transition.posts_entry if transition else False,
            )

        with LogContext.bind(
            document_type=document_type,
            document_id=str(document_id),
            actor_id=str(actor.actor_id),
        ):
            transition = workflow.find_transition(from_state, target_status)
            if transition is None:
                reason = f"allowed targets from {from_state}: {list(workflow.targets_from(from_state))}"
                trace(OUTCOME_INVALID_TRANSITION, reason)
                raise InvalidTransitionError(
                    document_type, str(document_id), from_state, target_status, reason,
                )

            if not transition.manual and not internal:
                reason = f"{from_state} -> {target_status} is taken by the engine only"
                trace(OUTCOME_INVALID_TRANSITION, reason, transition)
                raise InvalidTransitionError(
                    document_type, str(document_id), from_state, target_status, reason,
                )

            if transition.guard is not None and not self._guard_executor.evaluate(transition.guard, context):
                reason = f"guard not satisfied: {transition.guard.name}"
                trace(OUTCOME_GUARD_FAILED, reason, transition)
                raise InvalidTransitionError(
                    document_type, str(document_id), from_state, target_status, reason,
                )

            try:
                self._authority.require(actor, transition.permission)
            except UnauthorizedError as exc:
                trace(OUTCOME_UNAUTHORIZED, str(exc), transition)
                raise

            if side_effect is not None:
                try:
                    side_effect(transition)
                except Exception as exc:
                    trace(OUTCOME_SIDE_EFFECT_FAILED, f"{type(exc).__name__}: {exc}", transition)
                    raise

            now = self._clock.now()
            document.status = transition.to_state
            if hasattr(document, f"{transition.to_state}_at"):
                setattr(document, f"{transition.to_state}_at", now)
            if hasattr(document, f"{transition.to_state}_by_id"):
                setattr(document, f"{transition.to_state}_by_id", actor.actor_id)
            document.updated_by_id = actor.actor_id

            try:
                session.flush()
            except StaleDataError as exc:
                trace(OUTCOME_INVALID_TRANSITION, "stale document version", transition)
                raise OptimisticLockError(document_type, str(document_id)) from exc

            trace(OUTCOME_SUCCESS, "", transition)
            return transition
