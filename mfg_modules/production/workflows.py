"""
Production Workflows.

Work order lifecycle.  ``in_progress -> completed`` is taken by the engine
when the completed quantity reaches the planned quantity; nobody requests
it directly.
"""

from mfg_kernel.domain.workflow import Transition, Workflow
from mfg_kernel.logging_config import get_logger

logger = get_logger("modules.production.workflows")


WORK_ORDER_STATES = ("draft", "released", "in_progress", "completed", "cancelled")

WORK_ORDER_TRANSITIONS = (
    Transition("draft", "released", action="release",
               permission="production.wo.release"),
    Transition("draft", "cancelled", action="cancel",
               permission="production.wo.cancel"),
    Transition("released", "in_progress", action="start",
               permission="production.wo.start"),
    Transition("released", "cancelled", action="cancel",
               permission="production.wo.cancel"),
    # Taken only by post_build
    Transition("in_progress", "completed", action="complete",
               permission="production.wo.build", posts_entry=True, manual=False),
    Transition("in_progress", "cancelled", action="cancel",
               permission="production.wo.cancel"),
)

WORK_ORDER_WORKFLOW = Workflow(
    name="production_work_order",
    description="Work order lifecycle from draft to completion",
    initial_state="draft",
    states=WORK_ORDER_STATES,
    transitions=WORK_ORDER_TRANSITIONS,
    terminal_states=("completed", "cancelled"),
)

logger.info(
    "production_workflows_defined",
    extra={"workflows": [WORK_ORDER_WORKFLOW.name]},
)
