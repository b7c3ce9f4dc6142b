"""
Procurement Workflows.

State machines for RFQ, quote and purchase order processing.  Each
transition names the permission an actor needs to take it.
"""

from mfg_kernel.domain.workflow import Guard, Transition, Workflow
from mfg_kernel.logging_config import get_logger

logger = get_logger("modules.procurement.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_LINES = Guard(
    name="has_lines",
    description="Document has at least one line",
)

QUOTE_VALID = Guard(
    name="quote_valid",
    description="Quote validity date has not passed",
)


# -----------------------------------------------------------------------------
# RFQ
# -----------------------------------------------------------------------------

RFQ_STATES = ("draft", "pending", "approved", "rejected", "closed")

RFQ_TRANSITIONS = (
    Transition("draft", "pending", action="submit",
               permission="procurement.rfq.submit", guard=HAS_LINES),
    Transition("draft", "rejected", action="reject",
               permission="procurement.rfq.reject"),
    Transition("pending", "approved", action="approve",
               permission="procurement.rfq.approve"),
    Transition("pending", "rejected", action="reject",
               permission="procurement.rfq.reject"),
    Transition("approved", "closed", action="close",
               permission="procurement.rfq.close"),
)

RFQ_WORKFLOW = Workflow(
    name="procurement_rfq",
    description="Request for quotation lifecycle",
    initial_state="draft",
    states=RFQ_STATES,
    transitions=RFQ_TRANSITIONS,
    terminal_states=("rejected", "closed"),
)


# -----------------------------------------------------------------------------
# Quote
# -----------------------------------------------------------------------------

QUOTE_STATES = ("draft", "pending", "approved", "rejected", "converted")

QUOTE_TRANSITIONS = (
    Transition("draft", "pending", action="submit",
               permission="procurement.quote.submit", guard=HAS_LINES),
    Transition("draft", "rejected", action="reject",
               permission="procurement.quote.reject"),
    Transition("pending", "approved", action="approve",
               permission="procurement.quote.approve", guard=QUOTE_VALID),
    Transition("pending", "rejected", action="reject",
               permission="procurement.quote.reject"),
    # Taken only by convert_quote_to_po
    Transition("approved", "converted", action="convert",
               permission="procurement.quote.convert", manual=False),
)

QUOTE_WORKFLOW = Workflow(
    name="procurement_quote",
    description="Supplier quote lifecycle",
    initial_state="draft",
    states=QUOTE_STATES,
    transitions=QUOTE_TRANSITIONS,
    terminal_states=("rejected", "converted"),
)


# -----------------------------------------------------------------------------
# Purchase order
# -----------------------------------------------------------------------------

PO_STATES = ("draft", "pending", "approved", "rejected", "closed")

PO_TRANSITIONS = (
    Transition("draft", "pending", action="submit",
               permission="procurement.po.submit", guard=HAS_LINES),
    Transition("draft", "rejected", action="reject",
               permission="procurement.po.reject"),
    Transition("pending", "approved", action="approve",
               permission="procurement.po.approve"),
    Transition("pending", "rejected", action="reject",
               permission="procurement.po.reject"),
    Transition("approved", "closed", action="close",
               permission="procurement.po.close"),
)

PURCHASE_ORDER_WORKFLOW = Workflow(
    name="procurement_purchase_order",
    description="Purchase order lifecycle; approval unlocks receiving",
    initial_state="draft",
    states=PO_STATES,
    transitions=PO_TRANSITIONS,
    terminal_states=("rejected", "closed"),
)

logger.info(
    "procurement_workflows_defined",
    extra={
        "workflows": [
            RFQ_WORKFLOW.name,
            QUOTE_WORKFLOW.name,
            PURCHASE_ORDER_WORKFLOW.name,
        ],
    },
)
