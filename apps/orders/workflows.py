"""Transition tables for the order and its sub-workflows.

These tables are the only place where legal next states are listed. Services,
serializers and views consult them; nothing else re-encodes them.
"""

from apps.orders.exceptions import AlreadyProcessed, InvalidTransition
from apps.orders.models import (
    AlterationStatus,
    ConsultationStatus,
    DisputeStatus,
    OrderStatus,
    RefundStatus,
    RevisionStatus,
)

ORDER_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONSULTATION_SCHEDULED, OrderStatus.CANCELLED}),
    OrderStatus.CONSULTATION_SCHEDULED: frozenset({OrderStatus.CONSULTATION_COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.CONSULTATION_COMPLETED: frozenset({OrderStatus.FABRIC_SELECTED, OrderStatus.CANCELLED}),
    OrderStatus.FABRIC_SELECTED: frozenset({OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED}),
    OrderStatus.IN_PROGRESS: frozenset({OrderStatus.QUALITY_CHECK, OrderStatus.REVISION_REQUESTED}),
    OrderStatus.REVISION_REQUESTED: frozenset({OrderStatus.IN_PROGRESS}),
    OrderStatus.QUALITY_CHECK: frozenset({OrderStatus.COMPLETED, OrderStatus.REVISION_REQUESTED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

REVISION_TRANSITIONS = {
    RevisionStatus.PENDING: frozenset({RevisionStatus.APPROVED, RevisionStatus.REJECTED}),
    RevisionStatus.APPROVED: frozenset({RevisionStatus.IN_PROGRESS}),
    RevisionStatus.IN_PROGRESS: frozenset({RevisionStatus.COMPLETED}),
    RevisionStatus.COMPLETED: frozenset({RevisionStatus.CUSTOMER_APPROVED, RevisionStatus.CUSTOMER_REJECTED}),
    RevisionStatus.REJECTED: frozenset(),
    RevisionStatus.CUSTOMER_APPROVED: frozenset(),
    RevisionStatus.CUSTOMER_REJECTED: frozenset(),
}

ALTERATION_TRANSITIONS = {
    AlterationStatus.PENDING: frozenset({AlterationStatus.APPROVED, AlterationStatus.REJECTED}),
    AlterationStatus.APPROVED: frozenset({AlterationStatus.IN_PROGRESS}),
    AlterationStatus.IN_PROGRESS: frozenset({AlterationStatus.COMPLETED}),
    AlterationStatus.REJECTED: frozenset(),
    AlterationStatus.COMPLETED: frozenset(),
}

DISPUTE_TRANSITIONS = {
    DisputeStatus.OPEN: frozenset({DisputeStatus.RESOLVED, DisputeStatus.REJECTED}),
    DisputeStatus.RESOLVED: frozenset(),
    DisputeStatus.REJECTED: frozenset(),
}

REFUND_TRANSITIONS = {
    RefundStatus.PENDING: frozenset({RefundStatus.APPROVED, RefundStatus.REJECTED}),
    RefundStatus.APPROVED: frozenset(),
    RefundStatus.REJECTED: frozenset(),
}

# A rescheduled consultation may be moved again.
CONSULTATION_TRANSITIONS = {
    ConsultationStatus.PENDING: frozenset({ConsultationStatus.SCHEDULED, ConsultationStatus.CANCELLED}),
    ConsultationStatus.SCHEDULED: frozenset(
        {ConsultationStatus.COMPLETED, ConsultationStatus.RESCHEDULED, ConsultationStatus.CANCELLED}
    ),
    ConsultationStatus.RESCHEDULED: frozenset(
        {ConsultationStatus.COMPLETED, ConsultationStatus.RESCHEDULED, ConsultationStatus.CANCELLED}
    ),
    ConsultationStatus.COMPLETED: frozenset(),
    ConsultationStatus.CANCELLED: frozenset(),
}

MILESTONE_UNPAID = "unpaid"
MILESTONE_PAID = "paid"
MILESTONE_TRANSITIONS = {
    MILESTONE_UNPAID: frozenset({MILESTONE_PAID}),
    MILESTONE_PAID: frozenset(),
}

# URL verbs of the revision endpoints and the state each one targets.
REVISION_ACTIONS = {
    "approve": RevisionStatus.APPROVED,
    "reject": RevisionStatus.REJECTED,
    "in-progress": RevisionStatus.IN_PROGRESS,
    "complete": RevisionStatus.COMPLETED,
    "customer-approve": RevisionStatus.CUSTOMER_APPROVED,
    "customer-reject": RevisionStatus.CUSTOMER_REJECTED,
}

# Revisions in these states still need work from the tailor.
REVISION_OPEN_WORK = frozenset({RevisionStatus.PENDING, RevisionStatus.APPROVED, RevisionStatus.IN_PROGRESS})

_ALL_ORDER_STATES = frozenset(OrderStatus.values)

# Primary states in which a new child entity may be created.
CREATION_GATES = {
    "revision": frozenset({OrderStatus.IN_PROGRESS, OrderStatus.QUALITY_CHECK}),
    "alteration": frozenset(
        {
            OrderStatus.IN_PROGRESS,
            OrderStatus.REVISION_REQUESTED,
            OrderStatus.QUALITY_CHECK,
            OrderStatus.COMPLETED,
        }
    ),
    "milestone": _ALL_ORDER_STATES - {OrderStatus.CANCELLED},
    "dispute": _ALL_ORDER_STATES - {OrderStatus.CANCELLED},
    "refund": _ALL_ORDER_STATES,
    "pricing": _ALL_ORDER_STATES - {OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    "consultation": frozenset(
        {
            OrderStatus.PENDING,
            OrderStatus.CONSULTATION_SCHEDULED,
            OrderStatus.CONSULTATION_COMPLETED,
        }
    ),
    "fabric": _ALL_ORDER_STATES - {OrderStatus.COMPLETED, OrderStatus.CANCELLED},
}


def allowed_next(status):
    return ORDER_TRANSITIONS.get(status, frozenset())


def can_advance(current, target):
    return target in allowed_next(current)


def ensure_order_transition(order, target):
    if not can_advance(order.status, target):
        raise InvalidTransition(
            f"Order cannot move from {order.status} to {target}.",
            order_id=order.id,
            entity="order",
            current_state=order.status,
            attempted_state=target,
        )


def ensure_transition(table, entity_type, entity_id, current, target, order_id=None):
    """Check one child-entity move against its table.

    Repeating the current state, or acting on a terminal entity, is reported
    as already processed; any other move outside the table is invalid. A
    state listed as its own successor may be re-entered.
    """
    context = {
        "order_id": order_id,
        "entity": entity_type,
        "entity_id": entity_id,
        "current_state": current,
        "attempted_state": target,
    }
    if target in table.get(current, ()):
        return
    if current == target or not table.get(current):
        raise AlreadyProcessed(f"The {entity_type} is already {current}.", **context)
    raise InvalidTransition(f"The {entity_type} cannot move from {current} to {target}.", **context)


def ensure_order_accepts(order, workflow):
    if order.status not in CREATION_GATES[workflow]:
        raise InvalidTransition(
            f"A {workflow} cannot be changed while the order is {order.status}.",
            order_id=order.id,
            entity=workflow,
            current_state=order.status,
        )
