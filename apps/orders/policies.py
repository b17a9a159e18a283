"""Who may do what to an order.

Each engine operation names one policy. The actor is mapped to the parties it
plays on the order (customer, tailor, admin) and the operation is allowed when
those parties intersect the policy.
"""

from apps.accounts.models import UserRole, resolve_role
from apps.orders.exceptions import Unauthorized

CUSTOMER = "customer"
TAILOR = "tailor"
ADMIN = "admin"

OPERATION_POLICIES = {
    "order.view": frozenset({CUSTOMER, TAILOR, ADMIN}),
    "order.status": frozenset({TAILOR}),
    "order.cancel": frozenset({CUSTOMER, TAILOR}),
    "order.pricing": frozenset({TAILOR}),
    "order.consultation": frozenset({CUSTOMER, TAILOR}),
    "order.fabric": frozenset({TAILOR}),
    "order.delivery": frozenset({CUSTOMER, TAILOR}),
    "order.emergency_contact": frozenset({CUSTOMER, TAILOR}),
    "order.notes": frozenset({CUSTOMER, TAILOR}),
    "revision.open": frozenset({CUSTOMER}),
    "revision.work": frozenset({TAILOR}),
    "revision.review": frozenset({CUSTOMER}),
    "milestone.add": frozenset({CUSTOMER, TAILOR}),
    "milestone.pay": frozenset({CUSTOMER, TAILOR}),
    "dispute.open": frozenset({CUSTOMER, TAILOR}),
    "dispute.resolve": frozenset({CUSTOMER, TAILOR, ADMIN}),
    "alteration.request": frozenset({CUSTOMER}),
    "alteration.update": frozenset({TAILOR}),
    "refund.request": frozenset({CUSTOMER}),
    "refund.process": frozenset({TAILOR, ADMIN}),
}

REVISION_ACTION_POLICIES = {
    "approve": "revision.work",
    "reject": "revision.work",
    "in-progress": "revision.work",
    "complete": "revision.work",
    "customer-approve": "revision.review",
    "customer-reject": "revision.review",
}


def parties_of(actor, order):
    parties = set()
    if actor is None or not getattr(actor, "is_authenticated", False):
        return parties
    party = order.party_of(actor)
    if party:
        parties.add(party)
    if actor.is_superuser or resolve_role(actor) == UserRole.ADMIN:
        parties.add(ADMIN)
    return parties


def authorize(operation, actor, order):
    """Raise ``Unauthorized`` unless ``actor`` may run ``operation`` on ``order``."""
    allowed = OPERATION_POLICIES[operation]
    parties = parties_of(actor, order)
    if not parties & allowed:
        raise Unauthorized(
            f"Not allowed to perform {operation} on this order.",
            order_id=order.id,
            operation=operation,
            actor_id=getattr(actor, "pk", None),
        )
    return parties


def ensure_not_raised_by(actor, order, dispute):
    # Whoever raised a dispute can never resolve it, whatever other role they hold.
    if actor.pk == dispute.raised_by_id:
        raise Unauthorized(
            "A dispute cannot be resolved by the party that raised it.",
            order_id=order.id,
            operation="dispute.resolve",
            actor_id=actor.pk,
        )
