"""Order lifecycle engine.

Every mutating operation runs through ``order_unit_of_work``: one transaction,
one order, one version claim. Checks run in a fixed order (lookup,
authorization, state, payload) and any failure rolls the whole operation back,
so rejected calls never touch the aggregate, the timeline or the audit log.
"""

import logging
from contextlib import contextmanager

from django.conf import settings
from django.core.exceptions import ObjectDoesNotExist
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import F, Max, Prefetch, Q
from django.utils import timezone

from apps.accounts.models import UserRole, resolve_role
from apps.audit.services import record_audit
from apps.orders.exceptions import Conflict, InvalidTransition, NotFound, OrderEngineError, ValidationError
from apps.orders.models import (
    AlterationRequest,
    AlterationStatus,
    AlterationUrgency,
    ConsultationStatus,
    ConsultationType,
    Dispute,
    DisputeReason,
    DisputeStatus,
    MilestoneKind,
    Order,
    OrderStatus,
    PaymentMilestone,
    RefundReason,
    RefundRequest,
    RefundStatus,
    Revision,
    RevisionStatus,
    ServiceType,
    TimelineEntry,
    compute_total,
    money,
)
from apps.orders.notifications import notify
from apps.orders.policies import (
    CUSTOMER,
    REVISION_ACTION_POLICIES,
    TAILOR,
    authorize,
    ensure_not_raised_by,
    parties_of,
)
from apps.orders.timeline import append_timeline
from apps.orders.workflows import (
    ALTERATION_TRANSITIONS,
    CONSULTATION_TRANSITIONS,
    DISPUTE_TRANSITIONS,
    MILESTONE_PAID,
    MILESTONE_TRANSITIONS,
    MILESTONE_UNPAID,
    REFUND_TRANSITIONS,
    REVISION_ACTIONS,
    REVISION_OPEN_WORK,
    REVISION_TRANSITIONS,
    ensure_order_accepts,
    ensure_order_transition,
    ensure_transition,
)

logger = logging.getLogger(__name__)

DELIVERY_FIELDS = (
    "delivery_street",
    "delivery_city",
    "delivery_province",
    "delivery_postal_code",
    "delivery_country",
    "delivery_phone",
    "delivery_instructions",
    "delivery_method",
    "delivery_tracking_number",
    "delivery_provider",
    "estimated_delivery_date",
)
EMERGENCY_CONTACT_FIELDS = (
    "emergency_contact_name",
    "emergency_contact_phone",
    "emergency_contact_relationship",
    "emergency_contact_available_hours",
)
CONSULTATION_FIELDS = (
    "consultation_date",
    "consultation_type",
    "consultation_link",
    "consultation_duration",
    "consultation_notes",
)
FABRIC_FIELDS = ("fabric_type", "fabric_color", "fabric_quantity")
EDITABLE_PRICING_FIELDS = ("base_price", "quantity", "fabric_cost", "additional_charges", "discount")
ORDER_NUMBER_ATTEMPTS = 5


def order_queryset():
    return Order.objects.select_related("customer", "tailor", "cancelled_by").prefetch_related(
        Prefetch("timeline", queryset=TimelineEntry.objects.select_related("actor")),
        "revisions",
        "payment_schedule",
        "disputes",
        "alterations",
        "refunds",
    )


def orders_visible_to(user):
    queryset = order_queryset().order_by("-created_at")
    if user.is_superuser or resolve_role(user) == UserRole.ADMIN:
        return queryset
    return queryset.filter(Q(customer=user) | Q(tailor=user))


def _load(queryset, order_id):
    try:
        return queryset.get(pk=order_id)
    except (ObjectDoesNotExist, DjangoValidationError, ValueError):
        raise NotFound("Order not found.", order_id=order_id)


def _child(manager, child_id, entity_type, order):
    try:
        return manager.get(pk=child_id)
    except (ObjectDoesNotExist, DjangoValidationError, ValueError):
        raise NotFound(f"The {entity_type} was not found on this order.", order_id=order.id, entity=entity_type, entity_id=child_id)


def get_order(*, order_id, actor):
    order = _load(order_queryset(), order_id)
    authorize("order.view", actor, order)
    return order


@contextmanager
def order_unit_of_work(order_id, *, actor, operation, expected_version=None):
    """Load an order, authorize ``operation`` and claim the next version.

    Authorization runs before anything else is looked at, so a caller who is
    not a party learns nothing about the order's version or its children.
    The claim is a compare-and-swap on ``version``. A writer that lost the
    race, or a caller holding a stale snapshot, gets ``Conflict`` and must
    re-read before retrying.
    """
    with transaction.atomic():
        order = _load(Order.objects.select_related("customer", "tailor"), order_id)
        try:
            authorize(operation, actor, order)
            if expected_version is not None and int(expected_version) != order.version:
                raise Conflict(
                    order_id=order.id,
                    expected_version=int(expected_version),
                    current_version=order.version,
                )
            claimed = Order.objects.filter(pk=order.pk, version=order.version).update(version=F("version") + 1)
            if not claimed:
                raise Conflict(order_id=order.id, expected_version=order.version)
            order.version += 1
            yield order
        except OrderEngineError as exc:
            logger.warning(
                "Refused %s on order %s: %s %s",
                exc.default_code,
                order.order_number,
                exc.detail,
                exc.context,
            )
            raise


def _commit(order, *, actor, step, description="", payload=None):
    order.save()
    append_timeline(order, actor=actor, step=step, description=description)
    record_audit(
        actor=actor,
        action=step,
        entity_type="order",
        entity_id=order.id,
        payload=payload or {},
        order_version=order.version,
    )
    notify(order, actor=actor, name=step, payload=payload)
    logger.info("Order %s %s by user %s (v%s, %s)", order.order_number, step, actor.pk, order.version, order.status)


def _move_order(order, target):
    ensure_order_transition(order, target)
    order.status = target


def _required_text(value, field_name, order):
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"{field_name} is required.", order_id=order.id, field=field_name)
    return text


def _choice(value, choices, field_name, order):
    if value not in choices.values:
        raise ValidationError(f"{value!r} is not a valid {field_name}.", order_id=order.id, field=field_name)
    return choices(value)


def _positive_amount(value, field_name, order):
    try:
        amount = money(value)
    except (ArithmeticError, ValueError, TypeError):
        raise ValidationError(f"{field_name} must be a number.", order_id=order.id, field=field_name)
    if amount <= 0:
        raise ValidationError(f"{field_name} must be greater than 0.", order_id=order.id, field=field_name)
    return amount


def _generate_order_number():
    year = timezone.now().year
    sequence = Order.objects.filter(order_number__startswith=f"ORD-{year}-").count() + 1
    candidate = f"ORD-{year}-{sequence:05d}"
    while Order.objects.filter(order_number=candidate).exists():
        sequence += 1
        candidate = f"ORD-{year}-{sequence:05d}"
    return candidate


def _insert_numbered_order(**fields):
    """Create an order under a fresh number, retrying when a concurrent create took it."""
    for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
        order_number = _generate_order_number()
        try:
            with transaction.atomic():
                return Order.objects.create(order_number=order_number, **fields)
        except IntegrityError:
            if not Order.objects.filter(order_number=order_number).exists():
                raise
            logger.warning("Order number %s already taken (attempt %s)", order_number, attempt)
    raise Conflict("Could not allocate an order number. Retry the request.", attempts=ORDER_NUMBER_ATTEMPTS)


# Order creation and primary status


def create_order(
    *,
    customer,
    tailor,
    garment_type,
    base_price,
    service_type="basic",
    quantity=1,
    fabric_cost=0,
    additional_charges=0,
    discount=0,
    description="",
    consultation_date=None,
    estimated_completion_date=None,
):
    if not str(garment_type or "").strip():
        raise ValidationError("garment_type is required.", field="garment_type")
    if tailor is None or not tailor.is_active or resolve_role(tailor) != UserRole.TAILOR:
        raise ValidationError("Invalid tailor.", field="tailor")
    if tailor.pk == customer.pk:
        raise ValidationError("A customer cannot place an order with themselves.", field="tailor")
    if service_type not in ServiceType.values:
        raise ValidationError(f"{service_type!r} is not a valid service type.", field="service_type")
    if int(quantity) <= 0:
        raise ValidationError("quantity must be greater than 0.", field="quantity")
    total = compute_total(
        base_price=base_price,
        quantity=quantity,
        fabric_cost=fabric_cost,
        additional_charges=additional_charges,
        discount=discount,
    )
    if money(base_price) <= 0 or total < 0:
        raise ValidationError("Prices must produce a positive total.", field="base_price", total_price=total)

    with transaction.atomic():
        order = _insert_numbered_order(
            customer=customer,
            tailor=tailor,
            service_type=service_type,
            garment_type=garment_type.strip(),
            description=description or "",
            quantity=int(quantity),
            base_price=money(base_price),
            fabric_cost=money(fabric_cost),
            additional_charges=money(additional_charges),
            discount=money(discount),
            consultation_date=consultation_date,
            estimated_completion_date=estimated_completion_date,
        )
        append_timeline(order, actor=customer, step="order.placed", description="Order created")
        record_audit(
            actor=customer,
            action="order.placed",
            entity_type="order",
            entity_id=order.id,
            payload={"tailor_id": tailor.pk, "total_price": str(order.total_price)},
            order_version=order.version,
        )
        notify(order, actor=customer, name="order.placed", payload={"total_price": str(order.total_price)})
    logger.info("Order %s placed by customer %s with tailor %s", order.order_number, customer.pk, tailor.pk)
    return order


def advance_status(*, order_id, actor, target_status, notes="", cancellation_reason="", expected_version=None):
    operation = "order.cancel" if target_status == OrderStatus.CANCELLED else "order.status"
    with order_unit_of_work(order_id, actor=actor, operation=operation, expected_version=expected_version) as order:
        if target_status not in OrderStatus.values:
            raise InvalidTransition(
                f"{target_status!r} is not an order status.",
                order_id=order.id,
                entity="order",
                current_state=order.status,
                attempted_state=target_status,
            )
        ensure_order_transition(order, target_status)
        previous = order.status

        if target_status == OrderStatus.CANCELLED:
            order.cancellation_reason = _required_text(cancellation_reason, "cancellation_reason", order)
            order.cancelled_by = actor
            order.cancelled_at = timezone.now()
        elif target_status == OrderStatus.COMPLETED:
            outstanding = order.revisions.filter(status__in=REVISION_OPEN_WORK).count()
            if outstanding:
                raise InvalidTransition(
                    "Revisions still need work before the order can be completed.",
                    order_id=order.id,
                    entity="order",
                    current_state=order.status,
                    attempted_state=target_status,
                    outstanding_revisions=outstanding,
                )
            order.actual_completion_date = timezone.now()

        order.status = target_status
        description = (notes or "").strip()
        if not description and target_status == OrderStatus.CANCELLED:
            description = order.cancellation_reason
        _commit(
            order,
            actor=actor,
            step=f"status.{target_status}",
            description=description or f"Order status changed to {target_status}",
            payload={"from": previous, "to": target_status},
        )
    return order


# Passive field updates


def _apply_fields(order, changes, allowed, *, skip_blank=False):
    applied = {}
    for field_name in allowed:
        if field_name not in changes:
            continue
        value = changes[field_name]
        if value is None or (skip_blank and value == ""):
            continue
        setattr(order, field_name, value)
        applied[field_name] = str(value)
    if not applied:
        raise ValidationError("Nothing to update.", order_id=order.id)
    return applied


def update_delivery(*, order_id, actor, changes, expected_version=None):
    with order_unit_of_work(
        order_id, actor=actor, operation="order.delivery", expected_version=expected_version
    ) as order:
        applied = _apply_fields(order, changes, DELIVERY_FIELDS)
        _commit(order, actor=actor, step="delivery.update", description="Delivery details updated", payload=applied)
    return order


def update_emergency_contact(*, order_id, actor, changes, expected_version=None):
    with order_unit_of_work(
        order_id, actor=actor, operation="order.emergency_contact", expected_version=expected_version
    ) as order:
        applied = _apply_fields(order, changes, EMERGENCY_CONTACT_FIELDS, skip_blank=True)
        _commit(order, actor=actor, step="emergency_contact.update", description="Emergency contact updated", payload=applied)
    return order


def update_consultation(*, order_id, actor, changes, expected_version=None):
    with order_unit_of_work(
        order_id, actor=actor, operation="order.consultation", expected_version=expected_version
    ) as order:
        ensure_order_accepts(order, "consultation")
        applied = _apply_fields(order, changes, CONSULTATION_FIELDS)
        _commit(order, actor=actor, step="consultation.update", description="Consultation details updated", payload=applied)
    return order


# Consultation


def _move_consultation(order, target):
    previous = order.consultation_status
    ensure_transition(CONSULTATION_TRANSITIONS, "consultation", order.id, previous, target, order_id=order.id)
    order.consultation_status = target
    return {"from": previous, "to": target}


def schedule_consultation(
    *,
    order_id,
    actor,
    consultation_date,
    consultation_type=None,
    consultation_link="",
    consultation_duration=None,
    notes="",
    expected_version=None,
):
    """Book the fitting consultation.

    Either party may book it. The primary status is left alone: moving the
    order to ``consultation_scheduled`` stays with the tailor.
    """
    with order_unit_of_work(
        order_id, actor=actor, operation="order.consultation", expected_version=expected_version
    ) as order:
        ensure_order_accepts(order, "consultation")
        if not consultation_date:
            raise ValidationError("consultation_date is required.", order_id=order.id, field="consultation_date")
        payload = _move_consultation(order, ConsultationStatus.SCHEDULED)
        if consultation_type:
            order.consultation_type = _choice(consultation_type, ConsultationType, "consultation_type", order)
        if consultation_duration is not None:
            if int(consultation_duration) <= 0:
                raise ValidationError(
                    "consultation_duration must be greater than 0.", order_id=order.id, field="consultation_duration"
                )
            order.consultation_duration = int(consultation_duration)
        order.consultation_date = consultation_date
        order.consultation_link = consultation_link or ""
        if notes:
            order.consultation_notes = notes
        order.consultation_requested_by = actor
        order.consultation_requested_at = timezone.now()
        payload["consultation_date"] = str(consultation_date)
        _commit(order, actor=actor, step="consultation.scheduled", description="Consultation scheduled", payload=payload)
    return order


def reschedule_consultation(*, order_id, actor, consultation_date, consultation_link="", notes="", expected_version=None):
    with order_unit_of_work(
        order_id, actor=actor, operation="order.consultation", expected_version=expected_version
    ) as order:
        ensure_order_accepts(order, "consultation")
        if not consultation_date:
            raise ValidationError("consultation_date is required.", order_id=order.id, field="consultation_date")
        payload = _move_consultation(order, ConsultationStatus.RESCHEDULED)
        order.consultation_date = consultation_date
        if consultation_link:
            order.consultation_link = consultation_link
        if notes:
            order.consultation_notes = notes
        payload["consultation_date"] = str(consultation_date)
        _commit(order, actor=actor, step="consultation.rescheduled", description="Consultation rescheduled", payload=payload)
    return order


def update_consultation_status(*, order_id, actor, status, notes="", expected_version=None):
    # Booking and rebooking carry a date and go through their own operations.
    with order_unit_of_work(
        order_id, actor=actor, operation="order.consultation", expected_version=expected_version
    ) as order:
        ensure_order_accepts(order, "consultation")
        if status not in (ConsultationStatus.COMPLETED, ConsultationStatus.CANCELLED):
            raise ValidationError("status must be completed or cancelled.", order_id=order.id, field="status")
        payload = _move_consultation(order, status)
        if notes:
            order.consultation_notes = notes
        _commit(order, actor=actor, step=f"consultation.{status}", description=f"Consultation {status}", payload=payload)
    return order


def update_fabric(*, order_id, actor, changes, expected_version=None):
    with order_unit_of_work(
        order_id, actor=actor, operation="order.fabric", expected_version=expected_version
    ) as order:
        ensure_order_accepts(order, "fabric")
        applied = _apply_fields(order, changes, FABRIC_FIELDS)
        order.fabric_selected = True
        _commit(order, actor=actor, step="fabric.update", description="Fabric selection recorded", payload=applied)
    return order


def update_pricing(*, order_id, actor, changes, expected_version=None):
    with order_unit_of_work(
        order_id, actor=actor, operation="order.pricing", expected_version=expected_version
    ) as order:
        ensure_order_accepts(order, "pricing")
        previous_total = order.total_price
        applied = _apply_fields(order, changes, EDITABLE_PRICING_FIELDS)
        for field_name in EDITABLE_PRICING_FIELDS:
            if field_name == "quantity":
                if int(order.quantity) <= 0:
                    raise ValidationError("quantity must be greater than 0.", order_id=order.id, field="quantity")
                continue
            value = money(getattr(order, field_name))
            if value < 0:
                raise ValidationError(f"{field_name} cannot be negative.", order_id=order.id, field=field_name)
            setattr(order, field_name, value)
        if order.recompute_total() < 0:
            raise ValidationError("The discount exceeds the order value.", order_id=order.id, field="discount")
        applied.update({"previous_total": str(previous_total), "total_price": str(order.total_price)})
        _commit(order, actor=actor, step="pricing.update", description=f"Total price set to {order.total_price}", payload=applied)
    return order


def update_private_notes(*, order_id, actor, notes, expected_version=None):
    with order_unit_of_work(order_id, actor=actor, operation="order.notes", expected_version=expected_version) as order:
        parties = parties_of(actor, order)
        if CUSTOMER in parties:
            order.customer_private_notes = notes or ""
        elif TAILOR in parties:
            order.tailor_private_notes = notes or ""
        _commit(order, actor=actor, step="notes.update", description="Private notes updated")
    return order


# Revisions


def _next_revision_number(order):
    return (order.revisions.aggregate(last=Max("revision_number"))["last"] or 0) + 1


def _open_revision(order, description, images):
    revision = Revision.objects.create(
        order=order,
        revision_number=_next_revision_number(order),
        description=description,
        images=list(images or []),
    )
    # Further revisions queue up behind one already being requested.
    if order.status != OrderStatus.REVISION_REQUESTED:
        _move_order(order, OrderStatus.REVISION_REQUESTED)
    return revision


def open_revision(*, order_id, actor, description, images=None, expected_version=None):
    with order_unit_of_work(
        order_id, actor=actor, operation="revision.open", expected_version=expected_version
    ) as order:
        ensure_order_accepts(order, "revision")
        revision = _open_revision(order, _required_text(description, "description", order), images)
        _commit(
            order,
            actor=actor,
            step="revision.open",
            description=f"Revision #{revision.revision_number} requested",
            payload={"revision_id": str(revision.id), "revision_number": revision.revision_number},
        )
    return order


def transition_revision(
    *,
    order_id,
    revision_id,
    actor,
    action,
    reason="",
    notes="",
    images=None,
    expected_version=None,
):
    """Apply one of the revision verbs (see ``REVISION_ACTIONS``)."""
    if action not in REVISION_ACTIONS:
        raise NotFound(f"Unknown revision action {action!r}.", order_id=order_id, entity="revision")
    target = REVISION_ACTIONS[action]

    operation = REVISION_ACTION_POLICIES[action]
    with order_unit_of_work(order_id, actor=actor, operation=operation, expected_version=expected_version) as order:
        revision = _child(order.revisions, revision_id, "revision", order)
        ensure_transition(REVISION_TRANSITIONS, "revision", revision.id, revision.status, target, order_id=order.id)

        now = timezone.now()
        payload = {"revision_id": str(revision.id), "revision_number": revision.revision_number, "from": revision.status}
        description = f"Revision #{revision.revision_number} {target.label.lower()}"

        if target == RevisionStatus.APPROVED:
            revision.approved_at = now
            revision.approved_by = actor
            if order.status == OrderStatus.REVISION_REQUESTED:
                _move_order(order, OrderStatus.IN_PROGRESS)
        elif target == RevisionStatus.REJECTED:
            revision.rejected_at = now
            revision.rejected_by = actor
            revision.rejection_reason = (reason or "").strip()
            others_pending = order.revisions.filter(status=RevisionStatus.PENDING).exclude(pk=revision.pk).exists()
            if not others_pending and order.status == OrderStatus.REVISION_REQUESTED:
                _move_order(order, OrderStatus.IN_PROGRESS)
        elif target == RevisionStatus.IN_PROGRESS:
            revision.started_at = now
        elif target == RevisionStatus.COMPLETED:
            revision.completed_at = now
            revision.completion_notes = (notes or "").strip()
            if images:
                revision.images = [*revision.images, *images]
        elif target == RevisionStatus.CUSTOMER_APPROVED:
            revision.customer_approved_at = now
        elif target == RevisionStatus.CUSTOMER_REJECTED:
            reason = _required_text(reason, "reason", order)
            if order.status != OrderStatus.REVISION_REQUESTED:
                ensure_order_accepts(order, "revision")
            revision.customer_rejected_at = now
            revision.customer_rejection_reason = reason
            follow_up = _open_revision(order, reason, [])
            payload["follow_up_revision_id"] = str(follow_up.id)
            payload["follow_up_revision_number"] = follow_up.revision_number
            description = (
                f"Revision #{revision.revision_number} rejected by customer, "
                f"revision #{follow_up.revision_number} opened"
            )

        revision.status = target
        revision.save()
        payload["to"] = target
        _commit(order, actor=actor, step=f"revision.{action}", description=description, payload=payload)
    return order


# Payment schedule


def add_milestone(*, order_id, actor, milestone, amount, due_date=None, payment_method="", expected_version=None):
    with order_unit_of_work(
        order_id, actor=actor, operation="milestone.add", expected_version=expected_version
    ) as order:
        ensure_order_accepts(order, "milestone")
        kind = _choice(milestone, MilestoneKind, "milestone", order)
        entry = PaymentMilestone.objects.create(
            order=order,
            milestone=kind,
            amount=_positive_amount(amount, "amount", order),
            due_date=due_date,
            payment_method=payment_method or "",
            created_by=actor,
        )
        _commit(
            order,
            actor=actor,
            step="milestone.add",
            description=f"{kind.label} payment of {entry.amount} scheduled",
            payload={"milestone_id": str(entry.id), "amount": str(entry.amount)},
        )
    return order


def mark_milestone_paid(*, order_id, milestone_id, actor, transaction_id="", expected_version=None):
    with order_unit_of_work(
        order_id, actor=actor, operation="milestone.pay", expected_version=expected_version
    ) as order:
        entry = _child(order.payment_schedule, milestone_id, "payment milestone", order)
        current = MILESTONE_PAID if entry.paid else MILESTONE_UNPAID
        ensure_transition(MILESTONE_TRANSITIONS, "payment milestone", entry.id, current, MILESTONE_PAID, order_id=order.id)

        entry.paid = True
        entry.paid_at = timezone.now()
        if transaction_id:
            entry.transaction_id = transaction_id
        entry.save(update_fields=["paid", "paid_at", "transaction_id"])
        order.total_paid = money(order.total_paid + entry.amount)
        _commit(
            order,
            actor=actor,
            step="milestone.paid",
            description=f"{entry.get_milestone_display()} payment of {entry.amount} received",
            payload={"milestone_id": str(entry.id), "amount": str(entry.amount), "total_paid": str(order.total_paid)},
        )
    return order


# Disputes


def raise_dispute(*, order_id, actor, reason, description, attachments=None, expected_version=None):
    with order_unit_of_work(
        order_id, actor=actor, operation="dispute.open", expected_version=expected_version
    ) as order:
        ensure_order_accepts(order, "dispute")
        dispute = Dispute.objects.create(
            order=order,
            reason=_choice(reason, DisputeReason, "reason", order),
            description=_required_text(description, "description", order),
            attachments=list(attachments or []),
            raised_by=actor,
        )
        _commit(
            order,
            actor=actor,
            step="dispute.open",
            description=f"Dispute opened: {dispute.get_reason_display()}",
            payload={"dispute_id": str(dispute.id)},
        )
    return order


def resolve_dispute(*, order_id, dispute_id, actor, status, resolution, expected_version=None):
    with order_unit_of_work(
        order_id, actor=actor, operation="dispute.resolve", expected_version=expected_version
    ) as order:
        dispute = _child(order.disputes, dispute_id, "dispute", order)
        ensure_not_raised_by(actor, order, dispute)
        if status not in (DisputeStatus.RESOLVED, DisputeStatus.REJECTED):
            raise ValidationError("status must be resolved or rejected.", order_id=order.id, field="status")
        ensure_transition(DISPUTE_TRANSITIONS, "dispute", dispute.id, dispute.status, status, order_id=order.id)

        dispute.resolution = _required_text(resolution, "resolution", order)
        dispute.status = status
        dispute.resolved_by = actor
        dispute.resolved_at = timezone.now()
        dispute.save(update_fields=["resolution", "status", "resolved_by", "resolved_at"])
        _commit(
            order,
            actor=actor,
            step=f"dispute.{status}",
            description=f"Dispute {status}: {dispute.resolution}",
            payload={"dispute_id": str(dispute.id), "to": status},
        )
    return order


# Alterations


def request_alteration(*, order_id, actor, description, urgency=AlterationUrgency.MEDIUM, expected_version=None):
    with order_unit_of_work(
        order_id, actor=actor, operation="alteration.request", expected_version=expected_version
    ) as order:
        ensure_order_accepts(order, "alteration")
        alteration = AlterationRequest.objects.create(
            order=order,
            requested_by=actor,
            description=_required_text(description, "description", order),
            urgency=_choice(urgency or AlterationUrgency.MEDIUM, AlterationUrgency, "urgency", order),
        )
        _commit(
            order,
            actor=actor,
            step="alteration.request",
            description=f"Alteration requested ({alteration.urgency} urgency)",
            payload={"alteration_id": str(alteration.id)},
        )
    return order


def update_alteration(
    *,
    order_id,
    alteration_id,
    actor,
    status,
    estimated_cost=None,
    estimated_time=None,
    expected_version=None,
):
    with order_unit_of_work(
        order_id, actor=actor, operation="alteration.update", expected_version=expected_version
    ) as order:
        alteration = _child(order.alterations, alteration_id, "alteration", order)
        target = _choice(status, AlterationStatus, "status", order)
        ensure_transition(ALTERATION_TRANSITIONS, "alteration", alteration.id, alteration.status, target, order_id=order.id)

        now = timezone.now()
        if target == AlterationStatus.APPROVED:
            if estimated_cost is None or estimated_time is None:
                raise ValidationError(
                    "estimated_cost and estimated_time are required to approve an alteration.",
                    order_id=order.id,
                    field="estimated_cost",
                )
            cost = money(estimated_cost)
            if cost < 0 or int(estimated_time) <= 0:
                raise ValidationError("Estimates must be positive.", order_id=order.id, field="estimated_time")
            alteration.estimated_cost = cost
            alteration.estimated_time = int(estimated_time)
            alteration.approved_at = now
        elif target == AlterationStatus.IN_PROGRESS:
            alteration.started_at = now
        elif target == AlterationStatus.COMPLETED:
            alteration.completed_at = now

        previous = alteration.status
        alteration.status = target
        alteration.save()
        _commit(
            order,
            actor=actor,
            step=f"alteration.{target}",
            description=f"Alteration {target.label.lower()}",
            payload={"alteration_id": str(alteration.id), "from": previous, "to": target},
        )
    return order


# Refunds


def request_refund(*, order_id, actor, reason, description, requested_amount=None, expected_version=None):
    with order_unit_of_work(
        order_id, actor=actor, operation="refund.request", expected_version=expected_version
    ) as order:
        ensure_order_accepts(order, "refund")
        refundable = order.balance_due
        amount = refundable if requested_amount in (None, "") else requested_amount
        amount = _positive_amount(amount, "requested_amount", order)
        if settings.ORDERS_ENFORCE_REFUND_BOUND and amount > refundable:
            logger.warning(
                "Refund of %s refused on order %s: only %s refundable",
                amount,
                order.order_number,
                refundable,
            )
            raise ValidationError(
                f"The requested amount exceeds the refundable balance of {refundable}.",
                order_id=order.id,
                field="requested_amount",
                requested_amount=amount,
                refundable_amount=refundable,
            )
        refund = RefundRequest.objects.create(
            order=order,
            requested_by=actor,
            reason=_choice(reason, RefundReason, "reason", order),
            description=_required_text(description, "description", order),
            requested_amount=amount,
        )
        _commit(
            order,
            actor=actor,
            step="refund.request",
            description=f"Refund of {amount} requested",
            payload={"refund_id": str(refund.id), "requested_amount": str(amount)},
        )
    return order


def process_refund(*, order_id, refund_id, actor, status, transaction_id="", expected_version=None):
    with order_unit_of_work(
        order_id, actor=actor, operation="refund.process", expected_version=expected_version
    ) as order:
        refund = _child(order.refunds, refund_id, "refund", order)
        if status not in (RefundStatus.APPROVED, RefundStatus.REJECTED):
            raise ValidationError("status must be approved or rejected.", order_id=order.id, field="status")
        ensure_transition(REFUND_TRANSITIONS, "refund", refund.id, refund.status, status, order_id=order.id)

        refund.status = status
        refund.processed_by = actor
        refund.processed_at = timezone.now()
        if status == RefundStatus.APPROVED and transaction_id:
            refund.transaction_id = transaction_id
        refund.save(update_fields=["status", "processed_by", "processed_at", "transaction_id"])
        _commit(
            order,
            actor=actor,
            step=f"refund.{status}",
            description=f"Refund of {refund.requested_amount} {status}",
            payload={"refund_id": str(refund.id), "to": status, "transaction_id": refund.transaction_id},
        )
    return order
