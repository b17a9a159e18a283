import uuid
from decimal import ROUND_HALF_UP, Decimal

from django.db import models
from django.utils import timezone

CENT = Decimal("0.01")


def money(value):
    if value is None or value == "":
        value = 0
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_total(*, base_price, quantity, fabric_cost, additional_charges, discount):
    subtotal = money(base_price) * int(quantity or 0)
    return money(subtotal + money(fabric_cost) + money(additional_charges) - money(discount))


class OrderStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    CONSULTATION_SCHEDULED = "consultation_scheduled", "Consultation scheduled"
    CONSULTATION_COMPLETED = "consultation_completed", "Consultation completed"
    FABRIC_SELECTED = "fabric_selected", "Fabric selected"
    IN_PROGRESS = "in_progress", "In progress"
    REVISION_REQUESTED = "revision_requested", "Revision requested"
    QUALITY_CHECK = "quality_check", "Quality check"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class ServiceType(models.TextChoices):
    BASIC = "basic", "Basic"
    PREMIUM = "premium", "Premium"
    LUXURY = "luxury", "Luxury"
    BULK = "bulk", "Bulk"


class ConsultationType(models.TextChoices):
    IN_PERSON = "in_person", "In person"
    VIDEO = "video", "Video"
    PHONE = "phone", "Phone"


class ConsultationStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    SCHEDULED = "scheduled", "Scheduled"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"
    RESCHEDULED = "rescheduled", "Rescheduled"


class DeliveryMethod(models.TextChoices):
    PICKUP = "pickup", "Pickup"
    HOME_DELIVERY = "home_delivery", "Home delivery"
    COURIER = "courier", "Courier"


class RevisionStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"
    IN_PROGRESS = "in_progress", "In progress"
    COMPLETED = "completed", "Completed"
    CUSTOMER_APPROVED = "customer_approved", "Customer approved"
    CUSTOMER_REJECTED = "customer_rejected", "Customer rejected"


class MilestoneKind(models.TextChoices):
    DEPOSIT = "deposit", "Deposit"
    FABRIC = "fabric", "Fabric"
    PROGRESS = "progress", "Progress"
    FINAL = "final", "Final"
    DELIVERY = "delivery", "Delivery"


class DisputeReason(models.TextChoices):
    QUALITY_ISSUE = "quality_issue", "Quality issue"
    DELIVERY_DELAY = "delivery_delay", "Delivery delay"
    WRONG_ITEM = "wrong_item", "Wrong item"
    DAMAGE = "damage", "Damage"
    OTHER = "other", "Other"


class DisputeStatus(models.TextChoices):
    OPEN = "open", "Open"
    RESOLVED = "resolved", "Resolved"
    REJECTED = "rejected", "Rejected"


class AlterationUrgency(models.TextChoices):
    LOW = "low", "Low"
    MEDIUM = "medium", "Medium"
    HIGH = "high", "High"


class AlterationStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"
    IN_PROGRESS = "in_progress", "In progress"
    COMPLETED = "completed", "Completed"


class RefundReason(models.TextChoices):
    DEFECTIVE = "defective", "Defective"
    WRONG_ITEM = "wrong_item", "Wrong item"
    NOT_AS_DESCRIBED = "not_as_described", "Not as described"
    CUSTOMER_CHANGE_MIND = "customer_change_mind", "Customer changed mind"
    OTHER = "other", "Other"


class RefundStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"


class Order(models.Model):
    PRICING_FIELDS = ("base_price", "quantity", "fabric_cost", "additional_charges", "discount")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=32, unique=True)
    customer = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="orders_placed")
    tailor = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="orders_received")
    status = models.CharField(max_length=32, choices=OrderStatus.choices, default=OrderStatus.PENDING)
    version = models.PositiveIntegerField(default=1)

    service_type = models.CharField(max_length=16, choices=ServiceType.choices, default=ServiceType.BASIC)
    garment_type = models.CharField(max_length=120)
    description = models.TextField(blank=True, max_length=2000)
    quantity = models.PositiveIntegerField(default=1)

    base_price = models.DecimalField(max_digits=12, decimal_places=2)
    fabric_cost = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    additional_charges = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_paid = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    consultation_date = models.DateTimeField(null=True, blank=True)
    consultation_type = models.CharField(max_length=16, choices=ConsultationType.choices, default=ConsultationType.IN_PERSON)
    consultation_link = models.URLField(blank=True)
    consultation_duration = models.PositiveIntegerField(default=30)
    consultation_notes = models.TextField(blank=True, max_length=1000)
    consultation_status = models.CharField(
        max_length=16, choices=ConsultationStatus.choices, default=ConsultationStatus.PENDING
    )
    consultation_requested_by = models.ForeignKey(
        "accounts.User", on_delete=models.PROTECT, null=True, blank=True, related_name="consultations_requested"
    )
    consultation_requested_at = models.DateTimeField(null=True, blank=True)

    fabric_selected = models.BooleanField(default=False)
    fabric_type = models.CharField(max_length=120, blank=True)
    fabric_color = models.CharField(max_length=60, blank=True)
    fabric_quantity = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)

    delivery_street = models.CharField(max_length=255, blank=True)
    delivery_city = models.CharField(max_length=120, blank=True)
    delivery_province = models.CharField(max_length=120, blank=True)
    delivery_postal_code = models.CharField(max_length=20, blank=True)
    delivery_country = models.CharField(max_length=80, default="Pakistan")
    delivery_phone = models.CharField(max_length=50, blank=True)
    delivery_instructions = models.CharField(max_length=500, blank=True)
    delivery_method = models.CharField(max_length=16, choices=DeliveryMethod.choices, default=DeliveryMethod.PICKUP)
    delivery_tracking_number = models.CharField(max_length=120, blank=True)
    delivery_provider = models.CharField(max_length=120, blank=True)
    estimated_delivery_date = models.DateTimeField(null=True, blank=True)

    emergency_contact_name = models.CharField(max_length=255, blank=True)
    emergency_contact_phone = models.CharField(max_length=50, blank=True)
    emergency_contact_relationship = models.CharField(max_length=80, blank=True)
    emergency_contact_available_hours = models.CharField(max_length=120, blank=True)

    customer_private_notes = models.TextField(blank=True)
    tailor_private_notes = models.TextField(blank=True)

    estimated_completion_date = models.DateTimeField(null=True, blank=True)
    actual_completion_date = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.CharField(max_length=500, blank=True)
    cancelled_by = models.ForeignKey(
        "accounts.User", on_delete=models.PROTECT, null=True, blank=True, related_name="orders_cancelled"
    )
    cancelled_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["customer", "status"], name="order_customer_status_idx"),
            models.Index(fields=["tailor", "status"], name="order_tailor_status_idx"),
            models.Index(fields=["-created_at"], name="order_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(quantity__gt=0), name="order_quantity_gt_zero"),
            models.CheckConstraint(condition=models.Q(total_paid__gte=0), name="order_total_paid_gte_zero"),
        ]

    def __str__(self):
        return self.order_number

    def recompute_total(self):
        self.total_price = compute_total(**{field: getattr(self, field) for field in self.PRICING_FIELDS})
        return self.total_price

    def save(self, *args, **kwargs):
        self.recompute_total()
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "total_price" not in update_fields:
            kwargs["update_fields"] = [*update_fields, "total_price"]
        super().save(*args, **kwargs)

    @property
    def balance_due(self):
        return money(self.total_price - self.total_paid)

    def party_of(self, user):
        if user is None:
            return None
        if user.pk == self.customer_id:
            return "customer"
        if user.pk == self.tailor_id:
            return "tailor"
        return None


class TimelineEntry(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="timeline")
    sequence = models.PositiveIntegerField()
    step = models.CharField(max_length=64)
    status = models.CharField(max_length=32, choices=OrderStatus.choices)
    description = models.CharField(max_length=1000, blank=True)
    actor = models.ForeignKey("accounts.User", on_delete=models.PROTECT, null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["sequence"]
        constraints = [
            models.UniqueConstraint(fields=["order", "sequence"], name="timeline_order_sequence_uniq"),
        ]


class Revision(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="revisions")
    revision_number = models.PositiveIntegerField()
    description = models.TextField(max_length=2000)
    images = models.JSONField(default=list, blank=True)
    status = models.CharField(max_length=24, choices=RevisionStatus.choices, default=RevisionStatus.PENDING)
    requested_at = models.DateTimeField(default=timezone.now)
    approved_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.ForeignKey(
        "accounts.User", on_delete=models.PROTECT, null=True, blank=True, related_name="revisions_approved"
    )
    rejected_at = models.DateTimeField(null=True, blank=True)
    rejected_by = models.ForeignKey(
        "accounts.User", on_delete=models.PROTECT, null=True, blank=True, related_name="revisions_rejected"
    )
    rejection_reason = models.CharField(max_length=1000, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    completion_notes = models.TextField(blank=True)
    customer_approved_at = models.DateTimeField(null=True, blank=True)
    customer_rejected_at = models.DateTimeField(null=True, blank=True)
    customer_rejection_reason = models.CharField(max_length=1000, blank=True)

    class Meta:
        ordering = ["revision_number"]
        constraints = [
            models.UniqueConstraint(fields=["order", "revision_number"], name="revision_order_number_uniq"),
        ]


class PaymentMilestone(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="payment_schedule")
    milestone = models.CharField(max_length=16, choices=MilestoneKind.choices)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    due_date = models.DateTimeField(null=True, blank=True)
    paid = models.BooleanField(default=False)
    paid_at = models.DateTimeField(null=True, blank=True)
    payment_method = models.CharField(max_length=40, blank=True)
    transaction_id = models.CharField(max_length=120, blank=True)
    created_by = models.ForeignKey("accounts.User", on_delete=models.PROTECT, null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name="milestone_amount_gt_zero"),
        ]

    @property
    def is_overdue(self):
        return not self.paid and self.due_date is not None and self.due_date < timezone.now()


class Dispute(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="disputes")
    reason = models.CharField(max_length=24, choices=DisputeReason.choices)
    description = models.TextField(max_length=2000)
    attachments = models.JSONField(default=list, blank=True)
    status = models.CharField(max_length=16, choices=DisputeStatus.choices, default=DisputeStatus.OPEN)
    raised_by = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="disputes_raised")
    resolution = models.TextField(blank=True)
    resolved_by = models.ForeignKey(
        "accounts.User", on_delete=models.PROTECT, null=True, blank=True, related_name="disputes_resolved"
    )
    resolved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["created_at"]


class AlterationRequest(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="alterations")
    requested_by = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="alterations_requested")
    description = models.TextField(max_length=1000)
    urgency = models.CharField(max_length=8, choices=AlterationUrgency.choices, default=AlterationUrgency.MEDIUM)
    status = models.CharField(max_length=16, choices=AlterationStatus.choices, default=AlterationStatus.PENDING)
    estimated_cost = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    estimated_time = models.PositiveIntegerField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["created_at"]


class RefundRequest(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="refunds")
    requested_by = models.ForeignKey("accounts.User", on_delete=models.PROTECT, related_name="refunds_requested")
    reason = models.CharField(max_length=24, choices=RefundReason.choices)
    description = models.TextField(max_length=1000)
    requested_amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=16, choices=RefundStatus.choices, default=RefundStatus.PENDING)
    transaction_id = models.CharField(max_length=120, blank=True)
    processed_by = models.ForeignKey(
        "accounts.User", on_delete=models.PROTECT, null=True, blank=True, related_name="refunds_processed"
    )
    processed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(condition=models.Q(requested_amount__gt=0), name="refund_amount_gt_zero"),
        ]
