import django.db.models.deletion
import django.utils.timezone
import uuid

from django.conf import settings
from django.db import migrations, models


ORDER_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("consultation_scheduled", "Consultation scheduled"),
    ("consultation_completed", "Consultation completed"),
    ("fabric_selected", "Fabric selected"),
    ("in_progress", "In progress"),
    ("revision_requested", "Revision requested"),
    ("quality_check", "Quality check"),
    ("completed", "Completed"),
    ("cancelled", "Cancelled"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Order",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("order_number", models.CharField(max_length=32, unique=True)),
                ("status", models.CharField(choices=ORDER_STATUS_CHOICES, default="pending", max_length=32)),
                ("version", models.PositiveIntegerField(default=1)),
                (
                    "service_type",
                    models.CharField(
                        choices=[("basic", "Basic"), ("premium", "Premium"), ("luxury", "Luxury"), ("bulk", "Bulk")],
                        default="basic",
                        max_length=16,
                    ),
                ),
                ("garment_type", models.CharField(max_length=120)),
                ("description", models.TextField(blank=True, max_length=2000)),
                ("quantity", models.PositiveIntegerField(default=1)),
                ("base_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("fabric_cost", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("additional_charges", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("discount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("total_price", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("total_paid", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("consultation_date", models.DateTimeField(blank=True, null=True)),
                (
                    "consultation_type",
                    models.CharField(
                        choices=[("in_person", "In person"), ("video", "Video"), ("phone", "Phone")],
                        default="in_person",
                        max_length=16,
                    ),
                ),
                ("consultation_link", models.URLField(blank=True)),
                ("consultation_duration", models.PositiveIntegerField(default=30)),
                ("consultation_notes", models.TextField(blank=True, max_length=1000)),
                ("fabric_selected", models.BooleanField(default=False)),
                ("fabric_type", models.CharField(blank=True, max_length=120)),
                ("fabric_color", models.CharField(blank=True, max_length=60)),
                ("fabric_quantity", models.DecimalField(blank=True, decimal_places=2, max_digits=8, null=True)),
                ("delivery_street", models.CharField(blank=True, max_length=255)),
                ("delivery_city", models.CharField(blank=True, max_length=120)),
                ("delivery_province", models.CharField(blank=True, max_length=120)),
                ("delivery_postal_code", models.CharField(blank=True, max_length=20)),
                ("delivery_country", models.CharField(default="Pakistan", max_length=80)),
                ("delivery_phone", models.CharField(blank=True, max_length=50)),
                ("delivery_instructions", models.CharField(blank=True, max_length=500)),
                (
                    "delivery_method",
                    models.CharField(
                        choices=[("pickup", "Pickup"), ("home_delivery", "Home delivery"), ("courier", "Courier")],
                        default="pickup",
                        max_length=16,
                    ),
                ),
                ("delivery_tracking_number", models.CharField(blank=True, max_length=120)),
                ("delivery_provider", models.CharField(blank=True, max_length=120)),
                ("estimated_delivery_date", models.DateTimeField(blank=True, null=True)),
                ("emergency_contact_name", models.CharField(blank=True, max_length=255)),
                ("emergency_contact_phone", models.CharField(blank=True, max_length=50)),
                ("emergency_contact_relationship", models.CharField(blank=True, max_length=80)),
                ("emergency_contact_available_hours", models.CharField(blank=True, max_length=120)),
                ("customer_private_notes", models.TextField(blank=True)),
                ("tailor_private_notes", models.TextField(blank=True)),
                ("estimated_completion_date", models.DateTimeField(blank=True, null=True)),
                ("actual_completion_date", models.DateTimeField(blank=True, null=True)),
                ("cancellation_reason", models.CharField(blank=True, max_length=500)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="orders_placed",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "tailor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="orders_received",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "cancelled_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="orders_cancelled",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["customer", "status"], name="order_customer_status_idx"),
                    models.Index(fields=["tailor", "status"], name="order_tailor_status_idx"),
                    models.Index(fields=["-created_at"], name="order_created_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(quantity__gt=0), name="order_quantity_gt_zero"),
                    models.CheckConstraint(condition=models.Q(total_paid__gte=0), name="order_total_paid_gte_zero"),
                ],
            },
        ),
        migrations.CreateModel(
            name="TimelineEntry",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("sequence", models.PositiveIntegerField()),
                ("step", models.CharField(max_length=64)),
                ("status", models.CharField(choices=ORDER_STATUS_CHOICES, max_length=32)),
                ("description", models.CharField(blank=True, max_length=1000)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="timeline",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "ordering": ["sequence"],
                "constraints": [
                    models.UniqueConstraint(fields=["order", "sequence"], name="timeline_order_sequence_uniq"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Revision",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("revision_number", models.PositiveIntegerField()),
                ("description", models.TextField(max_length=2000)),
                ("images", models.JSONField(blank=True, default=list)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("approved", "Approved"),
                            ("rejected", "Rejected"),
                            ("in_progress", "In progress"),
                            ("completed", "Completed"),
                            ("customer_approved", "Customer approved"),
                            ("customer_rejected", "Customer rejected"),
                        ],
                        default="pending",
                        max_length=24,
                    ),
                ),
                ("requested_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("rejected_at", models.DateTimeField(blank=True, null=True)),
                ("rejection_reason", models.CharField(blank=True, max_length=1000)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("completion_notes", models.TextField(blank=True)),
                ("customer_approved_at", models.DateTimeField(blank=True, null=True)),
                ("customer_rejected_at", models.DateTimeField(blank=True, null=True)),
                ("customer_rejection_reason", models.CharField(blank=True, max_length=1000)),
                (
                    "approved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="revisions_approved",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "rejected_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="revisions_rejected",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="revisions",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "ordering": ["revision_number"],
                "constraints": [
                    models.UniqueConstraint(fields=["order", "revision_number"], name="revision_order_number_uniq"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentMilestone",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "milestone",
                    models.CharField(
                        choices=[
                            ("deposit", "Deposit"),
                            ("fabric", "Fabric"),
                            ("progress", "Progress"),
                            ("final", "Final"),
                            ("delivery", "Delivery"),
                        ],
                        max_length=16,
                    ),
                ),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("due_date", models.DateTimeField(blank=True, null=True)),
                ("paid", models.BooleanField(default=False)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("payment_method", models.CharField(blank=True, max_length=40)),
                ("transaction_id", models.CharField(blank=True, max_length=120)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payment_schedule",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(amount__gt=0), name="milestone_amount_gt_zero"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Dispute",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "reason",
                    models.CharField(
                        choices=[
                            ("quality_issue", "Quality issue"),
                            ("delivery_delay", "Delivery delay"),
                            ("wrong_item", "Wrong item"),
                            ("damage", "Damage"),
                            ("other", "Other"),
                        ],
                        max_length=24,
                    ),
                ),
                ("description", models.TextField(max_length=2000)),
                ("attachments", models.JSONField(blank=True, default=list)),
                (
                    "status",
                    models.CharField(
                        choices=[("open", "Open"), ("resolved", "Resolved"), ("rejected", "Rejected")],
                        default="open",
                        max_length=16,
                    ),
                ),
                ("resolution", models.TextField(blank=True)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "raised_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="disputes_raised",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "resolved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="disputes_resolved",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="disputes",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at"],
            },
        ),
        migrations.CreateModel(
            name="AlterationRequest",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("description", models.TextField(max_length=1000)),
                (
                    "urgency",
                    models.CharField(
                        choices=[("low", "Low"), ("medium", "Medium"), ("high", "High")],
                        default="medium",
                        max_length=8,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("approved", "Approved"),
                            ("rejected", "Rejected"),
                            ("in_progress", "In progress"),
                            ("completed", "Completed"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("estimated_cost", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("estimated_time", models.PositiveIntegerField(blank=True, null=True)),
                ("approved_at", models.DateTimeField(blank=True, null=True)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "requested_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="alterations_requested",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="alterations",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at"],
            },
        ),
        migrations.CreateModel(
            name="RefundRequest",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "reason",
                    models.CharField(
                        choices=[
                            ("defective", "Defective"),
                            ("wrong_item", "Wrong item"),
                            ("not_as_described", "Not as described"),
                            ("customer_change_mind", "Customer changed mind"),
                            ("other", "Other"),
                        ],
                        max_length=24,
                    ),
                ),
                ("description", models.TextField(max_length=1000)),
                ("requested_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("approved", "Approved"), ("rejected", "Rejected")],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("transaction_id", models.CharField(blank=True, max_length=120)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "requested_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds_requested",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "processed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds_processed",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="refunds",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(requested_amount__gt=0), name="refund_amount_gt_zero"),
                ],
            },
        ),
    ]
