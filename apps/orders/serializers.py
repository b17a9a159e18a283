from rest_framework import serializers

from apps.accounts.models import User
from apps.orders.models import (
    AlterationRequest,
    AlterationStatus,
    AlterationUrgency,
    ConsultationStatus,
    ConsultationType,
    DeliveryMethod,
    Dispute,
    DisputeReason,
    MilestoneKind,
    Order,
    OrderStatus,
    PaymentMilestone,
    RefundReason,
    RefundRequest,
    RefundStatus,
    Revision,
    ServiceType,
    TimelineEntry,
)
from apps.orders.policies import parties_of
from apps.orders.workflows import allowed_next


class PartySerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ["id", "username", "first_name", "last_name", "shop_name"]
        read_only_fields = fields


class TimelineEntrySerializer(serializers.ModelSerializer):
    actor_username = serializers.CharField(source="actor.username", read_only=True, default=None)

    class Meta:
        model = TimelineEntry
        fields = ["sequence", "step", "status", "description", "actor", "actor_username", "created_at"]
        read_only_fields = fields


class RevisionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Revision
        fields = [
            "id",
            "revision_number",
            "description",
            "images",
            "status",
            "requested_at",
            "approved_at",
            "approved_by",
            "rejected_at",
            "rejected_by",
            "rejection_reason",
            "started_at",
            "completed_at",
            "completion_notes",
            "customer_approved_at",
            "customer_rejected_at",
            "customer_rejection_reason",
        ]
        read_only_fields = fields


class PaymentMilestoneSerializer(serializers.ModelSerializer):
    is_overdue = serializers.BooleanField(read_only=True)

    class Meta:
        model = PaymentMilestone
        fields = [
            "id",
            "milestone",
            "amount",
            "due_date",
            "paid",
            "paid_at",
            "payment_method",
            "transaction_id",
            "is_overdue",
            "created_by",
            "created_at",
        ]
        read_only_fields = fields


class DisputeSerializer(serializers.ModelSerializer):
    class Meta:
        model = Dispute
        fields = [
            "id",
            "reason",
            "description",
            "attachments",
            "status",
            "raised_by",
            "resolution",
            "resolved_by",
            "resolved_at",
            "created_at",
        ]
        read_only_fields = fields


class AlterationSerializer(serializers.ModelSerializer):
    class Meta:
        model = AlterationRequest
        fields = [
            "id",
            "requested_by",
            "description",
            "urgency",
            "status",
            "estimated_cost",
            "estimated_time",
            "approved_at",
            "started_at",
            "completed_at",
            "created_at",
        ]
        read_only_fields = fields


class RefundSerializer(serializers.ModelSerializer):
    class Meta:
        model = RefundRequest
        fields = [
            "id",
            "requested_by",
            "reason",
            "description",
            "requested_amount",
            "status",
            "transaction_id",
            "processed_by",
            "processed_at",
            "created_at",
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    customer = PartySerializer(read_only=True)
    tailor = PartySerializer(read_only=True)
    timeline = TimelineEntrySerializer(many=True, read_only=True)
    revisions = RevisionSerializer(many=True, read_only=True)
    payment_schedule = PaymentMilestoneSerializer(many=True, read_only=True)
    disputes = DisputeSerializer(many=True, read_only=True)
    alterations = AlterationSerializer(many=True, read_only=True)
    refunds = RefundSerializer(many=True, read_only=True)
    balance_due = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    next_statuses = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "customer",
            "tailor",
            "status",
            "version",
            "next_statuses",
            "service_type",
            "garment_type",
            "description",
            "quantity",
            "base_price",
            "fabric_cost",
            "additional_charges",
            "discount",
            "total_price",
            "total_paid",
            "balance_due",
            "consultation_date",
            "consultation_type",
            "consultation_link",
            "consultation_duration",
            "consultation_notes",
            "consultation_status",
            "consultation_requested_by",
            "consultation_requested_at",
            "fabric_selected",
            "fabric_type",
            "fabric_color",
            "fabric_quantity",
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
            "emergency_contact_name",
            "emergency_contact_phone",
            "emergency_contact_relationship",
            "emergency_contact_available_hours",
            "customer_private_notes",
            "tailor_private_notes",
            "estimated_completion_date",
            "actual_completion_date",
            "cancellation_reason",
            "cancelled_by",
            "cancelled_at",
            "timeline",
            "revisions",
            "payment_schedule",
            "disputes",
            "alterations",
            "refunds",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_next_statuses(self, obj):
        return sorted(allowed_next(obj.status))

    def to_representation(self, instance):
        data = super().to_representation(instance)
        # Each party only ever sees its own private notes.
        request = self.context.get("request")
        parties = parties_of(getattr(request, "user", None), instance)
        if "customer" not in parties:
            data.pop("customer_private_notes", None)
        if "tailor" not in parties:
            data.pop("tailor_private_notes", None)
        return data


class OrderListSerializer(serializers.ModelSerializer):
    customer_username = serializers.CharField(source="customer.username", read_only=True)
    tailor_username = serializers.CharField(source="tailor.username", read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "customer",
            "customer_username",
            "tailor",
            "tailor_username",
            "status",
            "version",
            "service_type",
            "garment_type",
            "total_price",
            "total_paid",
            "estimated_completion_date",
            "created_at",
        ]
        read_only_fields = fields


# Write payloads. ``version`` is the order version the caller last read; when
# sent, a stale value is refused with a conflict.


class VersionedSerializer(serializers.Serializer):
    version = serializers.IntegerField(required=False, min_value=1)


class OrderCreateSerializer(serializers.Serializer):
    tailor = serializers.PrimaryKeyRelatedField(queryset=User.objects.filter(is_active=True))
    service_type = serializers.ChoiceField(choices=ServiceType.choices, default=ServiceType.BASIC)
    garment_type = serializers.CharField(max_length=120)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    quantity = serializers.IntegerField(min_value=1, default=1)
    base_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    fabric_cost = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, default=0)
    additional_charges = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, default=0)
    discount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, default=0)
    consultation_date = serializers.DateTimeField(required=False, allow_null=True, default=None)
    estimated_completion_date = serializers.DateTimeField(required=False, allow_null=True, default=None)


class StatusChangeSerializer(VersionedSerializer):
    target_status = serializers.ChoiceField(choices=OrderStatus.choices)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    cancellation_reason = serializers.CharField(required=False, allow_blank=True, default="")


class RevisionOpenSerializer(VersionedSerializer):
    description = serializers.CharField()
    images = serializers.ListField(child=serializers.CharField(max_length=500), required=False, default=list)


class RevisionActionSerializer(VersionedSerializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    images = serializers.ListField(child=serializers.CharField(max_length=500), required=False, default=list)


class MilestoneCreateSerializer(VersionedSerializer):
    milestone = serializers.ChoiceField(choices=MilestoneKind.choices)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    due_date = serializers.DateTimeField(required=False, allow_null=True, default=None)
    payment_method = serializers.CharField(required=False, allow_blank=True, default="")


class MilestonePaidSerializer(VersionedSerializer):
    transaction_id = serializers.CharField(required=False, allow_blank=True, default="")


class DisputeCreateSerializer(VersionedSerializer):
    reason = serializers.ChoiceField(choices=DisputeReason.choices)
    description = serializers.CharField()
    attachments = serializers.ListField(child=serializers.CharField(max_length=500), required=False, default=list)


class DisputeResolveSerializer(VersionedSerializer):
    status = serializers.CharField()
    resolution = serializers.CharField(required=False, allow_blank=True, default="")


class AlterationCreateSerializer(VersionedSerializer):
    description = serializers.CharField()
    urgency = serializers.ChoiceField(choices=AlterationUrgency.choices, default=AlterationUrgency.MEDIUM)


class AlterationUpdateSerializer(VersionedSerializer):
    status = serializers.ChoiceField(choices=AlterationStatus.choices)
    estimated_cost = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True, default=None)
    estimated_time = serializers.IntegerField(required=False, allow_null=True, default=None)


class RefundCreateSerializer(VersionedSerializer):
    reason = serializers.ChoiceField(choices=RefundReason.choices)
    description = serializers.CharField()
    requested_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True, default=None)


class RefundProcessSerializer(VersionedSerializer):
    status = serializers.ChoiceField(choices=[RefundStatus.APPROVED, RefundStatus.REJECTED])
    transaction_id = serializers.CharField(required=False, allow_blank=True, default="")


class DeliverySerializer(VersionedSerializer):
    delivery_street = serializers.CharField(required=False, allow_blank=True)
    delivery_city = serializers.CharField(required=False, allow_blank=True)
    delivery_province = serializers.CharField(required=False, allow_blank=True)
    delivery_postal_code = serializers.CharField(required=False, allow_blank=True)
    delivery_country = serializers.CharField(required=False, allow_blank=True)
    delivery_phone = serializers.CharField(required=False, allow_blank=True)
    delivery_instructions = serializers.CharField(required=False, allow_blank=True)
    delivery_method = serializers.ChoiceField(choices=DeliveryMethod.choices, required=False)
    delivery_tracking_number = serializers.CharField(required=False, allow_blank=True)
    delivery_provider = serializers.CharField(required=False, allow_blank=True)
    estimated_delivery_date = serializers.DateTimeField(required=False, allow_null=True)


class EmergencyContactSerializer(VersionedSerializer):
    emergency_contact_name = serializers.CharField(required=False, allow_blank=True)
    emergency_contact_phone = serializers.CharField(required=False, allow_blank=True)
    emergency_contact_relationship = serializers.CharField(required=False, allow_blank=True)
    emergency_contact_available_hours = serializers.CharField(required=False, allow_blank=True)


class PricingSerializer(VersionedSerializer):
    base_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    quantity = serializers.IntegerField(min_value=1, required=False)
    fabric_cost = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    additional_charges = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    discount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)


class ConsultationSerializer(VersionedSerializer):
    consultation_date = serializers.DateTimeField(required=False)
    consultation_type = serializers.ChoiceField(choices=ConsultationType.choices, required=False)
    consultation_link = serializers.CharField(required=False, allow_blank=True)
    consultation_duration = serializers.IntegerField(min_value=1, required=False)
    consultation_notes = serializers.CharField(required=False, allow_blank=True)


class ConsultationScheduleSerializer(VersionedSerializer):
    consultation_date = serializers.DateTimeField()
    consultation_type = serializers.ChoiceField(choices=ConsultationType.choices, required=False)
    consultation_link = serializers.CharField(required=False, allow_blank=True, default="")
    consultation_duration = serializers.IntegerField(min_value=1, required=False)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class ConsultationRescheduleSerializer(VersionedSerializer):
    consultation_date = serializers.DateTimeField()
    consultation_link = serializers.CharField(required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class ConsultationStatusSerializer(VersionedSerializer):
    status = serializers.ChoiceField(choices=[ConsultationStatus.COMPLETED, ConsultationStatus.CANCELLED])
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class FabricSerializer(VersionedSerializer):
    fabric_type = serializers.CharField(required=False, allow_blank=True)
    fabric_color = serializers.CharField(required=False, allow_blank=True)
    fabric_quantity = serializers.DecimalField(max_digits=8, decimal_places=2, min_value=0, required=False)


class PrivateNotesSerializer(VersionedSerializer):
    notes = serializers.CharField(allow_blank=True)
