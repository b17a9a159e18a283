from django.contrib import admin

from apps.orders.models import (
    AlterationRequest,
    Dispute,
    Order,
    PaymentMilestone,
    RefundRequest,
    Revision,
    TimelineEntry,
)


class TimelineEntryInline(admin.TabularInline):
    model = TimelineEntry
    extra = 0
    can_delete = False
    readonly_fields = ("sequence", "step", "status", "description", "actor", "created_at")

    def has_add_permission(self, request, obj=None):
        return False


class RevisionInline(admin.TabularInline):
    model = Revision
    extra = 0
    fields = ("revision_number", "status", "description", "requested_at", "completed_at")
    readonly_fields = fields


class PaymentMilestoneInline(admin.TabularInline):
    model = PaymentMilestone
    extra = 0
    fields = ("milestone", "amount", "due_date", "paid", "paid_at", "transaction_id")
    readonly_fields = fields


class DisputeInline(admin.TabularInline):
    model = Dispute
    extra = 0
    fields = ("reason", "status", "raised_by", "resolved_by", "resolved_at")
    readonly_fields = fields


class AlterationInline(admin.TabularInline):
    model = AlterationRequest
    extra = 0
    fields = ("urgency", "status", "estimated_cost", "estimated_time", "created_at")
    readonly_fields = fields


class RefundInline(admin.TabularInline):
    model = RefundRequest
    extra = 0
    fields = ("reason", "requested_amount", "status", "processed_by", "processed_at")
    readonly_fields = fields


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "order_number",
        "customer",
        "tailor",
        "status",
        "version",
        "total_price",
        "total_paid",
        "created_at",
    )
    list_filter = ("status", "consultation_status", "service_type", "delivery_method")
    search_fields = ("order_number", "customer__username", "tailor__username", "tailor__shop_name")
    autocomplete_fields = ("customer", "tailor")
    # Status, version and money move only through the engine.
    readonly_fields = (
        "status",
        "version",
        "total_price",
        "total_paid",
        "consultation_status",
        "consultation_requested_by",
        "consultation_requested_at",
        "cancelled_by",
        "cancelled_at",
    )
    inlines = [
        TimelineEntryInline,
        RevisionInline,
        PaymentMilestoneInline,
        DisputeInline,
        AlterationInline,
        RefundInline,
    ]


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    list_display = ("order", "reason", "status", "raised_by", "created_at")
    list_filter = ("status", "reason")
    search_fields = ("order__order_number", "description")
    autocomplete_fields = ("order", "raised_by", "resolved_by")


@admin.register(RefundRequest)
class RefundRequestAdmin(admin.ModelAdmin):
    list_display = ("order", "requested_amount", "reason", "status", "created_at")
    list_filter = ("status", "reason")
    search_fields = ("order__order_number",)
    autocomplete_fields = ("order", "requested_by", "processed_by")
