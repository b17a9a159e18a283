from django.core.management.base import BaseCommand
from django.utils import timezone

from apps.audit.services import record_audit
from apps.orders.models import OrderStatus, PaymentMilestone


class Command(BaseCommand):
    help = "Lists unpaid payment milestones past their due date on active orders."

    def add_arguments(self, parser):
        parser.add_argument("--audit", action="store_true", help="Write one audit entry per overdue milestone.")

    def handle(self, *args, **options):
        overdue = (
            PaymentMilestone.objects.select_related("order")
            .filter(paid=False, due_date__lt=timezone.now())
            .exclude(order__status=OrderStatus.CANCELLED)
            .order_by("due_date")
        )
        count = 0
        for milestone in overdue:
            self.stdout.write(
                f"{milestone.order.order_number} {milestone.milestone} {milestone.amount} due {milestone.due_date:%Y-%m-%d}"
            )
            if options["audit"]:
                record_audit(
                    actor=None,
                    action="milestone.overdue",
                    entity_type="order",
                    entity_id=milestone.order_id,
                    payload={"milestone_id": str(milestone.id), "amount": str(milestone.amount)},
                    order_version=milestone.order.version,
                )
            count += 1

        self.stdout.write(self.style.SUCCESS(f"Overdue milestones: {count}"))
