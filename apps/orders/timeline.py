from django.db.models import Max

from apps.orders.models import TimelineEntry


def append_timeline(order, *, actor, step, description=""):
    last = order.timeline.aggregate(last=Max("sequence"))["last"] or 0
    return TimelineEntry.objects.create(
        order=order,
        sequence=last + 1,
        step=step,
        status=order.status,
        description=description[:1000],
        actor=actor,
    )
