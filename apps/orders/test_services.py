from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone

from apps.audit.models import AuditLog
from apps.orders import services
from apps.orders.exceptions import AlreadyProcessed, Conflict, InvalidTransition, NotFound, Unauthorized, ValidationError
from apps.orders.models import (
    AlterationStatus,
    ConsultationStatus,
    DisputeStatus,
    Order,
    OrderStatus,
    RefundStatus,
    RevisionStatus,
    TimelineEntry,
)
from apps.orders.notifications import InMemoryNotifier
from apps.orders.workflows import ORDER_TRANSITIONS

User = get_user_model()


class OrderEngineTestMixin:
    def setUp(self):
        self.customer = User.objects.create_user(username="ayesha", password="customer123", role="CUSTOMER")
        self.tailor = User.objects.create_user(
            username="bilal_tailor", password="tailor123", role="TAILOR", shop_name="Bilal Stitching"
        )
        self.other_customer = User.objects.create_user(username="sana", password="customer123", role="CUSTOMER")
        self.other_tailor = User.objects.create_user(username="kamran_tailor", password="tailor123", role="TAILOR")
        self.admin = User.objects.create_user(username="ops_admin", password="admin123", role="ADMIN")
        InMemoryNotifier.outbox.clear()

    def place_order(self, **overrides):
        payload = {
            "customer": self.customer,
            "tailor": self.tailor,
            "garment_type": "Sherwani",
            "base_price": "100.00",
            "quantity": 2,
            "fabric_cost": "50.00",
            "additional_charges": "10.00",
            "discount": "20.00",
        }
        payload.update(overrides)
        return services.create_order(**payload)

    def force_status(self, order, status):
        Order.objects.filter(pk=order.pk).update(status=status)
        order.refresh_from_db()
        return order

    def advance(self, order, target, actor=None, **kwargs):
        return services.advance_status(order_id=order.id, actor=actor or self.tailor, target_status=target, **kwargs)

    def timeline_count(self, order):
        return TimelineEntry.objects.filter(order_id=order.id).count()

    def latest_revision(self, order):
        return order.revisions.order_by("-revision_number").first()


class OrderPricingTests(OrderEngineTestMixin, TestCase):
    def test_create_order_computes_total_and_first_timeline_entry(self):
        order = self.place_order()

        order.refresh_from_db()
        self.assertEqual(order.total_price, Decimal("240.00"))
        self.assertEqual(order.total_paid, Decimal("0.00"))
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.version, 1)
        self.assertTrue(order.order_number.startswith("ORD-"))
        entries = list(order.timeline.all())
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].step, "order.placed")
        self.assertEqual(entries[0].actor, self.customer)

    def test_order_numbers_are_unique(self):
        first = self.place_order()
        second = self.place_order()
        self.assertNotEqual(first.order_number, second.order_number)

    def test_order_number_taken_by_a_concurrent_create_is_retried(self):
        first = self.place_order()
        with mock.patch.object(
            services, "_generate_order_number", side_effect=[first.order_number, "ORD-2099-00001"]
        ):
            second = self.place_order()

        self.assertEqual(second.order_number, "ORD-2099-00001")
        self.assertEqual(Order.objects.count(), 2)
        self.assertEqual(self.timeline_count(second), 1)

    def test_order_number_allocation_gives_up_with_a_conflict(self):
        first = self.place_order()
        with mock.patch.object(services, "_generate_order_number", return_value=first.order_number):
            with self.assertRaises(Conflict):
                self.place_order()
        self.assertEqual(Order.objects.count(), 1)

    def test_create_order_rejects_non_tailor_and_self_orders(self):
        with self.assertRaises(ValidationError):
            self.place_order(tailor=self.other_customer)
        with self.assertRaises(ValidationError):
            services.create_order(
                customer=self.tailor, tailor=self.tailor, garment_type="Kurta", base_price="10.00"
            )
        self.assertFalse(Order.objects.exists())

    def test_create_order_refuses_negative_total(self):
        with self.assertRaises(ValidationError):
            self.place_order(discount="1000.00")

    def test_pricing_update_recomputes_total_without_drift(self):
        order = self.place_order()

        services.update_pricing(
            order_id=order.id,
            actor=self.tailor,
            changes={"base_price": Decimal("33.33"), "quantity": 3},
        )

        order.refresh_from_db()
        self.assertEqual(order.total_price, Decimal("139.99"))
        self.assertEqual(order.version, 2)
        self.assertEqual(order.timeline.last().step, "pricing.update")

    def test_saving_order_always_recomputes_total(self):
        order = self.place_order()
        order.discount = Decimal("0.10")
        order.save(update_fields=["discount"])

        order.refresh_from_db()
        self.assertEqual(order.total_price, Decimal("259.90"))

    def test_pricing_is_locked_on_completed_orders(self):
        order = self.force_status(self.place_order(), OrderStatus.COMPLETED)
        with self.assertRaises(InvalidTransition):
            services.update_pricing(order_id=order.id, actor=self.tailor, changes={"discount": "5.00"})

    def test_customer_cannot_change_pricing(self):
        order = self.place_order()
        with self.assertRaises(Unauthorized):
            services.update_pricing(order_id=order.id, actor=self.customer, changes={"discount": "99.00"})


class OrderStatusTests(OrderEngineTestMixin, TestCase):
    def test_happy_path_records_seven_timeline_entries(self):
        order = self.place_order()
        path = [
            OrderStatus.CONSULTATION_SCHEDULED,
            OrderStatus.CONSULTATION_COMPLETED,
            OrderStatus.FABRIC_SELECTED,
            OrderStatus.IN_PROGRESS,
            OrderStatus.QUALITY_CHECK,
            OrderStatus.COMPLETED,
        ]
        for target in path:
            order = self.advance(order, target)

        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.COMPLETED)
        self.assertIsNotNone(order.actual_completion_date)
        self.assertEqual(order.version, 7)
        entries = list(order.timeline.all())
        self.assertEqual(len(entries), 7)
        self.assertEqual([entry.sequence for entry in entries], list(range(1, 8)))
        self.assertEqual([entry.status for entry in entries], [OrderStatus.PENDING, *path])
        self.assertEqual(AuditLog.objects.filter(entity_id=str(order.id)).count(), 7)

    def test_every_move_outside_the_table_is_refused_without_side_effects(self):
        order = self.place_order()
        for current in OrderStatus.values:
            for target in OrderStatus.values:
                if target in ORDER_TRANSITIONS[current]:
                    continue
                with self.subTest(current=current, target=target):
                    self.force_status(order, current)
                    before_version = order.version
                    before_entries = self.timeline_count(order)
                    with self.assertRaises(InvalidTransition):
                        self.advance(order, target, cancellation_reason="changed my mind")
                    order.refresh_from_db()
                    self.assertEqual(order.status, current)
                    self.assertEqual(order.version, before_version)
                    self.assertEqual(self.timeline_count(order), before_entries)

    def test_cancel_requires_reason_and_records_who_cancelled(self):
        order = self.place_order()
        with self.assertRaises(ValidationError):
            self.advance(order, OrderStatus.CANCELLED, actor=self.customer)

        order = self.advance(order, OrderStatus.CANCELLED, actor=self.customer, cancellation_reason="Found another tailor")

        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.assertEqual(order.cancelled_by, self.customer)
        self.assertIsNotNone(order.cancelled_at)
        self.assertEqual(order.timeline.last().description, "Found another tailor")

    def test_cancel_is_not_reachable_once_work_started(self):
        order = self.force_status(self.place_order(), OrderStatus.IN_PROGRESS)
        with self.assertRaises(InvalidTransition):
            self.advance(order, OrderStatus.CANCELLED, actor=self.customer, cancellation_reason="Too slow")

    def test_only_tailor_drives_production_statuses(self):
        order = self.place_order()
        with self.assertRaises(Unauthorized):
            self.advance(order, OrderStatus.CONSULTATION_SCHEDULED, actor=self.customer)
        with self.assertRaises(Unauthorized):
            self.advance(order, OrderStatus.CONSULTATION_SCHEDULED, actor=self.admin)

    def test_completion_blocked_while_revision_work_is_open(self):
        order = self.force_status(self.place_order(), OrderStatus.IN_PROGRESS)
        services.open_revision(order_id=order.id, actor=self.customer, description="Shorten sleeves")
        revision = self.latest_revision(order)
        services.transition_revision(order_id=order.id, revision_id=revision.id, actor=self.tailor, action="approve")
        self.advance(order, OrderStatus.QUALITY_CHECK)

        with self.assertRaises(InvalidTransition):
            self.advance(order, OrderStatus.COMPLETED)

        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.QUALITY_CHECK)

    def test_stale_version_is_a_conflict(self):
        order = self.place_order()
        self.advance(order, OrderStatus.CONSULTATION_SCHEDULED, expected_version=1)

        with self.assertRaises(Conflict) as caught:
            self.advance(order, OrderStatus.CANCELLED, expected_version=1, cancellation_reason="Double booked")

        self.assertEqual(caught.exception.context["current_version"], 2)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.CONSULTATION_SCHEDULED)
        self.assertEqual(order.version, 2)
        self.assertEqual(self.timeline_count(order), 2)

        self.advance(order, OrderStatus.CONSULTATION_COMPLETED, expected_version=2)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.CONSULTATION_COMPLETED)
        self.assertEqual(order.version, 3)

    def test_unknown_order_is_not_found(self):
        with self.assertRaises(NotFound):
            services.get_order(order_id="2b1f7a4e-0000-4000-8000-000000000000", actor=self.customer)
        with self.assertRaises(NotFound):
            services.get_order(order_id="not-a-uuid", actor=self.customer)

    def test_notifications_go_to_the_other_party_after_commit(self):
        order = self.place_order()
        InMemoryNotifier.outbox.clear()

        with self.captureOnCommitCallbacks(execute=True):
            self.advance(order, OrderStatus.CONSULTATION_SCHEDULED)

        self.assertEqual(len(InMemoryNotifier.outbox), 1)
        event = InMemoryNotifier.outbox[0]
        self.assertEqual(event.name, "status.consultation_scheduled")
        self.assertEqual(event.recipient_ids, (self.customer.pk,))
        self.assertEqual(event.actor_id, self.tailor.pk)

    def test_refused_operations_send_nothing(self):
        order = self.place_order()
        InMemoryNotifier.outbox.clear()

        with self.captureOnCommitCallbacks(execute=True):
            with self.assertRaises(InvalidTransition):
                self.advance(order, OrderStatus.COMPLETED)

        self.assertEqual(InMemoryNotifier.outbox, [])


class RevisionWorkflowTests(OrderEngineTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.order = self.force_status(self.place_order(), OrderStatus.IN_PROGRESS)

    def act(self, revision, action, actor=None, **kwargs):
        return services.transition_revision(
            order_id=self.order.id,
            revision_id=revision.id,
            actor=actor or self.tailor,
            action=action,
            **kwargs,
        )

    def test_opening_a_revision_requires_work_in_progress(self):
        order = self.force_status(self.place_order(), OrderStatus.PENDING)
        with self.assertRaises(InvalidTransition):
            services.open_revision(order_id=order.id, actor=self.customer, description="Tighter fit")

    def test_reject_round_trip_returns_order_to_in_progress(self):
        services.open_revision(order_id=self.order.id, actor=self.customer, description="Add pockets")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.REVISION_REQUESTED)
        revision = self.latest_revision(self.order)

        self.act(revision, "reject", reason="Pattern does not allow pockets")

        self.order.refresh_from_db()
        revision.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.IN_PROGRESS)
        self.assertEqual(revision.status, RevisionStatus.REJECTED)
        self.assertEqual(revision.rejected_by, self.tailor)
        self.assertEqual(revision.rejection_reason, "Pattern does not allow pockets")
        self.assertEqual(self.order.version, 3)

    def test_revision_loop_until_customer_accepts(self):
        services.open_revision(order_id=self.order.id, actor=self.customer, description="Shorten the hem")
        first = self.latest_revision(self.order)
        self.act(first, "approve")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.IN_PROGRESS)

        self.act(first, "in-progress")
        self.act(first, "complete", notes="Hem shortened by 2cm", images=["https://cdn.example.com/hem.jpg"])
        self.act(first, "customer-reject", actor=self.customer, reason="Still too long")

        first.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(first.status, RevisionStatus.CUSTOMER_REJECTED)
        self.assertEqual(first.images, ["https://cdn.example.com/hem.jpg"])
        self.assertEqual(self.order.status, OrderStatus.REVISION_REQUESTED)
        second = self.latest_revision(self.order)
        self.assertEqual(second.revision_number, 2)
        self.assertEqual(second.status, RevisionStatus.PENDING)
        self.assertEqual(second.description, "Still too long")

        self.act(second, "approve")
        self.act(second, "in-progress")
        self.act(second, "complete")
        self.act(second, "customer-approve", actor=self.customer)
        self.advance(self.order, OrderStatus.QUALITY_CHECK)
        self.advance(self.order, OrderStatus.COMPLETED)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.COMPLETED)
        steps = list(self.order.timeline.values_list("step", flat=True))
        self.assertEqual(steps.count("revision.customer-reject"), 1)
        self.assertEqual(len(steps), 1 + 1 + 8 + 2)

    def test_customer_can_reject_a_completed_revision_while_another_is_pending(self):
        services.open_revision(order_id=self.order.id, actor=self.customer, description="Shorten the hem")
        first = self.latest_revision(self.order)
        for action in ("approve", "in-progress", "complete"):
            self.act(first, action)
        services.open_revision(order_id=self.order.id, actor=self.customer, description="Add a pocket")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.REVISION_REQUESTED)

        self.act(first, "customer-reject", actor=self.customer, reason="wrong sleeve length")

        first.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(first.status, RevisionStatus.CUSTOMER_REJECTED)
        self.assertEqual(self.order.status, OrderStatus.REVISION_REQUESTED)
        follow_up = self.latest_revision(self.order)
        self.assertEqual(follow_up.revision_number, 3)
        self.assertEqual(follow_up.status, RevisionStatus.PENDING)
        self.assertEqual(follow_up.description, "wrong sleeve length")
        self.assertEqual(self.order.revisions.filter(status=RevisionStatus.PENDING).count(), 2)

    def test_repeating_a_revision_action_is_already_processed(self):
        services.open_revision(order_id=self.order.id, actor=self.customer, description="Change buttons")
        revision = self.latest_revision(self.order)
        self.act(revision, "approve")
        entries = self.timeline_count(self.order)

        with self.assertRaises(AlreadyProcessed):
            self.act(revision, "approve")
        self.assertEqual(self.timeline_count(self.order), entries)

    def test_terminal_revision_refuses_everything(self):
        services.open_revision(order_id=self.order.id, actor=self.customer, description="Change buttons")
        revision = self.latest_revision(self.order)
        self.act(revision, "reject")

        for action in ("approve", "in-progress", "complete"):
            with self.subTest(action=action):
                with self.assertRaises(AlreadyProcessed):
                    self.act(revision, action)

    def test_skipping_a_revision_step_is_invalid(self):
        services.open_revision(order_id=self.order.id, actor=self.customer, description="Change buttons")
        revision = self.latest_revision(self.order)
        with self.assertRaises(InvalidTransition):
            self.act(revision, "complete")
        with self.assertRaises(InvalidTransition):
            self.act(revision, "customer-approve", actor=self.customer)

    def test_customer_reject_needs_a_reason(self):
        services.open_revision(order_id=self.order.id, actor=self.customer, description="Collar")
        revision = self.latest_revision(self.order)
        for action in ("approve", "in-progress", "complete"):
            self.act(revision, action)

        with self.assertRaises(ValidationError):
            self.act(revision, "customer-reject", actor=self.customer, reason="  ")

        revision.refresh_from_db()
        self.assertEqual(revision.status, RevisionStatus.COMPLETED)
        self.assertEqual(self.order.revisions.count(), 1)

    def test_parties_cannot_swap_revision_roles(self):
        services.open_revision(order_id=self.order.id, actor=self.customer, description="Collar")
        revision = self.latest_revision(self.order)
        with self.assertRaises(Unauthorized):
            self.act(revision, "approve", actor=self.customer)
        with self.assertRaises(Unauthorized):
            services.open_revision(order_id=self.order.id, actor=self.tailor, description="Self-made")

    def test_unknown_revision_is_not_found(self):
        with self.assertRaises(NotFound):
            services.transition_revision(
                order_id=self.order.id,
                revision_id="2b1f7a4e-0000-4000-8000-000000000000",
                actor=self.tailor,
                action="approve",
            )


class PaymentScheduleTests(OrderEngineTestMixin, TestCase):
    def test_mark_paid_is_idempotent(self):
        order = self.place_order()
        services.add_milestone(order_id=order.id, actor=self.customer, milestone="deposit", amount="100.00")
        milestone = order.payment_schedule.get()

        services.mark_milestone_paid(order_id=order.id, milestone_id=milestone.id, actor=self.customer, transaction_id="TXN-1")
        entries = self.timeline_count(order)
        with self.assertRaises(AlreadyProcessed):
            services.mark_milestone_paid(order_id=order.id, milestone_id=milestone.id, actor=self.customer)

        order.refresh_from_db()
        milestone.refresh_from_db()
        self.assertEqual(order.total_paid, Decimal("100.00"))
        self.assertEqual(order.balance_due, Decimal("140.00"))
        self.assertTrue(milestone.paid)
        self.assertEqual(milestone.transaction_id, "TXN-1")
        self.assertEqual(self.timeline_count(order), entries)

    def test_milestone_amount_must_be_positive(self):
        order = self.place_order()
        for amount in ("0", "-5.00"):
            with self.subTest(amount=amount):
                with self.assertRaises(ValidationError):
                    services.add_milestone(order_id=order.id, actor=self.tailor, milestone="final", amount=amount)
        self.assertFalse(order.payment_schedule.exists())

    def test_no_milestones_on_cancelled_orders(self):
        order = self.force_status(self.place_order(), OrderStatus.CANCELLED)
        with self.assertRaises(InvalidTransition):
            services.add_milestone(order_id=order.id, actor=self.tailor, milestone="final", amount="10.00")


class DisputeTests(OrderEngineTestMixin, TestCase):
    def test_party_that_raised_a_dispute_cannot_resolve_it(self):
        order = self.place_order()
        services.raise_dispute(order_id=order.id, actor=self.customer, reason="delivery_delay", description="Two weeks late")
        dispute = order.disputes.get()

        with self.assertRaises(Unauthorized):
            services.resolve_dispute(
                order_id=order.id, dispute_id=dispute.id, actor=self.customer, status="resolved", resolution="Fine now"
            )

        services.resolve_dispute(
            order_id=order.id, dispute_id=dispute.id, actor=self.tailor, status="resolved", resolution="Shipped today"
        )
        dispute.refresh_from_db()
        self.assertEqual(dispute.status, DisputeStatus.RESOLVED)
        self.assertEqual(dispute.resolved_by, self.tailor)

    def test_admin_can_arbitrate_and_resolution_text_is_required(self):
        order = self.place_order()
        services.raise_dispute(order_id=order.id, actor=self.tailor, reason="other", description="Customer unreachable")
        dispute = order.disputes.get()

        with self.assertRaises(ValidationError):
            services.resolve_dispute(order_id=order.id, dispute_id=dispute.id, actor=self.admin, status="rejected", resolution="")
        services.resolve_dispute(
            order_id=order.id, dispute_id=dispute.id, actor=self.admin, status="rejected", resolution="No evidence"
        )
        with self.assertRaises(AlreadyProcessed):
            services.resolve_dispute(
                order_id=order.id, dispute_id=dispute.id, actor=self.customer, status="resolved", resolution="Again"
            )

    def test_disputes_cannot_be_opened_on_cancelled_orders(self):
        order = self.force_status(self.place_order(), OrderStatus.CANCELLED)
        with self.assertRaises(InvalidTransition):
            services.raise_dispute(order_id=order.id, actor=self.customer, reason="other", description="x")


class AlterationTests(OrderEngineTestMixin, TestCase):
    def test_alteration_lifecycle_requires_estimates_on_approval(self):
        order = self.force_status(self.place_order(), OrderStatus.COMPLETED)
        services.request_alteration(order_id=order.id, actor=self.customer, description="Take in waist", urgency="high")
        alteration = order.alterations.get()

        with self.assertRaises(ValidationError):
            services.update_alteration(order_id=order.id, alteration_id=alteration.id, actor=self.tailor, status="approved")

        services.update_alteration(
            order_id=order.id,
            alteration_id=alteration.id,
            actor=self.tailor,
            status="approved",
            estimated_cost="15.00",
            estimated_time=3,
        )
        services.update_alteration(order_id=order.id, alteration_id=alteration.id, actor=self.tailor, status="in_progress")
        services.update_alteration(order_id=order.id, alteration_id=alteration.id, actor=self.tailor, status="completed")

        alteration.refresh_from_db()
        self.assertEqual(alteration.status, AlterationStatus.COMPLETED)
        self.assertEqual(alteration.estimated_cost, Decimal("15.00"))
        self.assertIsNotNone(alteration.approved_at)
        self.assertIsNotNone(alteration.completed_at)

    def test_alterations_only_after_production_started(self):
        order = self.place_order()
        with self.assertRaises(InvalidTransition):
            services.request_alteration(order_id=order.id, actor=self.customer, description="Take in waist")


class RefundTests(OrderEngineTestMixin, TestCase):
    def test_refund_defaults_to_outstanding_balance(self):
        order = self.place_order()
        services.request_refund(order_id=order.id, actor=self.customer, reason="other", description="Changed plans")
        self.assertEqual(order.refunds.get().requested_amount, Decimal("240.00"))

    def test_refund_bound_follows_payments(self):
        order = self.place_order()
        services.add_milestone(order_id=order.id, actor=self.customer, milestone="deposit", amount="100.00")
        milestone = order.payment_schedule.get()
        services.mark_milestone_paid(order_id=order.id, milestone_id=milestone.id, actor=self.customer)

        with self.assertRaises(ValidationError) as caught:
            services.request_refund(
                order_id=order.id, actor=self.customer, reason="defective", description="Torn seam", requested_amount="140.01"
            )
        self.assertEqual(caught.exception.context["refundable_amount"], "140.00")

        services.request_refund(
            order_id=order.id, actor=self.customer, reason="defective", description="Torn seam", requested_amount="140.00"
        )
        self.assertEqual(order.refunds.count(), 1)

    @override_settings(ORDERS_ENFORCE_REFUND_BOUND=False)
    def test_refund_bound_can_be_disabled(self):
        order = self.place_order()
        services.request_refund(
            order_id=order.id, actor=self.customer, reason="other", description="Goodwill", requested_amount="300.00"
        )
        self.assertEqual(order.refunds.get().requested_amount, Decimal("300.00"))

    def test_processing_a_refund_does_not_touch_total_paid(self):
        order = self.place_order()
        services.request_refund(order_id=order.id, actor=self.customer, reason="other", description="Changed plans")
        refund = order.refunds.get()

        with self.assertRaises(Unauthorized):
            services.process_refund(order_id=order.id, refund_id=refund.id, actor=self.customer, status="approved")
        services.process_refund(
            order_id=order.id, refund_id=refund.id, actor=self.admin, status="approved", transaction_id="RF-9"
        )
        with self.assertRaises(AlreadyProcessed):
            services.process_refund(order_id=order.id, refund_id=refund.id, actor=self.tailor, status="rejected")

        refund.refresh_from_db()
        order.refresh_from_db()
        self.assertEqual(refund.status, RefundStatus.APPROVED)
        self.assertEqual(refund.processed_by, self.admin)
        self.assertEqual(refund.transaction_id, "RF-9")
        self.assertEqual(order.total_paid, Decimal("0.00"))


class PassiveFieldTests(OrderEngineTestMixin, TestCase):
    def test_emergency_contact_keeps_previous_values_for_blanks(self):
        order = self.place_order()
        services.update_emergency_contact(
            order_id=order.id,
            actor=self.customer,
            changes={"emergency_contact_name": "Hamid", "emergency_contact_phone": "0300-1234567"},
        )
        services.update_emergency_contact(
            order_id=order.id,
            actor=self.tailor,
            changes={"emergency_contact_name": "", "emergency_contact_relationship": "Brother"},
        )

        order.refresh_from_db()
        self.assertEqual(order.emergency_contact_name, "Hamid")
        self.assertEqual(order.emergency_contact_relationship, "Brother")
        self.assertEqual(self.timeline_count(order), 3)

    def test_consultation_only_before_fabric_selection(self):
        order = self.place_order()
        services.update_consultation(order_id=order.id, actor=self.customer, changes={"consultation_type": "video"})
        self.force_status(order, OrderStatus.FABRIC_SELECTED)
        with self.assertRaises(InvalidTransition):
            services.update_consultation(order_id=order.id, actor=self.customer, changes={"consultation_type": "phone"})

    def test_fabric_details_do_not_move_status(self):
        order = self.place_order()
        services.update_fabric(order_id=order.id, actor=self.tailor, changes={"fabric_type": "Raw silk"})
        order.refresh_from_db()
        self.assertTrue(order.fabric_selected)
        self.assertEqual(order.status, OrderStatus.PENDING)

    def test_each_party_writes_only_its_own_notes(self):
        order = self.place_order()
        services.update_private_notes(order_id=order.id, actor=self.customer, notes="Budget is tight")
        services.update_private_notes(order_id=order.id, actor=self.tailor, notes="Customer prefers slim fit")
        order.refresh_from_db()
        self.assertEqual(order.customer_private_notes, "Budget is tight")
        self.assertEqual(order.tailor_private_notes, "Customer prefers slim fit")

    def test_empty_update_is_refused(self):
        order = self.place_order()
        with self.assertRaises(ValidationError):
            services.update_delivery(order_id=order.id, actor=self.customer, changes={})


class ConsultationTests(OrderEngineTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.order = self.place_order()
        self.slot = timezone.now() + timedelta(days=2)

    def schedule(self, actor=None, **kwargs):
        return services.schedule_consultation(
            order_id=self.order.id, actor=actor or self.customer, consultation_date=self.slot, **kwargs
        )

    def test_either_party_books_without_moving_the_order(self):
        self.schedule(consultation_type="video", consultation_link="https://meet.example.com/fit")

        self.order.refresh_from_db()
        self.assertEqual(self.order.consultation_status, ConsultationStatus.SCHEDULED)
        self.assertEqual(self.order.consultation_type, "video")
        self.assertEqual(self.order.consultation_date, self.slot)
        self.assertEqual(self.order.consultation_requested_by, self.customer)
        self.assertIsNotNone(self.order.consultation_requested_at)
        self.assertEqual(self.order.status, OrderStatus.PENDING)
        self.assertEqual(self.order.version, 2)
        self.assertEqual(self.order.timeline.last().step, "consultation.scheduled")

        services.update_consultation_status(
            order_id=self.order.id, actor=self.tailor, status="completed", notes="Measurements taken"
        )
        self.order.refresh_from_db()
        self.assertEqual(self.order.consultation_status, ConsultationStatus.COMPLETED)
        self.assertEqual(self.order.consultation_notes, "Measurements taken")
        self.assertEqual(self.order.status, OrderStatus.PENDING)

    def test_reschedule_can_repeat_until_the_consultation_is_done(self):
        self.schedule()
        later = self.slot + timedelta(days=1)
        services.reschedule_consultation(order_id=self.order.id, actor=self.tailor, consultation_date=later)
        services.reschedule_consultation(
            order_id=self.order.id, actor=self.customer, consultation_date=later + timedelta(hours=3)
        )

        self.order.refresh_from_db()
        self.assertEqual(self.order.consultation_status, ConsultationStatus.RESCHEDULED)
        self.assertEqual(self.order.consultation_date, later + timedelta(hours=3))

        services.update_consultation_status(order_id=self.order.id, actor=self.tailor, status="completed")
        with self.assertRaises(AlreadyProcessed):
            services.reschedule_consultation(order_id=self.order.id, actor=self.tailor, consultation_date=later)

    def test_reschedule_needs_a_booking_first(self):
        with self.assertRaises(InvalidTransition):
            services.reschedule_consultation(order_id=self.order.id, actor=self.customer, consultation_date=self.slot)
        self.order.refresh_from_db()
        self.assertEqual(self.order.consultation_status, ConsultationStatus.PENDING)
        self.assertEqual(self.order.version, 1)

    def test_cancelled_consultation_cannot_be_rebooked(self):
        self.schedule()
        services.update_consultation_status(order_id=self.order.id, actor=self.customer, status="cancelled")

        with self.assertRaises(AlreadyProcessed):
            self.schedule()
        with self.assertRaises(AlreadyProcessed):
            services.update_consultation_status(order_id=self.order.id, actor=self.customer, status="completed")

    def test_status_update_only_completes_or_cancels(self):
        self.schedule()
        with self.assertRaises(ValidationError):
            services.update_consultation_status(order_id=self.order.id, actor=self.tailor, status="scheduled")

    def test_booking_requires_a_date_and_an_early_order(self):
        with self.assertRaises(ValidationError):
            services.schedule_consultation(order_id=self.order.id, actor=self.customer, consultation_date=None)
        self.force_status(self.order, OrderStatus.FABRIC_SELECTED)
        with self.assertRaises(InvalidTransition):
            self.schedule()


class OutsiderAccessTests(OrderEngineTestMixin, TestCase):
    def test_outsiders_cannot_mutate_or_read_the_order(self):
        order = self.force_status(self.place_order(), OrderStatus.IN_PROGRESS)
        services.open_revision(order_id=order.id, actor=self.customer, description="Collar")
        services.add_milestone(order_id=order.id, actor=self.customer, milestone="deposit", amount="50.00")
        services.raise_dispute(order_id=order.id, actor=self.customer, reason="other", description="Question")
        services.request_alteration(order_id=order.id, actor=self.customer, description="Waist")
        services.request_refund(order_id=order.id, actor=self.customer, reason="other", description="Refund")
        revision = order.revisions.get()
        milestone = order.payment_schedule.get()
        dispute = order.disputes.get()
        alteration = order.alterations.get()
        refund = order.refunds.get()
        order.refresh_from_db()
        version = order.version
        entries = self.timeline_count(order)

        operations = {
            "get": lambda actor: services.get_order(order_id=order.id, actor=actor),
            "status": lambda actor: self.advance(order, OrderStatus.QUALITY_CHECK, actor=actor),
            "cancel": lambda actor: self.advance(order, OrderStatus.CANCELLED, actor=actor, cancellation_reason="x"),
            "delivery": lambda actor: services.update_delivery(
                order_id=order.id, actor=actor, changes={"delivery_city": "Karachi"}
            ),
            "emergency": lambda actor: services.update_emergency_contact(
                order_id=order.id, actor=actor, changes={"emergency_contact_name": "X"}
            ),
            "pricing": lambda actor: services.update_pricing(order_id=order.id, actor=actor, changes={"discount": "1"}),
            "consultation": lambda actor: services.update_consultation(
                order_id=order.id, actor=actor, changes={"consultation_notes": "x"}
            ),
            "schedule_consultation": lambda actor: services.schedule_consultation(
                order_id=order.id, actor=actor, consultation_date=timezone.now()
            ),
            "reschedule_consultation": lambda actor: services.reschedule_consultation(
                order_id=order.id, actor=actor, consultation_date=timezone.now()
            ),
            "consultation_status": lambda actor: services.update_consultation_status(
                order_id=order.id, actor=actor, status="cancelled"
            ),
            "fabric": lambda actor: services.update_fabric(order_id=order.id, actor=actor, changes={"fabric_type": "x"}),
            "notes": lambda actor: services.update_private_notes(order_id=order.id, actor=actor, notes="x"),
            "open_revision": lambda actor: services.open_revision(order_id=order.id, actor=actor, description="x"),
            "add_milestone": lambda actor: services.add_milestone(
                order_id=order.id, actor=actor, milestone="final", amount="10.00"
            ),
            "mark_paid": lambda actor: services.mark_milestone_paid(
                order_id=order.id, milestone_id=milestone.id, actor=actor
            ),
            "raise_dispute": lambda actor: services.raise_dispute(
                order_id=order.id, actor=actor, reason="other", description="x"
            ),
            "resolve_dispute": lambda actor: services.resolve_dispute(
                order_id=order.id, dispute_id=dispute.id, actor=actor, status="resolved", resolution="x"
            ),
            "request_alteration": lambda actor: services.request_alteration(
                order_id=order.id, actor=actor, description="x"
            ),
            "update_alteration": lambda actor: services.update_alteration(
                order_id=order.id, alteration_id=alteration.id, actor=actor, status="rejected"
            ),
            "request_refund": lambda actor: services.request_refund(
                order_id=order.id, actor=actor, reason="other", description="x"
            ),
            "process_refund": lambda actor: services.process_refund(
                order_id=order.id, refund_id=refund.id, actor=actor, status="rejected"
            ),
        }
        for action in ("approve", "reject", "in-progress", "complete", "customer-approve", "customer-reject"):
            operations[f"revision.{action}"] = lambda actor, action=action: services.transition_revision(
                order_id=order.id, revision_id=revision.id, actor=actor, action=action, reason="x"
            )

        for outsider in (self.other_customer, self.other_tailor):
            for name, operation in operations.items():
                with self.subTest(outsider=outsider.username, operation=name):
                    with self.assertRaises(Unauthorized):
                        operation(outsider)

        order.refresh_from_db()
        self.assertEqual(order.version, version)
        self.assertEqual(self.timeline_count(order), entries)

    def test_outsider_learns_nothing_from_stale_versions_or_unknown_children(self):
        order = self.force_status(self.place_order(), OrderStatus.IN_PROGRESS)
        missing = "2b1f7a4e-0000-4000-8000-000000000000"
        attempts = {
            "stale delivery": lambda: services.update_delivery(
                order_id=order.id, actor=self.other_customer, changes={"delivery_city": "Quetta"}, expected_version=99
            ),
            "stale status": lambda: self.advance(
                order, OrderStatus.QUALITY_CHECK, actor=self.other_tailor, expected_version=99
            ),
            "unknown revision": lambda: services.transition_revision(
                order_id=order.id, revision_id=missing, actor=self.other_tailor, action="approve"
            ),
            "unknown milestone": lambda: services.mark_milestone_paid(
                order_id=order.id, milestone_id=missing, actor=self.other_customer
            ),
            "unknown dispute": lambda: services.resolve_dispute(
                order_id=order.id, dispute_id=missing, actor=self.other_customer, status="resolved", resolution="x"
            ),
            "unknown alteration": lambda: services.update_alteration(
                order_id=order.id, alteration_id=missing, actor=self.other_tailor, status="rejected"
            ),
            "unknown refund": lambda: services.process_refund(
                order_id=order.id, refund_id=missing, actor=self.other_tailor, status="rejected"
            ),
        }

        for name, attempt in attempts.items():
            with self.subTest(attempt=name):
                with self.assertRaises(Unauthorized) as caught:
                    attempt()
                self.assertNotIn("current_version", caught.exception.context)
                self.assertNotIn("entity", caught.exception.context)

        order.refresh_from_db()
        self.assertEqual(order.version, 1)
        self.assertEqual(self.timeline_count(order), 1)


class OverdueMilestoneCommandTests(OrderEngineTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.yesterday = timezone.now() - timedelta(days=1)

    def milestone(self, order, amount, due_date, paid=False):
        services.add_milestone(
            order_id=order.id, actor=self.customer, milestone="deposit", amount=amount, due_date=due_date
        )
        entry = order.payment_schedule.get(amount=Decimal(amount))
        if paid:
            services.mark_milestone_paid(order_id=order.id, milestone_id=entry.id, actor=self.customer)
        return entry

    def test_reports_only_unpaid_overdue_milestones_on_live_orders(self):
        active = self.place_order()
        self.milestone(active, "60.00", self.yesterday)
        self.milestone(active, "40.00", self.yesterday, paid=True)
        self.milestone(active, "20.00", timezone.now() + timedelta(days=7))
        cancelled = self.place_order()
        self.milestone(cancelled, "75.00", self.yesterday)
        self.advance(cancelled, OrderStatus.CANCELLED, actor=self.customer, cancellation_reason="Moved abroad")

        out = StringIO()
        call_command("report_overdue_milestones", stdout=out)

        lines = out.getvalue().strip().splitlines()
        self.assertEqual(len(lines), 2)
        self.assertIn(active.order_number, lines[0])
        self.assertIn("60.00", lines[0])
        self.assertIn("Overdue milestones: 1", lines[1])
        self.assertFalse(AuditLog.objects.filter(action="milestone.overdue").exists())

    def test_audit_flag_writes_one_entry_per_overdue_milestone(self):
        order = self.place_order()
        entry = self.milestone(order, "60.00", self.yesterday)
        order.refresh_from_db()

        call_command("report_overdue_milestones", "--audit", stdout=StringIO())

        log = AuditLog.objects.get(action="milestone.overdue")
        self.assertIsNone(log.actor)
        self.assertEqual(log.entity_id, str(order.id))
        self.assertEqual(log.order_version, order.version)
        self.assertEqual(log.payload, {"milestone_id": str(entry.id), "amount": "60.00"})
