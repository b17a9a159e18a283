from decimal import Decimal

from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from rest_framework.test import APITestCase

from apps.audit.models import AuditLog
from apps.orders.models import Order, OrderStatus, RevisionStatus
from apps.orders.notifications import InMemoryNotifier

User = get_user_model()


class OrderApiTests(APITestCase):
    def setUp(self):
        self.customer = User.objects.create_user(username="customer_api", password="customer123", role="CUSTOMER")
        self.tailor = User.objects.create_user(
            username="tailor_api", password="tailor123", role="TAILOR", shop_name="Lahore Darzi"
        )
        self.outsider = User.objects.create_user(username="outsider_api", password="outsider123", role="CUSTOMER")
        self.admin = User.objects.create_user(username="admin_api", password="admin123", role="ADMIN")
        InMemoryNotifier.outbox.clear()

    def auth_as(self, username, password):
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def create_order(self):
        self.auth_as("customer_api", "customer123")
        response = self.client.post(
            "/api/v1/orders/",
            {
                "tailor": self.tailor.id,
                "service_type": "premium",
                "garment_type": "Bridal lehenga",
                "quantity": 1,
                "base_price": "450.00",
                "fabric_cost": "120.00",
                "discount": "20.00",
            },
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        return response

    def put_status(self, order_id, target, **extra):
        return self.client.put(
            f"/api/v1/orders/{order_id}/status/",
            {"target_status": target, **extra},
            format="json",
        )

    def test_customer_places_order(self):
        response = self.create_order()

        self.assertTrue(response.data["order_number"].startswith("ORD-"))
        self.assertEqual(response.data["status"], OrderStatus.PENDING)
        self.assertEqual(response.data["version"], 1)
        self.assertEqual(Decimal(response.data["total_price"]), Decimal("550.00"))
        self.assertEqual(Decimal(response.data["balance_due"]), Decimal("550.00"))
        self.assertEqual(response.data["tailor"]["shop_name"], "Lahore Darzi")
        self.assertEqual(len(response.data["timeline"]), 1)
        self.assertEqual(sorted(response.data["next_statuses"]), ["cancelled", "consultation_scheduled"])
        self.assertTrue(AuditLog.objects.filter(action="order.placed", entity_id=response.data["id"]).exists())

    def test_tailor_cannot_place_orders(self):
        self.auth_as("tailor_api", "tailor123")
        response = self.client.post(
            "/api/v1/orders/",
            {"tailor": self.tailor.id, "garment_type": "Kurta", "base_price": "10.00"},
            format="json",
        )
        self.assertEqual(response.status_code, 403)
        self.assertFalse(Order.objects.exists())

    def test_invalid_payload_uses_error_envelope(self):
        self.auth_as("customer_api", "customer123")
        response = self.client.post("/api/v1/orders/", {"tailor": self.tailor.id}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "validation_error")
        self.assertIn("garment_type", response.data["fields"])
        self.assertIn("base_price", response.data["fields"])

    def test_tailor_choice_follows_effective_role(self):
        promoted = User.objects.create_user(username="group_tailor", password="tailor123", role="CUSTOMER")
        promoted.groups.add(Group.objects.create(name="TAILOR"))
        demoted = User.objects.create_user(username="ops_tailor", password="tailor123", role="TAILOR")
        demoted.groups.add(Group.objects.create(name="ADMIN"))
        self.auth_as("customer_api", "customer123")

        response = self.client.post(
            "/api/v1/orders/",
            {"tailor": promoted.id, "garment_type": "Waistcoat", "base_price": "80.00"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["tailor"]["id"], promoted.id)

        response = self.client.post(
            "/api/v1/orders/",
            {"tailor": demoted.id, "garment_type": "Waistcoat", "base_price": "80.00"},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "validation_error")
        self.assertEqual(response.data["fields"]["field"], "tailor")
        self.assertEqual(Order.objects.count(), 1)

    def test_list_only_shows_own_orders(self):
        order_id = self.create_order().data["id"]

        self.auth_as("tailor_api", "tailor123")
        response = self.client.get("/api/v1/orders/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["id"] for row in response.data["results"]], [order_id])

        self.auth_as("outsider_api", "outsider123")
        response = self.client.get("/api/v1/orders/")
        self.assertEqual(response.data["count"], 0)

        self.auth_as("admin_api", "admin123")
        response = self.client.get("/api/v1/orders/")
        self.assertEqual(response.data["count"], 1)

    def test_outsider_cannot_read_or_change_order(self):
        order_id = self.create_order().data["id"]

        self.auth_as("outsider_api", "outsider123")
        response = self.client.get(f"/api/v1/orders/{order_id}/")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data["code"], "unauthorized")

        response = self.put_status(order_id, "cancelled", cancellation_reason="Not mine")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data["code"], "unauthorized")
        self.assertEqual(response.data["fields"]["operation"], "order.cancel")

        response = self.put_status(order_id, "cancelled", cancellation_reason="Not mine", version=99)
        self.assertEqual(response.status_code, 403)
        self.assertNotIn("current_version", response.data["fields"])
        self.assertEqual(Order.objects.get(pk=order_id).status, OrderStatus.PENDING)

    def test_unknown_order_returns_not_found(self):
        self.auth_as("customer_api", "customer123")
        response = self.client.get("/api/v1/orders/2b1f7a4e-0000-4000-8000-000000000000/")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data["code"], "not_found")

    def test_status_flow_with_versions(self):
        order_id = self.create_order().data["id"]

        self.auth_as("tailor_api", "tailor123")
        response = self.put_status(order_id, "consultation_scheduled", version=1, notes="Saturday 11am")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], "consultation_scheduled")
        self.assertEqual(response.data["version"], 2)
        self.assertEqual(response.data["timeline"][-1]["description"], "Saturday 11am")

        stale = self.put_status(order_id, "consultation_completed", version=1)
        self.assertEqual(stale.status_code, 409)
        self.assertEqual(stale.data["code"], "conflict")
        self.assertEqual(stale.data["fields"]["current_version"], 2)

        invalid = self.put_status(order_id, "completed", version=2)
        self.assertEqual(invalid.status_code, 400)
        self.assertEqual(invalid.data["code"], "invalid_transition")
        self.assertEqual(invalid.data["fields"]["current_state"], "consultation_scheduled")
        self.assertEqual(invalid.data["fields"]["attempted_state"], "completed")

        order = Order.objects.get(pk=order_id)
        self.assertEqual(order.version, 2)
        self.assertEqual(order.timeline.count(), 2)

    def test_revision_endpoints(self):
        order_id = self.create_order().data["id"]
        Order.objects.filter(pk=order_id).update(status=OrderStatus.IN_PROGRESS)

        self.auth_as("customer_api", "customer123")
        response = self.client.post(
            f"/api/v1/orders/{order_id}/revisions/",
            {"description": "Lengthen the dupatta", "images": ["https://cdn.example.com/ref.jpg"]},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["status"], OrderStatus.REVISION_REQUESTED)
        revision_id = response.data["revisions"][0]["id"]

        self.auth_as("tailor_api", "tailor123")
        response = self.client.put(f"/api/v1/orders/{order_id}/revisions/{revision_id}/approve/", {}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], OrderStatus.IN_PROGRESS)
        self.assertEqual(response.data["revisions"][0]["status"], RevisionStatus.APPROVED)

        again = self.client.put(f"/api/v1/orders/{order_id}/revisions/{revision_id}/approve/", {}, format="json")
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.data["code"], "already_processed")

        unknown = self.client.put(f"/api/v1/orders/{order_id}/revisions/{revision_id}/archive/", {}, format="json")
        self.assertEqual(unknown.status_code, 404)

    def test_payments_and_refunds(self):
        order_id = self.create_order().data["id"]

        self.auth_as("customer_api", "customer123")
        response = self.client.post(
            f"/api/v1/orders/{order_id}/payments/",
            {"milestone": "deposit", "amount": "200.00", "due_date": "2030-01-01T00:00:00Z"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        milestone_id = response.data["payment_schedule"][0]["id"]
        self.assertFalse(response.data["payment_schedule"][0]["is_overdue"])

        response = self.client.put(
            f"/api/v1/orders/{order_id}/payments/{milestone_id}/paid/",
            {"transaction_id": "JAZZ-001"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.data["total_paid"]), Decimal("200.00"))

        response = self.client.put(f"/api/v1/orders/{order_id}/payments/{milestone_id}/paid/", {}, format="json")
        self.assertEqual(response.status_code, 409)

        response = self.client.post(
            f"/api/v1/orders/{order_id}/refunds/",
            {"reason": "customer_change_mind", "description": "Wedding postponed", "requested_amount": "400.00"},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "validation_error")
        self.assertEqual(response.data["fields"]["refundable_amount"], "350.00")

        response = self.client.post(
            f"/api/v1/orders/{order_id}/refunds/",
            {"reason": "customer_change_mind", "description": "Wedding postponed"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        refund_id = response.data["refunds"][0]["id"]
        self.assertEqual(Decimal(response.data["refunds"][0]["requested_amount"]), Decimal("350.00"))

        self.auth_as("admin_api", "admin123")
        response = self.client.put(
            f"/api/v1/orders/{order_id}/refunds/{refund_id}/process/",
            {"status": "approved", "transaction_id": "RF-77"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["refunds"][0]["status"], "approved")

    def test_dispute_resolution_guard(self):
        order_id = self.create_order().data["id"]

        self.auth_as("tailor_api", "tailor123")
        response = self.client.post(
            f"/api/v1/orders/{order_id}/disputes/",
            {"reason": "other", "description": "Customer missed three fittings"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        dispute_id = response.data["disputes"][0]["id"]

        response = self.client.put(
            f"/api/v1/orders/{order_id}/disputes/{dispute_id}/resolve/",
            {"status": "resolved", "resolution": "Sorted"},
            format="json",
        )
        self.assertEqual(response.status_code, 403)

        self.auth_as("admin_api", "admin123")
        response = self.client.put(
            f"/api/v1/orders/{order_id}/disputes/{dispute_id}/resolve/",
            {"status": "resolved", "resolution": "Fittings rescheduled"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["disputes"][0]["status"], "resolved")

    def test_alteration_endpoints(self):
        order_id = self.create_order().data["id"]
        Order.objects.filter(pk=order_id).update(status=OrderStatus.COMPLETED)

        self.auth_as("customer_api", "customer123")
        response = self.client.post(
            f"/api/v1/orders/{order_id}/alterations/",
            {"description": "Loosen the waist", "urgency": "low"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        alteration_id = response.data["alterations"][0]["id"]

        self.auth_as("tailor_api", "tailor123")
        response = self.client.put(
            f"/api/v1/orders/{order_id}/alterations/{alteration_id}/",
            {"status": "approved", "estimated_cost": "25.00", "estimated_time": 2},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["alterations"][0]["status"], "approved")
        self.assertEqual(response.data["alterations"][0]["estimated_time"], 2)

    def test_private_notes_are_redacted_for_the_other_party(self):
        order_id = self.create_order().data["id"]

        response = self.client.put(f"/api/v1/orders/{order_id}/notes/", {"notes": "Max budget 600"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["customer_private_notes"], "Max budget 600")
        self.assertNotIn("tailor_private_notes", response.data)

        self.auth_as("tailor_api", "tailor123")
        self.client.put(f"/api/v1/orders/{order_id}/notes/", {"notes": "Regular client"}, format="json")
        response = self.client.get(f"/api/v1/orders/{order_id}/")
        self.assertEqual(response.data["tailor_private_notes"], "Regular client")
        self.assertNotIn("customer_private_notes", response.data)

    def test_passive_field_endpoints(self):
        order_id = self.create_order().data["id"]

        response = self.client.put(
            f"/api/v1/orders/{order_id}/delivery/",
            {"delivery_city": "Islamabad", "delivery_method": "courier", "delivery_provider": "TCS"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["delivery_city"], "Islamabad")
        self.assertEqual(response.data["delivery_method"], "courier")

        response = self.client.put(
            f"/api/v1/orders/{order_id}/emergency-contact/",
            {"emergency_contact_name": "Farah", "emergency_contact_phone": "0321-0000000"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["emergency_contact_name"], "Farah")

        response = self.client.put(
            f"/api/v1/orders/{order_id}/consultation/",
            {"consultation_type": "video", "consultation_link": "https://meet.example.com/fit"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)

        response = self.client.put(f"/api/v1/orders/{order_id}/pricing/", {"discount": "0"}, format="json")
        self.assertEqual(response.status_code, 403)

        self.auth_as("tailor_api", "tailor123")
        response = self.client.put(
            f"/api/v1/orders/{order_id}/pricing/",
            {"additional_charges": "30.00"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.data["total_price"]), Decimal("580.00"))

        response = self.client.put(
            f"/api/v1/orders/{order_id}/fabric/",
            {"fabric_type": "Chiffon", "fabric_color": "Maroon", "fabric_quantity": "6.50"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["fabric_selected"])
        self.assertEqual(response.data["version"], 6)
        self.assertEqual(len(response.data["timeline"]), 6)

    def test_accepted_operation_notifies_counterparty(self):
        order_id = self.create_order().data["id"]
        InMemoryNotifier.outbox.clear()

        self.auth_as("tailor_api", "tailor123")
        with self.captureOnCommitCallbacks(execute=True):
            response = self.put_status(order_id, "consultation_scheduled")
        self.assertEqual(response.status_code, 200)

        self.assertEqual([event.name for event in InMemoryNotifier.outbox], ["status.consultation_scheduled"])
        self.assertEqual(InMemoryNotifier.outbox[0].recipient_ids, (self.customer.pk,))

    def test_consultation_booking_endpoints(self):
        order_id = self.create_order().data["id"]

        response = self.client.put(
            f"/api/v1/orders/{order_id}/consultation/schedule/",
            {"consultation_date": "2026-11-02T15:00:00Z", "consultation_type": "video", "version": 1},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["consultation_status"], "scheduled")
        self.assertEqual(response.data["consultation_requested_by"], self.customer.id)
        self.assertEqual(response.data["status"], OrderStatus.PENDING)

        self.auth_as("tailor_api", "tailor123")
        response = self.client.put(
            f"/api/v1/orders/{order_id}/consultation/reschedule/",
            {"consultation_date": "2026-11-03T10:00:00Z"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["consultation_status"], "rescheduled")

        response = self.client.put(f"/api/v1/orders/{order_id}/consultation/status/", {"status": "scheduled"}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["code"], "validation_error")

        response = self.client.put(f"/api/v1/orders/{order_id}/consultation/status/", {"status": "completed"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["consultation_status"], "completed")
        self.assertEqual(response.data["version"], 4)

        self.auth_as("outsider_api", "outsider123")
        response = self.client.put(f"/api/v1/orders/{order_id}/consultation/status/", {"status": "cancelled"}, format="json")
        self.assertEqual(response.status_code, 403)
