from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from apps.common.permissions import RolePermission
from apps.orders import services
from apps.orders.serializers import (
    AlterationCreateSerializer,
    AlterationUpdateSerializer,
    ConsultationRescheduleSerializer,
    ConsultationScheduleSerializer,
    ConsultationSerializer,
    ConsultationStatusSerializer,
    DeliverySerializer,
    DisputeCreateSerializer,
    DisputeResolveSerializer,
    EmergencyContactSerializer,
    FabricSerializer,
    MilestoneCreateSerializer,
    MilestonePaidSerializer,
    OrderCreateSerializer,
    OrderListSerializer,
    OrderSerializer,
    PricingSerializer,
    PrivateNotesSerializer,
    RefundCreateSerializer,
    RefundProcessSerializer,
    RevisionActionSerializer,
    RevisionOpenSerializer,
    StatusChangeSerializer,
)

PARTICIPANT = ["orders.participate", "orders.arbitrate"]


class OrderViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = OrderSerializer
    permission_classes = [RolePermission]
    capability_map = {
        "list": ["orders.view"],
        "retrieve": ["orders.view"],
        "create": ["orders.create"],
        "change_status": PARTICIPANT,
        "revisions": PARTICIPANT,
        "revision_action": PARTICIPANT,
        "payments": PARTICIPANT,
        "mark_paid": PARTICIPANT,
        "disputes": PARTICIPANT,
        "resolve_dispute": PARTICIPANT,
        "alterations": PARTICIPANT,
        "update_alteration": PARTICIPANT,
        "refunds": PARTICIPANT,
        "process_refund": PARTICIPANT,
        "delivery": PARTICIPANT,
        "emergency_contact": PARTICIPANT,
        "pricing": PARTICIPANT,
        "consultation": PARTICIPANT,
        "schedule_consultation": PARTICIPANT,
        "reschedule_consultation": PARTICIPANT,
        "consultation_status": PARTICIPANT,
        "fabric": PARTICIPANT,
        "notes": PARTICIPANT,
    }

    def get_queryset(self):
        queryset = services.orders_visible_to(self.request.user)
        status_param = self.request.query_params.get("status")
        role_param = self.request.query_params.get("as")
        if status_param:
            queryset = queryset.filter(status=status_param)
        if role_param == "customer":
            queryset = queryset.filter(customer=self.request.user)
        elif role_param == "tailor":
            queryset = queryset.filter(tailor=self.request.user)
        return queryset

    def get_serializer_class(self):
        if self.action == "list":
            return OrderListSerializer
        if self.action == "create":
            return OrderCreateSerializer
        return OrderSerializer

    def retrieve(self, request, *args, **kwargs):
        order = services.get_order(order_id=kwargs["pk"], actor=request.user)
        return self._render(order)

    def create(self, request, *args, **kwargs):
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = services.create_order(customer=request.user, **serializer.validated_data)
        return self._render(order, status_code=status.HTTP_201_CREATED)

    def _render(self, order, status_code=status.HTTP_200_OK):
        order = services.order_queryset().get(pk=order.pk)
        return Response(OrderSerializer(order, context=self.get_serializer_context()).data, status=status_code)

    @staticmethod
    def _validated(serializer_class, request):
        serializer = serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        expected_version = data.pop("version", None)
        return data, expected_version

    @action(detail=True, methods=["put"], url_path="status")
    def change_status(self, request, pk=None):
        data, version = self._validated(StatusChangeSerializer, request)
        order = services.advance_status(
            order_id=pk,
            actor=request.user,
            target_status=data["target_status"],
            notes=data["notes"],
            cancellation_reason=data["cancellation_reason"],
            expected_version=version,
        )
        return self._render(order)

    @action(detail=True, methods=["post"])
    def revisions(self, request, pk=None):
        data, version = self._validated(RevisionOpenSerializer, request)
        order = services.open_revision(order_id=pk, actor=request.user, expected_version=version, **data)
        return self._render(order, status_code=status.HTTP_201_CREATED)

    @action(
        detail=True,
        methods=["put"],
        url_path=r"revisions/(?P<revision_id>[^/.]+)/(?P<verb>[a-z-]+)",
    )
    def revision_action(self, request, pk=None, revision_id=None, verb=None):
        data, version = self._validated(RevisionActionSerializer, request)
        order = services.transition_revision(
            order_id=pk,
            revision_id=revision_id,
            actor=request.user,
            action=verb,
            expected_version=version,
            **data,
        )
        return self._render(order)

    @action(detail=True, methods=["post"])
    def payments(self, request, pk=None):
        data, version = self._validated(MilestoneCreateSerializer, request)
        order = services.add_milestone(order_id=pk, actor=request.user, expected_version=version, **data)
        return self._render(order, status_code=status.HTTP_201_CREATED)

    @action(detail=True, methods=["put"], url_path=r"payments/(?P<milestone_id>[^/.]+)/paid")
    def mark_paid(self, request, pk=None, milestone_id=None):
        data, version = self._validated(MilestonePaidSerializer, request)
        order = services.mark_milestone_paid(
            order_id=pk,
            milestone_id=milestone_id,
            actor=request.user,
            expected_version=version,
            **data,
        )
        return self._render(order)

    @action(detail=True, methods=["post"])
    def disputes(self, request, pk=None):
        data, version = self._validated(DisputeCreateSerializer, request)
        order = services.raise_dispute(order_id=pk, actor=request.user, expected_version=version, **data)
        return self._render(order, status_code=status.HTTP_201_CREATED)

    @action(detail=True, methods=["put"], url_path=r"disputes/(?P<dispute_id>[^/.]+)/resolve")
    def resolve_dispute(self, request, pk=None, dispute_id=None):
        data, version = self._validated(DisputeResolveSerializer, request)
        order = services.resolve_dispute(
            order_id=pk,
            dispute_id=dispute_id,
            actor=request.user,
            expected_version=version,
            **data,
        )
        return self._render(order)

    @action(detail=True, methods=["post"])
    def alterations(self, request, pk=None):
        data, version = self._validated(AlterationCreateSerializer, request)
        order = services.request_alteration(order_id=pk, actor=request.user, expected_version=version, **data)
        return self._render(order, status_code=status.HTTP_201_CREATED)

    @action(detail=True, methods=["put"], url_path=r"alterations/(?P<alteration_id>[^/.]+)")
    def update_alteration(self, request, pk=None, alteration_id=None):
        data, version = self._validated(AlterationUpdateSerializer, request)
        order = services.update_alteration(
            order_id=pk,
            alteration_id=alteration_id,
            actor=request.user,
            expected_version=version,
            **data,
        )
        return self._render(order)

    @action(detail=True, methods=["post"])
    def refunds(self, request, pk=None):
        data, version = self._validated(RefundCreateSerializer, request)
        order = services.request_refund(order_id=pk, actor=request.user, expected_version=version, **data)
        return self._render(order, status_code=status.HTTP_201_CREATED)

    @action(detail=True, methods=["put"], url_path=r"refunds/(?P<refund_id>[^/.]+)/process")
    def process_refund(self, request, pk=None, refund_id=None):
        data, version = self._validated(RefundProcessSerializer, request)
        order = services.process_refund(
            order_id=pk,
            refund_id=refund_id,
            actor=request.user,
            expected_version=version,
            **data,
        )
        return self._render(order)

    @action(detail=True, methods=["put"])
    def delivery(self, request, pk=None):
        data, version = self._validated(DeliverySerializer, request)
        order = services.update_delivery(order_id=pk, actor=request.user, changes=data, expected_version=version)
        return self._render(order)

    @action(detail=True, methods=["put"], url_path="emergency-contact")
    def emergency_contact(self, request, pk=None):
        data, version = self._validated(EmergencyContactSerializer, request)
        order = services.update_emergency_contact(order_id=pk, actor=request.user, changes=data, expected_version=version)
        return self._render(order)

    @action(detail=True, methods=["put"])
    def pricing(self, request, pk=None):
        data, version = self._validated(PricingSerializer, request)
        order = services.update_pricing(order_id=pk, actor=request.user, changes=data, expected_version=version)
        return self._render(order)

    @action(detail=True, methods=["put"])
    def consultation(self, request, pk=None):
        data, version = self._validated(ConsultationSerializer, request)
        order = services.update_consultation(order_id=pk, actor=request.user, changes=data, expected_version=version)
        return self._render(order)

    @action(detail=True, methods=["put"], url_path="consultation/schedule")
    def schedule_consultation(self, request, pk=None):
        data, version = self._validated(ConsultationScheduleSerializer, request)
        order = services.schedule_consultation(order_id=pk, actor=request.user, expected_version=version, **data)
        return self._render(order)

    @action(detail=True, methods=["put"], url_path="consultation/reschedule")
    def reschedule_consultation(self, request, pk=None):
        data, version = self._validated(ConsultationRescheduleSerializer, request)
        order = services.reschedule_consultation(order_id=pk, actor=request.user, expected_version=version, **data)
        return self._render(order)

    @action(detail=True, methods=["put"], url_path="consultation/status")
    def consultation_status(self, request, pk=None):
        data, version = self._validated(ConsultationStatusSerializer, request)
        order = services.update_consultation_status(order_id=pk, actor=request.user, expected_version=version, **data)
        return self._render(order)

    @action(detail=True, methods=["put"])
    def fabric(self, request, pk=None):
        data, version = self._validated(FabricSerializer, request)
        order = services.update_fabric(order_id=pk, actor=request.user, changes=data, expected_version=version)
        return self._render(order)

    @action(detail=True, methods=["put"])
    def notes(self, request, pk=None):
        data, version = self._validated(PrivateNotesSerializer, request)
        order = services.update_private_notes(
            order_id=pk,
            actor=request.user,
            notes=data["notes"],
            expected_version=version,
        )
        return self._render(order)
