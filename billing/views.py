import logging

from django.contrib.auth import get_user_model
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from accounts.permissions import RolePermission
from accounts.policy import EVERYONE, authorize, roles_for
from core.exceptions import NotFoundError, ValidationError

from .models import Plan, Receipt, Service
from .serializers import (
    AddDiscountSerializer,
    CancelSerializer,
    ChangePlanSerializer,
    ClientServiceSerializer,
    CompleteInstallationSerializer,
    DataUsageSerializer,
    InternalNoteSerializer,
    LateFeeSerializer,
    NotesSerializer,
    PartialPaymentInputSerializer,
    PlanChangeSerializer,
    PlanSerializer,
    ProcessPaymentSerializer,
    ReceiptCreateSerializer,
    ReceiptFilterSerializer,
    ReceiptSerializer,
    ReceiptStatsQuerySerializer,
    RefundSerializer,
    RevenueReportQuerySerializer,
    ServiceCreateSerializer,
    ServiceDiscountSerializer,
    ServiceSerializer,
    SuspendSerializer,
)

User = get_user_model()
logger = logging.getLogger(__name__)


class BaseAuthPermission(permissions.IsAuthenticated):
    pass


@extend_schema(tags=["plans"])
class PlanViewSet(viewsets.ModelViewSet):
    """
    Internet plan catalog. Anyone signed in can browse active plans;
    admins and supervisors manage the catalog.
    """

    queryset = Plan.objects.all()
    serializer_class = PlanSerializer
    permission_classes = [BaseAuthPermission, RolePermission]
    allowed_roles = roles_for("plan.manage")
    action_roles = {"list": EVERYONE, "retrieve": EVERYONE}

    def get_queryset(self):
        queryset = super().get_queryset()
        if getattr(self.request.user, "role", None) not in roles_for("plan.manage"):
            return queryset.filter(is_active=True)
        return queryset


@extend_schema(tags=["services"])
class ServiceViewSet(viewsets.ModelViewSet):
    queryset = Service.objects.select_related("client", "plan").prefetch_related(
        "discounts", "plan_changes", "suspensions", "usage_history"
    )
    permission_classes = [BaseAuthPermission, RolePermission]
    http_method_names = ["get", "post", "put", "patch", "head", "options"]
    allowed_roles = roles_for("service.view_all")
    action_roles = {
        "list": EVERYONE,
        "retrieve": EVERYONE,
        "cost": EVERYONE,
        "my_dashboard": EVERYONE,
        "create": roles_for("service.create"),
        "update": roles_for("service.update"),
        "partial_update": roles_for("service.update"),
        "complete_installation": roles_for("service.complete_installation"),
        "suspend": roles_for("service.suspend"),
        "reactivate": roles_for("service.reactivate"),
        "change_plan": roles_for("service.change_plan"),
        "data_usage": roles_for("service.record_usage"),
        "close_month": roles_for("service.record_usage"),
        "notes": roles_for("service.add_note"),
        "discounts": roles_for("service.add_discount"),
        "cancel": roles_for("service.cancel"),
        "stats": roles_for("service.stats"),
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        if getattr(self, "swagger_fake_view", False):
            return queryset.none()
        return queryset.visible_to(self.request.user)

    def get_serializer_class(self):
        if self.action == "create":
            return ServiceCreateSerializer
        if getattr(self.request.user, "role", None) == User.Roles.CLIENT:
            return ClientServiceSerializer
        return ServiceSerializer

    def create(self, request, *args, **kwargs):
        serializer = ServiceCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        service = Service.objects.create_subscription(
            client=data["client"],
            plan=data["plan"],
            actor=request.user,
            installation=data.get("installation"),
            connection=data.get("connection"),
            contract=data.get("contract"),
            billing=data.get("billing"),
        )
        return Response(ServiceSerializer(service).data, status=status.HTTP_201_CREATED)

    def perform_update(self, serializer):
        authorize(self.request.user, "service.update")
        service = serializer.instance
        for field, value in serializer.validated_data.items():
            setattr(service, field, value)
        service.updated_by = self.request.user
        # Usage and balance columns are maintained with F() updates.
        service.save(
            update_fields=[*serializer.validated_data, "updated_by", "updated_at"]
        )

    def _respond(self, service):
        service.refresh_from_db()
        return Response(ServiceSerializer(service).data)

    @extend_schema(request=CompleteInstallationSerializer, responses=ServiceSerializer)
    @action(detail=True, methods=["post"], url_path="complete-installation")
    def complete_installation(self, request, pk=None):
        service = self.get_object()
        serializer = CompleteInstallationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        service.complete_installation(
            request.user,
            equipment_installed=data.get("equipment_installed", []),
            ip_address=data.get("ip_address"),
            notes=data["notes"],
            photos=data["photos"],
            signature=data["signature"],
        )
        return self._respond(service)

    @extend_schema(request=SuspendSerializer, responses=ServiceSerializer)
    @action(detail=True, methods=["post"])
    def suspend(self, request, pk=None):
        service = self.get_object()
        serializer = SuspendSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        service.suspend(
            serializer.validated_data["reason"],
            request.user,
            notes=serializer.validated_data["notes"],
        )
        return self._respond(service)

    @extend_schema(request=NotesSerializer, responses=ServiceSerializer)
    @action(detail=True, methods=["post"])
    def reactivate(self, request, pk=None):
        service = self.get_object()
        serializer = NotesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        service.reactivate(request.user, notes=serializer.validated_data["notes"])
        return self._respond(service)

    @extend_schema(request=ChangePlanSerializer, responses=PlanChangeSerializer)
    @action(detail=True, methods=["post"], url_path="change-plan")
    def change_plan(self, request, pk=None):
        service = self.get_object()
        serializer = ChangePlanSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        change = service.change_plan(
            data["plan"],
            request.user,
            reason=data["reason"],
            effective_date=data.get("effective_date"),
        )
        return Response(PlanChangeSerializer(change).data)

    @extend_schema(request=DataUsageSerializer, responses=ServiceSerializer)
    @action(detail=True, methods=["post"], url_path="data-usage")
    def data_usage(self, request, pk=None):
        service = self.get_object()
        serializer = DataUsageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        service.record_data_usage(
            serializer.validated_data["download_gb"],
            serializer.validated_data["upload_gb"],
            request.user,
        )
        return Response(
            {
                "usage_total_gb": service.usage_total_gb,
                "usage_percent": service.data_usage_percent(),
                "over_limit": service.is_over_data_limit(),
            }
        )

    @action(detail=True, methods=["post"], url_path="close-month")
    def close_month(self, request, pk=None):
        service = self.get_object()
        record = service.close_usage_month(request.user, month=request.data.get("month"))
        return Response(
            {"month": record.month, "total_gb": record.total_gb, "overage_gb": record.overage_gb},
            status=status.HTTP_201_CREATED,
        )

    @extend_schema(request=InternalNoteSerializer, responses=InternalNoteSerializer)
    @action(detail=True, methods=["get", "post"])
    def notes(self, request, pk=None):
        service = self.get_object()
        if request.method == "GET":
            return Response(
                InternalNoteSerializer(service.internal_notes.all(), many=True).data
            )
        serializer = InternalNoteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        note = service.add_internal_note(
            serializer.validated_data["note"],
            request.user,
            is_important=serializer.validated_data.get("is_important", False),
        )
        return Response(InternalNoteSerializer(note).data, status=status.HTTP_201_CREATED)

    @extend_schema(request=AddDiscountSerializer, responses=ServiceDiscountSerializer)
    @action(detail=True, methods=["post"])
    def discounts(self, request, pk=None):
        service = self.get_object()
        serializer = AddDiscountSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        discount = service.add_discount(request.user, **serializer.validated_data)
        return Response(
            ServiceDiscountSerializer(discount).data, status=status.HTTP_201_CREATED
        )

    @extend_schema(request=CancelSerializer, responses=ServiceSerializer)
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        service = self.get_object()
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        service.cancel(request.user, reason=serializer.validated_data["reason"])
        return self._respond(service)

    @extend_schema(summary="Current monthly cost after discounts")
    @action(detail=True, methods=["get"])
    def cost(self, request, pk=None):
        service = self.get_object()
        return Response(
            {
                "service_code": service.service_code,
                "monthly_fee": service.billing_monthly_fee,
                "current_monthly_cost": service.current_monthly_cost(),
            }
        )

    @extend_schema(
        summary="Dashboard of the client's current service",
        parameters=[
            OpenApiParameter("client", int, description="Client id (staff only)")
        ],
    )
    @action(detail=False, methods=["get"], url_path="my-dashboard")
    def my_dashboard(self, request):
        if request.user.role == User.Roles.CLIENT:
            client = request.user
        else:
            client_id = request.query_params.get("client", "")
            if not client_id.isdigit():
                raise ValidationError("client is required for staff users.")
            client = User.objects.filter(pk=client_id).first()
        service = self.get_queryset().current_for(client) if client else None
        if service is None:
            raise NotFoundError("No active service found.")
        return Response(service.dashboard())

    @action(detail=False, methods=["get"], url_path="pending-installations")
    def pending_installations(self, request):
        services = self.get_queryset().pending_installations()
        return Response(ServiceSerializer(services, many=True).data)

    @action(detail=False, methods=["get"])
    def stats(self, request):
        return Response(Service.objects.stats())


@extend_schema(tags=["receipts"])
class ReceiptViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Receipt.objects.select_related("client").prefetch_related(
        "service_lines__service",
        "additional_charges",
        "discounts",
        "taxes",
        "partial_payments",
    )
    serializer_class = ReceiptSerializer
    permission_classes = [BaseAuthPermission, RolePermission]
    allowed_roles = roles_for("receipt.view_all")
    action_roles = {
        "list": EVERYONE,
        "retrieve": EVERYONE,
        "create": roles_for("receipt.create"),
        "partial_payment": roles_for("receipt.partial"),
        "process": roles_for("receipt.process"),
        "refund": roles_for("receipt.refund"),
        "late_fee": roles_for("receipt.late_fee"),
        "overdue": roles_for("receipt.view_all"),
        "stats": roles_for("receipt.stats"),
        "revenue_report": roles_for("receipt.reports"),
        "collection_report": roles_for("receipt.reports"),
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        if getattr(self, "swagger_fake_view", False):
            return queryset.none()
        return queryset.visible_to(self.request.user)

    def filter_queryset(self, queryset):
        queryset = super().filter_queryset(queryset)
        if self.action != "list":
            return queryset
        params = ReceiptFilterSerializer(data=self.request.query_params)
        params.is_valid(raise_exception=True)
        return queryset.filtered(**params.validated_data)

    @extend_schema(parameters=[ReceiptFilterSerializer])
    def list(self, request, *args, **kwargs):
        return super().list(request, *args, **kwargs)

    @extend_schema(request=ReceiptCreateSerializer, responses={201: ReceiptSerializer})
    def create(self, request, *args, **kwargs):
        serializer = ReceiptCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        receipt = Receipt.objects.create_receipt(
            client=data["client"],
            actor=request.user,
            line_items=data["line_items"],
            additional_charges=data.get("additional_charges"),
            discounts=data.get("discounts"),
            tax_rate=data.get("tax_rate"),
            due_date=data.get("due_date"),
            payment_method=data["payment_method"],
            notes=data["notes"],
        )
        return Response(ReceiptSerializer(receipt).data, status=status.HTTP_201_CREATED)

    def _respond(self, receipt):
        receipt.refresh_from_db()
        return Response(ReceiptSerializer(receipt).data)

    @extend_schema(request=PartialPaymentInputSerializer, responses=ReceiptSerializer)
    @action(detail=True, methods=["post"], url_path="partial-payment")
    def partial_payment(self, request, pk=None):
        receipt = self.get_object()
        serializer = PartialPaymentInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        receipt.add_partial_payment(request.user, **serializer.validated_data)
        return self._respond(receipt)

    @extend_schema(request=ProcessPaymentSerializer, responses=ReceiptSerializer)
    @action(detail=True, methods=["post"])
    def process(self, request, pk=None):
        receipt = self.get_object()
        serializer = ProcessPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        receipt.process_full_payment(request.user, **serializer.validated_data)
        return self._respond(receipt)

    @extend_schema(request=RefundSerializer, responses=ReceiptSerializer)
    @action(detail=True, methods=["post"])
    def refund(self, request, pk=None):
        receipt = self.get_object()
        serializer = RefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        receipt.process_refund(
            request.user,
            serializer.validated_data["reason"],
            amount=serializer.validated_data.get("amount"),
        )
        return self._respond(receipt)

    @extend_schema(request=LateFeeSerializer, responses=ReceiptSerializer)
    @action(detail=True, methods=["post"], url_path="late-fee")
    def late_fee(self, request, pk=None):
        receipt = self.get_object()
        serializer = LateFeeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        receipt.apply_late_fee(request.user, serializer.validated_data["rate"])
        return self._respond(receipt)

    @action(detail=False, methods=["get"])
    def overdue(self, request):
        receipts = self.get_queryset().overdue()
        return Response(ReceiptSerializer(receipts, many=True).data)

    @extend_schema(parameters=[ReceiptStatsQuerySerializer])
    @action(detail=False, methods=["get"])
    def stats(self, request):
        params = ReceiptStatsQuerySerializer(data=request.query_params)
        params.is_valid(raise_exception=True)
        period = params.validated_data.get("period")
        return Response(Receipt.objects.stats(period=period))

    @extend_schema(parameters=[RevenueReportQuerySerializer])
    @action(detail=False, methods=["get"], url_path="revenue-report")
    def revenue_report(self, request):
        params = RevenueReportQuerySerializer(data=request.query_params)
        params.is_valid(raise_exception=True)
        return Response(Receipt.objects.revenue_report(**params.validated_data))

    @action(detail=False, methods=["get"], url_path="collection-report")
    def collection_report(self, request):
        return Response(Receipt.objects.collection_report())
