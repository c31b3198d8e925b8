from django.db.models import Q
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.models import CashClosure, Customer, Invoice, PaymentMethod
from billing.serializers import (
    CashClosureCreateSerializer,
    CashClosureSerializer,
    CustomerSerializer,
    DailySummaryQuerySerializer,
    DailySummarySerializer,
    DeliveryAnalyticsQuerySerializer,
    DeliveryAnalyticsSerializer,
    DeliveryMetricsSerializer,
    InvoiceSerializer,
    InvoiceStatusSerializer,
    InvoiceTimestampSerializer,
    PaymentMethodSerializer,
)
from billing.services import (
    build_daily_report,
    change_invoice_status,
    coerce_date,
    create_cash_closure,
    day_bounds,
    delivery_analytics,
    delivery_metrics,
    get_cash_closure,
    invoice_timestamps,
    record_initial_status,
)
from common.audit import create_audit_log_from_request
from common.permissions import RoleCapabilityPermission


def _request_employee(request):
    return getattr(request.user, "employee", None) if request.user.is_authenticated else None


class AuditedMutationMixin:
    audit_entity = None

    def _audit(self, *, action, instance, before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=action,
            entity=self.audit_entity,
            entity_id=instance.pk,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )

    def perform_create(self, serializer):
        instance = serializer.save()
        self._audit(action=f"{self.audit_entity}.create", instance=instance, after_snapshot=self.get_serializer(instance).data)

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        self._audit(
            action=f"{self.audit_entity}.update",
            instance=instance,
            before_snapshot=before_snapshot,
            after_snapshot=self.get_serializer(instance).data,
        )

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        self._audit(action=f"{self.audit_entity}.delete", instance=instance, before_snapshot=before_snapshot)
        instance.delete()


class CustomerViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Customer.objects.order_by("name")
    serializer_class = CustomerSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "customers.view",
        "retrieve": "customers.view",
        "create": "customers.manage",
        "update": "customers.manage",
        "partial_update": "customers.manage",
        "destroy": "customers.delete",
    }
    audit_entity = "customer"

    def get_queryset(self):
        queryset = super().get_queryset()
        search = self.request.query_params.get("search")
        if search:
            queryset = queryset.filter(Q(name__icontains=search) | Q(phone__icontains=search))
        return queryset


class PaymentMethodViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = PaymentMethod.objects.order_by("id")
    serializer_class = PaymentMethodSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "catalog.view",
        "retrieve": "catalog.view",
        "create": "catalog.manage",
        "update": "catalog.manage",
        "partial_update": "catalog.manage",
        "destroy": "catalog.manage",
    }
    pagination_class = None
    audit_entity = "payment_method"


class InvoiceViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Invoice.objects.select_related("customer", "employee")
    serializer_class = InvoiceSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "invoices.view",
        "retrieve": "invoices.view",
        "create": "invoices.manage",
        "update": "invoices.manage",
        "partial_update": "invoices.manage",
        "destroy": "invoices.delete",
        "change_status": "invoices.manage",
        "timestamps": "invoices.view",
        "delivery_metrics": "invoices.view",
    }
    audit_entity = "invoice"

    def get_queryset(self):
        queryset = super().get_queryset().order_by("-date", "invoice_number")
        params = self.request.query_params

        day = params.get("date")
        if day:
            start, end = day_bounds(coerce_date(day, field="date"))
            queryset = queryset.filter(date__gte=start, date__lt=end)

        invoice_status = params.get("status")
        if invoice_status:
            queryset = queryset.filter(status=invoice_status)

        employee_id = params.get("employee")
        if employee_id:
            queryset = queryset.filter(employee_id=employee_id)
        return queryset

    def perform_create(self, serializer):
        employee = serializer.validated_data.get("employee") or _request_employee(self.request)
        instance = serializer.save(employee=employee)
        record_initial_status(instance, employee=employee)
        self._audit(action="invoice.create", instance=instance, after_snapshot=self.get_serializer(instance).data)

    def perform_destroy(self, instance):
        # Delivered invoices may already be part of a closed day.
        if instance.status == Invoice.Status.DELIVERED:
            raise ValidationError({"status": ["Delivered invoices cannot be deleted."]})
        super().perform_destroy(instance)

    @action(detail=True, methods=["post"], url_path="status")
    def change_status(self, request, pk=None):
        invoice = self.get_object()
        serializer = InvoiceStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        previous_status = invoice.status
        employee = serializer.validated_data.get("employee") or _request_employee(request)
        change_invoice_status(
            invoice,
            serializer.validated_data["status"],
            employee=employee,
            paid=serializer.validated_data.get("paid"),
        )
        payload = self.get_serializer(invoice).data
        self._audit(
            action="invoice.status",
            instance=invoice,
            before_snapshot={"status": previous_status},
            after_snapshot=payload,
        )
        return Response(payload)

    @action(detail=True, methods=["get"], url_path="timestamps", pagination_class=None)
    def timestamps(self, request, pk=None):
        invoice = self.get_object()
        return Response(InvoiceTimestampSerializer(invoice_timestamps(invoice), many=True).data)

    @action(detail=True, methods=["get"], url_path="delivery-metrics")
    def delivery_metrics(self, request, pk=None):
        return Response(DeliveryMetricsSerializer(delivery_metrics(self.get_object())).data)


class DailySummaryView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "reports.view"}

    def get(self, request):
        query = DailySummaryQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        report = build_daily_report(query.validated_data["date"], query.validated_data["opening_cash"])
        return Response(DailySummarySerializer(report).data)


class DeliveryAnalyticsView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "reports.view"}

    def get(self, request):
        query = DeliveryAnalyticsQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        report = delivery_analytics(query.validated_data.get("date_from"), query.validated_data.get("date_to"))
        return Response(DeliveryAnalyticsSerializer(report).data)


class CashClosureViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, mixins.CreateModelMixin, viewsets.GenericViewSet):
    queryset = CashClosure.objects.select_related("created_by")
    serializer_class = CashClosureSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "cash_closure.view",
        "retrieve": "cash_closure.view",
        "create": "cash_closure.create",
        "by_date": "cash_closure.view",
    }

    def create(self, request, *args, **kwargs):
        serializer = CashClosureCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        closure = create_cash_closure(
            data["closing_date"],
            data["opening_cash"],
            data["counted_cash"],
            notes=data.get("notes"),
            created_by=request.user,
        )
        payload = CashClosureSerializer(closure).data
        create_audit_log_from_request(
            request,
            action="cash_closure.create",
            entity="cash_closure",
            entity_id=closure.id,
            after_snapshot=payload,
        )
        return Response(payload, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"], url_path=r"by-date/(?P<closing_date>\d{4}-\d{2}-\d{2})", pagination_class=None)
    def by_date(self, request, closing_date=None):
        closure = get_cash_closure(closing_date)
        if closure is None:
            raise NotFound(f"No cash closure found for {closing_date}.")
        return Response(CashClosureSerializer(closure).data)

