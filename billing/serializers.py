from decimal import Decimal

from rest_framework import serializers

from billing.closure import MAX_MONEY_AMOUNT, parse_money
from billing.models import CashClosure, Customer, Invoice, InvoiceStatusChange, PaymentMethod
from core.models import Employee


class MoneyField(serializers.Field):
    """Decimal amount parsed with ``parse_money``; malformed input raises ParseError."""

    default_error_messages = {
        "negative": "Amount cannot be negative.",
        "too_large": "Amount must not exceed {max_value} in absolute value.",
    }

    def __init__(self, *, allow_negative=False, **kwargs):
        self.allow_negative = allow_negative
        super().__init__(**kwargs)

    def to_internal_value(self, data):
        amount = parse_money(data, self.field_name)
        if amount < 0 and not self.allow_negative:
            self.fail("negative")
        if abs(amount) > MAX_MONEY_AMOUNT:
            self.fail("too_large", max_value=MAX_MONEY_AMOUNT)
        return amount

    def to_representation(self, value):
        return str(Decimal(value).quantize(Decimal("0.01")))


class StrictFieldsMixin:
    """Reject payload keys the serializer does not declare."""

    def validate(self, attrs):
        initial = getattr(self, "initial_data", None) or {}
        unknown = sorted(set(initial) - set(self.fields))
        if unknown:
            raise serializers.ValidationError({field: ["Unknown field."] for field in unknown})
        return super().validate(attrs)


class CustomerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Customer
        fields = ["id", "name", "phone", "email", "address", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class PaymentMethodSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentMethod
        fields = ["id", "code", "name", "is_active"]
        read_only_fields = ["id"]


class InvoiceSerializer(serializers.ModelSerializer):
    employee_name = serializers.CharField(source="employee.name", read_only=True, default=None)
    customer_name = serializers.CharField(source="customer.name", read_only=True, default=None)

    class Meta:
        model = Invoice
        fields = [
            "id",
            "invoice_number",
            "customer",
            "customer_name",
            "employee",
            "employee_name",
            "date",
            "status",
            "paid",
            "payment_method",
            "subtotal",
            "tax",
            "total",
            "notes",
            "delivered_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "status", "delivered_at", "created_at", "updated_at"]

    def validate(self, attrs):
        if self.instance is not None and self.instance.status == Invoice.Status.DELIVERED:
            raise serializers.ValidationError({"status": "Delivered invoices cannot be edited."})

        for field in ("subtotal", "tax", "total"):
            value = attrs.get(field)
            if value is not None and value < 0:
                raise serializers.ValidationError({field: "Amount cannot be negative."})

        subtotal = attrs.get("subtotal", getattr(self.instance, "subtotal", None))
        tax = attrs.get("tax", getattr(self.instance, "tax", None) or Decimal("0"))
        total = attrs.get("total", getattr(self.instance, "total", None))
        if subtotal is not None and total is not None and subtotal + tax != total:
            raise serializers.ValidationError({"total": "Total must equal subtotal plus tax."})
        return attrs


class InvoiceStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Invoice.Status.choices)
    # Absent from a form post means "leave as is", not False.
    paid = serializers.BooleanField(required=False, allow_null=True, default=None)
    employee = serializers.PrimaryKeyRelatedField(queryset=Employee.objects.all(), required=False, allow_null=True)


class InvoiceTimestampSerializer(serializers.Serializer):
    id = serializers.UUIDField()
    status = serializers.CharField()
    previous_status = serializers.CharField(allow_null=True)
    employee = serializers.CharField(allow_null=True)
    changed_at = serializers.DateTimeField()
    minutes_since_previous = serializers.IntegerField(allow_null=True)


class InvoiceStatusChangeSerializer(serializers.ModelSerializer):
    class Meta:
        model = InvoiceStatusChange
        fields = ["id", "invoice", "status", "previous_status", "employee", "changed_at"]
        read_only_fields = fields


class PaymentBucketSerializer(serializers.Serializer):
    quantity = serializers.IntegerField()
    total = MoneyField()


class EmployeeBucketSerializer(serializers.Serializer):
    sales = serializers.IntegerField()
    total = MoneyField()


class DailySummaryQuerySerializer(serializers.Serializer):
    date = serializers.DateField()
    opening_cash = MoneyField(required=False, default=Decimal("0.00"))


class DailySummarySerializer(serializers.Serializer):
    date = serializers.DateField()
    opening_cash = MoneyField()
    system_cash = MoneyField()
    total_invoices = serializers.IntegerField()
    delivered_invoices = serializers.IntegerField()
    pending_invoices = serializers.IntegerField()
    total_revenue = MoneyField()
    total_subtotal = MoneyField()
    total_tax = MoneyField()
    payment_summary = serializers.DictField(child=PaymentBucketSerializer())
    employee_stats = serializers.DictField(child=EmployeeBucketSerializer())


class CashClosureCreateSerializer(StrictFieldsMixin, serializers.Serializer):
    closing_date = serializers.DateField()
    opening_cash = MoneyField(required=False, default=Decimal("0.00"))
    counted_cash = MoneyField()
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=2000)


class CashClosureSerializer(serializers.ModelSerializer):
    opening_cash = MoneyField(read_only=True)
    counted_cash = MoneyField(read_only=True)
    system_cash = MoneyField(read_only=True, allow_negative=True)
    variance = MoneyField(read_only=True, allow_negative=True)
    created_by_username = serializers.CharField(source="created_by.username", read_only=True, default=None)

    class Meta:
        model = CashClosure
        fields = [
            "id",
            "closing_date",
            "opening_cash",
            "counted_cash",
            "system_cash",
            "variance",
            "notes",
            "summary",
            "created_by",
            "created_by_username",
            "created_at",
        ]
        read_only_fields = fields


class DeliveryMetricsSerializer(serializers.Serializer):
    invoice_id = serializers.UUIDField()
    status = serializers.CharField()
    processing_minutes = serializers.IntegerField(allow_null=True)
    total_minutes = serializers.IntegerField(allow_null=True)
    estimated_delivery_hours = serializers.IntegerField()
    on_time = serializers.BooleanField()


class DeliveryAnalyticsQuerySerializer(serializers.Serializer):
    date_from = serializers.DateField(required=False)
    date_to = serializers.DateField(required=False)

    def validate(self, attrs):
        date_from = attrs.get("date_from")
        date_to = attrs.get("date_to")
        if date_from and date_to and date_from > date_to:
            raise serializers.ValidationError({"date_to": "date_to must be on or after date_from."})
        return attrs


class DeliveryAnalyticsSerializer(serializers.Serializer):
    date_from = serializers.DateField(allow_null=True)
    date_to = serializers.DateField(allow_null=True)
    total_orders = serializers.IntegerField()
    on_time_orders = serializers.IntegerField()
    delayed_orders = serializers.IntegerField()
    on_time_percentage = serializers.FloatField()
    avg_processing_minutes = serializers.FloatField(allow_null=True)
    avg_total_minutes = serializers.FloatField(allow_null=True)
    estimated_delivery_hours = serializers.IntegerField()
