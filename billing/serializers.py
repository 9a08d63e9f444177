from django.contrib.auth import get_user_model
from rest_framework import serializers

from equipment.models import NetworkEquipment

from .models import (
    REPORT_PERIODS,
    REVENUE_GROUPS,
    AdditionalCharge,
    DataUsageRecord,
    InternalNote,
    PartialPayment,
    Plan,
    PlanChange,
    Receipt,
    ReceiptDiscount,
    ReceiptServiceLine,
    ReceiptTax,
    Service,
    ServiceDiscount,
    Suspension,
)

User = get_user_model()


class PlanSerializer(serializers.ModelSerializer):
    class Meta:
        model = Plan
        fields = "__all__"
        read_only_fields = ["created_at", "updated_at"]


class ServiceDiscountSerializer(serializers.ModelSerializer):
    class Meta:
        model = ServiceDiscount
        fields = [
            "id",
            "name",
            "description",
            "discount_type",
            "value",
            "valid_from",
            "valid_until",
            "is_active",
            "applied_by",
            "created_at",
        ]
        read_only_fields = ["is_active", "applied_by", "created_at"]


class PlanChangeSerializer(serializers.ModelSerializer):
    class Meta:
        model = PlanChange
        exclude = ["service"]


class SuspensionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Suspension
        exclude = ["service"]


class DataUsageRecordSerializer(serializers.ModelSerializer):
    class Meta:
        model = DataUsageRecord
        exclude = ["service"]


class InternalNoteSerializer(serializers.ModelSerializer):
    class Meta:
        model = InternalNote
        fields = ["id", "note", "added_by", "is_important", "created_at"]
        read_only_fields = ["added_by", "created_at"]


class ServiceSerializer(serializers.ModelSerializer):
    plan_name = serializers.CharField(source="plan.name", read_only=True)
    client_username = serializers.CharField(source="client.username", read_only=True)
    discounts = ServiceDiscountSerializer(many=True, read_only=True)
    plan_changes = PlanChangeSerializer(many=True, read_only=True)
    suspensions = SuspensionSerializer(many=True, read_only=True)
    usage_history = DataUsageRecordSerializer(many=True, read_only=True)

    class Meta:
        model = Service
        fields = "__all__"
        read_only_fields = [
            "client",
            "plan",
            "status",
            "cancelled_at",
            "installation_completed_date",
            "installation_equipment",
            "billing_monthly_fee",
            "billing_outstanding_balance",
            "billing_next_billing_date",
            "usage_download_gb",
            "usage_upload_gb",
            "usage_total_gb",
            "usage_last_updated",
            "created_by",
            "updated_by",
            "created_at",
            "updated_at",
        ]

    def validate_connection_ip_address(self, value):
        if value and Service.objects.ip_in_use(value, exclude=self.instance):
            raise serializers.ValidationError(
                f"IP address {value} is already assigned to another service."
            )
        return value


class ClientServiceSerializer(ServiceSerializer):
    """Service view for clients, without staff-only fields."""

    class Meta(ServiceSerializer.Meta):
        fields = None
        exclude = ["installation_signature", "created_by", "updated_by"]


class InstallationInputSerializer(serializers.Serializer):
    scheduled_date = serializers.DateTimeField(required=False, allow_null=True)
    address = serializers.DictField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    cost = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=0, required=False
    )


class ConnectionInputSerializer(serializers.Serializer):
    ip_address = serializers.IPAddressField(protocol="IPv4", required=False)
    connection_type = serializers.ChoiceField(
        choices=Service.ConnectionType.choices, required=False
    )


class ContractInputSerializer(serializers.Serializer):
    start_date = serializers.DateField(required=False)
    duration_months = serializers.IntegerField(min_value=1, required=False)
    auto_renewal = serializers.BooleanField(required=False)
    cancellation_notice_days = serializers.IntegerField(min_value=0, required=False)


class BillingInputSerializer(serializers.Serializer):
    monthly_fee = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=0, required=False
    )
    cycle = serializers.ChoiceField(
        choices=Service.BillingCycle.choices, required=False
    )
    billing_day = serializers.IntegerField(min_value=1, max_value=31, required=False)


class ServiceCreateSerializer(serializers.Serializer):
    client = serializers.PrimaryKeyRelatedField(queryset=User.objects.all())
    plan = serializers.PrimaryKeyRelatedField(queryset=Plan.objects.all())
    installation = InstallationInputSerializer(required=False)
    connection = ConnectionInputSerializer(required=False)
    contract = ContractInputSerializer(required=False)
    billing = BillingInputSerializer(required=False)


class CompleteInstallationSerializer(serializers.Serializer):
    equipment_installed = serializers.PrimaryKeyRelatedField(
        queryset=NetworkEquipment.objects.all(), many=True, required=False
    )
    ip_address = serializers.IPAddressField(protocol="IPv4", required=False)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    photos = serializers.ListField(
        child=serializers.CharField(), required=False, default=list
    )
    signature = serializers.CharField(required=False, allow_blank=True, default="")


class SuspendSerializer(serializers.Serializer):
    reason = serializers.ChoiceField(choices=Suspension.Reason.choices)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class NotesSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class ChangePlanSerializer(serializers.Serializer):
    plan = serializers.PrimaryKeyRelatedField(queryset=Plan.objects.all())
    reason = serializers.CharField(required=False, allow_blank=True, default="")
    effective_date = serializers.DateTimeField(required=False)


class DataUsageSerializer(serializers.Serializer):
    download_gb = serializers.DecimalField(
        max_digits=12, decimal_places=3, min_value=0
    )
    upload_gb = serializers.DecimalField(max_digits=12, decimal_places=3, min_value=0)


class AddDiscountSerializer(serializers.Serializer):
    discount_type = serializers.ChoiceField(
        choices=ServiceDiscount.DiscountType.choices
    )
    value = serializers.DecimalField(max_digits=12, decimal_places=2)
    valid_from = serializers.DateTimeField(required=False)
    valid_until = serializers.DateTimeField()
    name = serializers.CharField(required=False, allow_blank=True, default="")
    description = serializers.CharField(required=False, allow_blank=True, default="")


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class ReceiptServiceLineSerializer(serializers.ModelSerializer):
    service_code = serializers.CharField(source="service.service_code", read_only=True)

    class Meta:
        model = ReceiptServiceLine
        exclude = ["receipt"]
        read_only_fields = ["plan_name"]


class AdditionalChargeSerializer(serializers.ModelSerializer):
    class Meta:
        model = AdditionalCharge
        exclude = ["receipt"]


class ReceiptDiscountSerializer(serializers.ModelSerializer):
    class Meta:
        model = ReceiptDiscount
        exclude = ["receipt"]


class ReceiptTaxSerializer(serializers.ModelSerializer):
    class Meta:
        model = ReceiptTax
        exclude = ["receipt"]


class PartialPaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = PartialPayment
        exclude = ["receipt"]
        read_only_fields = ["paid_at", "recorded_by"]


class ReceiptSerializer(serializers.ModelSerializer):
    service_lines = ReceiptServiceLineSerializer(many=True, read_only=True)
    additional_charges = AdditionalChargeSerializer(many=True, read_only=True)
    discounts = ReceiptDiscountSerializer(many=True, read_only=True)
    taxes = ReceiptTaxSerializer(many=True, read_only=True)
    partial_payments = PartialPaymentSerializer(many=True, read_only=True)
    is_overdue = serializers.SerializerMethodField()
    days_overdue = serializers.SerializerMethodField()

    class Meta:
        model = Receipt
        exclude = ["internal_notes"]
        read_only_fields = [
            "client",
            "status",
            "payment_method",
            "transaction_id",
            "bank_name",
            "payment_date",
            "processed_by",
            "late_fees_applied",
            "late_fees_rate",
            "is_refunded",
            "refund_amount",
            "refund_reason",
            "refunded_by",
            "refund_date",
            "created_by",
            "created_at",
            "updated_at",
        ]

    def get_is_overdue(self, obj):
        return obj.is_overdue()

    def get_days_overdue(self, obj):
        return obj.days_overdue()


class ReceiptLineInputSerializer(serializers.Serializer):
    service = serializers.PrimaryKeyRelatedField(queryset=Service.objects.all())
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    period_start = serializers.DateField(required=False)
    period_end = serializers.DateField(required=False)
    description = serializers.CharField(required=False, allow_blank=True)


class ReceiptChargeInputSerializer(serializers.Serializer):
    concept = serializers.CharField()
    description = serializers.CharField(required=False, allow_blank=True)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    charge_type = serializers.ChoiceField(
        choices=AdditionalCharge.ChargeType.choices, required=False
    )


class ReceiptDiscountInputSerializer(serializers.Serializer):
    concept = serializers.CharField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0)
    discount_type = serializers.ChoiceField(
        choices=ReceiptDiscount.DiscountType.choices, required=False
    )
    code = serializers.CharField(required=False, allow_blank=True)


class ReceiptCreateSerializer(serializers.Serializer):
    client = serializers.PrimaryKeyRelatedField(queryset=User.objects.all())
    line_items = ReceiptLineInputSerializer(many=True)
    additional_charges = ReceiptChargeInputSerializer(many=True, required=False)
    discounts = ReceiptDiscountInputSerializer(many=True, required=False)
    tax_rate = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=0, max_value=100, required=False
    )
    due_date = serializers.DateTimeField(required=False)
    payment_method = serializers.ChoiceField(
        choices=Receipt.PaymentMethod.choices, required=False, default=""
    )
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class PartialPaymentInputSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    method = serializers.ChoiceField(choices=Receipt.PaymentMethod.choices)
    transaction_id = serializers.CharField(required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class ProcessPaymentSerializer(serializers.Serializer):
    method = serializers.ChoiceField(choices=Receipt.PaymentMethod.choices)
    transaction_id = serializers.CharField(required=False, allow_blank=True, default="")
    bank_name = serializers.CharField(required=False, allow_blank=True, default="")
    payment_date = serializers.DateTimeField(required=False)


class RefundSerializer(serializers.Serializer):
    reason = serializers.CharField()
    amount = serializers.DecimalField(
        max_digits=14, decimal_places=2, required=False
    )


class LateFeeSerializer(serializers.Serializer):
    rate = serializers.DecimalField(max_digits=5, decimal_places=2)


class ReceiptFilterSerializer(serializers.Serializer):
    """Query parameters accepted by the receipt list."""

    status = serializers.ChoiceField(choices=Receipt.Status.choices, required=False)
    client = serializers.PrimaryKeyRelatedField(
        queryset=User.objects.all(), required=False
    )
    payment_method = serializers.ChoiceField(
        choices=Receipt.PaymentMethod.choices, required=False
    )
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)
    search = serializers.CharField(required=False, allow_blank=True)


class ReceiptStatsQuerySerializer(serializers.Serializer):
    period = serializers.ChoiceField(choices=REPORT_PERIODS, required=False)


class RevenueReportQuerySerializer(serializers.Serializer):
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    group_by = serializers.ChoiceField(choices=REVENUE_GROUPS, default="month")

    def validate(self, attrs):
        if attrs["end_date"] < attrs["start_date"]:
            raise serializers.ValidationError(
                {"end_date": "end_date cannot be before start_date."}
            )
        return attrs
