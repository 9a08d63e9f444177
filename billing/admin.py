from django.contrib import admin

from .models import (
    AdditionalCharge,
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


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    list_display = (
        "name",
        "download_mbps",
        "upload_mbps",
        "data_limit_gb",
        "monthly_price",
        "customer_type",
        "is_active",
    )
    list_filter = ("customer_type", "is_active")
    search_fields = ("name",)


class HistoryInline(admin.TabularInline):
    """Rows written by service or receipt operations, never edited by hand."""

    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False


class ServiceDiscountInline(admin.TabularInline):
    model = ServiceDiscount
    extra = 0


class SuspensionInline(HistoryInline):
    model = Suspension
    readonly_fields = ("is_active", "suspended_at", "reactivated_at")


class PlanChangeInline(HistoryInline):
    model = PlanChange
    readonly_fields = ("changed_at", "prorated_amount")


class InternalNoteInline(admin.TabularInline):
    model = InternalNote
    extra = 0


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = (
        "service_code",
        "client",
        "plan",
        "status",
        "billing_monthly_fee",
        "billing_next_billing_date",
        "billing_outstanding_balance",
    )
    list_filter = ("status", "billing_cycle", "connection_type")
    search_fields = ("service_code", "client__username", "connection_ip_address")
    # Status moves only through suspend/reactivate/cancel.
    readonly_fields = (
        "service_code",
        "status",
        "plan",
        "contract_end_date",
        "billing_next_billing_date",
        "billing_outstanding_balance",
        "usage_download_gb",
        "usage_upload_gb",
        "usage_total_gb",
        "cancelled_at",
        "created_at",
        "updated_at",
    )
    inlines = [ServiceDiscountInline, SuspensionInline, PlanChangeInline, InternalNoteInline]


class ReceiptServiceLineInline(HistoryInline):
    model = ReceiptServiceLine


class AdditionalChargeInline(HistoryInline):
    model = AdditionalCharge


class ReceiptDiscountInline(HistoryInline):
    model = ReceiptDiscount


class ReceiptTaxInline(HistoryInline):
    model = ReceiptTax


class PartialPaymentInline(HistoryInline):
    model = PartialPayment


@admin.register(Receipt)
class ReceiptAdmin(admin.ModelAdmin):
    list_display = (
        "receipt_number",
        "client",
        "total_amount",
        "status",
        "due_date",
        "payment_date",
        "is_late",
    )
    list_filter = ("status", "is_late", "is_refunded", "payment_method")
    search_fields = ("receipt_number", "client__username", "transaction_id")
    # Payment and refund state moves only through the receipt operations.
    readonly_fields = (
        "receipt_number",
        "client",
        "status",
        "payment_date",
        "processed_by",
        "late_fees_applied",
        "is_refunded",
        "refund_amount",
        "refunded_by",
        "refund_date",
        "subtotal",
        "total_discounts",
        "taxable_amount",
        "total_taxes",
        "total_amount",
        "is_late",
        "days_late",
        "created_at",
        "updated_at",
    )
    inlines = [
        ReceiptServiceLineInline,
        AdditionalChargeInline,
        ReceiptDiscountInline,
        ReceiptTaxInline,
        PartialPaymentInline,
    ]

    def save_related(self, request, form, formsets, change):
        super().save_related(request, form, formsets, change)
        # Inline rows are saved after the receipt itself.
        form.instance.save()
