import billing.models
import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models


def money(**kwargs):
    return models.DecimalField(decimal_places=2, max_digits=12, **kwargs)


def auto_id():
    return models.BigAutoField(
        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
    )


def user_fk(related_name="+"):
    return models.ForeignKey(
        blank=True,
        null=True,
        on_delete=django.db.models.deletion.SET_NULL,
        related_name=related_name,
        to=settings.AUTH_USER_MODEL,
    )


PAYMENT_METHODS = [
    ("cash", "Cash"),
    ("credit_card", "Credit card"),
    ("debit_card", "Debit card"),
    ("bank_transfer", "Bank transfer"),
    ("check", "Check"),
    ("digital_wallet", "Digital wallet"),
    ("crypto", "Crypto"),
    ("other", "Other"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("equipment", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Plan",
            fields=[
                ("id", auto_id()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(max_length=120, unique=True)),
                ("download_mbps", models.PositiveIntegerField()),
                ("upload_mbps", models.PositiveIntegerField()),
                (
                    "data_limit_gb",
                    models.PositiveIntegerField(
                        default=0, help_text="Monthly data cap in GB, 0 means unlimited"
                    ),
                ),
                ("monthly_price", money()),
                ("installation_price", money(default=Decimal("0.00"))),
                ("equipment_price", money(default=Decimal("0.00"))),
                ("features", models.JSONField(blank=True, default=list)),
                (
                    "customer_type",
                    models.CharField(
                        choices=[
                            ("residential", "Residential"),
                            ("business", "Business"),
                            ("enterprise", "Enterprise"),
                        ],
                        default="residential",
                        max_length=12,
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
                (
                    "contract_duration_months",
                    models.PositiveIntegerField(
                        default=12,
                        validators=[django.core.validators.MinValueValidator(1)],
                    ),
                ),
            ],
            options={"ordering": ["monthly_price", "name"]},
        ),
        migrations.CreateModel(
            name="Service",
            fields=[
                ("id", auto_id()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "service_code",
                    models.CharField(
                        blank=True, editable=False, max_length=11, unique=True
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending_installation", "Pending installation"),
                            ("active", "Active"),
                            ("suspended", "Suspended"),
                            ("cancelled", "Cancelled"),
                            ("pending_cancellation", "Pending cancellation"),
                            ("maintenance", "Maintenance"),
                        ],
                        default="pending_installation",
                        max_length=24,
                    ),
                ),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "installation_scheduled_date",
                    models.DateTimeField(blank=True, null=True),
                ),
                (
                    "installation_completed_date",
                    models.DateTimeField(blank=True, null=True),
                ),
                ("installation_address", models.JSONField(blank=True, default=dict)),
                ("installation_notes", models.TextField(blank=True)),
                ("installation_photos", models.JSONField(blank=True, default=list)),
                (
                    "installation_signature",
                    models.CharField(blank=True, max_length=500),
                ),
                ("installation_cost", money(default=Decimal("0.00"))),
                (
                    "connection_ip_address",
                    models.GenericIPAddressField(
                        blank=True, null=True, protocol="IPv4"
                    ),
                ),
                (
                    "connection_type",
                    models.CharField(
                        choices=[
                            ("fiber", "Fiber"),
                            ("cable", "Cable"),
                            ("wireless", "Wireless"),
                            ("dsl", "DSL"),
                            ("satellite", "Satellite"),
                        ],
                        default="fiber",
                        max_length=12,
                    ),
                ),
                (
                    "speed_test_download",
                    models.DecimalField(
                        blank=True, decimal_places=2, max_digits=8, null=True
                    ),
                ),
                (
                    "speed_test_upload",
                    models.DecimalField(
                        blank=True, decimal_places=2, max_digits=8, null=True
                    ),
                ),
                (
                    "speed_test_ping",
                    models.DecimalField(
                        blank=True, decimal_places=2, max_digits=8, null=True
                    ),
                ),
                ("speed_test_at", models.DateTimeField(blank=True, null=True)),
                (
                    "contract_start_date",
                    models.DateField(default=billing.models._today),
                ),
                (
                    "contract_end_date",
                    models.DateField(blank=True, editable=False, null=True),
                ),
                (
                    "contract_duration_months",
                    models.PositiveIntegerField(
                        default=12,
                        validators=[django.core.validators.MinValueValidator(1)],
                    ),
                ),
                ("contract_auto_renewal", models.BooleanField(default=True)),
                (
                    "contract_cancellation_notice_days",
                    models.PositiveIntegerField(default=30),
                ),
                ("billing_monthly_fee", money()),
                (
                    "billing_cycle",
                    models.CharField(
                        choices=[
                            ("monthly", "Monthly"),
                            ("quarterly", "Quarterly"),
                            ("semi-annual", "Semi-annual"),
                            ("annual", "Annual"),
                        ],
                        default="monthly",
                        max_length=12,
                    ),
                ),
                (
                    "billing_day",
                    models.PositiveSmallIntegerField(
                        default=1,
                        validators=[
                            django.core.validators.MinValueValidator(1),
                            django.core.validators.MaxValueValidator(31),
                        ],
                    ),
                ),
                ("billing_last_billed_date", models.DateField(blank=True, null=True)),
                ("billing_next_billing_date", models.DateField(blank=True, null=True)),
                ("billing_outstanding_balance", money(default=Decimal("0.00"))),
                (
                    "usage_download_gb",
                    models.DecimalField(
                        decimal_places=3, default=Decimal("0.000"), max_digits=14
                    ),
                ),
                (
                    "usage_upload_gb",
                    models.DecimalField(
                        decimal_places=3, default=Decimal("0.000"), max_digits=14
                    ),
                ),
                (
                    "usage_total_gb",
                    models.DecimalField(
                        decimal_places=3, default=Decimal("0.000"), max_digits=14
                    ),
                ),
                ("usage_last_updated", models.DateTimeField(blank=True, null=True)),
                (
                    "usage_warning_threshold",
                    models.PositiveSmallIntegerField(
                        default=80,
                        validators=[django.core.validators.MaxValueValidator(100)],
                    ),
                ),
                (
                    "monitoring_uptime",
                    models.DecimalField(
                        decimal_places=2, default=Decimal("100.00"), max_digits=5
                    ),
                ),
                ("monitoring_last_ping", models.DateTimeField(blank=True, null=True)),
                (
                    "client",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="services",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "plan",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="services",
                        to="billing.plan",
                    ),
                ),
                ("installation_technician", user_fk("installations")),
                (
                    "installation_equipment",
                    models.ManyToManyField(
                        blank=True,
                        related_name="services",
                        to="equipment.networkequipment",
                    ),
                ),
                ("created_by", user_fk()),
                ("updated_by", user_fk()),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status"], name="billing_service_status_idx"),
                    models.Index(
                        fields=["billing_next_billing_date"],
                        name="billing_service_next_bill_idx",
                    ),
                    models.Index(
                        fields=["connection_ip_address"],
                        name="billing_service_ip_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ServiceDiscount",
            fields=[
                ("id", auto_id()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(blank=True, max_length=120)),
                ("description", models.TextField(blank=True)),
                (
                    "discount_type",
                    models.CharField(
                        choices=[
                            ("percentage", "Percentage"),
                            ("fixed_amount", "Fixed amount"),
                            ("free_months", "Free months"),
                        ],
                        max_length=12,
                    ),
                ),
                ("value", money()),
                (
                    "valid_from",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                ("valid_until", models.DateTimeField()),
                ("is_active", models.BooleanField(default=True)),
                ("applied_by", user_fk()),
                (
                    "service",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="discounts",
                        to="billing.service",
                    ),
                ),
            ],
            options={"ordering": ["created_at", "id"]},
        ),
        migrations.CreateModel(
            name="PlanChange",
            fields=[
                ("id", auto_id()),
                (
                    "changed_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                (
                    "effective_date",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                ("reason", models.CharField(blank=True, max_length=255)),
                ("previous_monthly_fee", money()),
                ("prorated_amount", money(default=Decimal("0.00"))),
                ("approved_by", user_fk()),
                (
                    "from_plan",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="billing.plan",
                    ),
                ),
                (
                    "to_plan",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="billing.plan",
                    ),
                ),
                (
                    "service",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="plan_changes",
                        to="billing.service",
                    ),
                ),
            ],
            options={"ordering": ["changed_at", "id"]},
        ),
        migrations.CreateModel(
            name="Suspension",
            fields=[
                ("id", auto_id()),
                (
                    "reason",
                    models.CharField(
                        choices=[
                            ("non_payment", "Non-payment"),
                            ("technical_issues", "Technical issues"),
                            ("client_request", "Client request"),
                            ("maintenance", "Maintenance"),
                            ("abuse", "Abuse"),
                            ("other", "Other"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "suspended_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                ("reactivated_at", models.DateTimeField(blank=True, null=True)),
                ("notes", models.TextField(blank=True)),
                ("is_active", models.BooleanField(default=True)),
                ("suspended_by", user_fk()),
                ("reactivated_by", user_fk()),
                (
                    "service",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="suspensions",
                        to="billing.service",
                    ),
                ),
            ],
            options={
                "ordering": ["suspended_at", "id"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("is_active", True)),
                        fields=("service",),
                        name="one_active_suspension_per_service",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="DataUsageRecord",
            fields=[
                ("id", auto_id()),
                ("month", models.CharField(help_text="YYYY-MM", max_length=7)),
                ("download_gb", models.DecimalField(decimal_places=3, max_digits=14)),
                ("upload_gb", models.DecimalField(decimal_places=3, max_digits=14)),
                ("total_gb", models.DecimalField(decimal_places=3, max_digits=14)),
                (
                    "overage_gb",
                    models.DecimalField(
                        decimal_places=3, default=Decimal("0.000"), max_digits=14
                    ),
                ),
                ("overage_charges", money(default=Decimal("0.00"))),
                (
                    "service",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="usage_history",
                        to="billing.service",
                    ),
                ),
            ],
            options={
                "ordering": ["-month"],
                "unique_together": {("service", "month")},
            },
        ),
        migrations.CreateModel(
            name="InternalNote",
            fields=[
                ("id", auto_id()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("note", models.TextField()),
                ("is_important", models.BooleanField(default=False)),
                ("added_by", user_fk()),
                (
                    "service",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="internal_notes",
                        to="billing.service",
                    ),
                ),
            ],
            options={"ordering": ["created_at", "id"]},
        ),
        migrations.CreateModel(
            name="Receipt",
            fields=[
                ("id", auto_id()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "receipt_number",
                    models.CharField(
                        blank=True, editable=False, max_length=16, unique=True
                    ),
                ),
                (
                    "issued_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                ("due_date", models.DateTimeField(blank=True)),
                ("currency", models.CharField(default="USD", max_length=3)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                            ("refunded", "Refunded"),
                            ("partial", "Partially paid"),
                        ],
                        default="pending",
                        max_length=12,
                    ),
                ),
                (
                    "subtotal",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        editable=False,
                        max_digits=14,
                    ),
                ),
                (
                    "total_discounts",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        editable=False,
                        max_digits=14,
                    ),
                ),
                (
                    "taxable_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        editable=False,
                        max_digits=14,
                    ),
                ),
                (
                    "total_taxes",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        editable=False,
                        max_digits=14,
                    ),
                ),
                (
                    "total_amount",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        editable=False,
                        max_digits=14,
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(
                        blank=True, choices=PAYMENT_METHODS, max_length=16
                    ),
                ),
                ("transaction_id", models.CharField(blank=True, max_length=120)),
                ("bank_name", models.CharField(blank=True, max_length=120)),
                ("payment_date", models.DateTimeField(blank=True, null=True)),
                ("is_late", models.BooleanField(default=False, editable=False)),
                (
                    "days_late",
                    models.PositiveIntegerField(default=0, editable=False),
                ),
                ("late_fees_applied", money(default=Decimal("0.00"))),
                (
                    "late_fees_rate",
                    models.DecimalField(
                        decimal_places=2, default=Decimal("0.00"), max_digits=5
                    ),
                ),
                ("is_refunded", models.BooleanField(default=False)),
                (
                    "refund_amount",
                    models.DecimalField(
                        decimal_places=2, default=Decimal("0.00"), max_digits=14
                    ),
                ),
                ("refund_reason", models.CharField(blank=True, max_length=255)),
                ("refund_date", models.DateTimeField(blank=True, null=True)),
                ("internal_notes", models.TextField(blank=True)),
                ("customer_notes", models.TextField(blank=True)),
                (
                    "client",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="receipts",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                ("processed_by", user_fk()),
                ("refunded_by", user_fk()),
                ("created_by", user_fk()),
            ],
            options={
                "ordering": ["-issued_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "due_date"], name="billing_receipt_due_idx"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="ReceiptServiceLine",
            fields=[
                ("id", auto_id()),
                ("plan_name", models.CharField(blank=True, max_length=120)),
                ("description", models.CharField(blank=True, max_length=255)),
                ("amount", money()),
                ("period_start", models.DateField(blank=True, null=True)),
                ("period_end", models.DateField(blank=True, null=True)),
                (
                    "receipt",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="service_lines",
                        to="billing.receipt",
                    ),
                ),
                (
                    "service",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="receipt_lines",
                        to="billing.service",
                    ),
                ),
            ],
            options={"ordering": ["id"]},
        ),
        migrations.CreateModel(
            name="AdditionalCharge",
            fields=[
                ("id", auto_id()),
                ("concept", models.CharField(max_length=120)),
                ("description", models.CharField(blank=True, max_length=255)),
                ("amount", money()),
                (
                    "charge_type",
                    models.CharField(
                        choices=[
                            ("installation", "Installation"),
                            ("equipment", "Equipment"),
                            ("maintenance", "Maintenance"),
                            ("penalty", "Penalty"),
                            ("reconnection", "Reconnection"),
                            ("other", "Other"),
                        ],
                        default="other",
                        max_length=12,
                    ),
                ),
                (
                    "receipt",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="additional_charges",
                        to="billing.receipt",
                    ),
                ),
            ],
            options={"ordering": ["id"]},
        ),
        migrations.CreateModel(
            name="ReceiptDiscount",
            fields=[
                ("id", auto_id()),
                ("concept", models.CharField(max_length=120)),
                ("amount", money(help_text="Amount deducted")),
                (
                    "discount_type",
                    models.CharField(
                        choices=[("percentage", "Percentage"), ("fixed", "Fixed")],
                        default="fixed",
                        max_length=10,
                    ),
                ),
                ("code", models.CharField(blank=True, max_length=40)),
                (
                    "receipt",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="discounts",
                        to="billing.receipt",
                    ),
                ),
            ],
            options={"ordering": ["id"]},
        ),
        migrations.CreateModel(
            name="ReceiptTax",
            fields=[
                ("id", auto_id()),
                ("name", models.CharField(max_length=40)),
                ("rate", models.DecimalField(decimal_places=2, max_digits=5)),
                ("amount", money(default=Decimal("0.00"))),
                (
                    "receipt",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="taxes",
                        to="billing.receipt",
                    ),
                ),
            ],
            options={"ordering": ["id"]},
        ),
        migrations.CreateModel(
            name="PartialPayment",
            fields=[
                ("id", auto_id()),
                ("amount", money()),
                ("paid_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("method", models.CharField(choices=PAYMENT_METHODS, max_length=16)),
                ("transaction_id", models.CharField(blank=True, max_length=120)),
                ("notes", models.TextField(blank=True)),
                ("recorded_by", user_fk()),
                (
                    "receipt",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="partial_payments",
                        to="billing.receipt",
                    ),
                ),
            ],
            options={"ordering": ["paid_at", "id"]},
        ),
    ]
