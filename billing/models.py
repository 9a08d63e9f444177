import logging
import math
from datetime import datetime, time, timedelta
from decimal import Decimal

from dateutil.relativedelta import relativedelta
from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models, transaction
from django.db.models import Avg, Count, F, Q, Sum
from django.db.models.functions import Trunc
from django.utils import timezone

from accounts.policy import CLIENT, authorize, roles_for
from core import sequences
from core.exceptions import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from core.models import SequentiallyNumbered, TimeStampedModel

from .conf import billing_setting
from .discounts import CENT, ZERO, apply_discounts, rule_for

logger = logging.getLogger(__name__)

GB = Decimal("0.001")


def _today():
    return timezone.localdate()


def _money(value, field="amount"):
    try:
        amount = Decimal(str(value))
    except (ArithmeticError, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number.") from None
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number.")
    return amount.quantize(CENT)


def _as_date(value):
    if isinstance(value, datetime):
        return timezone.localdate(value) if timezone.is_aware(value) else value.date()
    return value


def next_billing_date(start_date, billing_day):
    """First billing date strictly after ``start_date``.

    The billing day is clamped to the length of the month.
    """
    candidate = start_date + relativedelta(day=billing_day)
    if candidate <= start_date:
        candidate = start_date + relativedelta(months=1, day=billing_day)
    return candidate


REPORT_PERIODS = ("today", "week", "month", "year")
REVENUE_GROUPS = ("day", "week", "month", "year")
# Days overdue; the last bucket is open-ended.
AGING_BUCKETS = ((0, 7), (7, 15), (15, 30), (30, 60), (60, 90), (90, None))


def _day_start(day):
    return timezone.make_aware(datetime.combine(day, time.min))


def period_bounds(period, now=None):
    """Half-open ``(start, end)`` range of a stats period around ``now``."""
    now = timezone.localtime(now or timezone.now())
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "today":
        return midnight, midnight + timedelta(days=1)
    if period == "week":
        return now - timedelta(days=7), now
    if period == "month":
        start = midnight.replace(day=1)
        return start, start + relativedelta(months=1)
    if period == "year":
        start = midnight.replace(month=1, day=1)
        return start, start + relativedelta(years=1)
    raise ValidationError(f"period must be one of: {', '.join(REPORT_PERIODS)}.")


class Plan(TimeStampedModel):
    """Internet plan offered in the catalog."""

    class CustomerType(models.TextChoices):
        RESIDENTIAL = "residential", "Residential"
        BUSINESS = "business", "Business"
        ENTERPRISE = "enterprise", "Enterprise"

    name = models.CharField(max_length=120, unique=True)
    download_mbps = models.PositiveIntegerField()
    upload_mbps = models.PositiveIntegerField()
    data_limit_gb = models.PositiveIntegerField(
        default=0, help_text="Monthly data cap in GB, 0 means unlimited"
    )
    monthly_price = models.DecimalField(max_digits=12, decimal_places=2)
    installation_price = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    equipment_price = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    features = models.JSONField(default=list, blank=True)
    customer_type = models.CharField(
        max_length=12, choices=CustomerType.choices, default=CustomerType.RESIDENTIAL
    )
    is_active = models.BooleanField(default=True)
    contract_duration_months = models.PositiveIntegerField(
        default=12, validators=[MinValueValidator(1)]
    )

    class Meta:
        ordering = ["monthly_price", "name"]

    def __str__(self):
        return f"{self.name} - {self.download_mbps}/{self.upload_mbps} Mbps"

    @property
    def is_unlimited(self):
        return self.data_limit_gb == 0


class ServiceQuerySet(models.QuerySet):
    def visible_to(self, user):
        if user.role in roles_for("service.view_all"):
            return self
        return self.filter(client=user)

    def current_for(self, client):
        """The client's most recent service that is up or temporarily down."""
        return (
            self.filter(
                client=client,
                status__in=[
                    Service.Status.ACTIVE,
                    Service.Status.SUSPENDED,
                    Service.Status.MAINTENANCE,
                ],
            )
            .select_related("plan")
            .order_by("-created_at", "-id")
            .first()
        )

    def pending_installations(self):
        return self.filter(status=Service.Status.PENDING_INSTALLATION).order_by(
            "installation_scheduled_date", "created_at"
        )

    def stats(self):
        by_status = {
            row["status"]: row["count"]
            for row in self.order_by().values("status").annotate(count=Count("id"))
        }
        revenue = self.filter(status=Service.Status.ACTIVE).aggregate(
            total=Sum("billing_monthly_fee"), average=Avg("billing_monthly_fee")
        )
        plans = list(
            self.order_by()
            .values("plan__id", "plan__name")
            .annotate(count=Count("id"), revenue=Sum("billing_monthly_fee"))
            .order_by("-count", "plan__name")
        )
        average = revenue["average"]
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "monthly_revenue": revenue["total"] or ZERO,
            "average_monthly_fee": Decimal(average).quantize(CENT)
            if average is not None
            else ZERO,
            "plans": plans,
        }


INSTALLATION_KEYS = {"scheduled_date", "address", "notes", "cost"}
CONNECTION_KEYS = {"ip_address", "connection_type"}
CONTRACT_KEYS = {
    "start_date",
    "duration_months",
    "auto_renewal",
    "cancellation_notice_days",
}
BILLING_KEYS = {"monthly_fee", "cycle", "billing_day"}


def _section(name, data, allowed):
    data = dict(data or {})
    unknown = set(data) - allowed
    if unknown:
        raise ValidationError(
            f"Unknown {name} field(s): {', '.join(sorted(unknown))}."
        )
    return data


class ServiceManager(models.Manager.from_queryset(ServiceQuerySet)):
    def create_subscription(
        self,
        client,
        plan,
        actor,
        installation=None,
        connection=None,
        contract=None,
        billing=None,
    ):
        """Create a subscription in ``pending_installation``.

        Monthly fee, installation cost and contract duration default to the
        plan's values.
        """
        authorize(actor, "service.create")
        installation = _section("installation", installation, INSTALLATION_KEYS)
        connection = _section("connection", connection, CONNECTION_KEYS)
        contract = _section("contract", contract, CONTRACT_KEYS)
        billing = _section("billing", billing, BILLING_KEYS)

        if getattr(client, "role", None) != CLIENT:
            raise ValidationError("Services can only be contracted by clients.")
        if not plan.is_active:
            raise ValidationError(f"Plan '{plan.name}' is not available.")

        billing_day = billing.get("billing_day", 1)
        if not 1 <= int(billing_day) <= 31:
            raise ValidationError("billing_day must be between 1 and 31.")
        duration = contract.get("duration_months")
        if duration is None:
            duration = plan.contract_duration_months
        if int(duration) < 1:
            raise ValidationError("duration_months must be at least 1.")
        cycle = billing.get("cycle", Service.BillingCycle.MONTHLY)
        if cycle not in Service.BillingCycle.values:
            raise ValidationError(f"Unknown billing cycle '{cycle}'.")
        connection_type = connection.get(
            "connection_type", Service.ConnectionType.FIBER
        )
        if connection_type not in Service.ConnectionType.values:
            raise ValidationError(f"Unknown connection type '{connection_type}'.")

        ip_address = connection.get("ip_address")
        if ip_address and self.ip_in_use(ip_address):
            raise ValidationError(f"IP address {ip_address} is already assigned.")

        monthly_fee = billing.get("monthly_fee")
        cost = installation.get("cost")
        service = self.model(
            client=client,
            plan=plan,
            installation_scheduled_date=installation.get("scheduled_date"),
            installation_address=installation.get("address") or {},
            installation_notes=installation.get("notes", ""),
            installation_cost=plan.installation_price
            if cost is None
            else _money(cost, "installation cost"),
            connection_ip_address=ip_address or None,
            connection_type=connection_type,
            contract_start_date=_as_date(contract.get("start_date")) or _today(),
            contract_duration_months=int(duration),
            contract_auto_renewal=contract.get("auto_renewal", True),
            contract_cancellation_notice_days=contract.get(
                "cancellation_notice_days", 30
            ),
            billing_monthly_fee=plan.monthly_price
            if monthly_fee is None
            else _money(monthly_fee, "monthly fee"),
            billing_cycle=cycle,
            billing_day=int(billing_day),
            created_by=actor,
            updated_by=actor,
        )
        if service.billing_monthly_fee < 0 or service.installation_cost < 0:
            raise ValidationError("Fees cannot be negative.")
        service.save()
        logger.info(
            "Service %s created for %s on plan %s by %s",
            service.service_code,
            client,
            plan.name,
            actor,
        )
        return service

    def ip_in_use(self, ip_address, exclude=None):
        queryset = self.filter(
            connection_ip_address=ip_address,
            status__in=[Service.Status.ACTIVE, Service.Status.PENDING_INSTALLATION],
        )
        if exclude is not None:
            queryset = queryset.exclude(pk=exclude.pk)
        return queryset.exists()


class Service(SequentiallyNumbered, TimeStampedModel):
    """A client's contracted internet service."""

    class Status(models.TextChoices):
        PENDING_INSTALLATION = "pending_installation", "Pending installation"
        ACTIVE = "active", "Active"
        SUSPENDED = "suspended", "Suspended"
        CANCELLED = "cancelled", "Cancelled"
        PENDING_CANCELLATION = "pending_cancellation", "Pending cancellation"
        MAINTENANCE = "maintenance", "Maintenance"

    class ConnectionType(models.TextChoices):
        FIBER = "fiber", "Fiber"
        CABLE = "cable", "Cable"
        WIRELESS = "wireless", "Wireless"
        DSL = "dsl", "DSL"
        SATELLITE = "satellite", "Satellite"

    class BillingCycle(models.TextChoices):
        MONTHLY = "monthly", "Monthly"
        QUARTERLY = "quarterly", "Quarterly"
        SEMI_ANNUAL = "semi-annual", "Semi-annual"
        ANNUAL = "annual", "Annual"

    number_field = "service_code"

    client = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="services"
    )
    plan = models.ForeignKey(Plan, on_delete=models.PROTECT, related_name="services")
    service_code = models.CharField(
        max_length=11, unique=True, blank=True, editable=False
    )
    status = models.CharField(
        max_length=24, choices=Status.choices, default=Status.PENDING_INSTALLATION
    )
    cancelled_at = models.DateTimeField(null=True, blank=True)

    # Installation
    installation_scheduled_date = models.DateTimeField(null=True, blank=True)
    installation_completed_date = models.DateTimeField(null=True, blank=True)
    installation_technician = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="installations",
    )
    installation_equipment = models.ManyToManyField(
        "equipment.NetworkEquipment", blank=True, related_name="services"
    )
    installation_address = models.JSONField(default=dict, blank=True)
    installation_notes = models.TextField(blank=True)
    installation_photos = models.JSONField(default=list, blank=True)
    installation_signature = models.CharField(max_length=500, blank=True)
    installation_cost = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )

    # Connection
    connection_ip_address = models.GenericIPAddressField(
        protocol="IPv4", null=True, blank=True
    )
    connection_type = models.CharField(
        max_length=12, choices=ConnectionType.choices, default=ConnectionType.FIBER
    )
    speed_test_download = models.DecimalField(
        max_digits=8, decimal_places=2, null=True, blank=True
    )
    speed_test_upload = models.DecimalField(
        max_digits=8, decimal_places=2, null=True, blank=True
    )
    speed_test_ping = models.DecimalField(
        max_digits=8, decimal_places=2, null=True, blank=True
    )
    speed_test_at = models.DateTimeField(null=True, blank=True)

    # Contract
    contract_start_date = models.DateField(default=_today)
    contract_end_date = models.DateField(null=True, blank=True, editable=False)
    contract_duration_months = models.PositiveIntegerField(
        default=12, validators=[MinValueValidator(1)]
    )
    contract_auto_renewal = models.BooleanField(default=True)
    contract_cancellation_notice_days = models.PositiveIntegerField(default=30)

    # Billing
    billing_monthly_fee = models.DecimalField(max_digits=12, decimal_places=2)
    billing_cycle = models.CharField(
        max_length=12, choices=BillingCycle.choices, default=BillingCycle.MONTHLY
    )
    billing_day = models.PositiveSmallIntegerField(
        default=1, validators=[MinValueValidator(1), MaxValueValidator(31)]
    )
    billing_last_billed_date = models.DateField(null=True, blank=True)
    billing_next_billing_date = models.DateField(null=True, blank=True)
    billing_outstanding_balance = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )

    # Data usage, current month
    usage_download_gb = models.DecimalField(
        max_digits=14, decimal_places=3, default=Decimal("0.000")
    )
    usage_upload_gb = models.DecimalField(
        max_digits=14, decimal_places=3, default=Decimal("0.000")
    )
    usage_total_gb = models.DecimalField(
        max_digits=14, decimal_places=3, default=Decimal("0.000")
    )
    usage_last_updated = models.DateTimeField(null=True, blank=True)
    usage_warning_threshold = models.PositiveSmallIntegerField(
        default=80, validators=[MaxValueValidator(100)]
    )

    # Monitoring
    monitoring_uptime = models.DecimalField(
        max_digits=5, decimal_places=2, default=Decimal("100.00")
    )
    monitoring_last_ping = models.DateTimeField(null=True, blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    objects = ServiceManager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="billing_service_status_idx"),
            models.Index(
                fields=["billing_next_billing_date"],
                name="billing_service_next_bill_idx",
            ),
            models.Index(
                fields=["connection_ip_address"], name="billing_service_ip_idx"
            ),
        ]

    def __str__(self):
        return f"{self.service_code} - {self.client}"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        loaded = dict(zip(field_names, values))
        instance._billing_anchor = (
            loaded.get("contract_start_date"),
            loaded.get("billing_day"),
            loaded.get("billing_cycle"),
        )
        return instance

    def allocate_number(self):
        return sequences.next_service_code()

    def save(self, *args, **kwargs):
        start = _as_date(self.contract_start_date)
        self.contract_start_date = start
        self.contract_end_date = start + relativedelta(
            months=self.contract_duration_months
        )
        derived = {"contract_start_date", "contract_end_date"}
        anchor = (start, self.billing_day, self.billing_cycle)
        if (
            self.billing_next_billing_date is None
            or anchor != getattr(self, "_billing_anchor", None)
        ):
            self.billing_next_billing_date = next_billing_date(start, self.billing_day)
            derived.add("billing_next_billing_date")
        update_fields = kwargs.get("update_fields")
        if update_fields is not None:
            kwargs["update_fields"] = {*update_fields, *derived}
        result = super().save(*args, **kwargs)
        self._billing_anchor = anchor
        return result

    def _persist(self, actor, *fields):
        self.updated_by = actor
        self.save(update_fields=[*fields, "updated_by", "updated_at"])

    def is_active(self):
        return self.status == self.Status.ACTIVE

    @property
    def active_suspension(self):
        return self.suspensions.filter(is_active=True).first()

    def complete_installation(
        self,
        actor,
        equipment_installed=(),
        ip_address=None,
        notes="",
        photos=None,
        signature="",
    ):
        authorize(actor, "service.complete_installation")
        if self.status != self.Status.PENDING_INSTALLATION:
            raise InvalidStateError(
                f"Service {self.service_code} is {self.status}, installation "
                "can only be completed while pending installation."
            )
        if ip_address and Service.objects.ip_in_use(ip_address, exclude=self):
            raise ValidationError(f"IP address {ip_address} is already assigned.")
        with transaction.atomic():
            self.status = self.Status.ACTIVE
            self.installation_completed_date = timezone.now()
            if self.installation_technician_id is None:
                self.installation_technician = actor
            if ip_address:
                self.connection_ip_address = ip_address
            if notes:
                self.installation_notes = notes
            if photos:
                self.installation_photos = list(photos)
            if signature:
                self.installation_signature = signature
            self._persist(
                actor,
                "status",
                "installation_completed_date",
                "installation_technician",
                "connection_ip_address",
                "installation_notes",
                "installation_photos",
                "installation_signature",
            )
            if equipment_installed:
                self.installation_equipment.add(*equipment_installed)
        logger.info("Service %s installed by %s", self.service_code, actor)

    def suspend(self, reason, actor, notes=""):
        authorize(actor, "service.suspend")
        if reason not in Suspension.Reason.values:
            raise ValidationError(f"Unknown suspension reason '{reason}'.")
        if self.status == self.Status.SUSPENDED:
            raise InvalidStateError(f"Service {self.service_code} is already suspended.")
        if self.status == self.Status.CANCELLED:
            raise InvalidStateError(f"Service {self.service_code} is cancelled.")
        with transaction.atomic():
            Suspension.objects.create(
                service=self, reason=reason, suspended_by=actor, notes=notes
            )
            self.status = self.Status.SUSPENDED
            self._persist(actor, "status")
        logger.info(
            "Service %s suspended (%s) by %s", self.service_code, reason, actor
        )

    def reactivate(self, actor, notes=""):
        authorize(actor, "service.reactivate")
        if self.status != self.Status.SUSPENDED:
            raise InvalidStateError(
                f"Service {self.service_code} is {self.status}, only suspended "
                "services can be reactivated."
            )
        with transaction.atomic():
            suspension = self.active_suspension
            if suspension is not None:
                suspension.is_active = False
                suspension.reactivated_at = timezone.now()
                suspension.reactivated_by = actor
                if notes:
                    suspension.notes = f"{suspension.notes} | Reactivation: {notes}"
                suspension.save(
                    update_fields=[
                        "is_active",
                        "reactivated_at",
                        "reactivated_by",
                        "notes",
                    ]
                )
            self.status = self.Status.ACTIVE
            self._persist(actor, "status")
        logger.info("Service %s reactivated by %s", self.service_code, actor)

    def prorated_amount(self, new_fee, on_date):
        """Fee difference for the rest of the current billing period.

        Positive when moving to a more expensive plan, negative otherwise.
        Zero when ``on_date`` is not inside a billing period.
        """
        next_date = self.billing_next_billing_date
        on_date = _as_date(on_date)
        if next_date is None or on_date >= next_date:
            return ZERO
        period_start = next_date - relativedelta(months=1)
        period_days = (next_date - period_start).days
        remaining = min((next_date - on_date).days, period_days)
        daily_delta = (Decimal(new_fee) - self.billing_monthly_fee) / period_days
        return (daily_delta * remaining).quantize(CENT)

    def change_plan(self, new_plan, actor, reason="", effective_date=None):
        authorize(actor, "service.change_plan")
        if self.status == self.Status.CANCELLED:
            raise InvalidStateError(f"Service {self.service_code} is cancelled.")
        if new_plan.pk == self.plan_id:
            raise ValidationError(f"Service is already on plan '{new_plan.name}'.")
        if not new_plan.is_active:
            raise ValidationError(f"Plan '{new_plan.name}' is not available.")
        effective_date = effective_date or timezone.now()
        with transaction.atomic():
            change = PlanChange.objects.create(
                service=self,
                from_plan_id=self.plan_id,
                to_plan=new_plan,
                reason=reason,
                approved_by=actor,
                effective_date=effective_date,
                previous_monthly_fee=self.billing_monthly_fee,
                prorated_amount=self.prorated_amount(
                    new_plan.monthly_price, effective_date
                ),
            )
            self.plan = new_plan
            self.billing_monthly_fee = new_plan.monthly_price
            self._persist(actor, "plan", "billing_monthly_fee")
        logger.info(
            "Service %s moved to plan %s by %s (prorated %s)",
            self.service_code,
            new_plan.name,
            actor,
            change.prorated_amount,
        )
        return change

    def record_data_usage(self, download_gb, upload_gb, actor):
        """Add traffic to the current month counters."""
        authorize(actor, "service.record_usage")
        try:
            download = Decimal(str(download_gb)).quantize(GB)
            upload = Decimal(str(upload_gb)).quantize(GB)
        except ArithmeticError:
            raise ValidationError("Usage must be numeric.") from None
        if download < 0 or upload < 0:
            raise ValidationError("Usage cannot be negative.")
        Service.objects.filter(pk=self.pk).update(
            usage_download_gb=F("usage_download_gb") + download,
            usage_upload_gb=F("usage_upload_gb") + upload,
            usage_total_gb=F("usage_total_gb") + (download + upload),
            usage_last_updated=timezone.now(),
            updated_at=timezone.now(),
        )
        self.refresh_from_db(
            fields=[
                "usage_download_gb",
                "usage_upload_gb",
                "usage_total_gb",
                "usage_last_updated",
                "updated_at",
            ]
        )

    def current_monthly_cost(self, now=None):
        now = now or timezone.now()
        rules = [
            discount.rule()
            for discount in self.discounts.all()
            if discount.is_current(now)
        ]
        return apply_discounts(self.billing_monthly_fee, rules)

    def is_over_data_limit(self):
        if self.plan.is_unlimited:
            return False
        return self.usage_total_gb > self.plan.data_limit_gb

    def data_usage_percent(self):
        if self.plan.is_unlimited:
            return None
        return (self.usage_total_gb * 100 / self.plan.data_limit_gb).quantize(CENT)

    def dashboard(self, now=None):
        """Summary shown to the client: plan, usage, billing and alerts."""
        today = timezone.localdate(now) if now else _today()
        percent = self.data_usage_percent()
        threshold = billing_setting("USAGE_WARNING_PERCENT")
        next_date = self.billing_next_billing_date
        alerts = []
        if self.billing_outstanding_balance > 0:
            alerts.append(
                {
                    "type": "warning",
                    "title": "Outstanding balance",
                    "message": f"You have an outstanding balance of "
                    f"{self.billing_outstanding_balance}.",
                }
            )
        if percent is not None and percent >= threshold:
            alerts.append(
                {
                    "type": "info",
                    "title": "Data usage",
                    "message": f"You have used {percent}% of your monthly data.",
                }
            )
        if self.status == self.Status.SUSPENDED:
            alerts.append(
                {
                    "type": "warning",
                    "title": "Service suspended",
                    "message": "Your service is suspended.",
                }
            )
        elif self.status == self.Status.MAINTENANCE:
            alerts.append(
                {
                    "type": "info",
                    "title": "Maintenance",
                    "message": "Your service is under scheduled maintenance.",
                }
            )
        return {
            "service": {
                "code": self.service_code,
                "status": self.status,
                "status_display": self.get_status_display(),
            },
            "plan": {
                "name": self.plan.name,
                "download_mbps": self.plan.download_mbps,
                "upload_mbps": self.plan.upload_mbps,
                "monthly_price": self.plan.monthly_price,
                "features": self.plan.features,
            },
            "data_usage": {
                "current_gb": self.usage_total_gb,
                "download_gb": self.usage_download_gb,
                "upload_gb": self.usage_upload_gb,
                "limit_gb": None if self.plan.is_unlimited else self.plan.data_limit_gb,
                "percent": percent,
                "is_unlimited": self.plan.is_unlimited,
                "warning_percent": threshold,
                "last_updated": self.usage_last_updated,
            },
            "billing": {
                "next_billing_date": next_date,
                "monthly_cost": self.current_monthly_cost(now),
                "outstanding_balance": self.billing_outstanding_balance,
                "billing_cycle": self.billing_cycle,
                "days_until_billing": max((next_date - today).days, 0)
                if next_date
                else 0,
            },
            "connection": {
                "ip_address": self.connection_ip_address,
                "connection_type": self.connection_type,
            },
            "alerts": alerts,
        }

    def add_internal_note(self, note, actor, is_important=False):
        authorize(actor, "service.add_note")
        if not note or not note.strip():
            raise ValidationError("Note text is required.")
        with transaction.atomic():
            entry = InternalNote.objects.create(
                service=self, note=note.strip(), added_by=actor, is_important=is_important
            )
            self._persist(actor)
        return entry

    def add_discount(
        self,
        actor,
        discount_type,
        value,
        valid_until,
        valid_from=None,
        name="",
        description="",
    ):
        authorize(actor, "service.add_discount")
        if discount_type not in ServiceDiscount.DiscountType.values:
            raise ValidationError(f"Unknown discount type '{discount_type}'.")
        value = _money(value, "value")
        if value <= 0:
            raise ValidationError("Discount value must be positive.")
        if discount_type == ServiceDiscount.DiscountType.PERCENTAGE and value > 100:
            raise ValidationError("Percentage discounts cannot exceed 100.")
        valid_from = valid_from or timezone.now()
        if valid_until <= valid_from:
            raise ValidationError("valid_until must be after valid_from.")
        with transaction.atomic():
            discount = ServiceDiscount.objects.create(
                service=self,
                name=name,
                description=description,
                discount_type=discount_type,
                value=value,
                valid_from=valid_from,
                valid_until=valid_until,
                applied_by=actor,
            )
            self._persist(actor)
        logger.info(
            "Discount %s %s added to %s by %s",
            discount_type,
            value,
            self.service_code,
            actor,
        )
        return discount

    def cancel(self, actor, reason=""):
        authorize(actor, "service.cancel")
        if self.status == self.Status.CANCELLED:
            raise InvalidStateError(f"Service {self.service_code} is already cancelled.")
        with transaction.atomic():
            self.suspensions.filter(is_active=True).update(is_active=False)
            if reason:
                InternalNote.objects.create(
                    service=self,
                    note=f"Cancelled: {reason}",
                    added_by=actor,
                    is_important=True,
                )
            self.status = self.Status.CANCELLED
            self.cancelled_at = timezone.now()
            self._persist(actor, "status", "cancelled_at")
        logger.info("Service %s cancelled by %s", self.service_code, actor)

    def close_usage_month(self, actor, month=None):
        """Move the current month counters into the usage history."""
        authorize(actor, "service.record_usage")
        month = month or timezone.localdate().strftime("%Y-%m")
        try:
            datetime.strptime(month, "%Y-%m")
        except (TypeError, ValueError):
            raise ValidationError("month must be formatted as YYYY-MM.") from None
        if self.usage_history.filter(month=month).exists():
            raise InvalidStateError(f"Usage for {month} is already closed.")
        cap = Decimal(self.plan.data_limit_gb)
        overage = max(self.usage_total_gb - cap, ZERO) if cap else ZERO
        with transaction.atomic():
            record = DataUsageRecord.objects.create(
                service=self,
                month=month,
                download_gb=self.usage_download_gb,
                upload_gb=self.usage_upload_gb,
                total_gb=self.usage_total_gb,
                overage_gb=overage,
            )
            self.usage_download_gb = self.usage_upload_gb = self.usage_total_gb = ZERO
            self.usage_last_updated = timezone.now()
            self._persist(
                actor,
                "usage_download_gb",
                "usage_upload_gb",
                "usage_total_gb",
                "usage_last_updated",
            )
        return record


class ServiceDiscount(TimeStampedModel):
    class DiscountType(models.TextChoices):
        PERCENTAGE = "percentage", "Percentage"
        FIXED_AMOUNT = "fixed_amount", "Fixed amount"
        FREE_MONTHS = "free_months", "Free months"

    service = models.ForeignKey(
        Service, on_delete=models.CASCADE, related_name="discounts"
    )
    name = models.CharField(max_length=120, blank=True)
    description = models.TextField(blank=True)
    discount_type = models.CharField(max_length=12, choices=DiscountType.choices)
    value = models.DecimalField(max_digits=12, decimal_places=2)
    valid_from = models.DateTimeField(default=timezone.now)
    valid_until = models.DateTimeField()
    is_active = models.BooleanField(default=True)
    applied_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"{self.get_discount_type_display()} {self.value}"

    def is_current(self, now):
        return self.is_active and self.valid_from <= now <= self.valid_until

    def rule(self):
        return rule_for(self.discount_type, self.value)


class PlanChange(models.Model):
    service = models.ForeignKey(
        Service, on_delete=models.CASCADE, related_name="plan_changes"
    )
    from_plan = models.ForeignKey(
        Plan, on_delete=models.PROTECT, related_name="+"
    )
    to_plan = models.ForeignKey(Plan, on_delete=models.PROTECT, related_name="+")
    changed_at = models.DateTimeField(default=timezone.now)
    effective_date = models.DateTimeField(default=timezone.now)
    reason = models.CharField(max_length=255, blank=True)
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    previous_monthly_fee = models.DecimalField(max_digits=12, decimal_places=2)
    prorated_amount = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )

    class Meta:
        ordering = ["changed_at", "id"]

    def __str__(self):
        return f"{self.service.service_code}: {self.from_plan} -> {self.to_plan}"


class Suspension(models.Model):
    class Reason(models.TextChoices):
        NON_PAYMENT = "non_payment", "Non-payment"
        TECHNICAL_ISSUES = "technical_issues", "Technical issues"
        CLIENT_REQUEST = "client_request", "Client request"
        MAINTENANCE = "maintenance", "Maintenance"
        ABUSE = "abuse", "Abuse"
        OTHER = "other", "Other"

    service = models.ForeignKey(
        Service, on_delete=models.CASCADE, related_name="suspensions"
    )
    reason = models.CharField(max_length=20, choices=Reason.choices)
    suspended_at = models.DateTimeField(default=timezone.now)
    suspended_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    reactivated_at = models.DateTimeField(null=True, blank=True)
    reactivated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    notes = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["suspended_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["service"],
                condition=Q(is_active=True),
                name="one_active_suspension_per_service",
            )
        ]

    def __str__(self):
        return f"{self.service.service_code} suspended ({self.reason})"


class DataUsageRecord(models.Model):
    service = models.ForeignKey(
        Service, on_delete=models.CASCADE, related_name="usage_history"
    )
    month = models.CharField(max_length=7, help_text="YYYY-MM")
    download_gb = models.DecimalField(max_digits=14, decimal_places=3)
    upload_gb = models.DecimalField(max_digits=14, decimal_places=3)
    total_gb = models.DecimalField(max_digits=14, decimal_places=3)
    overage_gb = models.DecimalField(
        max_digits=14, decimal_places=3, default=Decimal("0.000")
    )
    overage_charges = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )

    class Meta:
        ordering = ["-month"]
        unique_together = ("service", "month")

    def __str__(self):
        return f"{self.service.service_code} {self.month}: {self.total_gb} GB"


class InternalNote(TimeStampedModel):
    service = models.ForeignKey(
        Service, on_delete=models.CASCADE, related_name="internal_notes"
    )
    note = models.TextField()
    added_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    is_important = models.BooleanField(default=False)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return self.note[:50]


class ReceiptQuerySet(models.QuerySet):
    def visible_to(self, user):
        if user.role in roles_for("receipt.view_all"):
            return self
        return self.filter(client=user)

    def overdue(self, now=None):
        now = now or timezone.now()
        return self.filter(status=Receipt.Status.PENDING, due_date__lt=now).order_by(
            "due_date"
        )

    def search(self, term):
        return self.filter(
            Q(receipt_number__icontains=term)
            | Q(transaction_id__icontains=term)
            | Q(client__username__icontains=term)
        )

    def filtered(
        self,
        status=None,
        client=None,
        payment_method=None,
        start_date=None,
        end_date=None,
        search=None,
    ):
        """Apply the optional list filters; dates bound ``issued_at`` inclusively."""
        queryset = self
        if status:
            queryset = queryset.filter(status=status)
        if client is not None:
            queryset = queryset.filter(client=client)
        if payment_method:
            queryset = queryset.filter(payment_method=payment_method)
        if start_date:
            queryset = queryset.filter(issued_at__gte=_day_start(start_date))
        if end_date:
            queryset = queryset.filter(
                issued_at__lt=_day_start(end_date + timedelta(days=1))
            )
        if search:
            queryset = queryset.search(search)
        return queryset

    def stats(self, period=None, now=None):
        """Totals per status, optionally limited to receipts issued in ``period``."""
        queryset = self
        date_range = None
        if period:
            start, end = period_bounds(period, now)
            queryset = self.filter(issued_at__gte=start, issued_at__lt=end)
            date_range = {"start": start, "end": end}
        rows = (
            queryset.order_by()
            .values("status")
            .annotate(count=Count("id"), amount=Sum("total_amount"))
        )
        by_status = {
            row["status"]: {"count": row["count"], "amount": row["amount"] or ZERO}
            for row in rows
        }
        collected = by_status.get(Receipt.Status.COMPLETED, {}).get("amount", ZERO)
        partials = PartialPayment.objects.filter(
            receipt__in=queryset.filter(status=Receipt.Status.PARTIAL)
        ).aggregate(total=Sum("amount"))["total"]
        outstanding = sum(
            (
                by_status.get(status, {}).get("amount", ZERO)
                for status in (Receipt.Status.PENDING, Receipt.Status.PARTIAL)
            ),
            ZERO,
        ) - (partials or ZERO)
        by_method = list(
            queryset.filter(status=Receipt.Status.COMPLETED)
            .exclude(payment_method="")
            .order_by()
            .values("payment_method")
            .annotate(count=Count("id"), amount=Sum("total_amount"))
            .order_by("-amount", "payment_method")
        )
        return {
            "period": period,
            "date_range": date_range,
            "total": sum(row["count"] for row in by_status.values()),
            "by_status": by_status,
            "by_method": by_method,
            "collected": collected + (partials or ZERO),
            "outstanding": outstanding,
            "refunded": queryset.filter(is_refunded=True).aggregate(
                total=Sum("refund_amount")
            )["total"]
            or ZERO,
            "overdue_count": self.overdue(now).count(),
        }

    def revenue_report(self, start_date, end_date, group_by="month"):
        """Completed receipts paid between two dates, grouped by period."""
        if group_by not in REVENUE_GROUPS:
            raise ValidationError(
                f"group_by must be one of: {', '.join(REVENUE_GROUPS)}."
            )
        if end_date < start_date:
            raise ValidationError("end_date cannot be before start_date.")
        rows = list(
            self.filter(
                status=Receipt.Status.COMPLETED,
                payment_date__gte=_day_start(start_date),
                payment_date__lt=_day_start(end_date + timedelta(days=1)),
            )
            .annotate(
                period=Trunc("payment_date", group_by, output_field=models.DateField())
            )
            .order_by()
            .values("period")
            .annotate(
                revenue=Sum("total_amount"),
                count=Count("id"),
                taxes=Sum("total_taxes"),
                discounts=Sum("total_discounts"),
            )
            .order_by("period")
        )
        return {
            "group_by": group_by,
            "start_date": start_date,
            "end_date": end_date,
            "rows": rows,
            "summary": {
                "revenue": sum((row["revenue"] for row in rows), ZERO),
                "count": sum(row["count"] for row in rows),
                "taxes": sum((row["taxes"] for row in rows), ZERO),
                "discounts": sum((row["discounts"] for row in rows), ZERO),
            },
        }

    def collection_report(self, now=None):
        """Status mix of receipts due in the last 30 days plus overdue aging."""
        now = now or timezone.now()
        recent = (
            self.filter(due_date__gte=now - timedelta(days=30))
            .order_by()
            .values("status")
            .annotate(count=Count("id"), amount=Sum("total_amount"))
        )
        aging = [
            {
                "label": f"{low}-{high}" if high is not None else f"{low}+",
                "min_days": low,
                "max_days": high,
                "count": 0,
                "amount": ZERO,
            }
            for low, high in AGING_BUCKETS
        ]
        for due_date, amount in self.overdue(now).values_list(
            "due_date", "total_amount"
        ):
            days = (now - due_date) / timedelta(days=1)
            for bucket in aging:
                if bucket["max_days"] is None or days < bucket["max_days"]:
                    bucket["count"] += 1
                    bucket["amount"] += amount
                    break
        return {
            "by_status": {
                row["status"]: {"count": row["count"], "amount": row["amount"] or ZERO}
                for row in recent
            },
            "aging": aging,
        }


class ReceiptManager(models.Manager.from_queryset(ReceiptQuerySet)):
    def create_receipt(
        self,
        client,
        actor,
        line_items,
        additional_charges=None,
        discounts=None,
        tax_rate=None,
        due_date=None,
        payment_method="",
        issued_at=None,
        notes="",
    ):
        """Issue a receipt for services of ``client``.

        ``line_items`` is a list of dicts with ``service`` (instance or id),
        ``amount`` and optional ``period_start``/``period_end``/``description``.
        Totals are computed from the lines; they cannot be passed in.
        """
        authorize(actor, "receipt.create")
        if not line_items:
            raise ValidationError("A receipt needs at least one service line.")
        if payment_method and payment_method not in Receipt.PaymentMethod.values:
            raise ValidationError(f"Unknown payment method '{payment_method}'.")

        lines = [self._service_line(client, item) for item in line_items]
        charges = [self._charge(item) for item in additional_charges or ()]
        discount_rows = [self._discount(item) for item in discounts or ()]

        subtotal = sum((l.amount for l in lines), ZERO) + sum(
            (c.amount for c in charges), ZERO
        )
        if sum((d.amount for d in discount_rows), ZERO) > subtotal:
            raise ValidationError("Discounts cannot exceed the subtotal.")

        tax_rate = _money(
            billing_setting("DEFAULT_TAX_RATE") if tax_rate is None else tax_rate,
            "tax rate",
        )
        if not ZERO <= tax_rate <= 100:
            raise ValidationError("tax_rate must be between 0 and 100.")

        issued_at = issued_at or timezone.now()
        if due_date is None:
            due_date = issued_at + timedelta(days=billing_setting("DEFAULT_DUE_DAYS"))

        with transaction.atomic():
            receipt = self.model(
                client=client,
                issued_at=issued_at,
                due_date=due_date,
                payment_method=payment_method,
                currency=billing_setting("DEFAULT_CURRENCY"),
                internal_notes=notes,
                created_by=actor,
            )
            receipt.save()
            for row in (*lines, *charges, *discount_rows):
                row.receipt = receipt
                row.save()
            ReceiptTax.objects.create(
                receipt=receipt, name=billing_setting("TAX_NAME"), rate=tax_rate
            )
            receipt.save()
            receipt.adjust_service_balances(1)
        logger.info(
            "Receipt %s issued to %s for %s by %s",
            receipt.receipt_number,
            client,
            receipt.total_amount,
            actor,
        )
        return receipt

    def _service_line(self, client, item):
        service = item.get("service")
        if not isinstance(service, Service):
            service = Service.objects.filter(pk=service).select_related("plan").first()
            if service is None:
                raise NotFoundError(f"Service {item.get('service')} does not exist.")
        if service.client_id != client.pk:
            raise ValidationError(
                f"Service {service.service_code} does not belong to {client}."
            )
        amount = _money(item.get("amount"), "line amount")
        if amount < 0:
            raise ValidationError("Line amounts cannot be negative.")
        start, end = item.get("period_start"), item.get("period_end")
        if start and end and end <= start:
            raise ValidationError("period_end must be after period_start.")
        return ReceiptServiceLine(
            service=service,
            plan_name=service.plan.name,
            amount=amount,
            period_start=start,
            period_end=end,
            description=item.get("description", ""),
        )

    def _charge(self, item):
        charge_type = item.get("charge_type", AdditionalCharge.ChargeType.OTHER)
        if charge_type not in AdditionalCharge.ChargeType.values:
            raise ValidationError(f"Unknown charge type '{charge_type}'.")
        amount = _money(item.get("amount"), "charge amount")
        if amount < 0:
            raise ValidationError("Charges cannot be negative.")
        return AdditionalCharge(
            concept=item.get("concept", ""),
            description=item.get("description", ""),
            amount=amount,
            charge_type=charge_type,
        )

    def _discount(self, item):
        discount_type = item.get("discount_type", ReceiptDiscount.DiscountType.FIXED)
        if discount_type not in ReceiptDiscount.DiscountType.values:
            raise ValidationError(f"Unknown discount type '{discount_type}'.")
        amount = _money(item.get("amount"), "discount amount")
        if amount < 0:
            raise ValidationError("Discounts cannot be negative.")
        return ReceiptDiscount(
            concept=item.get("concept", ""),
            amount=amount,
            discount_type=discount_type,
            code=item.get("code", ""),
        )


class Receipt(SequentiallyNumbered, TimeStampedModel):
    """Billable document for one client.

    The computed totals are derived from the service lines, charges,
    discounts, taxes and late fee on every save.
    """

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"
        CANCELLED = "cancelled", "Cancelled"
        REFUNDED = "refunded", "Refunded"
        PARTIAL = "partial", "Partially paid"

    class PaymentMethod(models.TextChoices):
        CASH = "cash", "Cash"
        CREDIT_CARD = "credit_card", "Credit card"
        DEBIT_CARD = "debit_card", "Debit card"
        BANK_TRANSFER = "bank_transfer", "Bank transfer"
        CHECK = "check", "Check"
        DIGITAL_WALLET = "digital_wallet", "Digital wallet"
        CRYPTO = "crypto", "Crypto"
        OTHER = "other", "Other"

    number_field = "receipt_number"

    client = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="receipts"
    )
    receipt_number = models.CharField(
        max_length=16, unique=True, blank=True, editable=False
    )
    issued_at = models.DateTimeField(default=timezone.now)
    due_date = models.DateTimeField(blank=True)
    currency = models.CharField(max_length=3, default="USD")
    status = models.CharField(
        max_length=12, choices=Status.choices, default=Status.PENDING
    )

    subtotal = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00"), editable=False
    )
    total_discounts = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00"), editable=False
    )
    taxable_amount = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00"), editable=False
    )
    total_taxes = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00"), editable=False
    )
    total_amount = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00"), editable=False
    )

    payment_method = models.CharField(
        max_length=16, choices=PaymentMethod.choices, blank=True
    )
    transaction_id = models.CharField(max_length=120, blank=True)
    bank_name = models.CharField(max_length=120, blank=True)
    payment_date = models.DateTimeField(null=True, blank=True)
    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    is_late = models.BooleanField(default=False, editable=False)
    days_late = models.PositiveIntegerField(default=0, editable=False)
    late_fees_applied = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    late_fees_rate = models.DecimalField(
        max_digits=5, decimal_places=2, default=Decimal("0.00")
    )

    is_refunded = models.BooleanField(default=False)
    refund_amount = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00")
    )
    refund_reason = models.CharField(max_length=255, blank=True)
    refunded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    refund_date = models.DateTimeField(null=True, blank=True)

    internal_notes = models.TextField(blank=True)
    customer_notes = models.TextField(blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    objects = ReceiptManager()

    class Meta:
        ordering = ["-issued_at"]
        indexes = [
            models.Index(fields=["status", "due_date"], name="billing_receipt_due_idx"),
        ]

    def __str__(self):
        return f"{self.receipt_number} - {self.client}"

    def allocate_number(self):
        issued_at = self.issued_at
        if timezone.is_aware(issued_at):
            issued_at = timezone.localtime(issued_at)
        return sequences.next_receipt_number(issued_at.year)

    def save(self, *args, **kwargs):
        if self.due_date is None:
            self.due_date = self.issued_at + timedelta(
                days=billing_setting("DEFAULT_DUE_DAYS")
            )
        if self.pk:
            self.recompute_totals()
        else:
            self.total_amount = (
                self.taxable_amount + self.total_taxes + self.late_fees_applied
            )
        self.refresh_late_state()
        update_fields = kwargs.get("update_fields")
        if update_fields is not None:
            kwargs["update_fields"] = {
                *update_fields,
                "subtotal",
                "total_discounts",
                "taxable_amount",
                "total_taxes",
                "total_amount",
                "is_late",
                "days_late",
            }
        return super().save(*args, **kwargs)

    def recompute_totals(self):
        subtotal = sum(
            (line.amount for line in self.service_lines.all()), ZERO
        ) + sum((charge.amount for charge in self.additional_charges.all()), ZERO)
        total_discounts = sum(
            (discount.amount for discount in self.discounts.all()), ZERO
        )
        taxable = subtotal - total_discounts
        total_taxes = ZERO
        for tax in self.taxes.all():
            amount = (taxable * tax.rate / Decimal("100")).quantize(CENT)
            if amount != tax.amount:
                ReceiptTax.objects.filter(pk=tax.pk).update(amount=amount)
            total_taxes += amount
        self.subtotal = subtotal.quantize(CENT)
        self.total_discounts = total_discounts.quantize(CENT)
        self.taxable_amount = taxable.quantize(CENT)
        self.total_taxes = total_taxes
        self.total_amount = (
            self.taxable_amount + self.total_taxes + self.late_fees_applied
        ).quantize(CENT)

    def refresh_late_state(self):
        if self.payment_date and self.due_date and self.payment_date > self.due_date:
            self.is_late = True
            self.days_late = math.ceil(
                (self.payment_date - self.due_date) / timedelta(days=1)
            )
        else:
            self.is_late = False
            self.days_late = 0

    @property
    def amount_paid(self):
        return self.partial_payments.aggregate(total=Sum("amount"))["total"] or ZERO

    @property
    def balance_due(self):
        if self.status == self.Status.COMPLETED:
            return ZERO
        return max(self.total_amount - self.amount_paid, ZERO)

    def adjust_service_balances(self, sign):
        for line in self.service_lines.all():
            Service.objects.filter(pk=line.service_id).update(
                billing_outstanding_balance=F("billing_outstanding_balance")
                + sign * line.amount
            )

    def _complete(self, actor, method, payment_date=None):
        self.status = self.Status.COMPLETED
        self.payment_date = payment_date or timezone.now()
        self.payment_method = method
        self.processed_by = actor
        self.save()
        self.adjust_service_balances(-1)

    def add_partial_payment(self, actor, amount, method, transaction_id="", notes=""):
        authorize(actor, "receipt.partial")
        amount = _money(amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be positive.")
        if method not in self.PaymentMethod.values:
            raise ValidationError(f"Unknown payment method '{method}'.")
        if self.status not in (self.Status.PENDING, self.Status.PARTIAL):
            raise InvalidStateError(
                f"Receipt {self.receipt_number} is {self.status}, "
                "partial payments are not accepted."
            )
        with transaction.atomic():
            payment = PartialPayment.objects.create(
                receipt=self,
                amount=amount,
                method=method,
                transaction_id=transaction_id,
                notes=notes,
                recorded_by=actor,
            )
            if self.amount_paid >= self.total_amount:
                self._complete(actor, method)
            else:
                self.status = self.Status.PARTIAL
                self.save()
        logger.info(
            "Partial payment %s on %s by %s, status %s",
            amount,
            self.receipt_number,
            actor,
            self.status,
        )
        return payment

    def process_full_payment(
        self, actor, method, transaction_id="", bank_name="", payment_date=None
    ):
        authorize(actor, "receipt.process")
        if method not in self.PaymentMethod.values:
            raise ValidationError(f"Unknown payment method '{method}'.")
        if self.status not in (self.Status.PENDING, self.Status.PARTIAL):
            raise InvalidStateError(
                f"Receipt {self.receipt_number} is {self.status}, "
                "only pending or partial receipts can be paid."
            )
        with transaction.atomic():
            self.transaction_id = transaction_id
            self.bank_name = bank_name
            self._complete(actor, method, payment_date)
        logger.info(
            "Receipt %s paid by %s (late=%s)", self.receipt_number, actor, self.is_late
        )

    def process_refund(self, actor, reason, amount=None):
        authorize(actor, "receipt.refund")
        if self.status != self.Status.COMPLETED or self.is_refunded:
            raise InvalidStateError(
                f"Receipt {self.receipt_number} cannot be refunded from {self.status}."
            )
        if not reason or not reason.strip():
            raise ValidationError("A refund reason is required.")
        amount = self.total_amount if amount is None else _money(amount)
        if amount <= 0 or amount > self.total_amount:
            raise ValidationError("Refund amount must be between 0 and the total.")
        self.is_refunded = True
        self.refund_amount = amount
        self.refund_reason = reason.strip()
        self.refunded_by = actor
        self.refund_date = timezone.now()
        self.status = self.Status.REFUNDED
        self.save()
        logger.info(
            "Receipt %s refunded %s by %s", self.receipt_number, amount, actor
        )

    def is_overdue(self, now=None):
        now = now or timezone.now()
        return self.status == self.Status.PENDING and now > self.due_date

    def days_overdue(self, now=None):
        now = now or timezone.now()
        if not self.is_overdue(now):
            return 0
        return math.ceil((now - self.due_date) / timedelta(days=1))

    def apply_late_fee(self, actor, rate, now=None):
        """Charge ``rate`` percent of the taxable amount as a late fee.

        Replaces a previously applied fee.
        """
        authorize(actor, "receipt.late_fee")
        rate = _money(rate, "rate")
        if not ZERO < rate <= 100:
            raise ValidationError("Late fee rate must be between 0 and 100.")
        now = now or timezone.now()
        if self.status not in (self.Status.PENDING, self.Status.PARTIAL):
            raise InvalidStateError(
                f"Receipt {self.receipt_number} is {self.status}, no late fee applies."
            )
        if now <= self.due_date:
            raise InvalidStateError(f"Receipt {self.receipt_number} is not overdue.")
        self.late_fees_rate = rate
        self.late_fees_applied = (self.taxable_amount * rate / Decimal("100")).quantize(
            CENT
        )
        self.save()
        logger.info(
            "Late fee %s applied to %s by %s",
            self.late_fees_applied,
            self.receipt_number,
            actor,
        )


class ReceiptServiceLine(models.Model):
    receipt = models.ForeignKey(
        Receipt, on_delete=models.CASCADE, related_name="service_lines"
    )
    service = models.ForeignKey(
        Service, on_delete=models.PROTECT, related_name="receipt_lines"
    )
    plan_name = models.CharField(max_length=120, blank=True)
    description = models.CharField(max_length=255, blank=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    period_start = models.DateField(null=True, blank=True)
    period_end = models.DateField(null=True, blank=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.service.service_code} {self.amount}"


class AdditionalCharge(models.Model):
    class ChargeType(models.TextChoices):
        INSTALLATION = "installation", "Installation"
        EQUIPMENT = "equipment", "Equipment"
        MAINTENANCE = "maintenance", "Maintenance"
        PENALTY = "penalty", "Penalty"
        RECONNECTION = "reconnection", "Reconnection"
        OTHER = "other", "Other"

    receipt = models.ForeignKey(
        Receipt, on_delete=models.CASCADE, related_name="additional_charges"
    )
    concept = models.CharField(max_length=120)
    description = models.CharField(max_length=255, blank=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    charge_type = models.CharField(
        max_length=12, choices=ChargeType.choices, default=ChargeType.OTHER
    )

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.concept} {self.amount}"


class ReceiptDiscount(models.Model):
    class DiscountType(models.TextChoices):
        PERCENTAGE = "percentage", "Percentage"
        FIXED = "fixed", "Fixed"

    receipt = models.ForeignKey(
        Receipt, on_delete=models.CASCADE, related_name="discounts"
    )
    concept = models.CharField(max_length=120)
    amount = models.DecimalField(
        max_digits=12, decimal_places=2, help_text="Amount deducted"
    )
    discount_type = models.CharField(
        max_length=10, choices=DiscountType.choices, default=DiscountType.FIXED
    )
    code = models.CharField(max_length=40, blank=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.concept} -{self.amount}"


class ReceiptTax(models.Model):
    receipt = models.ForeignKey(Receipt, on_delete=models.CASCADE, related_name="taxes")
    name = models.CharField(max_length=40)
    rate = models.DecimalField(max_digits=5, decimal_places=2)
    amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.name} {self.rate}%"


class PartialPayment(models.Model):
    receipt = models.ForeignKey(
        Receipt, on_delete=models.CASCADE, related_name="partial_payments"
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    paid_at = models.DateTimeField(default=timezone.now)
    method = models.CharField(max_length=16, choices=Receipt.PaymentMethod.choices)
    transaction_id = models.CharField(max_length=120, blank=True)
    notes = models.TextField(blank=True)
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    class Meta:
        ordering = ["paid_at", "id"]

    def __str__(self):
        return f"{self.receipt.receipt_number} {self.amount}"
