from datetime import date, datetime, timedelta
from decimal import Decimal
from io import StringIO
from types import SimpleNamespace

from django.contrib import admin
from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import RequestFactory, SimpleTestCase, TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from core.exceptions import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from equipment.models import NetworkEquipment

from .admin import (
    ReceiptAdmin,
    ReceiptServiceLineInline,
    ServiceAdmin,
    SuspensionInline,
)
from .discounts import (
    FixedAmountDiscount,
    FreeMonthsDiscount,
    PercentageDiscount,
    apply_discounts,
    rule_for,
)
from .models import (
    DataUsageRecord,
    Plan,
    Receipt,
    Service,
    ServiceDiscount,
    Suspension,
    next_billing_date,
    period_bounds,
)
from .serializers import ServiceSerializer
from .views import ServiceViewSet


def aware(*args):
    return timezone.make_aware(datetime(*args))


class NextBillingDateTests(SimpleTestCase):
    def test_day_already_passed_moves_to_next_month(self):
        self.assertEqual(next_billing_date(date(2024, 3, 20), 15), date(2024, 4, 15))

    def test_day_later_in_same_month(self):
        self.assertEqual(next_billing_date(date(2024, 3, 10), 15), date(2024, 3, 15))

    def test_same_day_moves_to_next_month(self):
        self.assertEqual(next_billing_date(date(2024, 3, 15), 15), date(2024, 4, 15))

    def test_billing_day_clamped_to_month_end(self):
        self.assertEqual(next_billing_date(date(2024, 1, 31), 31), date(2024, 2, 29))


class DiscountRuleTests(SimpleTestCase):
    def test_rules_stack_in_order(self):
        rules = [PercentageDiscount("20"), FixedAmountDiscount("5")]
        self.assertEqual(apply_discounts(Decimal("50.00"), rules[:1]), Decimal("40.00"))
        self.assertEqual(apply_discounts(Decimal("50.00"), rules), Decimal("35.00"))

    def test_cost_never_negative(self):
        self.assertEqual(
            apply_discounts(Decimal("50.00"), [FixedAmountDiscount("100")]),
            Decimal("0.00"),
        )

    def test_free_months_do_not_change_cost(self):
        self.assertEqual(
            apply_discounts(Decimal("50.00"), [FreeMonthsDiscount("2")]),
            Decimal("50.00"),
        )

    def test_unknown_kind(self):
        with self.assertRaises(ValueError):
            rule_for("buy_one_get_one", 1)


class BillingFixtures:
    def setUp(self):
        super().setUp()
        User = get_user_model()
        self.admin = User.objects.create_user(
            username="admin", password="pass1234", role=User.Roles.ADMIN
        )
        self.billing = User.objects.create_user(
            username="billing", password="pass1234", role=User.Roles.BILLING
        )
        self.technician = User.objects.create_user(
            username="tech", password="pass1234", role=User.Roles.TECHNICIAN
        )
        self.operator = User.objects.create_user(
            username="operator", password="pass1234", role=User.Roles.OPERATOR
        )
        self.customer = User.objects.create_user(
            username="maria", password="pass1234", role=User.Roles.CLIENT
        )
        self.other_customer = User.objects.create_user(
            username="jorge", password="pass1234", role=User.Roles.CLIENT
        )
        self.plan = Plan.objects.create(
            name="Home 50",
            download_mbps=50,
            upload_mbps=10,
            data_limit_gb=100,
            monthly_price=Decimal("50.00"),
            installation_price=Decimal("20.00"),
        )
        self.bigger_plan = Plan.objects.create(
            name="Home Plus 200",
            download_mbps=200,
            upload_mbps=50,
            monthly_price=Decimal("80.00"),
        )

    def subscribe(self, client=None, **kwargs):
        kwargs.setdefault(
            "contract", {"start_date": date(2024, 3, 20), "duration_months": 12}
        )
        kwargs.setdefault("billing", {"billing_day": 15})
        return Service.objects.create_subscription(
            client or self.customer, self.plan, self.billing, **kwargs
        )

    def issue_receipt(self, service=None, **kwargs):
        service = service or self.service
        kwargs.setdefault("additional_charges", [{"concept": "Router", "amount": "20.00"}])
        kwargs.setdefault("discounts", [{"concept": "Promo", "amount": "10.00"}])
        return Receipt.objects.create_receipt(
            service.client,
            self.billing,
            [{"service": service, "amount": "100.00"}],
            **kwargs,
        )


class SubscriptionTests(BillingFixtures, TestCase):
    def test_create_uses_plan_defaults(self):
        service = self.subscribe()
        self.assertEqual(service.status, Service.Status.PENDING_INSTALLATION)
        self.assertEqual(service.service_code, "SRV00000001")
        self.assertEqual(service.billing_monthly_fee, Decimal("50.00"))
        self.assertEqual(service.installation_cost, Decimal("20.00"))
        self.assertEqual(service.contract_end_date, date(2025, 3, 20))
        self.assertEqual(service.billing_next_billing_date, date(2024, 4, 15))

    def test_explicit_fee_overrides_plan(self):
        service = self.subscribe(billing={"monthly_fee": "45.00", "billing_day": 1})
        self.assertEqual(service.billing_monthly_fee, Decimal("45.00"))

    def test_only_clients_can_subscribe(self):
        with self.assertRaises(ValidationError):
            self.subscribe(client=self.technician)

    def test_inactive_plan_rejected(self):
        self.plan.is_active = False
        self.plan.save()
        with self.assertRaises(ValidationError):
            self.subscribe()

    def test_ip_address_must_be_free(self):
        self.subscribe(connection={"ip_address": "10.0.0.5"})
        with self.assertRaises(ValidationError):
            self.subscribe(
                client=self.other_customer, connection={"ip_address": "10.0.0.5"}
            )

    def test_unknown_section_field_rejected(self):
        with self.assertRaises(ValidationError):
            self.subscribe(billing={"billing_day": 15, "discount": "5"})

    def test_invalid_billing_day(self):
        with self.assertRaises(ValidationError):
            self.subscribe(billing={"billing_day": 32})

    def test_zero_duration_rejected(self):
        with self.assertRaises(ValidationError):
            self.subscribe(
                contract={"start_date": date(2024, 3, 20), "duration_months": 0}
            )

    def test_client_cannot_create_subscription(self):
        with self.assertRaises(AuthorizationError):
            Service.objects.create_subscription(
                self.customer, self.plan, self.customer
            )

    def test_changing_billing_day_recomputes_next_date(self):
        service = Service.objects.get(pk=self.subscribe().pk)
        service.billing_day = 25
        service.save()
        self.assertEqual(service.billing_next_billing_date, date(2024, 3, 25))


class ServiceLifecycleTests(BillingFixtures, TestCase):
    def setUp(self):
        super().setUp()
        self.service = self.subscribe()

    def test_complete_installation(self):
        router = NetworkEquipment.objects.create(
            equipment_type=NetworkEquipment.EquipmentType.ROUTER,
            model="AX1800",
            manufacturer="TP-Link",
            serial_number="SN-001",
        )
        self.service.complete_installation(
            self.technician,
            equipment_installed=[router],
            ip_address="10.0.0.9",
            notes="Fiber run through the garage",
        )
        self.service.refresh_from_db()
        self.assertEqual(self.service.status, Service.Status.ACTIVE)
        self.assertEqual(self.service.installation_technician, self.technician)
        self.assertEqual(self.service.connection_ip_address, "10.0.0.9")
        self.assertIsNotNone(self.service.installation_completed_date)
        self.assertEqual(list(self.service.installation_equipment.all()), [router])
        with self.assertRaises(InvalidStateError):
            self.service.complete_installation(self.technician)

    def test_operator_cannot_complete_installation(self):
        with self.assertRaises(AuthorizationError):
            self.service.complete_installation(self.operator)

    def test_suspend_then_reactivate(self):
        self.service.suspend(Suspension.Reason.NON_PAYMENT, self.billing, notes="3 receipts due")
        self.service.refresh_from_db()
        self.assertEqual(self.service.status, Service.Status.SUSPENDED)
        suspension = self.service.active_suspension
        self.assertEqual(suspension.reason, Suspension.Reason.NON_PAYMENT)

        with self.assertRaises(InvalidStateError):
            self.service.suspend(Suspension.Reason.OTHER, self.billing)

        self.service.reactivate(self.billing, notes="paid")
        self.service.refresh_from_db()
        suspension.refresh_from_db()
        self.assertEqual(self.service.status, Service.Status.ACTIVE)
        self.assertFalse(suspension.is_active)
        self.assertEqual(suspension.reactivated_by, self.billing)
        self.assertEqual(suspension.notes, "3 receipts due | Reactivation: paid")
        self.assertIsNone(self.service.active_suspension)

    def test_reactivate_requires_suspension(self):
        with self.assertRaises(InvalidStateError):
            self.service.reactivate(self.billing)

    def test_unknown_suspension_reason(self):
        with self.assertRaises(ValidationError):
            self.service.suspend("bored", self.billing)

    def test_cancel_is_terminal(self):
        self.service.suspend(Suspension.Reason.ABUSE, self.billing)
        self.service.cancel(self.billing, reason="Moved abroad")
        self.service.refresh_from_db()
        self.assertEqual(self.service.status, Service.Status.CANCELLED)
        self.assertIsNotNone(self.service.cancelled_at)
        self.assertFalse(self.service.suspensions.filter(is_active=True).exists())
        self.assertTrue(self.service.internal_notes.filter(is_important=True).exists())
        with self.assertRaises(InvalidStateError):
            self.service.suspend(Suspension.Reason.OTHER, self.billing)
        with self.assertRaises(InvalidStateError):
            self.service.cancel(self.billing)

    def test_change_plan_records_history_and_proration(self):
        change = self.service.change_plan(
            self.bigger_plan,
            self.billing,
            reason="Works from home",
            effective_date=aware(2024, 4, 5, 12, 0),
        )
        self.service.refresh_from_db()
        self.assertEqual(self.service.plan, self.bigger_plan)
        self.assertEqual(self.service.billing_monthly_fee, Decimal("80.00"))
        self.assertEqual(change.from_plan, self.plan)
        self.assertEqual(change.previous_monthly_fee, Decimal("50.00"))
        # 30.00 difference over a 31 day period, 10 days remaining.
        self.assertEqual(change.prorated_amount, Decimal("9.68"))

    def test_change_to_same_plan_rejected(self):
        with self.assertRaises(ValidationError):
            self.service.change_plan(self.plan, self.billing)

    def test_current_monthly_cost_with_discounts(self):
        until = timezone.now() + timedelta(days=30)
        self.assertEqual(self.service.current_monthly_cost(), Decimal("50.00"))
        self.service.add_discount(self.billing, "percentage", "20", until)
        self.assertEqual(self.service.current_monthly_cost(), Decimal("40.00"))
        self.service.add_discount(self.billing, "fixed_amount", "5", until)
        self.assertEqual(self.service.current_monthly_cost(), Decimal("35.00"))
        self.service.add_discount(self.billing, "fixed_amount", "100", until)
        self.assertEqual(self.service.current_monthly_cost(), Decimal("0.00"))

    def test_expired_discount_ignored(self):
        until = timezone.now() + timedelta(days=30)
        self.service.add_discount(self.billing, "percentage", "20", until)
        later = until + timedelta(days=1)
        self.assertEqual(self.service.current_monthly_cost(now=later), Decimal("50.00"))

    def test_free_months_recorded_but_not_applied(self):
        until = timezone.now() + timedelta(days=60)
        discount = self.service.add_discount(self.billing, "free_months", "2", until)
        self.assertEqual(discount.discount_type, ServiceDiscount.DiscountType.FREE_MONTHS)
        self.assertEqual(self.service.current_monthly_cost(), Decimal("50.00"))

    def test_percentage_discount_over_100_rejected(self):
        until = timezone.now() + timedelta(days=30)
        with self.assertRaises(ValidationError):
            self.service.add_discount(self.billing, "percentage", "120", until)

    def test_data_usage_accumulates(self):
        self.service.record_data_usage("30.5", "10", self.operator)
        self.service.record_data_usage(50, "20", self.operator)
        self.assertEqual(self.service.usage_download_gb, Decimal("80.500"))
        self.assertEqual(self.service.usage_upload_gb, Decimal("30.000"))
        self.assertEqual(self.service.usage_total_gb, Decimal("110.500"))
        self.assertTrue(self.service.is_over_data_limit())
        self.assertEqual(self.service.data_usage_percent(), Decimal("110.50"))

    def test_unlimited_plan_never_over_limit(self):
        service = Service.objects.create_subscription(
            self.other_customer, self.bigger_plan, self.billing
        )
        service.record_data_usage(5000, 500, self.operator)
        self.assertFalse(service.is_over_data_limit())
        self.assertIsNone(service.data_usage_percent())

    def test_negative_usage_rejected(self):
        with self.assertRaises(ValidationError):
            self.service.record_data_usage(-1, 0, self.operator)

    def test_close_usage_month(self):
        self.service.record_data_usage(100, "10.5", self.operator)
        record = self.service.close_usage_month(self.operator, month="2024-05")
        self.assertEqual(record.total_gb, Decimal("110.500"))
        self.assertEqual(record.overage_gb, Decimal("10.500"))
        self.service.refresh_from_db()
        self.assertEqual(self.service.usage_total_gb, Decimal("0"))
        self.assertEqual(DataUsageRecord.objects.filter(service=self.service).count(), 1)
        with self.assertRaises(InvalidStateError):
            self.service.close_usage_month(self.operator, month="2024-05")
        with self.assertRaises(ValidationError):
            self.service.close_usage_month(self.operator, month="May 2024")

    def test_internal_note(self):
        note = self.service.add_internal_note("  Call before visiting ", self.technician)
        self.assertEqual(note.note, "Call before visiting")
        with self.assertRaises(ValidationError):
            self.service.add_internal_note("   ", self.technician)

    def test_stats_and_pending_installations(self):
        other = self.subscribe(client=self.other_customer)
        other.complete_installation(self.technician)
        stats = Service.objects.stats()
        self.assertEqual(stats["total"], 2)
        self.assertEqual(stats["by_status"]["active"], 1)
        self.assertEqual(stats["monthly_revenue"], Decimal("50.00"))
        self.assertEqual(list(Service.objects.pending_installations()), [self.service])


class ReceiptTests(BillingFixtures, TestCase):
    def setUp(self):
        super().setUp()
        self.service = self.subscribe()
        self.issued_at = aware(2024, 1, 1, 9, 0)

    def test_totals(self):
        receipt = self.issue_receipt(issued_at=self.issued_at)
        self.assertEqual(receipt.receipt_number, "REC2024000001")
        self.assertEqual(receipt.subtotal, Decimal("120.00"))
        self.assertEqual(receipt.total_discounts, Decimal("10.00"))
        self.assertEqual(receipt.taxable_amount, Decimal("110.00"))
        self.assertEqual(receipt.total_taxes, Decimal("13.20"))
        self.assertEqual(receipt.total_amount, Decimal("123.20"))
        self.assertEqual(receipt.due_date, self.issued_at + timedelta(days=30))
        tax = receipt.taxes.get()
        self.assertEqual((tax.name, tax.rate, tax.amount), ("IVA", Decimal("12.00"), Decimal("13.20")))
        self.service.refresh_from_db()
        self.assertEqual(self.service.billing_outstanding_balance, Decimal("100.00"))

    def test_custom_tax_rate(self):
        receipt = self.issue_receipt(tax_rate="0", discounts=[])
        self.assertEqual(receipt.total_amount, Decimal("120.00"))

    def test_service_of_another_client_rejected(self):
        with self.assertRaises(ValidationError):
            Receipt.objects.create_receipt(
                self.other_customer,
                self.billing,
                [{"service": self.service, "amount": "10.00"}],
            )
        self.assertFalse(Receipt.objects.exists())

    def test_unknown_service_id(self):
        with self.assertRaises(NotFoundError):
            Receipt.objects.create_receipt(
                self.customer, self.billing, [{"service": 9999, "amount": "10.00"}]
            )

    def test_discounts_cannot_exceed_subtotal(self):
        with self.assertRaises(ValidationError):
            self.issue_receipt(discounts=[{"concept": "Too much", "amount": "500"}])

    def test_late_payment(self):
        receipt = self.issue_receipt(issued_at=self.issued_at)
        paid_at = receipt.due_date + timedelta(days=2, hours=1)
        receipt.process_full_payment(self.billing, "cash", payment_date=paid_at)
        receipt.refresh_from_db()
        self.assertEqual(receipt.status, Receipt.Status.COMPLETED)
        self.assertTrue(receipt.is_late)
        self.assertEqual(receipt.days_late, 3)
        self.service.refresh_from_db()
        self.assertEqual(self.service.billing_outstanding_balance, Decimal("0.00"))

    def test_on_time_payment(self):
        receipt = self.issue_receipt(issued_at=self.issued_at)
        receipt.process_full_payment(
            self.billing, "bank_transfer", payment_date=receipt.due_date
        )
        self.assertFalse(receipt.is_late)
        self.assertEqual(receipt.days_late, 0)
        with self.assertRaises(InvalidStateError):
            receipt.process_full_payment(self.billing, "cash")

    def test_partial_payments_complete_receipt(self):
        receipt = self.issue_receipt()
        receipt.add_partial_payment(self.billing, "50.00", "cash")
        self.assertEqual(receipt.status, Receipt.Status.PARTIAL)
        self.assertEqual(receipt.balance_due, Decimal("73.20"))
        receipt.add_partial_payment(self.billing, "73.20", "debit_card")
        self.assertEqual(receipt.status, Receipt.Status.COMPLETED)
        self.assertEqual(receipt.balance_due, Decimal("0.00"))
        self.assertIsNotNone(receipt.payment_date)
        with self.assertRaises(InvalidStateError):
            receipt.add_partial_payment(self.billing, "1.00", "cash")

    def test_partial_payment_must_be_positive(self):
        receipt = self.issue_receipt()
        with self.assertRaises(ValidationError):
            receipt.add_partial_payment(self.billing, "0", "cash")

    def test_refund(self):
        receipt = self.issue_receipt()
        with self.assertRaises(InvalidStateError):
            receipt.process_refund(self.admin, "Duplicate charge")
        receipt.process_full_payment(self.billing, "cash")
        with self.assertRaises(AuthorizationError):
            receipt.process_refund(self.billing, "Duplicate charge")
        with self.assertRaises(ValidationError):
            receipt.process_refund(self.admin, "Duplicate charge", amount="500.00")
        receipt.process_refund(self.admin, "Duplicate charge")
        receipt.refresh_from_db()
        self.assertEqual(receipt.status, Receipt.Status.REFUNDED)
        self.assertTrue(receipt.is_refunded)
        self.assertEqual(receipt.refund_amount, Decimal("123.20"))
        with self.assertRaises(InvalidStateError):
            receipt.process_refund(self.admin, "Again")

    def test_overdue(self):
        receipt = self.issue_receipt(issued_at=self.issued_at)
        before_due = aware(2024, 1, 20)
        after_due = aware(2024, 2, 3, 8, 0)
        self.assertFalse(receipt.is_overdue(before_due))
        self.assertTrue(receipt.is_overdue(after_due))
        self.assertEqual(receipt.days_overdue(after_due), 3)
        self.assertEqual(list(Receipt.objects.overdue(after_due)), [receipt])
        self.assertEqual(list(Receipt.objects.overdue(before_due)), [])

    def test_late_fee(self):
        receipt = self.issue_receipt(issued_at=self.issued_at)
        with self.assertRaises(InvalidStateError):
            receipt.apply_late_fee(self.billing, "5", now=aware(2024, 1, 15))
        receipt.apply_late_fee(self.billing, "5", now=aware(2024, 2, 15))
        self.assertEqual(receipt.late_fees_applied, Decimal("5.50"))
        self.assertEqual(receipt.total_amount, Decimal("128.70"))
        receipt.apply_late_fee(self.billing, "10", now=aware(2024, 2, 15))
        receipt.refresh_from_db()
        self.assertEqual(receipt.late_fees_applied, Decimal("11.00"))
        self.assertEqual(receipt.total_amount, Decimal("134.20"))

    def test_stats(self):
        paid = self.issue_receipt()
        paid.process_full_payment(self.billing, "cash")
        self.issue_receipt()
        stats = Receipt.objects.stats()
        self.assertEqual(stats["total"], 2)
        self.assertEqual(stats["collected"], Decimal("123.20"))
        self.assertEqual(stats["outstanding"], Decimal("123.20"))


class BillingAPITests(BillingFixtures, TestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()

    def test_clients_only_see_active_plans(self):
        Plan.objects.create(
            name="Legacy 10",
            download_mbps=10,
            upload_mbps=1,
            monthly_price=Decimal("15.00"),
            is_active=False,
        )
        self.client.force_authenticate(user=self.customer)
        response = self.client.get(reverse("plan-list"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 2)

        self.client.force_authenticate(user=self.admin)
        response = self.client.get(reverse("plan-list"))
        self.assertEqual(response.data["count"], 3)

    def test_client_cannot_create_plan(self):
        self.client.force_authenticate(user=self.customer)
        response = self.client.post(
            reverse("plan-list"),
            {"name": "Free", "download_mbps": 1, "upload_mbps": 1, "monthly_price": "0"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_create_service(self):
        self.client.force_authenticate(user=self.billing)
        response = self.client.post(
            reverse("service-list"),
            {
                "client": self.customer.pk,
                "plan": self.plan.pk,
                "connection": {"ip_address": "10.0.0.20"},
                "contract": {"start_date": "2024-03-20"},
                "billing": {"billing_day": 15},
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["service_code"], "SRV00000001")
        self.assertEqual(response.data["status"], "pending_installation")
        self.assertEqual(response.data["billing_next_billing_date"], "2024-04-15")

    def test_create_service_for_staff_user_fails(self):
        self.client.force_authenticate(user=self.billing)
        response = self.client.post(
            reverse("service-list"),
            {"client": self.operator.pk, "plan": self.plan.pk},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "validation_error")

    def test_clients_see_only_their_services(self):
        mine = self.subscribe()
        self.subscribe(client=self.other_customer)
        self.client.force_authenticate(user=self.customer)
        response = self.client.get(reverse("service-list"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            [row["id"] for row in response.data["results"]], [mine.pk]
        )
        self.assertNotIn("installation_signature", response.data["results"][0])

    def test_suspend_via_api(self):
        service = self.subscribe()
        self.client.force_authenticate(user=self.billing)
        url = reverse("service-suspend", args=[service.pk])
        response = self.client.post(url, {"reason": "non_payment"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "suspended")
        response = self.client.post(url, {"reason": "non_payment"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "invalid_state")

    def test_patch_keeps_concurrent_usage_counters(self):
        service = self.subscribe()
        stale = Service.objects.get(pk=service.pk)
        service.record_data_usage("7.5", "2.5", self.operator)

        view = ServiceViewSet()
        view.request = SimpleNamespace(user=self.billing)
        serializer = ServiceSerializer(
            stale, data={"installation_notes": "Gate code 1234"}, partial=True
        )
        serializer.is_valid(raise_exception=True)
        view.perform_update(serializer)

        service.refresh_from_db()
        self.assertEqual(service.installation_notes, "Gate code 1234")
        self.assertEqual(service.usage_total_gb, Decimal("10.000"))
        self.assertEqual(service.updated_by, self.billing)

    def test_patch_billing_day_moves_next_billing_date(self):
        service = self.subscribe()
        self.client.force_authenticate(user=self.billing)
        response = self.client.patch(
            reverse("service-detail", args=[service.pk]),
            {"billing_day": 25},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        service.refresh_from_db()
        self.assertEqual(service.billing_next_billing_date, date(2024, 3, 25))

    def test_patch_rejects_ip_in_use(self):
        first = self.subscribe(connection={"ip_address": "10.0.0.20"})
        second = self.subscribe(client=self.other_customer)
        self.client.force_authenticate(user=self.admin)
        url = reverse("service-detail", args=[second.pk])
        response = self.client.patch(
            url, {"connection_ip_address": "10.0.0.20"}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("connection_ip_address", response.data["detail"])

        # Re-saving a service's own address is fine.
        response = self.client.patch(
            reverse("service-detail", args=[first.pk]),
            {"connection_ip_address": "10.0.0.20"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_client_cannot_suspend(self):
        service = self.subscribe()
        self.client.force_authenticate(user=self.customer)
        response = self.client.post(
            reverse("service-suspend", args=[service.pk]),
            {"reason": "client_request"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_cost_endpoint(self):
        service = self.subscribe()
        service.add_discount(
            self.billing, "percentage", "20", timezone.now() + timedelta(days=10)
        )
        self.client.force_authenticate(user=self.customer)
        response = self.client.get(reverse("service-cost", args=[service.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["current_monthly_cost"], Decimal("40.00"))

    def test_data_usage_endpoint(self):
        service = self.subscribe()
        self.client.force_authenticate(user=self.operator)
        response = self.client.post(
            reverse("service-data-usage", args=[service.pk]),
            {"download_gb": "60", "upload_gb": "50"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["over_limit"])

    def test_service_stats_requires_staff(self):
        self.client.force_authenticate(user=self.customer)
        response = self.client.get(reverse("service-stats"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.client.force_authenticate(user=self.operator)
        response = self.client.get(reverse("service-stats"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_create_receipt(self):
        service = self.subscribe()
        self.client.force_authenticate(user=self.billing)
        response = self.client.post(
            reverse("receipt-list"),
            {
                "client": self.customer.pk,
                "line_items": [{"service": service.pk, "amount": "100.00"}],
                "additional_charges": [{"concept": "Router", "amount": "20.00"}],
                "discounts": [{"concept": "Promo", "amount": "10.00"}],
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["total_amount"], "123.20")
        self.assertEqual(response.data["status"], "pending")

    def test_receipt_payment_flow(self):
        self.service = self.subscribe()
        receipt = self.issue_receipt()
        self.client.force_authenticate(user=self.billing)
        response = self.client.post(
            reverse("receipt-partial-payment", args=[receipt.pk]),
            {"amount": "23.20", "method": "cash"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "partial")
        response = self.client.post(
            reverse("receipt-process", args=[receipt.pk]),
            {"method": "bank_transfer", "transaction_id": "TX-1"},
            format="json",
        )
        self.assertEqual(response.data["status"], "completed")

        response = self.client.post(
            reverse("receipt-refund", args=[receipt.pk]),
            {"reason": "Duplicate"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=self.admin)
        response = self.client.post(
            reverse("receipt-refund", args=[receipt.pk]),
            {"reason": "Duplicate"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "refunded")

    def test_clients_see_only_their_receipts(self):
        self.service = self.subscribe()
        mine = self.issue_receipt()
        self.issue_receipt(service=self.subscribe(client=self.other_customer))
        self.client.force_authenticate(user=self.customer)
        response = self.client.get(reverse("receipt-list"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([row["id"] for row in response.data["results"]], [mine.pk])
        self.assertNotIn("internal_notes", response.data["results"][0])


class DashboardTests(BillingFixtures, TestCase):
    def setUp(self):
        super().setUp()
        self.service = self.subscribe()
        self.client = APIClient()

    def activate(self):
        self.service.complete_installation(self.technician, ip_address="10.0.0.9")
        self.service.refresh_from_db()

    def test_dashboard_summary_and_alerts(self):
        self.activate()
        self.service.record_data_usage("80", "5", self.operator)
        self.issue_receipt()
        self.service.refresh_from_db()

        summary = self.service.dashboard(now=aware(2024, 4, 5, 12, 0))

        self.assertEqual(summary["service"]["code"], "SRV00000001")
        self.assertEqual(summary["plan"]["name"], "Home 50")
        self.assertEqual(summary["data_usage"]["percent"], Decimal("85.00"))
        self.assertEqual(summary["billing"]["days_until_billing"], 10)
        self.assertEqual(summary["billing"]["outstanding_balance"], Decimal("100.00"))
        self.assertEqual(
            [alert["title"] for alert in summary["alerts"]],
            ["Outstanding balance", "Data usage"],
        )

    def test_suspended_service_is_shown_with_alert(self):
        self.activate()
        self.service.suspend(Suspension.Reason.NON_PAYMENT, self.billing)
        self.client.force_authenticate(user=self.customer)
        response = self.client.get(reverse("service-my-dashboard"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["service"]["status"], "suspended")
        self.assertIn(
            "Service suspended", [alert["title"] for alert in response.data["alerts"]]
        )

    def test_pending_installation_has_no_dashboard(self):
        self.client.force_authenticate(user=self.customer)
        response = self.client.get(reverse("service-my-dashboard"))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["code"], "not_found")

    def test_staff_must_name_the_client(self):
        self.activate()
        self.client.force_authenticate(user=self.billing)
        url = reverse("service-my-dashboard")
        response = self.client.get(url)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = self.client.get(url, {"client": self.customer.pk})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["connection"]["ip_address"], "10.0.0.9")


class ReceiptReportTests(BillingFixtures, TestCase):
    def setUp(self):
        super().setUp()
        self.service = self.subscribe()
        self.other_service = self.subscribe(client=self.other_customer)
        self.client = APIClient()

    def paid_receipt(self, paid_at, service=None):
        receipt = self.issue_receipt(service, issued_at=aware(2024, 1, 1, 9, 0))
        receipt.process_full_payment(self.billing, "cash", payment_date=paid_at)
        return receipt

    def test_period_bounds(self):
        now = aware(2024, 6, 20, 15, 30)
        self.assertEqual(
            period_bounds("today", now),
            (aware(2024, 6, 20, 0, 0), aware(2024, 6, 21, 0, 0)),
        )
        self.assertEqual(
            period_bounds("month", now),
            (aware(2024, 6, 1, 0, 0), aware(2024, 7, 1, 0, 0)),
        )
        self.assertEqual(
            period_bounds("year", now),
            (aware(2024, 1, 1, 0, 0), aware(2025, 1, 1, 0, 0)),
        )
        self.assertEqual(period_bounds("week", now)[0], aware(2024, 6, 13, 15, 30))
        with self.assertRaises(ValidationError):
            period_bounds("decade", now)

    def test_stats_for_period(self):
        self.issue_receipt(issued_at=aware(2024, 6, 10, 9, 0))
        self.issue_receipt(issued_at=aware(2024, 3, 1, 9, 0))
        stats = Receipt.objects.stats(period="month", now=aware(2024, 6, 20, 12, 0))
        self.assertEqual(stats["total"], 1)
        self.assertEqual(stats["period"], "month")
        self.assertEqual(stats["date_range"]["start"], aware(2024, 6, 1, 0, 0))
        self.assertEqual(Receipt.objects.stats()["total"], 2)

    def test_stats_rejects_unknown_period(self):
        self.client.force_authenticate(user=self.billing)
        response = self.client.get(reverse("receipt-stats"), {"period": "decade"})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_revenue_report_groups_by_month(self):
        self.paid_receipt(aware(2024, 1, 15, 10, 0))
        self.paid_receipt(aware(2024, 1, 20, 10, 0))
        self.paid_receipt(aware(2024, 2, 3, 10, 0))
        self.issue_receipt()

        report = Receipt.objects.revenue_report(date(2024, 1, 1), date(2024, 12, 31))

        self.assertEqual(
            [(row["period"], row["count"], row["revenue"]) for row in report["rows"]],
            [
                (date(2024, 1, 1), 2, Decimal("246.40")),
                (date(2024, 2, 1), 1, Decimal("123.20")),
            ],
        )
        self.assertEqual(report["summary"]["revenue"], Decimal("369.60"))
        self.assertEqual(report["summary"]["count"], 3)

        yearly = Receipt.objects.revenue_report(
            date(2024, 1, 1), date(2024, 12, 31), group_by="year"
        )
        self.assertEqual(len(yearly["rows"]), 1)

    def test_revenue_report_endpoint(self):
        self.paid_receipt(aware(2024, 1, 15, 10, 0))
        self.paid_receipt(aware(2024, 1, 20, 10, 0))
        url = reverse("receipt-revenue-report")

        self.client.force_authenticate(user=self.operator)
        response = self.client.get(url, {"start_date": "2024-01-01", "end_date": "2024-01-31"})
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=self.billing)
        response = self.client.get(
            url, {"start_date": "2024-01-01", "end_date": "2024-01-31", "group_by": "day"}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data["rows"]), 2)

        response = self.client.get(url, {"start_date": "2024-02-01", "end_date": "2024-01-01"})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_collection_report_ages_overdue_receipts(self):
        now = timezone.now()
        for days in (3, 10, 100):
            self.issue_receipt(
                issued_at=now - timedelta(days=130), due_date=now - timedelta(days=days)
            )

        report = Receipt.objects.collection_report(now)

        counts = {bucket["label"]: bucket["count"] for bucket in report["aging"]}
        self.assertEqual(
            counts,
            {"0-7": 1, "7-15": 1, "15-30": 0, "30-60": 0, "60-90": 0, "90+": 1},
        )
        self.assertEqual(report["by_status"]["pending"]["count"], 2)
        self.assertEqual(report["by_status"]["pending"]["amount"], Decimal("246.40"))

    def test_list_filters(self):
        mine = self.issue_receipt(issued_at=aware(2024, 5, 2, 9, 0))
        mine.process_full_payment(self.billing, "cash", transaction_id="TX-778")
        theirs = self.issue_receipt(
            self.other_service, issued_at=aware(2024, 7, 2, 9, 0)
        )
        url = reverse("receipt-list")
        self.client.force_authenticate(user=self.billing)

        def numbers(params):
            response = self.client.get(url, params)
            self.assertEqual(response.status_code, status.HTTP_200_OK)
            return [row["receipt_number"] for row in response.data["results"]]

        self.assertEqual(numbers({"status": "completed"}), [mine.receipt_number])
        self.assertEqual(numbers({"client": self.other_customer.pk}), [theirs.receipt_number])
        self.assertEqual(numbers({"search": "TX-778"}), [mine.receipt_number])
        self.assertEqual(
            numbers({"start_date": "2024-07-01", "end_date": "2024-07-31"}),
            [theirs.receipt_number],
        )
        response = self.client.get(url, {"status": "lost"})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_clients_cannot_widen_the_list(self):
        self.issue_receipt()
        self.issue_receipt(self.other_service)
        self.client.force_authenticate(user=self.customer)
        response = self.client.get(
            reverse("receipt-list"), {"client": self.other_customer.pk}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 0)


class AdminTests(BillingFixtures, TestCase):
    def setUp(self):
        super().setUp()
        self.service = self.subscribe()
        self.request = RequestFactory().get("/admin/")
        self.request.user = self.admin

    def test_service_status_and_suspensions_are_read_only(self):
        service_admin = ServiceAdmin(Service, admin.site)
        self.assertIn("status", service_admin.get_readonly_fields(self.request))
        inline = SuspensionInline(Service, admin.site)
        self.assertFalse(inline.has_add_permission(self.request, self.service))
        self.assertFalse(inline.has_change_permission(self.request, self.service))
        self.assertIn("is_active", inline.get_readonly_fields(self.request))

    def test_receipt_lines_cannot_be_edited(self):
        receipt = self.issue_receipt()
        inline = ReceiptServiceLineInline(Receipt, admin.site)
        self.assertFalse(inline.has_change_permission(self.request, receipt))
        self.assertFalse(inline.has_add_permission(self.request, receipt))

    def test_saving_related_rows_recomputes_totals(self):
        receipt = self.issue_receipt()
        line = receipt.service_lines.get()
        line.amount = Decimal("200.00")
        line.save()

        form = SimpleNamespace(instance=receipt, save_m2m=lambda: None)
        ReceiptAdmin(Receipt, admin.site).save_related(
            self.request, form, [], change=True
        )

        receipt.refresh_from_db()
        self.assertEqual(receipt.subtotal, Decimal("220.00"))
        self.assertEqual(receipt.total_amount, Decimal("235.20"))


class SeedPlansCommandTests(TestCase):
    def test_command_is_idempotent(self):
        call_command("create_internet_plans", stdout=StringIO())
        call_command("create_internet_plans", stdout=StringIO())
        self.assertEqual(Plan.objects.count(), 4)
        self.assertTrue(Plan.objects.get(name="Home Plus 200").is_unlimited)
