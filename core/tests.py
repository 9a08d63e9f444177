import threading
from datetime import datetime
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import connection
from django.test import TestCase, TransactionTestCase
from django.utils import timezone

from billing.models import Plan, Receipt, Service
from core import sequences
from core.exceptions import ConflictError, ValidationError
from core.models import DocumentSequence
from support.models import Ticket


class SequenceTests(TestCase):
    def test_values_increase_by_one_per_scope(self):
        self.assertEqual(sequences.next_value("a"), 1)
        self.assertEqual(sequences.next_value("a"), 2)
        self.assertEqual(sequences.next_value("b"), 1)
        self.assertEqual(DocumentSequence.objects.get(scope="a").last_value, 2)

    def test_formats(self):
        self.assertEqual(sequences.next_service_code(), "SRV00000001")
        self.assertEqual(sequences.next_ticket_number(), "TK000001")
        self.assertEqual(sequences.next_receipt_number(2025), "REC2025000001")
        self.assertEqual(sequences.next_receipt_number(2025), "REC2025000002")
        self.assertEqual(sequences.next_receipt_number(2026), "REC2026000001")


class DocumentNumberingTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.admin = User.objects.create_user(
            username="admin", password="pass1234", role=User.Roles.ADMIN
        )
        self.client_user = User.objects.create_user(
            username="client", password="pass1234", role=User.Roles.CLIENT
        )
        self.plan = Plan.objects.create(
            name="Home 50",
            download_mbps=50,
            upload_mbps=10,
            monthly_price=Decimal("25.00"),
        )

    def _service(self):
        return Service.objects.create_subscription(
            self.client_user, self.plan, self.admin
        )

    def test_service_codes_are_sequential(self):
        codes = [self._service().service_code for _ in range(3)]
        self.assertEqual(codes, ["SRV00000001", "SRV00000002", "SRV00000003"])

    def test_number_cannot_change_once_stored(self):
        service = Service.objects.get(pk=self._service().pk)
        service.service_code = "SRV99999999"
        with self.assertRaises(ValidationError):
            service.save()

    def test_collision_raises_conflict(self):
        self._service()
        # Rewind the counter so the next allocation repeats an existing code.
        DocumentSequence.objects.filter(scope=sequences.SERVICE_SCOPE).update(
            last_value=0
        )
        with self.assertRaises(ConflictError):
            self._service()
        self.assertEqual(Service.objects.count(), 1)

    def test_receipt_numbers_restart_each_year(self):
        service = self._service()
        numbers = []
        for issued in (
            datetime(2024, 6, 1, 12, 0),
            datetime(2024, 12, 31, 23, 0),
            datetime(2025, 1, 1, 0, 30),
        ):
            receipt = Receipt.objects.create_receipt(
                self.client_user,
                self.admin,
                [{"service": service, "amount": "10.00"}],
                issued_at=timezone.make_aware(issued),
            )
            numbers.append(receipt.receipt_number)
        self.assertEqual(
            numbers, ["REC2024000001", "REC2024000002", "REC2025000001"]
        )

    def test_ticket_numbers(self):
        ticket = Ticket.objects.open_ticket(
            self.client_user,
            self.client_user,
            title="No signal",
            description="Router lights are off",
            category=Ticket.Category.INTERNET,
        )
        self.assertEqual(ticket.ticket_number, "TK000001")
        self.assertEqual(ticket.document_number, "TK000001")


class ConcurrentNumberingTests(TransactionTestCase):
    workers = 8

    def setUp(self):
        if connection.vendor == "sqlite" and connection.is_in_memory_db():
            self.skipTest("threads need an on-disk test database")
        User = get_user_model()
        self.admin = User.objects.create_user(
            username="admin", password="pass1234", role=User.Roles.ADMIN
        )
        self.client_user = User.objects.create_user(
            username="client", password="pass1234", role=User.Roles.CLIENT
        )
        self.plan = Plan.objects.create(
            name="Home 50",
            download_mbps=50,
            upload_mbps=10,
            monthly_price=Decimal("25.00"),
        )

    def run_concurrently(self, func):
        start = threading.Barrier(self.workers)
        results, errors = [], []

        def worker():
            try:
                start.wait()
                results.append(func())
            except Exception as exc:
                errors.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=worker) for _ in range(self.workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(errors, [])
        return results

    def test_counter_hands_out_each_value_once(self):
        values = self.run_concurrently(lambda: sequences.next_value("stress"))
        self.assertEqual(sorted(values), list(range(1, self.workers + 1)))
        self.assertEqual(
            DocumentSequence.objects.get(scope="stress").last_value, self.workers
        )

    def test_concurrent_subscriptions_get_distinct_codes(self):
        codes = self.run_concurrently(
            lambda: Service.objects.create_subscription(
                self.client_user, self.plan, self.admin
            ).service_code
        )
        expected = [f"SRV{n:08d}" for n in range(1, self.workers + 1)]
        self.assertEqual(sorted(codes), expected)
        self.assertEqual(
            sorted(Service.objects.values_list("service_code", flat=True)), expected
        )
