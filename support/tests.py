from django.contrib.auth import get_user_model
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from core.exceptions import AuthorizationError, InvalidStateError, ValidationError

from .models import Ticket


class TicketTestCase(TestCase):
    def setUp(self):
        User = get_user_model()
        self.operator = User.objects.create_user(
            username="operator", password="pass1234", role=User.Roles.OPERATOR
        )
        self.technician = User.objects.create_user(
            username="tech", password="pass1234", role=User.Roles.TECHNICIAN
        )
        self.customer = User.objects.create_user(
            username="maria", password="pass1234", role=User.Roles.CLIENT
        )
        self.other_customer = User.objects.create_user(
            username="jorge", password="pass1234", role=User.Roles.CLIENT
        )
        self.ticket = Ticket.objects.open_ticket(
            self.customer,
            self.customer,
            title="Slow internet",
            description="Speed drops every evening",
            category=Ticket.Category.INTERNET,
        )
        self.client = APIClient()


class TicketModelTests(TicketTestCase):
    def test_defaults(self):
        self.assertEqual(self.ticket.ticket_number, "TK000001")
        self.assertEqual(self.ticket.status, Ticket.Status.OPEN)
        self.assertEqual(self.ticket.priority, Ticket.Priority.MEDIUM)
        self.assertTrue(self.ticket.is_open())

    def test_client_cannot_open_ticket_for_someone_else(self):
        with self.assertRaises(AuthorizationError):
            Ticket.objects.open_ticket(
                self.other_customer,
                self.customer,
                title="x",
                description="y",
                category=Ticket.Category.OTHER,
            )

    def test_ticket_must_belong_to_client(self):
        with self.assertRaises(ValidationError):
            Ticket.objects.open_ticket(
                self.technician,
                self.operator,
                title="x",
                description="y",
                category=Ticket.Category.OTHER,
            )

    def test_resolve_then_close_then_reopen(self):
        self.ticket.change_status(
            Ticket.Status.RESOLVED, self.operator, resolution="Replaced the ONT"
        )
        self.assertIsNotNone(self.ticket.resolved_at)
        self.assertEqual(self.ticket.resolution, "Replaced the ONT")
        resolved_at = self.ticket.resolved_at

        self.ticket.change_status(Ticket.Status.CLOSED, self.operator)
        self.assertEqual(self.ticket.resolved_at, resolved_at)
        self.assertIsNotNone(self.ticket.closed_at)
        self.assertFalse(self.ticket.is_open())

        self.ticket.change_status(Ticket.Status.OPEN, self.operator)
        self.assertIsNone(self.ticket.resolved_at)
        self.assertIsNone(self.ticket.closed_at)

    def test_closed_back_to_resolved_clears_closed_at(self):
        self.ticket.change_status(Ticket.Status.CLOSED, self.operator)
        resolved_at = self.ticket.resolved_at

        self.ticket.change_status(Ticket.Status.RESOLVED, self.operator)

        self.ticket.refresh_from_db()
        self.assertIsNone(self.ticket.closed_at)
        self.assertEqual(self.ticket.resolved_at, resolved_at)
        self.assertEqual(self.ticket.status, Ticket.Status.RESOLVED)

    def test_client_cannot_change_status(self):
        with self.assertRaises(AuthorizationError):
            self.ticket.change_status(Ticket.Status.CLOSED, self.customer)

    def test_assign_to_staff_only(self):
        self.ticket.assign(self.technician, self.operator)
        self.assertEqual(self.ticket.assigned_to, self.technician)
        with self.assertRaises(ValidationError):
            self.ticket.assign(self.other_customer, self.operator)

    def test_comments(self):
        self.ticket.change_status(Ticket.Status.WAITING_CLIENT, self.technician)
        self.ticket.add_comment(self.technician, "Checking the line", internal=True)
        self.ticket.add_comment(self.customer, "Still slow tonight")
        self.ticket.refresh_from_db()
        self.assertEqual(self.ticket.status, Ticket.Status.IN_PROGRESS)
        self.assertEqual(self.ticket.comments.count(), 2)

    def test_client_comment_rules(self):
        with self.assertRaises(ValidationError):
            self.ticket.add_comment(self.customer, "psst", internal=True)
        with self.assertRaises(AuthorizationError):
            self.ticket.add_comment(self.other_customer, "Me too")

    def test_closed_ticket_rejects_comments(self):
        self.ticket.change_status(Ticket.Status.CLOSED, self.operator)
        with self.assertRaises(InvalidStateError):
            self.ticket.add_comment(self.customer, "Hello?")


class TicketAPITests(TicketTestCase):
    def test_client_opens_ticket_for_self(self):
        self.client.force_authenticate(user=self.other_customer)
        response = self.client.post(
            reverse("ticket-list"),
            {
                "title": "Camera offline",
                "description": "Backyard camera shows no image",
                "category": "camera",
                "priority": "high",
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["ticket_number"], "TK000002")
        self.assertEqual(response.data["client"], self.other_customer.pk)

    def test_clients_see_only_their_tickets(self):
        self.client.force_authenticate(user=self.other_customer)
        response = self.client.get(reverse("ticket-list"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 0)

    def test_internal_comments_hidden_from_clients(self):
        self.ticket.add_comment(self.operator, "Customer is on old firmware", internal=True)
        self.ticket.add_comment(self.operator, "We are looking into it")
        self.client.force_authenticate(user=self.customer)
        response = self.client.get(reverse("ticket-detail", args=[self.ticket.pk]))
        self.assertEqual(len(response.data["comments"]), 1)

        self.client.force_authenticate(user=self.operator)
        response = self.client.get(reverse("ticket-detail", args=[self.ticket.pk]))
        self.assertEqual(len(response.data["comments"]), 2)

    def test_status_and_assign_endpoints(self):
        self.client.force_authenticate(user=self.operator)
        response = self.client.post(
            reverse("ticket-assign", args=[self.ticket.pk]),
            {"assigned_to": self.technician.pk},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["assigned_to"], self.technician.pk)
        response = self.client.post(
            reverse("ticket-change-status", args=[self.ticket.pk]),
            {"status": "resolved", "resolution": "Rebooted the OLT port"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "resolved")
        self.assertIsNotNone(response.data["resolved_at"])

    def test_client_cannot_change_status_via_api(self):
        self.client.force_authenticate(user=self.customer)
        response = self.client.post(
            reverse("ticket-change-status", args=[self.ticket.pk]),
            {"status": "closed"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_client_comments_on_own_ticket(self):
        self.client.force_authenticate(user=self.customer)
        response = self.client.post(
            reverse("ticket-comments", args=[self.ticket.pk]),
            {"message": "Any update?"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertFalse(response.data["is_internal"])
