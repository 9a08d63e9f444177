import logging

from django.conf import settings
from django.db import models, transaction
from django.utils import timezone

from accounts.policy import CLIENT, authorize, roles_for
from core.exceptions import (
    AuthorizationError,
    InvalidStateError,
    ValidationError,
)
from core.models import SequentiallyNumbered, TimeStampedModel
from core.sequences import next_ticket_number

logger = logging.getLogger(__name__)


class TicketQuerySet(models.QuerySet):
    def visible_to(self, user):
        if user.role in roles_for("ticket.manage"):
            return self
        return self.filter(client=user)

    def unassigned(self):
        return self.filter(assigned_to__isnull=True).exclude(
            status__in=[Ticket.Status.RESOLVED, Ticket.Status.CLOSED]
        )


class TicketManager(models.Manager.from_queryset(TicketQuerySet)):
    def open_ticket(
        self,
        client,
        actor,
        title,
        description,
        category,
        priority=None,
        sla_target=None,
    ):
        """Open a ticket on behalf of ``client``.

        Clients may only open tickets for themselves.
        """
        authorize(actor, "ticket.create")
        if actor.role == CLIENT and actor.pk != client.pk:
            raise AuthorizationError("Clients can only open their own tickets.")
        if client.role != CLIENT:
            raise ValidationError("Tickets must belong to a client account.")
        if category not in Ticket.Category.values:
            raise ValidationError(f"Unknown category '{category}'.")
        priority = priority or Ticket.Priority.MEDIUM
        if priority not in Ticket.Priority.values:
            raise ValidationError(f"Unknown priority '{priority}'.")
        if not (title or "").strip() or not (description or "").strip():
            raise ValidationError("Title and description are required.")

        ticket = self.model(
            client=client,
            title=title.strip(),
            description=description,
            category=category,
            priority=priority,
            sla_target=sla_target,
            created_by=actor,
        )
        ticket.save()
        logger.info(
            "Ticket %s opened for %s by %s",
            ticket.ticket_number,
            client.username,
            actor.username,
        )
        return ticket


class Ticket(SequentiallyNumbered, TimeStampedModel):
    """Support request raised by or for a client."""

    class Category(models.TextChoices):
        INTERNET = "internet", "Internet"
        CAMERA = "camera", "Camera"
        BILLING = "billing", "Billing"
        EQUIPMENT = "equipment", "Equipment"
        INSTALLATION = "installation", "Installation"
        OTHER = "other", "Other"

    class Priority(models.TextChoices):
        LOW = "low", "Low"
        MEDIUM = "medium", "Medium"
        HIGH = "high", "High"
        CRITICAL = "critical", "Critical"

    class Status(models.TextChoices):
        OPEN = "open", "Open"
        IN_PROGRESS = "in_progress", "In progress"
        WAITING_CLIENT = "waiting_client", "Waiting for client"
        RESOLVED = "resolved", "Resolved"
        CLOSED = "closed", "Closed"

    number_field = "ticket_number"

    ticket_number = models.CharField(
        max_length=8, unique=True, blank=True, editable=False
    )
    client = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="tickets"
    )
    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="assigned_tickets",
    )
    category = models.CharField(max_length=12, choices=Category.choices)
    priority = models.CharField(
        max_length=8, choices=Priority.choices, default=Priority.MEDIUM
    )
    status = models.CharField(
        max_length=14, choices=Status.choices, default=Status.OPEN
    )
    title = models.CharField(max_length=200)
    description = models.TextField()
    resolution = models.TextField(blank=True)
    sla_target = models.DateTimeField(null=True, blank=True)
    resolved_at = models.DateTimeField(null=True, blank=True)
    closed_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    objects = TicketManager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "priority"], name="support_ticket_status_idx"),
        ]

    def __str__(self):
        return f"{self.ticket_number} {self.title}"

    def allocate_number(self):
        return next_ticket_number()

    def is_open(self):
        return self.status not in (self.Status.RESOLVED, self.Status.CLOSED)

    def is_past_sla(self, now=None):
        if self.sla_target is None or not self.is_open():
            return False
        return (now or timezone.now()) > self.sla_target

    def change_status(self, status, actor, resolution=""):
        """Move the ticket to ``status``.

        Any transition is allowed. Entering resolved or closed stamps the
        matching timestamp. Leaving closed clears closed_at, and reopening
        clears both.
        """
        authorize(actor, "ticket.manage")
        if status not in self.Status.values:
            raise ValidationError(f"Unknown ticket status '{status}'.")
        now = timezone.now()
        previous = self.status
        if status == self.Status.RESOLVED and previous != status:
            if previous != self.Status.CLOSED or self.resolved_at is None:
                self.resolved_at = now
        elif status == self.Status.CLOSED and previous != status:
            self.closed_at = now
            if self.resolved_at is None:
                self.resolved_at = now
        elif status not in (self.Status.RESOLVED, self.Status.CLOSED):
            self.resolved_at = None
        if status != self.Status.CLOSED:
            self.closed_at = None
        if resolution:
            self.resolution = resolution
        self.status = status
        self.save(
            update_fields=[
                "status",
                "resolution",
                "resolved_at",
                "closed_at",
                "updated_at",
            ]
        )
        logger.info(
            "Ticket %s %s -> %s by %s",
            self.ticket_number,
            previous,
            status,
            actor.username,
        )
        return self

    def assign(self, technician, actor):
        authorize(actor, "ticket.manage")
        if technician is None or technician.role == CLIENT:
            raise ValidationError("Tickets can only be assigned to staff.")
        self.assigned_to = technician
        self.save(update_fields=["assigned_to", "updated_at"])
        logger.info(
            "Ticket %s assigned to %s by %s",
            self.ticket_number,
            technician.username,
            actor.username,
        )
        return self

    def add_comment(self, author, message, internal=False):
        authorize(author, "ticket.comment")
        if author.role == CLIENT:
            if author.pk != self.client_id:
                raise AuthorizationError("Clients can only comment on their own tickets.")
            if internal:
                raise ValidationError("Clients cannot add internal comments.")
        if not (message or "").strip():
            raise ValidationError("Comment message is required.")
        if self.status == self.Status.CLOSED:
            raise InvalidStateError(f"Ticket {self.ticket_number} is closed.")
        with transaction.atomic():
            comment = self.comments.create(
                author=author, message=message.strip(), is_internal=internal
            )
            # Client replies put a waiting ticket back in the queue.
            if author.role == CLIENT and self.status == self.Status.WAITING_CLIENT:
                self.status = self.Status.IN_PROGRESS
                self.save(update_fields=["status", "updated_at"])
        return comment


class TicketComment(TimeStampedModel):
    ticket = models.ForeignKey(
        Ticket, on_delete=models.CASCADE, related_name="comments"
    )
    author = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name="+",
    )
    message = models.TextField()
    is_internal = models.BooleanField(default=False)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"Comment on {self.ticket.ticket_number}"
