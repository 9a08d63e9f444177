"""
Sequential document numbering.

Numbers come from ``DocumentSequence`` rows that are incremented with a single
``UPDATE ... SET last_value = last_value + 1`` inside a transaction, so two
concurrent creations never read the same value.
"""

import logging

from django.db import transaction
from django.db.models import F

from .models import DocumentSequence

logger = logging.getLogger(__name__)

SERVICE_SCOPE = "service"
TICKET_SCOPE = "ticket"


def receipt_scope(year):
    return f"receipt:{year}"


def next_value(scope):
    """Increment the counter for ``scope`` and return the new value."""
    with transaction.atomic():
        sequence, _ = DocumentSequence.objects.get_or_create(scope=scope)
        DocumentSequence.objects.filter(pk=sequence.pk).update(
            last_value=F("last_value") + 1
        )
        sequence.refresh_from_db(fields=["last_value"])
    logger.debug("Allocated %s #%s", scope, sequence.last_value)
    return sequence.last_value


def next_service_code():
    return f"SRV{next_value(SERVICE_SCOPE):08d}"


def next_receipt_number(year):
    return f"REC{year}{next_value(receipt_scope(year)):06d}"


def next_ticket_number():
    return f"TK{next_value(TICKET_SCOPE):06d}"
