"""
Role policy table.

Maps each state-changing operation to the roles allowed to perform it.
Domain methods call ``authorize(actor, operation)`` once at entry; viewsets
take their read roles from the same table through ``roles_for``.
"""

import logging

from core.exceptions import AuthorizationError

logger = logging.getLogger(__name__)

CLIENT = "client"
TECHNICIAN = "technician"
OPERATOR = "operator"
SUPERVISOR = "supervisor"
BILLING = "billing"
ADMIN = "admin"

MANAGERS = frozenset({ADMIN, SUPERVISOR})
BILLING_STAFF = MANAGERS | {BILLING}
EVERYONE = frozenset({CLIENT, TECHNICIAN, OPERATOR, SUPERVISOR, BILLING, ADMIN})

POLICY = {
    "plan.manage": MANAGERS,
    "service.create": BILLING_STAFF,
    "service.update": BILLING_STAFF | {TECHNICIAN},
    "service.add_note": BILLING_STAFF | {TECHNICIAN},
    "service.change_plan": BILLING_STAFF,
    "service.suspend": BILLING_STAFF,
    "service.reactivate": BILLING_STAFF,
    "service.add_discount": BILLING_STAFF,
    "service.cancel": BILLING_STAFF,
    "service.complete_installation": MANAGERS | {TECHNICIAN},
    "service.record_usage": MANAGERS | {TECHNICIAN, OPERATOR},
    "service.view_all": BILLING_STAFF | {OPERATOR, TECHNICIAN},
    "service.stats": BILLING_STAFF | {OPERATOR},
    "receipt.create": BILLING_STAFF,
    "receipt.process": BILLING_STAFF,
    "receipt.partial": BILLING_STAFF,
    "receipt.late_fee": BILLING_STAFF,
    "receipt.refund": MANAGERS,
    "receipt.view_all": BILLING_STAFF | {OPERATOR},
    "receipt.stats": BILLING_STAFF | {OPERATOR},
    "receipt.reports": BILLING_STAFF,
    "ticket.create": EVERYONE,
    "ticket.comment": EVERYONE,
    "ticket.manage": MANAGERS | {OPERATOR, TECHNICIAN},
    "equipment.manage": MANAGERS | {TECHNICIAN},
    "equipment.report_status": MANAGERS | {TECHNICIAN, OPERATOR},
    "user.manage": frozenset({ADMIN}),
}


def roles_for(operation):
    try:
        return POLICY[operation]
    except KeyError:
        raise KeyError(f"Unknown operation: {operation}") from None


def is_allowed(role, operation):
    return role in roles_for(operation)


def authorize(actor, operation):
    """Raise AuthorizationError unless ``actor`` may perform ``operation``."""
    role = getattr(actor, "role", None)
    if actor is None or not is_allowed(role, operation):
        logger.warning(
            "Denied %s for %s (role=%s)",
            operation,
            getattr(actor, "username", None),
            role,
        )
        raise AuthorizationError(
            f"Role '{role}' is not allowed to perform {operation}."
        )
