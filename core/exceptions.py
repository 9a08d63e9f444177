"""
Domain errors raised by component operations.

Every error is a DRF ``APIException`` so the REST layer turns it into a JSON
response with the right status code; callers outside HTTP catch them by type.
"""

from rest_framework import status
from rest_framework.exceptions import APIException


class DomainError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "The operation could not be completed."
    default_code = "domain_error"


class ValidationError(DomainError):
    """Malformed or out-of-range input, rejected before any mutation."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid input."
    default_code = "validation_error"


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "The referenced record does not exist."
    default_code = "not_found"


class InvalidStateError(DomainError):
    """The record's current state forbids the requested operation."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "Operation not allowed in the current state."
    default_code = "invalid_state"


class AuthorizationError(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "You do not have permission to perform this action for your role."
    default_code = "forbidden"


class ConflictError(DomainError):
    """Uniqueness violation, e.g. a document number that is already taken.

    Callers may retry the creation; a fresh number is allocated on retry.
    """

    status_code = status.HTTP_409_CONFLICT
    default_detail = "A record with the same unique value already exists."
    default_code = "conflict"
