"""
Custom error handlers for the API.
"""

import logging

from django.http import JsonResponse
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


def api_exception_handler(exc, context):
    """
    Wrap DRF error responses in a ``{"error", "code", "detail"}`` envelope.
    """
    response = exception_handler(exc, context)
    if response is None:
        return None

    codes = exc.get_codes() if hasattr(exc, "get_codes") else None
    code = codes if isinstance(codes, str) else getattr(exc, "default_code", "error")
    detail = response.data
    if isinstance(detail, dict) and set(detail) == {"detail"}:
        detail = detail["detail"]

    view = context.get("view")
    logger.warning(
        "%s rejected in %s: %s",
        type(exc).__name__,
        type(view).__name__ if view is not None else "unknown view",
        detail,
    )
    response.data = {
        "error": type(exc).__name__,
        "code": code,
        "detail": detail,
    }
    return response


def handler404(request, exception=None):
    """
    Custom 404 handler that returns JSON for API requests.
    """
    return JsonResponse(
        {
            "error": "Not Found",
            "message": "The requested resource was not found.",
            "path": request.path,
        },
        status=404,
    )


def handler500(request):
    """
    Custom 500 handler that returns JSON for API requests.
    """
    return JsonResponse(
        {
            "error": "Internal Server Error",
            "message": "An unexpected error occurred. Please try again later.",
        },
        status=500,
    )
