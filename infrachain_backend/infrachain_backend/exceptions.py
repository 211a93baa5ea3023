# infrachain_backend/exceptions.py
import logging

from django.core.exceptions import PermissionDenied
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response

logger = logging.getLogger(__name__)


class InfrachainError(Exception):
    """Base class for errors that map onto an API error response."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(InfrachainError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input"


def _first_message(detail):
    # DRF details nest as dicts/lists of ErrorDetail
    if isinstance(detail, dict):
        for field, value in detail.items():
            message = _first_message(value)
            if field == "non_field_errors":
                return message
            return f"{field}: {message}"
        return "Invalid input"
    if isinstance(detail, (list, tuple)):
        return _first_message(detail[0]) if detail else "Invalid input"
    return str(detail)


def api_exception_handler(exc, context):
    """Map every error raised by a handler to ``{"error": <message>}``."""
    if isinstance(exc, InfrachainError):
        if exc.status_code >= 500:
            logger.error("%s in %s: %s", type(exc).__name__, context.get("view"), exc.message)
        return Response({"error": exc.message}, status=exc.status_code)

    if isinstance(exc, Http404):
        return Response({"error": str(exc) or "Not found"}, status=status.HTTP_404_NOT_FOUND)
    if isinstance(exc, PermissionDenied):
        return Response({"error": "Insufficient permissions"}, status=status.HTTP_403_FORBIDDEN)

    if isinstance(exc, exceptions.APIException):
        headers = {}
        if getattr(exc, "auth_header", None):
            headers["WWW-Authenticate"] = exc.auth_header
        return Response({"error": _first_message(exc.detail)}, status=exc.status_code, headers=headers)

    logger.exception("Unhandled error in %s", context.get("view"))
    return Response({"error": "Internal server error"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
