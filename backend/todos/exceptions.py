"""Domain errors and the API exception handler.

Every failure reaches the client as one body: {"error": ..., "code": ...},
with per-field "details" for validation errors.
"""

import logging

from django.db import DatabaseError
from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException, NotFound, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class InvalidTaskId(ValidationError):
    default_detail = 'Invalid ID'
    default_code = 'invalid_id'


class UnknownDependency(ValidationError):
    default_detail = 'Unknown dependency id'
    default_code = 'unknown_dependency'


class CircularDependencyError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Circular dependency detected'
    default_code = 'circular_dependency'


class TaskNotFound(NotFound):
    default_detail = 'Todo not found'
    default_code = 'not_found'


def _first_message(detail):
    """Pick a human readable message out of a (possibly nested) DRF detail."""
    if isinstance(detail, dict):
        for value in detail.values():
            return _first_message(value)
        return 'Invalid input'
    if isinstance(detail, list):
        return _first_message(detail[0]) if detail else 'Invalid input'
    return str(detail)


def api_exception_handler(exc, context):
    """Render DRF and storage errors in the single error shape."""
    if isinstance(exc, DatabaseError):
        logger.exception("Storage failure in %s", context.get('view').__class__.__name__)
        return Response({"error": "Storage failure", "code": "storage_error"},
                        status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if isinstance(exc, Http404):
        exc = TaskNotFound()

    response = exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, APIException):
        body = {"error": _first_message(exc.detail)}
        if isinstance(exc.detail, (dict, list)):
            codes = exc.get_codes()
            body["code"] = 'invalid' if isinstance(codes, dict) else _first_message(codes)
            if isinstance(exc.detail, dict):
                body["details"] = exc.detail
        else:
            body["code"] = exc.detail.code
        response.data = body
    return response
