"""Typed failures raised by the order lifecycle engine.

Every error carries a ``context`` dict (order id, entity, current state,
attempted transition) that the project exception handler renders under
``fields``. None of them leave partial writes behind: operations run in one
transaction per order.
"""

from rest_framework import status
from rest_framework.exceptions import APIException


class OrderEngineError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "order_error"
    default_detail = "The order operation failed."

    def __init__(self, detail=None, **context):
        super().__init__(detail)
        self.context = {key: _plain(value) for key, value in context.items() if value is not None}


class NotFound(OrderEngineError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"
    default_detail = "Not found."


class Unauthorized(OrderEngineError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "unauthorized"
    default_detail = "You are not allowed to perform this operation on this order."


class InvalidTransition(OrderEngineError):
    default_code = "invalid_transition"
    default_detail = "The requested state is not reachable from the current state."


class AlreadyProcessed(OrderEngineError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "already_processed"
    default_detail = "This transition was already applied."


class Conflict(OrderEngineError):
    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"
    default_detail = "The order was modified concurrently. Reload it and retry."


class ValidationError(OrderEngineError):
    default_code = "validation_error"
    default_detail = "Invalid input."


def _plain(value):
    if isinstance(value, (str, int, bool)):
        return value
    return str(value)
