"""
Error taxonomy for inventory operations and the DRF exception handler that
renders every failure as ``{"message": ..., "error": ...}``.
"""
import logging

from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class InventoryError(APIException):
    """Base class for domain failures surfaced to API callers"""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Inventory operation failed.'
    error_kind = 'InventoryError'

    def __init__(self, message=None, **extra):
        super().__init__(detail=message or self.default_detail)
        self.message = str(self.detail)
        self.extra = extra

    def as_payload(self):
        payload = {'message': self.message, 'error': self.error_kind}
        payload.update(self.extra)
        return payload


class ValidationError(InventoryError):
    default_detail = 'Invalid input.'
    error_kind = 'ValidationError'


class InvalidBundleComposition(InventoryError):
    default_detail = 'Invalid bundle composition.'
    error_kind = 'InvalidBundleComposition'


class ProductNotFound(InventoryError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Product not found.'
    error_kind = 'ProductNotFound'

    def __init__(self, product_id=None, message=None):
        if message is None:
            message = f'Product with ID {product_id} not found.' if product_id is not None else None
        extra = {'productId': product_id} if product_id is not None else {}
        super().__init__(message, **extra)
        self.product_id = product_id


class InsufficientStock(InventoryError):
    default_detail = 'Insufficient stock.'
    error_kind = 'InsufficientStock'

    def __init__(self, product_id, requested, available, product_name=None):
        label = product_name or f'product {product_id}'
        message = (
            f'Insufficient stock for {label}. '
            f'Requested: {requested}, Available: {available}'
        )
        super().__init__(
            message,
            productId=product_id,
            requested=requested,
            available=available,
            shortfall=max(requested - available, 0),
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class EmptyOrder(InventoryError):
    default_detail = 'Order must contain at least one product.'
    error_kind = 'EmptyOrder'


class InvalidQuantity(InventoryError):
    default_detail = 'Quantity must be a positive whole number.'
    error_kind = 'InvalidQuantity'


class OrderNotFound(InventoryError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Order not found.'
    error_kind = 'OrderNotFound'


class AlertDispatchError(InventoryError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Failed to send low stock alert.'
    error_kind = 'AlertDispatchError'


def _first_message(detail):
    if isinstance(detail, dict):
        for value in detail.values():
            return _first_message(value)
        return 'Invalid input.'
    if isinstance(detail, (list, tuple)):
        return _first_message(detail[0]) if detail else 'Invalid input.'
    return str(detail)


def inventory_exception_handler(exc, context):
    """
    Render domain errors with their payload and normalize DRF errors to the
    same ``message``/``error`` shape. Unhandled exceptions fall through to a 500.
    """
    if isinstance(exc, InventoryError):
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.error_kind, exc.message)
        return Response(exc.as_payload(), status=exc.status_code)

    response = exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, DRFValidationError):
        response.data = {
            'message': _first_message(exc.detail),
            'error': 'ValidationError',
            'fields': exc.detail,
        }
    else:
        detail = response.data.get('detail') if isinstance(response.data, dict) else response.data
        response.data = {
            'message': str(detail) if detail else str(exc),
            'error': 'NotFound' if isinstance(exc, Http404) else type(exc).__name__,
        }
    return response
