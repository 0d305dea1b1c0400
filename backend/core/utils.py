"""Utility functions for audit logging"""
import logging

from .models import AuditLog

logger = logging.getLogger(__name__)


def get_client_ip(request):
    """Extract client IP address from request"""
    if not request or not hasattr(request, 'META'):
        return None
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR')
    return ip or None


def create_audit_log(request=None, action=None, model_name=None, object_id=None,
                     changes=None, user=None, object_name=None, object_reference=None):
    """
    Create an audit log entry

    Args:
        request: Django request object (for user and IP) - optional if user is provided
        action: Action type (order_place, stock_deduct, low_stock_alert, ...)
        model_name: Name of the model being acted upon
        object_id: ID of the object (as string)
        changes: Dictionary of changes made
        user: Optional user override (defaults to request.user if request provided)
        object_name: Human-readable name of the object
        object_reference: Reference identifier (e.g., SKU, order number)

    Failures are logged and return None.
    """
    if not action or not model_name or object_id is None:
        logger.warning(
            "Audit log creation skipped: missing required fields (action=%s, model_name=%s, object_id=%s)",
            action, model_name, object_id,
        )
        return None

    audit_user = user
    if audit_user is None and request is not None:
        audit_user = getattr(request, 'user', None)
    if audit_user is not None and not audit_user.is_authenticated:
        audit_user = None

    try:
        return AuditLog.objects.create(
            user=audit_user,
            action=action,
            model_name=model_name,
            object_id=str(object_id),
            object_name=object_name,
            object_reference=object_reference,
            changes=changes or {},
            ip_address=get_client_ip(request) if request else None,
        )
    except Exception:
        logger.exception("Failed to create audit log for %s %s", model_name, object_id)
        return None
