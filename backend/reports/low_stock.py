"""
Low-stock monitoring and alert dispatch.

A product is low on stock when its effective stock (resolved through its
components for bundles) is at or below its effective threshold:

    product.low_stock_threshold -> category.default_low_stock_threshold
    -> INVENTORY_CONFIG['DEFAULT_LOW_STOCK_THRESHOLD']

Alerts are sent only on demand (API or the ``check_low_stock`` command), never
from inside an order transaction.
"""
import logging
from collections import namedtuple
from smtplib import SMTPException

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email
from django.db.models import Q

from backend.catalog.bundles import effective_stock
from backend.catalog.models import Product
from backend.core.exceptions import AlertDispatchError, ProductNotFound
from backend.core.utils import create_audit_log
from . import notifications

logger = logging.getLogger(__name__)

User = get_user_model()

LowStockItem = namedtuple('LowStockItem', ['product', 'stock', 'threshold'])
AlertResult = namedtuple('AlertResult', ['message', 'sent_count', 'failed_count', 'details'])


def default_threshold():
    return int(settings.INVENTORY_CONFIG.get('DEFAULT_LOW_STOCK_THRESHOLD', 100))


def effective_threshold(product):
    if product.low_stock_threshold is not None:
        return product.low_stock_threshold
    category = product.category if product.category_id else None
    if category is not None and category.default_low_stock_threshold is not None:
        return category.default_low_stock_threshold
    return default_threshold()


def is_low_stock(product):
    return effective_stock(product) <= effective_threshold(product)


def _products():
    return Product.objects.select_related('category').prefetch_related('bundle_components__component')


def list_low_stock():
    """Every product at or below its effective threshold, in catalog order"""
    items = []
    for product in _products():
        stock = effective_stock(product)
        threshold = effective_threshold(product)
        if stock <= threshold:
            items.append(LowStockItem(product, stock, threshold))
    return items


def low_stock_count():
    return len(list_low_stock())


def build_alert_payload(product, stock=None, threshold=None):
    return {
        'name': product.name,
        'sku': product.sku,
        'currentStock': effective_stock(product) if stock is None else stock,
        'threshold': effective_threshold(product) if threshold is None else threshold,
        'category': product.category.name if product.category_id else 'N/A',
        'binLocation': product.bin_location or 'N/A',
    }


def _valid_address(user):
    address = (user.alert_email or '').strip()
    try:
        validate_email(address)
    except DjangoValidationError:
        logger.warning("Skipping low stock alert for user %s: invalid or missing alert email", user.username)
        return None
    return address


def _subscribed_admins():
    return User.objects.filter(
        Q(role='admin') | Q(is_staff=True),
        receive_low_stock_alerts=True,
        is_active=True,
    ).order_by('pk')


def _addressable(users):
    recipients = []
    seen = set()
    for user in users:
        address = _valid_address(user)
        if address and address.lower() not in seen:
            seen.add(address.lower())
            recipients.append((user, address))
    return recipients


def alert_recipients(product=None):
    """
    Resolve (user, address) pairs for a low-stock alert.

    The owner of the product's category receives it when they are a subscribed
    admin; otherwise every subscribed admin does.
    """
    owner = None
    if product is not None and product.category_id:
        owner = product.category.owner
    if owner is not None and owner.is_active and owner.is_admin and owner.receive_low_stock_alerts:
        recipients = _addressable([owner])
        if recipients:
            return recipients
    return _addressable(_subscribed_admins())


def _dispatch(recipients, items, subject):
    details = []
    for user, address in recipients:
        try:
            notifications.send_low_stock_alert(address, items, subject=subject, recipient_name=user.get_full_name() or user.username)
        except (SMTPException, OSError) as exc:
            logger.error("Failed to send low stock alert to %s: %s", address, exc)
            details.append({'email': address, 'status': 'failed', 'error': str(exc)})
        else:
            details.append({'email': address, 'status': 'sent'})
    return details


def send_alert(product_id, user=None):
    """
    Send a low-stock alert for one product.

    Raises:
        ProductNotFound: no such product
        AlertDispatchError: every delivery attempt failed
    """
    try:
        product = _products().get(pk=product_id)
    except Product.DoesNotExist:
        raise ProductNotFound(product_id)

    stock = effective_stock(product)
    threshold = effective_threshold(product)
    if stock > threshold:
        return AlertResult(
            f'Product {product.name} is not currently below its low stock threshold '
            f'({stock} > {threshold}). No alert sent.',
            0, 0, [],
        )

    recipients = alert_recipients(product)
    if not recipients:
        return AlertResult('No administrators subscribed to low stock alerts.', 0, 0, [])

    payload = build_alert_payload(product, stock, threshold)
    details = _dispatch(recipients, [payload], f'Urgent: Low Stock Alert for {product.name}')
    sent = [entry['email'] for entry in details if entry['status'] == 'sent']
    failed = [entry['email'] for entry in details if entry['status'] == 'failed']

    create_audit_log(
        user=user,
        action='low_stock_alert',
        model_name='Product',
        object_id=product.pk,
        object_name=product.name,
        object_reference=product.sku,
        changes={'currentStock': stock, 'threshold': threshold, 'sent': sent, 'failed': failed},
    )

    if not sent:
        raise AlertDispatchError(
            'No alerts were successfully sent for this product. '
            'Check email service configuration or recipient settings.',
            failedCount=len(failed),
        )

    logger.info("Low stock alert for product %s sent to %s", product.pk, sent)
    return AlertResult(
        f'Low stock alert sent for product {product.name} to {len(sent)} recipient(s).',
        len(sent), len(failed), details,
    )


def send_all_alerts(user=None):
    """Send one digest of every low-stock product to each subscribed admin"""
    items = list_low_stock()
    if not items:
        return AlertResult('No low stock items found. No alerts sent.', 0, 0, [])

    recipients = _addressable(_subscribed_admins())
    if not recipients:
        return AlertResult('No administrators subscribed to low stock alerts.', 0, 0, [])

    payloads = [build_alert_payload(item.product, item.stock, item.threshold) for item in items]
    details = _dispatch(recipients, payloads, 'Urgent: Low Stock Alert in Inventory System')
    sent_count = sum(1 for entry in details if entry['status'] == 'sent')
    failed_count = len(details) - sent_count

    create_audit_log(
        user=user,
        action='low_stock_alert',
        model_name='Product',
        object_id='all',
        object_name='Low stock digest',
        changes={'products': len(payloads), 'sentCount': sent_count, 'failedCount': failed_count},
    )
    logger.info(
        "Low stock digest of %s product(s): %s sent, %s failed", len(payloads), sent_count, failed_count
    )
    return AlertResult('Low stock alert process completed.', sent_count, failed_count, details)
