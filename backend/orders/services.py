"""
Order placement engine.

Every placement is a single all-or-nothing transaction: bundle lines are
expanded into simple-product deductions, the affected rows are locked in
ascending id order and each decrement is a conditional
``UPDATE ... SET stock = stock - n WHERE stock >= n``. Any failure rolls the
whole order back, so stock is never left partially decremented.
"""
import logging
from datetime import timedelta
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.db.models import F, Sum
from django.utils import timezone
from rest_framework.exceptions import PermissionDenied

from backend.catalog.bundles import expand, resolve
from backend.catalog.models import Product
from backend.core.exceptions import (
    EmptyOrder, InsufficientStock, InvalidQuantity, InventoryError, OrderNotFound,
    ProductNotFound, ValidationError,
)
from backend.core.utils import create_audit_log
from .models import Order, OrderLineItem

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')
CLIENT_NAME_MAX_LENGTH = 100
CLIENT_ADDRESS_MAX_LENGTH = 200


def _parse_quantity(value):
    if value is None or isinstance(value, bool):
        raise InvalidQuantity('Quantity is required and must be a positive whole number.')
    try:
        quantity = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidQuantity(f'Invalid quantity: {value}. Quantity must be a positive whole number.')
    if not quantity.is_finite() or quantity != quantity.to_integral_value() or quantity <= 0:
        raise InvalidQuantity(f'Invalid quantity: {value}. Quantity must be a positive whole number.')
    return int(quantity)


def _parse_items(items):
    """Normalize ``[{productId, quantity}]`` into ``[(product_id, quantity)]``"""
    if not items or not isinstance(items, (list, tuple)):
        raise EmptyOrder('Order must contain at least one product.')

    parsed = []
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError('Invalid product item in order: product ID and positive quantity are required.')
        product_id = item.get('productId')
        if product_id is None or product_id == '':
            raise ValidationError('Invalid product item in order: product ID is required.')
        if isinstance(product_id, bool) or not str(product_id).isdigit():
            raise ValidationError(f'Invalid product ID: {product_id}', productId=product_id)
        parsed.append((int(product_id), _parse_quantity(item.get('quantity'))))
    return parsed


def _client_details(user, client_name, client_address):
    name = (client_name or '').strip()
    if not name and user is not None:
        name = user.get_full_name() or user.username
    address = (client_address or '').strip()
    if not address and user is not None:
        address = getattr(user, 'address', '') or ''
    name = name or 'N/A'
    address = address or 'N/A'
    if len(name) > CLIENT_NAME_MAX_LENGTH:
        raise ValidationError(f'Client name cannot exceed {CLIENT_NAME_MAX_LENGTH} characters.')
    if len(address) > CLIENT_ADDRESS_MAX_LENGTH:
        raise ValidationError(f'Client address cannot exceed {CLIENT_ADDRESS_MAX_LENGTH} characters.')
    return name, address


def _lock_products(product_ids):
    """Lock simple-product rows for update, always in ascending id order"""
    rows = Product.objects.select_for_update().filter(pk__in=product_ids, is_bundle=False).order_by('pk')
    return {row.pk: row for row in rows}


def _decrement_stock(product, units):
    updated = Product.objects.filter(pk=product.pk, is_bundle=False, stock__gte=units).update(
        stock=F('stock') - units, updated_at=timezone.now()
    )
    if not updated:
        available = Product.objects.filter(pk=product.pk).values_list('stock', flat=True).first() or 0
        raise InsufficientStock(product.pk, units, available, product.name)


def _apply_deductions(deductions):
    """
    Lock, check and decrement every product in ``deductions`` ({id: units}).

    Must run inside an atomic block. Returns the locked rows as they were
    read before decrementing.
    """
    product_ids = sorted(deductions)
    locked = _lock_products(product_ids)
    for product_id in product_ids:
        row = locked.get(product_id)
        if row is None:
            raise ProductNotFound(product_id)
        if row.stock < deductions[product_id]:
            raise InsufficientStock(product_id, deductions[product_id], row.stock, row.name)
    for product_id in product_ids:
        _decrement_stock(locked[product_id], deductions[product_id])
    return locked


def _snapshot_deductions(order):
    """Merge the recorded deductions of every line of an order into {product_id: units}"""
    deductions = {}
    for item in order.items.all():
        entries = item.components or [{'productId': item.product_id, 'quantity': item.quantity}]
        for entry in entries:
            product_id = int(entry['productId'])
            deductions[product_id] = deductions.get(product_id, 0) + int(entry['quantity'])
    return deductions


def _restore_stock(order):
    """Add back what the order took. Products that no longer exist are skipped."""
    deductions = _snapshot_deductions(order)
    _lock_products(sorted(deductions))
    restored = {}
    for product_id in sorted(deductions):
        units = deductions[product_id]
        updated = Product.objects.filter(pk=product_id, is_bundle=False).update(
            stock=F('stock') + units, updated_at=timezone.now()
        )
        if updated:
            restored[product_id] = units
        else:
            logger.warning(
                "Product %s not found when restoring %s units for order %s; it may have been deleted",
                product_id, units, order.pk,
            )
    return restored


def place_order(user, items, client_name=None, client_address=None):
    """
    Place an order for ``items`` (``[{productId, quantity}]``) on behalf of ``user``.

    Returns:
        The persisted Order with its line-item snapshots.

    Raises:
        EmptyOrder, InvalidQuantity, ValidationError: malformed request
        ProductNotFound: a referenced product does not exist
        InvalidBundleComposition: an ordered bundle has no components
        InsufficientStock: any product cannot cover its total deduction
    """
    lines = _parse_items(items)
    name, address = _client_details(user, client_name, client_address)

    try:
        with transaction.atomic():
            products = (
                Product.objects.select_related('category')
                .prefetch_related('bundle_components__component')
                .in_bulk({product_id for product_id, _ in lines})
            )
            for product_id, _ in lines:
                if product_id not in products:
                    raise ProductNotFound(product_id)

            line_deductions = []
            deductions = {}
            for product_id, quantity in lines:
                expanded = expand(products[product_id], quantity)
                line_deductions.append(expanded)
                for component_id, units in expanded.items():
                    deductions[component_id] = deductions.get(component_id, 0) + units

            locked = _apply_deductions(deductions)

            line_items = []
            total = Decimal('0.00')
            for position, ((product_id, quantity), expanded) in enumerate(zip(lines, line_deductions)):
                product = products[product_id]
                unit_price = resolve(locked.get(product_id, product), lookup=locked).price
                total += unit_price * quantity
                line_items.append(OrderLineItem(
                    product_id=product.pk,
                    name=product.name,
                    category_id=product.category_id,
                    category_name=product.category.name if product.category_id else '',
                    is_bundle=product.is_bundle,
                    quantity=quantity,
                    price=unit_price,
                    components=[
                        {'productId': component_id, 'quantity': units}
                        for component_id, units in sorted(expanded.items())
                    ],
                    position=position,
                ))

            order = Order.objects.create(
                user=user,
                client_name=name,
                client_address=address,
                total_price=total.quantize(TWO_PLACES),
                status=Order.STATUS_PENDING,
            )
            for line_item in line_items:
                line_item.order = order
            OrderLineItem.objects.bulk_create(line_items)

            transaction.on_commit(lambda: _record_placement(order, user, deductions))
    except InventoryError as exc:
        logger.warning(
            "Order rejected for user %s: %s (%s)",
            getattr(user, 'pk', None), exc.message, exc.error_kind,
        )
        raise

    return order


def _record_placement(order, user, deductions):
    logger.info(
        "Order %s placed by user %s: total=%s deductions=%s",
        order.pk, getattr(user, 'pk', None), order.total_price, deductions,
    )
    create_audit_log(
        user=user,
        action='order_place',
        model_name='Order',
        object_id=order.pk,
        object_name=order.client_name,
        object_reference=f'ORDER-{order.pk}',
        changes={
            'totalPrice': str(order.total_price),
            'deductions': {str(product_id): units for product_id, units in deductions.items()},
        },
    )


def _record_stock_movement(action, order_id, client_name, user, movements):
    """Audit a stock_deduct/stock_restore once the surrounding transaction commits"""
    if not movements:
        return
    transaction.on_commit(lambda: create_audit_log(
        user=user,
        action=action,
        model_name='Order',
        object_id=order_id,
        object_name=client_name,
        object_reference=f'ORDER-{order_id}',
        changes={str(product_id): units for product_id, units in movements.items()},
    ))


def _check_access(order, user, action):
    if not user.is_admin and order.user_id != user.pk:
        raise PermissionDenied(f'Access denied to {action} this order.')


def get_order(pk, user):
    """Fetch an order the user may see (admins: any, clients: their own)"""
    try:
        order = Order.objects.select_related('user').prefetch_related('items').get(pk=pk)
    except Order.DoesNotExist:
        raise OrderNotFound()
    _check_access(order, user, 'view')
    return order


def update_order(order, user, changes):
    """
    Apply a status/client-detail update.

    Only admins may change status. Cancelling restores the stock the order
    took; moving a cancelled order back to any other status deducts it again.
    """
    _check_access(order, user, 'update')
    new_status = changes.get('status')

    with transaction.atomic():
        order = Order.objects.select_for_update().get(pk=order.pk)
        old_status = order.status
        audit_changes = {}

        if new_status and new_status != old_status:
            if not user.is_admin:
                raise PermissionDenied('Only administrators can update order status.')
            if new_status == Order.STATUS_CANCELLED:
                restored = _restore_stock(order)
                logger.info("Order %s cancelled; restored %s", order.pk, restored)
                _record_stock_movement('stock_restore', order.pk, order.client_name, user, restored)
            elif old_status == Order.STATUS_CANCELLED:
                deductions = _snapshot_deductions(order)
                _apply_deductions(deductions)
                _record_stock_movement('stock_deduct', order.pk, order.client_name, user, deductions)
                logger.info("Order %s reinstated from Cancelled to %s", order.pk, new_status)
            order.status = new_status
            audit_changes['status'] = {'old': old_status, 'new': new_status}

        for field in ('client_name', 'client_address'):
            if field in changes and changes[field] != getattr(order, field):
                audit_changes[field] = {'old': getattr(order, field), 'new': changes[field]}
                setattr(order, field, changes[field])

        order.save(update_fields=['status', 'client_name', 'client_address', 'updated_at'])

        if audit_changes:
            transaction.on_commit(lambda: create_audit_log(
                user=user,
                action='order_update',
                model_name='Order',
                object_id=order.pk,
                object_name=order.client_name,
                object_reference=f'ORDER-{order.pk}',
                changes=audit_changes,
            ))
    return order


def delete_order(order, user):
    """
    Delete an order and give back the stock it took.

    Cancelled orders have already been restored and are deleted as-is.
    Returns {product_id: units} restored.
    """
    _check_access(order, user, 'delete')

    with transaction.atomic():
        order = Order.objects.select_for_update().get(pk=order.pk)
        if order.status == Order.STATUS_CANCELLED:
            restored = {}
        else:
            restored = _restore_stock(order)
        order_id = order.pk
        client_name = order.client_name
        _record_stock_movement('stock_restore', order_id, client_name, user, restored)
        order.delete()

        transaction.on_commit(lambda: create_audit_log(
            user=user,
            action='order_delete',
            model_name='Order',
            object_id=order_id,
            object_name=client_name,
            object_reference=f'ORDER-{order_id}',
            changes={'restored': {str(product_id): units for product_id, units in restored.items()}},
        ))

    logger.info("Order %s deleted by user %s; restored %s", order_id, user.pk, restored)
    return restored


def orders_for(user):
    """Orders visible to the user, newest first"""
    orders = Order.objects.select_related('user').prefetch_related('items')
    if not user.is_admin:
        orders = orders.filter(user=user)
    return orders


def _today_range():
    start = timezone.localtime().replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def orders_today_count():
    start, end = _today_range()
    return Order.objects.filter(created_at__gte=start, created_at__lt=end).count()


def revenue_today():
    """Revenue from today's orders that have shipped or been delivered"""
    start, end = _today_range()
    total = Order.objects.filter(
        created_at__gte=start,
        created_at__lt=end,
        status__in=[Order.STATUS_SHIPPED, Order.STATUS_DELIVERED],
    ).aggregate(total=Sum('total_price'))['total']
    return total or Decimal('0.00')


def pending_orders_count():
    return Order.objects.filter(status=Order.STATUS_PENDING).count()
