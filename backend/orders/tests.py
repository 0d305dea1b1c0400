"""
Test suite for the orders module
Tests: placement, all-or-nothing rollback, stock restoration, status updates, order endpoints
"""
import threading
from decimal import Decimal
from unittest import mock

from django.db import close_old_connections, connection
from django.test import TestCase, TransactionTestCase
from rest_framework import status

from backend.catalog.bundles import set_components
from backend.catalog.models import Product
from backend.core.exceptions import (
    EmptyOrder, InsufficientStock, InvalidBundleComposition, InvalidQuantity, ProductNotFound, ValidationError,
)
from backend.core.models import AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.orders import services
from backend.orders.models import Order


def stock_of(product):
    return Product.objects.values_list('stock', flat=True).get(pk=product.pk)


class OrderPlacementTests(TestCase):
    """place_order: validation, expansion and atomic decrements"""

    def setUp(self):
        self.user = TestDataFactory.create_user(first_name='Ada', last_name='Client', address='1 Main St')
        self.category = TestDataFactory.create_category(name='parts')
        self.a = TestDataFactory.create_product(name='Part A', stock=10, price='5.00', category=self.category)
        self.b = TestDataFactory.create_product(name='Part B', stock=3, price='10.00', category=self.category)
        self.bundle = TestDataFactory.create_bundle([(self.a, 2), (self.b, 1)], name='Kit', category=self.category)

    def test_place_simple_order(self):
        order = services.place_order(self.user, [{'productId': self.a.pk, 'quantity': 4}])
        self.assertEqual(stock_of(self.a), 6)
        self.assertEqual(order.status, Order.STATUS_PENDING)
        self.assertEqual(order.total_price, Decimal('20.00'))
        self.assertEqual(order.client_name, 'Ada Client')
        self.assertEqual(order.client_address, '1 Main St')

        item = order.items.get()
        self.assertEqual(item.product_id, self.a.pk)
        self.assertEqual(item.category_name, 'parts')
        self.assertEqual(item.price, Decimal('5.00'))
        self.assertEqual(item.components, [{'productId': self.a.pk, 'quantity': 4}])

    def test_place_bundle_order_deducts_components(self):
        order = services.place_order(self.user, [{'productId': self.bundle.pk, 'quantity': 2}], client_name='Shop')
        self.assertEqual(stock_of(self.a), 6)
        self.assertEqual(stock_of(self.b), 1)
        self.assertEqual(stock_of(self.bundle), 0)
        self.assertEqual(order.total_price, Decimal('40.00'))
        self.assertEqual(order.client_name, 'Shop')

        item = order.items.get()
        self.assertTrue(item.is_bundle)
        self.assertEqual(item.price, Decimal('20.00'))
        self.assertEqual(item.components, [
            {'productId': self.a.pk, 'quantity': 4},
            {'productId': self.b.pk, 'quantity': 2},
        ])

    def test_deductions_merged_across_lines(self):
        # bundle needs 2 of A, the second line 9 more: 11 > 10
        with self.assertRaises(InsufficientStock) as ctx:
            services.place_order(self.user, [
                {'productId': self.bundle.pk, 'quantity': 1},
                {'productId': self.a.pk, 'quantity': 9},
            ])
        self.assertEqual(ctx.exception.product_id, self.a.pk)
        self.assertEqual(ctx.exception.requested, 11)
        self.assertEqual(ctx.exception.available, 10)

    def test_insufficient_stock_leaves_every_product_unchanged(self):
        with self.assertRaises(InsufficientStock) as ctx:
            services.place_order(self.user, [
                {'productId': self.a.pk, 'quantity': 1},
                {'productId': self.b.pk, 'quantity': 4},
            ])
        self.assertEqual(ctx.exception.extra['shortfall'], 1)
        self.assertEqual(stock_of(self.a), 10)
        self.assertEqual(stock_of(self.b), 3)
        self.assertFalse(Order.objects.exists())

    def test_interleaved_drain_aborts_whole_order(self):
        original = services._lock_products

        def lock_then_drain(product_ids):
            rows = original(product_ids)
            Product.objects.filter(pk=self.b.pk).update(stock=0)
            return rows

        with mock.patch('backend.orders.services._lock_products', side_effect=lock_then_drain):
            with self.assertRaises(InsufficientStock) as ctx:
                services.place_order(self.user, [{'productId': self.bundle.pk, 'quantity': 1}])
        self.assertEqual(ctx.exception.product_id, self.b.pk)
        self.assertEqual(stock_of(self.a), 10)
        self.assertFalse(Order.objects.exists())

    def test_last_unit_sold_once(self):
        last = TestDataFactory.create_product(stock=1, category=self.category)
        results = []
        for _ in range(5):
            try:
                services.place_order(self.user, [{'productId': last.pk, 'quantity': 1}])
                results.append('ok')
            except InsufficientStock:
                results.append('rejected')
        self.assertEqual(results.count('ok'), 1)
        self.assertEqual(results.count('rejected'), 4)
        self.assertEqual(stock_of(last), 0)

    def test_empty_order(self):
        for items in (None, [], 'nope'):
            with self.assertRaises(EmptyOrder):
                services.place_order(self.user, items)

    def test_invalid_quantity(self):
        for quantity in (0, -1, 1.5, '2.5', 'abc', None, True, 'NaN'):
            with self.assertRaises(InvalidQuantity):
                services.place_order(self.user, [{'productId': self.a.pk, 'quantity': quantity}])
        self.assertEqual(stock_of(self.a), 10)

    def test_whole_number_strings_accepted(self):
        services.place_order(self.user, [{'productId': str(self.a.pk), 'quantity': '2'}])
        self.assertEqual(stock_of(self.a), 8)

    def test_missing_or_bad_product_id(self):
        with self.assertRaises(ValidationError):
            services.place_order(self.user, [{'quantity': 1}])
        with self.assertRaises(ValidationError):
            services.place_order(self.user, [{'productId': 'abc', 'quantity': 1}])

    def test_unknown_product(self):
        with self.assertRaises(ProductNotFound):
            services.place_order(self.user, [
                {'productId': self.a.pk, 'quantity': 1},
                {'productId': 999999, 'quantity': 1},
            ])
        self.assertEqual(stock_of(self.a), 10)

    def test_bundle_without_components_cannot_be_ordered(self):
        empty = Product.objects.create(name='Empty Kit', category=self.category, is_bundle=True)
        with self.assertRaises(InvalidBundleComposition):
            services.place_order(self.user, [{'productId': empty.pk, 'quantity': 1}])

    def test_price_snapshot_survives_price_changes(self):
        order = services.place_order(self.user, [{'productId': self.bundle.pk, 'quantity': 1}])
        Product.objects.filter(pk=self.a.pk).update(price=Decimal('50.00'))
        item = Order.objects.get(pk=order.pk).items.get()
        self.assertEqual(item.price, Decimal('20.00'))
        self.assertEqual(Order.objects.get(pk=order.pk).total_price, Decimal('20.00'))

    def test_placement_audited_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            order = services.place_order(self.user, [{'productId': self.a.pk, 'quantity': 1}])
        log = AuditLog.objects.get(action='order_place')
        self.assertEqual(log.object_id, str(order.pk))
        self.assertEqual(log.changes['deductions'], {str(self.a.pk): 1})

    def test_rejection_logged(self):
        with self.assertLogs('backend.orders.services', level='WARNING') as logs:
            with self.assertRaises(InsufficientStock):
                services.place_order(self.user, [{'productId': self.b.pk, 'quantity': 99}])
        self.assertIn('InsufficientStock', logs.output[0])


class OrderLifecycleTests(TestCase):
    """Updates, cancellation and deletion restore stock exactly"""

    def setUp(self):
        self.admin = TestDataFactory.create_admin()
        self.user = TestDataFactory.create_user()
        self.a = TestDataFactory.create_product(stock=10, price='5.00')
        self.b = TestDataFactory.create_product(stock=3, price='10.00')
        self.bundle = TestDataFactory.create_bundle([(self.a, 2), (self.b, 1)])
        self.order = services.place_order(self.user, [
            {'productId': self.bundle.pk, 'quantity': 1},
            {'productId': self.a.pk, 'quantity': 3},
        ])

    def test_delete_restores_stock(self):
        self.assertEqual((stock_of(self.a), stock_of(self.b)), (5, 2))
        restored = services.delete_order(self.order, self.admin)
        self.assertEqual(restored, {self.a.pk: 5, self.b.pk: 1})
        self.assertEqual((stock_of(self.a), stock_of(self.b)), (10, 3))
        self.assertFalse(Order.objects.exists())

    def test_delete_uses_snapshot_after_composition_change(self):
        c = TestDataFactory.create_product(stock=50)
        set_components(self.bundle, [(c.pk, 1)])

        services.delete_order(self.order, self.admin)
        self.assertEqual((stock_of(self.a), stock_of(self.b), stock_of(c)), (10, 3, 50))

    def test_cancel_restores_and_delete_does_not_double_restore(self):
        services.update_order(self.order, self.admin, {'status': Order.STATUS_CANCELLED})
        self.assertEqual((stock_of(self.a), stock_of(self.b)), (10, 3))
        services.delete_order(self.order, self.admin)
        self.assertEqual((stock_of(self.a), stock_of(self.b)), (10, 3))

    def test_reinstating_cancelled_order_deducts_again(self):
        services.update_order(self.order, self.admin, {'status': Order.STATUS_CANCELLED})
        services.update_order(self.order, self.admin, {'status': Order.STATUS_PROCESSING})
        self.assertEqual((stock_of(self.a), stock_of(self.b)), (5, 2))

    def test_stock_movements_audited(self):
        with self.captureOnCommitCallbacks(execute=True):
            services.update_order(self.order, self.admin, {'status': Order.STATUS_CANCELLED})
        restore = AuditLog.objects.get(action='stock_restore')
        self.assertEqual(restore.object_id, str(self.order.pk))
        self.assertEqual(restore.changes, {str(self.a.pk): 5, str(self.b.pk): 1})

        with self.captureOnCommitCallbacks(execute=True):
            services.update_order(self.order, self.admin, {'status': Order.STATUS_PENDING})
        deduct = AuditLog.objects.get(action='stock_deduct')
        self.assertEqual(deduct.changes, {str(self.a.pk): 5, str(self.b.pk): 1})

        with self.captureOnCommitCallbacks(execute=True):
            services.delete_order(self.order, self.admin)
        self.assertEqual(AuditLog.objects.filter(action='stock_restore').count(), 2)

    def test_deleting_cancelled_order_records_no_second_restore(self):
        with self.captureOnCommitCallbacks(execute=True):
            services.update_order(self.order, self.admin, {'status': Order.STATUS_CANCELLED})
            services.delete_order(self.order, self.admin)
        self.assertEqual(AuditLog.objects.filter(action='stock_restore').count(), 1)
        self.assertTrue(AuditLog.objects.filter(action='order_delete').exists())

    def test_reinstating_without_stock_rejected(self):
        services.update_order(self.order, self.admin, {'status': Order.STATUS_CANCELLED})
        Product.objects.filter(pk=self.b.pk).update(stock=0)
        with self.assertRaises(InsufficientStock):
            services.update_order(self.order, self.admin, {'status': Order.STATUS_PENDING})
        self.assertEqual(Order.objects.get(pk=self.order.pk).status, Order.STATUS_CANCELLED)
        self.assertEqual(stock_of(self.a), 10)

    def test_shipping_does_not_touch_stock(self):
        services.update_order(self.order, self.admin, {'status': Order.STATUS_SHIPPED})
        self.assertEqual((stock_of(self.a), stock_of(self.b)), (5, 2))

    def test_deleted_product_skipped_on_restore(self):
        standalone = TestDataFactory.create_product(stock=5)
        order = services.place_order(self.user, [{'productId': standalone.pk, 'quantity': 2}])
        standalone.delete()
        with self.assertLogs('backend.orders.services', level='WARNING'):
            restored = services.delete_order(order, self.admin)
        self.assertEqual(restored, {})


class OrderAPITests(TestCase):
    """Order endpoints"""

    def setUp(self):
        self.admin = TestDataFactory.create_admin()
        self.user = TestDataFactory.create_user()
        self.other = TestDataFactory.create_user()
        self.product = TestDataFactory.create_product(name='Widget', stock=5, price='2.50')
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def _place(self, quantity=2):
        return self.client.post('/api/v1/orders/place/', {
            'clientName': 'Acme Ltd',
            'clientAddress': '42 Side St',
            'products': [{'productId': self.product.pk, 'quantity': quantity}],
        }, format='json')

    def test_place_order(self):
        response = self._place()
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['clientName'], 'Acme Ltd')
        self.assertEqual(response.data['totalPrice'], Decimal('5.00'))
        self.assertEqual(response.data['status'], 'Pending')
        line = response.data['products'][0]
        self.assertEqual(line['productId'], self.product.pk)
        self.assertEqual(line['name'], 'Widget')
        self.assertEqual(line['quantity'], 2)
        self.assertFalse(line['isBundle'])
        self.assertEqual(stock_of(self.product), 3)

    def test_insufficient_stock_payload(self):
        response = self._place(quantity=9)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'InsufficientStock')
        self.assertEqual(response.data['productId'], self.product.pk)
        self.assertEqual(response.data['shortfall'], 4)
        self.assertIn('message', response.data)

    def test_empty_order_payload(self):
        response = self.client.post('/api/v1/orders/place/', {'products': []}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'EmptyOrder')

    def test_unknown_product_payload(self):
        response = self.client.post('/api/v1/orders/place/', {
            'products': [{'productId': 999999, 'quantity': 1}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'ProductNotFound')

    def test_clients_see_only_their_orders(self):
        self._place()
        other_order = services.place_order(self.other, [{'productId': self.product.pk, 'quantity': 1}])

        response = self.client.get('/api/v1/orders/')
        self.assertEqual(len(response.data), 1)
        self.assertEqual(self.client.get(f'/api/v1/orders/{other_order.pk}/').status_code, 403)

        admin_client = AuthenticatedAPIClient().authenticate_user(self.admin)
        self.assertEqual(len(admin_client.get('/api/v1/orders/').data), 2)

    def test_missing_order(self):
        response = self.client.get('/api/v1/orders/999999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'OrderNotFound')

    def test_line_items_and_total_are_immutable(self):
        order_id = self._place().data['id']
        response = self.client.put(f'/api/v1/orders/{order_id}/', {
            'totalPrice': 1, 'products': [],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'ValidationError')
        self.assertEqual(Order.objects.get(pk=order_id).total_price, Decimal('5.00'))

    def test_client_may_edit_details_but_not_status(self):
        order_id = self._place().data['id']
        response = self.client.patch(f'/api/v1/orders/{order_id}/', {'clientAddress': '7 New Rd'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['clientAddress'], '7 New Rd')

        response = self.client.patch(f'/api/v1/orders/{order_id}/', {'status': 'Shipped'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_invalid_status_rejected(self):
        order_id = self._place().data['id']
        admin_client = AuthenticatedAPIClient().authenticate_user(self.admin)
        response = admin_client.patch(f'/api/v1/orders/{order_id}/', {'status': 'Lost'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_delete_order_restores_stock(self):
        order_id = self._place().data['id']
        response = self.client.delete(f'/api/v1/orders/{order_id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(stock_of(self.product), 5)

    def test_dashboard_counters(self):
        self._place()
        shipped = services.place_order(self.user, [{'productId': self.product.pk, 'quantity': 1}])
        services.update_order(shipped, self.admin, {'status': Order.STATUS_SHIPPED})

        self.assertEqual(self.client.get('/api/v1/orders/today-count/').data, {'ordersToday': 2})
        self.assertEqual(self.client.get('/api/v1/orders/today-revenue/').data, {'revenueToday': Decimal('2.50')})
        self.assertEqual(self.client.get('/api/v1/orders/pending-count/').status_code, 403)

        admin_client = AuthenticatedAPIClient().authenticate_user(self.admin)
        self.assertEqual(admin_client.get('/api/v1/orders/pending-count/').data, {'pendingOrders': 1})


class ConcurrentPlacementTests(TransactionTestCase):
    """Parallel placements against the last unit of stock"""

    def test_only_one_order_gets_the_last_unit(self):
        user = TestDataFactory.create_user()
        product = TestDataFactory.create_product(stock=1)
        workers = 5
        barrier = threading.Barrier(workers)
        results = []
        lock = threading.Lock()

        def place():
            try:
                barrier.wait()
                services.place_order(user, [{'productId': product.pk, 'quantity': 1}])
                outcome = 'ok'
            except InsufficientStock:
                outcome = 'rejected'
            except Exception as exc:
                outcome = f'{type(exc).__name__}: {exc}'
            finally:
                close_old_connections()
                connection.close()
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=place) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(results), workers)
        self.assertEqual(results.count('ok'), 1)
        self.assertEqual(results.count('rejected'), workers - 1)
        self.assertEqual(stock_of(product), 0)
        self.assertEqual(Order.objects.count(), 1)
