"""
Test suite for the reports module
Tests: low stock thresholds, low stock report, alert recipients, alert dispatch, check_low_stock command
"""
from io import StringIO
from smtplib import SMTPException
from unittest import mock

from django.core import mail
from django.core.management import call_command
from django.test import TestCase, override_settings
from rest_framework import status

from backend.core.exceptions import AlertDispatchError, ProductNotFound
from backend.core.models import AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.reports import low_stock


class ThresholdTests(TestCase):
    """Effective threshold precedence and the at-or-below rule"""

    def setUp(self):
        self.category = TestDataFactory.create_category(name='fasteners', default_low_stock_threshold=20)

    def test_product_override_wins(self):
        product = TestDataFactory.create_product(stock=6, category=self.category, low_stock_threshold=5)
        self.assertEqual(low_stock.effective_threshold(product), 5)
        self.assertFalse(low_stock.is_low_stock(product))

        product.stock = 5
        self.assertTrue(low_stock.is_low_stock(product))

    def test_category_default_used_without_override(self):
        product = TestDataFactory.create_product(stock=20, category=self.category)
        self.assertEqual(low_stock.effective_threshold(product), 20)
        self.assertTrue(low_stock.is_low_stock(product))

    def test_zero_override_is_respected(self):
        product = TestDataFactory.create_product(stock=0, category=self.category, low_stock_threshold=0)
        self.assertEqual(low_stock.effective_threshold(product), 0)
        self.assertTrue(low_stock.is_low_stock(product))

    @override_settings(INVENTORY_CONFIG={'DEFAULT_LOW_STOCK_THRESHOLD': 7})
    def test_configured_default(self):
        self.assertEqual(low_stock.default_threshold(), 7)

    def test_bundle_uses_effective_stock(self):
        a = TestDataFactory.create_product(stock=1000, category=self.category)
        b = TestDataFactory.create_product(stock=30, category=self.category)
        bundle = TestDataFactory.create_bundle([(a, 10), (b, 2)], category=self.category, low_stock_threshold=15)
        # min(1000 // 10, 30 // 2) = 15
        self.assertTrue(low_stock.is_low_stock(bundle))

        b.stock = 32
        b.save(update_fields=['stock'])
        bundle.refresh_from_db()
        self.assertFalse(low_stock.is_low_stock(bundle))


class LowStockReportTests(TestCase):
    """Low stock report and count endpoints"""

    def setUp(self):
        self.category = TestDataFactory.create_category(name='tools', default_low_stock_threshold=10)
        self.low = TestDataFactory.create_product(name='Hammer', stock=3, category=self.category)
        self.healthy = TestDataFactory.create_product(name='Saw', stock=500, category=self.category)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(TestDataFactory.create_admin())

    def test_report_lists_only_low_products(self):
        response = self.client.get('/api/v1/reports/low-stock/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([row['name'] for row in response.data], ['Hammer'])
        row = response.data[0]
        self.assertEqual(row['stock'], 3)
        self.assertEqual(row['lowStockThreshold'], 10)
        self.assertEqual(row['category'], 'tools')
        self.assertEqual(row['binLocation'], 'Main')
        self.assertFalse(row['isBundle'])

    def test_bundle_reported_with_resolved_stock(self):
        bundle = TestDataFactory.create_bundle([(self.low, 1), (self.healthy, 1)], name='Tool Kit',
                                               category=self.category)
        response = self.client.get('/api/v1/reports/low-stock/')
        rows = {row['_id']: row for row in response.data}
        self.assertEqual(rows[bundle.pk]['stock'], 3)
        self.assertTrue(rows[bundle.pk]['isBundle'])

    def test_count(self):
        response = self.client.get('/api/v1/reports/low-stock-count/')
        self.assertEqual(response.data, {'count': 1})

    def test_clients_forbidden(self):
        self.client.authenticate_user(TestDataFactory.create_user())
        self.assertEqual(self.client.get('/api/v1/reports/low-stock/').status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(
            self.client.post('/api/v1/reports/send-all-low-stock-alerts/').status_code, status.HTTP_403_FORBIDDEN
        )


class AlertRecipientTests(TestCase):

    def setUp(self):
        self.first = TestDataFactory.create_admin(receive_low_stock_alerts=True, email='first@example.com')
        self.second = TestDataFactory.create_admin(
            receive_low_stock_alerts=True, email='second@example.com', low_stock_alert_email='stock@example.com'
        )
        TestDataFactory.create_admin(email='muted@example.com')
        TestDataFactory.create_user(receive_low_stock_alerts=True, email='client@example.com')

    def test_subscribed_admins_only(self):
        addresses = [address for _, address in low_stock.alert_recipients()]
        self.assertEqual(addresses, ['first@example.com', 'stock@example.com'])

    def test_category_owner_preferred(self):
        category = TestDataFactory.create_category(owner=self.second)
        product = TestDataFactory.create_product(stock=1, category=category)
        addresses = [address for _, address in low_stock.alert_recipients(product)]
        self.assertEqual(addresses, ['stock@example.com'])

    def test_unsubscribed_owner_falls_back_to_all_admins(self):
        owner = TestDataFactory.create_admin(email='owner@example.com')
        product = TestDataFactory.create_product(stock=1, category=TestDataFactory.create_category(owner=owner))
        self.assertEqual(len(low_stock.alert_recipients(product)), 2)

    def test_invalid_address_skipped(self):
        TestDataFactory.create_admin(receive_low_stock_alerts=True, low_stock_alert_email='not-an-email')
        with self.assertLogs('backend.reports.low_stock', level='WARNING'):
            recipients = low_stock.alert_recipients()
        self.assertEqual(len(recipients), 2)

    def test_duplicate_addresses_collapsed(self):
        TestDataFactory.create_admin(receive_low_stock_alerts=True, low_stock_alert_email='FIRST@example.com')
        self.assertEqual(len(low_stock.alert_recipients()), 2)


class AlertDispatchTests(TestCase):
    """Single product alerts and the digest"""

    def setUp(self):
        self.admin = TestDataFactory.create_admin(receive_low_stock_alerts=True, email='alerts@example.com')
        self.category = TestDataFactory.create_category(name='paint', default_low_stock_threshold=10)
        self.low = TestDataFactory.create_product(name='Primer', stock=2, category=self.category, sku='PR-1')
        self.healthy = TestDataFactory.create_product(name='Gloss', stock=50, category=self.category)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_send_alert(self):
        response = self.client.post(f'/api/v1/reports/low-stock/alert/{self.low.pk}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            response.data['message'], 'Low stock alert sent for product Primer to 1 recipient(s).'
        )
        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.to, ['alerts@example.com'])
        self.assertIn('Primer', message.subject)
        self.assertIn('PR-1', message.body)
        self.assertEqual(message.alternatives[0][1], 'text/html')

        log = AuditLog.objects.get(action='low_stock_alert')
        self.assertEqual(log.user, self.admin)
        self.assertEqual(log.changes['sent'], ['alerts@example.com'])

    def test_product_above_threshold_not_alerted(self):
        result = low_stock.send_alert(self.healthy.pk)
        self.assertIn('not currently below', result.message)
        self.assertEqual(result.sent_count, 0)
        self.assertEqual(len(mail.outbox), 0)

    def test_no_subscribers(self):
        self.admin.receive_low_stock_alerts = False
        self.admin.save(update_fields=['receive_low_stock_alerts'])
        result = low_stock.send_alert(self.low.pk)
        self.assertEqual(result.message, 'No administrators subscribed to low stock alerts.')
        self.assertEqual(len(mail.outbox), 0)

    def test_unknown_product(self):
        with self.assertRaises(ProductNotFound):
            low_stock.send_alert(999999)
        response = self.client.post('/api/v1/reports/low-stock/alert/999999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    @mock.patch('backend.reports.notifications.send_low_stock_alert', side_effect=SMTPException('relay down'))
    def test_delivery_failure(self, send):
        with self.assertRaises(AlertDispatchError):
            low_stock.send_alert(self.low.pk)

        response = self.client.post(f'/api/v1/reports/low-stock/alert/{self.low.pk}/')
        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)
        self.assertEqual(response.data['error'], 'AlertDispatchError')
        self.assertEqual(response.data['failedCount'], 1)
        self.assertTrue(AuditLog.objects.filter(action='low_stock_alert').exists())

    def test_send_all(self):
        TestDataFactory.create_admin(receive_low_stock_alerts=True, email='second@example.com')
        TestDataFactory.create_product(name='Thinner', stock=1, category=self.category)

        response = self.client.post('/api/v1/reports/send-all-low-stock-alerts/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'Low stock alert process completed.')
        self.assertEqual(response.data['sentCount'], 2)
        self.assertEqual(response.data['failedCount'], 0)
        self.assertEqual(len(mail.outbox), 2)
        for message in mail.outbox:
            self.assertIn('Primer', message.body)
            self.assertIn('Thinner', message.body)
            self.assertNotIn('Gloss', message.body)

    def test_send_all_partial_failure_reported(self):
        TestDataFactory.create_admin(receive_low_stock_alerts=True, email='second@example.com')
        with mock.patch('backend.reports.notifications.send_low_stock_alert',
                        side_effect=[1, SMTPException('mailbox full')]):
            result = low_stock.send_all_alerts()
        self.assertEqual((result.sent_count, result.failed_count), (1, 1))
        self.assertEqual(result.details[1], {
            'email': 'second@example.com', 'status': 'failed', 'error': 'mailbox full',
        })

    def test_send_all_without_low_stock(self):
        self.low.stock = 500
        self.low.save(update_fields=['stock'])
        result = low_stock.send_all_alerts()
        self.assertEqual(result.message, 'No low stock items found. No alerts sent.')
        self.assertEqual(len(mail.outbox), 0)


class CheckLowStockCommandTests(TestCase):

    def setUp(self):
        TestDataFactory.create_admin(receive_low_stock_alerts=True, email='ops@example.com')
        category = TestDataFactory.create_category(default_low_stock_threshold=10)
        TestDataFactory.create_product(name='Sealant', stock=4, category=category)

    def test_report_only(self):
        out = StringIO()
        call_command('check_low_stock', stdout=out)
        self.assertIn('Sealant', out.getvalue())
        self.assertIn('Total low stock products: 1', out.getvalue())
        self.assertEqual(len(mail.outbox), 0)

    def test_send(self):
        out = StringIO()
        call_command('check_low_stock', '--send', stdout=out)
        self.assertIn('Low stock alert process completed.', out.getvalue())
        self.assertEqual(len(mail.outbox), 1)
