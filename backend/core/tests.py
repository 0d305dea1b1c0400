"""
Test suite for the core app
Tests: authentication, user preferences, permissions, audit logging, error rendering
"""
from django.test import TestCase, RequestFactory
from rest_framework import status
from rest_framework.exceptions import NotFound, PermissionDenied
from rest_framework.exceptions import ValidationError as DRFValidationError

from backend.core.exceptions import (
    AlertDispatchError, InsufficientStock, ProductNotFound, inventory_exception_handler,
)
from backend.core.models import AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.core.utils import create_audit_log


class AuthTests(TestCase):
    """Login and current-user endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user(username='client_one', password='s3cure-pass!')
        self.client = AuthenticatedAPIClient()

    def test_login_returns_tokens_and_role(self):
        response = self.client.post(
            '/api/v1/auth/login/', {'username': 'client_one', 'password': 's3cure-pass!'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)
        self.assertEqual(response.data['user']['role'], 'client')

    def test_unauthenticated_request_rejected(self):
        response = self.client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertIn('message', response.data)

    def test_update_low_stock_preferences(self):
        admin = TestDataFactory.create_admin()
        self.client.authenticate_user(admin)
        response = self.client.patch(
            '/api/v1/auth/me/',
            {'receiveLowStockAlerts': True, 'lowStockAlertEmail': 'alerts@example.com'},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        admin.refresh_from_db()
        self.assertTrue(admin.receive_low_stock_alerts)
        self.assertEqual(admin.alert_email, 'alerts@example.com')

    def test_client_cannot_promote_itself(self):
        self.client.authenticate_user(self.user)
        self.client.patch('/api/v1/auth/me/', {'role': 'admin'}, format='json')
        self.user.refresh_from_db()
        self.assertEqual(self.user.role, 'client')
        self.assertFalse(self.user.is_admin)


class PermissionTests(TestCase):
    """Admin-only endpoints"""

    def test_audit_logs_admin_only(self):
        client = AuthenticatedAPIClient().authenticate_user(TestDataFactory.create_user())
        response = client.get('/api/v1/audit-logs/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(
            response.data['message'], 'Not authorized: Only administrators can perform this action.'
        )

        client.authenticate_user(TestDataFactory.create_admin())
        response = client.get('/api/v1/audit-logs/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_staff_user_counts_as_admin(self):
        staff = TestDataFactory.create_user(is_staff=True)
        self.assertTrue(staff.is_admin)


class AuditLogTests(TestCase):

    def test_create_audit_log(self):
        user = TestDataFactory.create_admin()
        request = RequestFactory().get('/', HTTP_X_FORWARDED_FOR='10.0.0.1, 10.0.0.2')
        request.user = user
        log = create_audit_log(
            request=request, action='create', model_name='Product', object_id=5, object_name='Widget'
        )
        self.assertEqual(log.user, user)
        self.assertEqual(log.object_id, '5')
        self.assertEqual(log.ip_address, '10.0.0.1')

    def test_missing_fields_skipped(self):
        with self.assertLogs('backend.core.utils', level='WARNING'):
            self.assertIsNone(create_audit_log(action='create', model_name=None, object_id=1))
        self.assertEqual(AuditLog.objects.count(), 0)


class ExceptionHandlerTests(TestCase):
    """Every error renders as {message, error, ...}"""

    def test_insufficient_stock_payload(self):
        response = inventory_exception_handler(InsufficientStock(7, requested=5, available=2, product_name='Bolt'), {})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'InsufficientStock')
        self.assertEqual(response.data['productId'], 7)
        self.assertEqual(response.data['shortfall'], 3)
        self.assertIn('Bolt', response.data['message'])

    def test_not_found_and_dispatch_status_codes(self):
        self.assertEqual(inventory_exception_handler(ProductNotFound(3), {}).status_code, 404)
        self.assertEqual(inventory_exception_handler(AlertDispatchError(), {}).status_code, 502)

    def test_drf_errors_normalized(self):
        response = inventory_exception_handler(DRFValidationError({'name': ['This field is required.']}), {})
        self.assertEqual(response.data['error'], 'ValidationError')
        self.assertEqual(response.data['message'], 'This field is required.')
        self.assertIn('name', response.data['fields'])

        response = inventory_exception_handler(PermissionDenied('nope'), {})
        self.assertEqual(response.data, {'message': 'nope', 'error': 'PermissionDenied'})

        response = inventory_exception_handler(NotFound(), {})
        self.assertEqual(response.data['error'], 'NotFound')

    def test_unexpected_errors_fall_through(self):
        self.assertIsNone(inventory_exception_handler(RuntimeError('boom'), {}))
