"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from backend.catalog.bundles import set_components
from backend.catalog.models import Category, Product
from decimal import Decimal
import random
import string

User = get_user_model()


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def create_user(username=None, email=None, password='testpass123', role='client', **extra):
        """Create a test user"""
        if not username:
            username = f'testuser_{TestDataFactory.random_string(6)}'
        if not email:
            email = f'{username}@test.com'
        return User.objects.create_user(
            username=username,
            email=email,
            password=password,
            role=role,
            **extra
        )

    @staticmethod
    def create_admin(username=None, receive_low_stock_alerts=False, **extra):
        """Create an admin user, optionally subscribed to low stock alerts"""
        return TestDataFactory.create_user(
            username=username or f'admin_{TestDataFactory.random_string(6)}',
            role='admin',
            receive_low_stock_alerts=receive_low_stock_alerts,
            **extra
        )

    @staticmethod
    def create_category(name=None, default_low_stock_threshold=100, owner=None):
        """Create a test category"""
        if not name:
            name = f'category_{TestDataFactory.random_string(6)}'
        return Category.objects.create(
            name=name,
            description=f'Test category {name}',
            default_low_stock_threshold=default_low_stock_threshold,
            owner=owner,
        )

    @staticmethod
    def create_product(name=None, stock=100, price='10.00', category=None, low_stock_threshold=None, sku=None):
        """Create a simple test product"""
        if not name:
            name = f'Product_{TestDataFactory.random_string(6)}'
        if not category:
            category = TestDataFactory.create_category()
        return Product.objects.create(
            name=name,
            sku=sku or f'SKU-{TestDataFactory.random_string(8)}',
            category=category,
            supplier='Test Supplier',
            stock=stock,
            price=Decimal(str(price)),
            low_stock_threshold=low_stock_threshold,
        )

    @staticmethod
    def create_bundle(components, name=None, category=None, low_stock_threshold=None):
        """
        Create a bundle product.

        Args:
            components: list of (Product, quantity) pairs
        """
        if not name:
            name = f'Bundle_{TestDataFactory.random_string(6)}'
        if not category:
            category = TestDataFactory.create_category()
        bundle = Product.objects.create(
            name=name,
            sku=f'BND-{TestDataFactory.random_string(8)}',
            category=category,
            is_bundle=True,
            low_stock_threshold=low_stock_threshold,
        )
        set_components(bundle, [(product.pk, quantity) for product, quantity in components])
        return bundle


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user):
        """Authenticate the client with a user"""
        refresh = RefreshToken.for_user(user)
        self.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()
