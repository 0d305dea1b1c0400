"""
Test suite for the catalog module
Tests: bundle resolution, composition validation, product and category endpoints
"""
from decimal import Decimal

from django.test import TestCase, override_settings
from rest_framework import status

from backend.catalog.bundles import (
    dependent_bundle_ids, effective_price, effective_stock, expand, resolve, validate_composition,
)
from backend.catalog.models import BundleComponent, Category, Product
from backend.core.exceptions import InvalidBundleComposition, ProductNotFound
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient


class BundleResolverTests(TestCase):
    """Derived stock and price of bundle products"""

    def setUp(self):
        self.a = TestDataFactory.create_product(name='Part A', stock=10, price='5.00')
        self.b = TestDataFactory.create_product(name='Part B', stock=3, price='10.00')
        self.bundle = TestDataFactory.create_bundle([(self.a, 2), (self.b, 1)], name='Kit')

    def test_bundle_stock_is_min_of_component_capacity(self):
        self.assertEqual(effective_stock(self.bundle), 3)

    def test_bundle_price_is_sum_of_component_prices(self):
        self.assertEqual(effective_price(self.bundle), Decimal('20.00'))

    def test_component_out_of_stock_zeroes_bundle(self):
        Product.objects.filter(pk=self.b.pk).update(stock=0)
        self.assertEqual(resolve(self.bundle.pk).stock, 0)

    def test_simple_product_resolves_to_own_fields(self):
        self.assertEqual(resolve(self.a), (10, Decimal('5.00')))

    def test_bundle_without_components_resolves_to_zero(self):
        empty = Product.objects.create(name='Empty', category=self.a.category, is_bundle=True)
        self.assertEqual(resolve(empty), (0, Decimal('0.00')))

    @override_settings(INVENTORY_CONFIG={'BUNDLE_PRICE_MULTIPLIER': '0.90', 'DEFAULT_LOW_STOCK_THRESHOLD': 100})
    def test_price_multiplier_applied(self):
        self.assertEqual(effective_price(self.bundle), Decimal('18.00'))

    def test_stored_bundle_fields_not_authoritative(self):
        Product.objects.filter(pk=self.bundle.pk).update(stock=999, price=Decimal('999.00'))
        self.assertEqual(resolve(self.bundle.pk), (3, Decimal('20.00')))

    def test_lookup_rows_take_precedence(self):
        locked = Product.objects.get(pk=self.a.pk)
        locked.stock = 4
        self.assertEqual(resolve(self.bundle, lookup={locked.pk: locked}).stock, 2)

    def test_expand_bundle_into_component_deductions(self):
        self.assertEqual(expand(self.bundle, 2), {self.a.pk: 4, self.b.pk: 2})
        self.assertEqual(expand(self.a, 3), {self.a.pk: 3})

    def test_resolve_unknown_product(self):
        with self.assertRaises(ProductNotFound):
            resolve(999999)

    def test_dependent_bundles(self):
        other = TestDataFactory.create_bundle([(self.a, 1)], name='Other Kit')
        self.assertEqual(dependent_bundle_ids(self.a.pk), sorted([self.bundle.pk, other.pk]))
        self.assertEqual(dependent_bundle_ids(self.b.pk), [self.bundle.pk])
        self.assertEqual(dependent_bundle_ids(self.bundle.pk), [])


class CompositionValidationTests(TestCase):
    """Composition rules are enforced before anything is written"""

    def setUp(self):
        self.a = TestDataFactory.create_product(stock=10)
        self.b = TestDataFactory.create_product(stock=10)
        self.bundle = TestDataFactory.create_bundle([(self.a, 1)])

    def test_empty_composition_rejected(self):
        with self.assertRaisesMessage(InvalidBundleComposition, 'non-empty'):
            validate_composition(self.bundle.pk, [])

    def test_self_reference_rejected(self):
        with self.assertRaisesMessage(InvalidBundleComposition, 'cannot contain itself'):
            validate_composition(self.bundle.pk, [(self.a.pk, 1), (self.bundle.pk, 1)])

    def test_duplicate_component_rejected(self):
        with self.assertRaisesMessage(InvalidBundleComposition, 'Duplicate'):
            validate_composition(self.bundle.pk, [(self.a.pk, 1), (self.a.pk, 2)])

    def test_nested_bundle_rejected(self):
        with self.assertRaisesMessage(InvalidBundleComposition, 'Nested bundles are not supported'):
            validate_composition(None, [(self.bundle.pk, 1)])

    def test_non_positive_quantity_rejected(self):
        for quantity in (0, -1, 1.5):
            with self.assertRaises(InvalidBundleComposition):
                validate_composition(self.bundle.pk, [(self.b.pk, quantity)])

    def test_missing_component(self):
        with self.assertRaises(ProductNotFound):
            validate_composition(self.bundle.pk, [(999999, 1)])

    def test_transitive_cycle_rejected(self):
        outer = TestDataFactory.create_bundle([(self.b, 1)])
        # Legacy row: outer contains bundle directly
        BundleComponent.objects.create(bundle=outer, component=self.bundle, quantity=1, position=1)
        with self.assertRaisesMessage(InvalidBundleComposition, 'cycle'):
            validate_composition(self.bundle.pk, [(self.a.pk, 1), (outer.pk, 1)])

    def test_valid_composition_returns_components(self):
        found = validate_composition(self.bundle.pk, [(self.a.pk, 2), (self.b.pk, 1)])
        self.assertEqual(set(found), {self.a.pk, self.b.pk})


class ProductAPITests(TestCase):
    """Product endpoints"""

    def setUp(self):
        self.admin = TestDataFactory.create_admin()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)
        self.category = TestDataFactory.create_category(name='hardware')
        self.a = TestDataFactory.create_product(name='Bolt', stock=10, price='5.00', category=self.category)
        self.b = TestDataFactory.create_product(name='Nut', stock=3, price='10.00', category=self.category)

    def _bundle_payload(self, **overrides):
        payload = {
            'name': 'Bolt Kit',
            'category': self.category.pk,
            'isBundle': True,
            'bundleComponents': [
                {'product': self.a.pk, 'quantity': 2},
                {'product': self.b.pk, 'quantity': 1},
            ],
        }
        payload.update(overrides)
        return payload

    def test_create_simple_product(self):
        response = self.client.post('/api/v1/products/', {
            'name': 'Washer',
            'sku': 'wsh-1',
            'category': self.category.pk,
            'supplier': 'Acme',
            'stock': 40,
            'price': '0.50',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['sku'], 'WSH-1')
        self.assertEqual(response.data['binLocation'], 'Main')
        self.assertEqual(response.data['category']['name'], 'hardware')
        self.assertEqual(Product.objects.get(name='Washer').owner, self.admin)

    def test_simple_product_requires_stock_price_supplier(self):
        response = self.client.post('/api/v1/products/', {
            'name': 'Washer', 'category': self.category.pk,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'ValidationError')
        self.assertEqual(set(response.data['fields']), {'stock', 'price', 'supplier'})

    def test_create_bundle_reports_resolved_values(self):
        response = self.client.post('/api/v1/products/', self._bundle_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['stock'], 3)
        self.assertEqual(response.data['price'], Decimal('20.00'))
        self.assertEqual(len(response.data['bundleComponents']), 2)
        self.assertEqual(response.data['bundleComponents'][0]['product']['name'], 'Bolt')

        bundle = Product.objects.get(name='Bolt Kit')
        self.assertEqual(bundle.stock, 0)
        self.assertEqual(bundle.bundle_components.count(), 2)

    def test_get_bundle_reflects_component_changes(self):
        bundle = TestDataFactory.create_bundle([(self.a, 2), (self.b, 1)], category=self.category)
        Product.objects.filter(pk=self.b.pk).update(stock=1)
        response = self.client.get(f'/api/v1/products/{bundle.pk}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['stock'], 1)
        self.assertEqual(response.data['_id'], bundle.pk)

    def test_invalid_composition_not_persisted(self):
        response = self.client.post(
            '/api/v1/products/',
            self._bundle_payload(bundleComponents=[{'product': self.a.pk, 'quantity': 1}] * 2),
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'InvalidBundleComposition')
        self.assertFalse(Product.objects.filter(name='Bolt Kit').exists())

    def test_update_bundle_to_contain_itself_rejected(self):
        bundle = TestDataFactory.create_bundle([(self.a, 1)], category=self.category)
        response = self.client.put(f'/api/v1/products/{bundle.pk}/', {
            'bundleComponents': [{'product': bundle.pk, 'quantity': 1}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'InvalidBundleComposition')
        self.assertEqual(list(bundle.bundle_components.values_list('component_id', flat=True)), [self.a.pk])

    def test_update_replaces_composition(self):
        bundle = TestDataFactory.create_bundle([(self.a, 1)], category=self.category)
        response = self.client.patch(f'/api/v1/products/{bundle.pk}/', {
            'bundleComponents': [{'product': self.b.pk, 'quantity': 3}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['stock'], 1)
        self.assertEqual(response.data['price'], Decimal('30.00'))

    def test_update_does_not_overwrite_stock(self):
        product = Product.objects.get(pk=self.a.pk)
        Product.objects.filter(pk=self.a.pk).update(stock=7)
        response = self.client.patch(f'/api/v1/products/{product.pk}/', {'description': 'Zinc'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(Product.objects.get(pk=self.a.pk).stock, 7)

    def test_bundle_turned_simple_requires_stock_price_supplier(self):
        bundle = TestDataFactory.create_bundle([(self.a, 2), (self.b, 1)], category=self.category)
        response = self.client.patch(f'/api/v1/products/{bundle.pk}/', {'isBundle': False}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'ValidationError')
        self.assertEqual(set(response.data['fields']), {'stock', 'price', 'supplier'})
        bundle.refresh_from_db()
        self.assertTrue(bundle.is_bundle)
        self.assertEqual(bundle.bundle_components.count(), 2)

        response = self.client.patch(f'/api/v1/products/{bundle.pk}/', {
            'isBundle': False, 'stock': 12, 'price': '18.00', 'supplier': 'Acme',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['stock'], 12)
        self.assertEqual(response.data['price'], Decimal('18.00'))
        self.assertEqual(response.data['bundleComponents'], [])
        self.assertFalse(BundleComponent.objects.filter(bundle_id=bundle.pk).exists())

    def test_duplicate_name_rejected_case_insensitively(self):
        response = self.client.post('/api/v1/products/', {
            'name': 'bolt', 'category': self.category.pk, 'supplier': 'Acme', 'stock': 1, 'price': '1.00',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('name', response.data['fields'])

    def test_component_in_use_cannot_be_deleted(self):
        TestDataFactory.create_bundle([(self.a, 1)], name='Kit', category=self.category)
        response = self.client.delete(f'/api/v1/products/{self.a.pk}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['bundles'], ['Kit'])
        self.assertTrue(Product.objects.filter(pk=self.a.pk).exists())

    def test_delete_product(self):
        response = self.client.delete(f'/api/v1/products/{self.b.pk}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(Product.objects.filter(pk=self.b.pk).exists())

    def test_client_can_read_but_not_write(self):
        client = AuthenticatedAPIClient().authenticate_user(TestDataFactory.create_user())
        self.assertEqual(client.get('/api/v1/products/').status_code, status.HTTP_200_OK)
        response = client.post('/api/v1/products/', self._bundle_payload(), format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_missing_product_returns_404(self):
        response = self.client.get('/api/v1/products/999999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'NotFound')

    def test_counters(self):
        TestDataFactory.create_bundle([(self.a, 1)], category=self.category)
        self.assertEqual(self.client.get('/api/v1/products/count/').data, {'count': 3})
        self.assertEqual(self.client.get('/api/v1/products/total-stock/').data, {'totalStock': 13})


class CategoryAPITests(TestCase):
    """Category endpoints"""

    def setUp(self):
        self.admin = TestDataFactory.create_admin()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_create_category_lowercases_name(self):
        response = self.client.post('/api/v1/categories/', {'name': 'Tools'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['name'], 'tools')
        self.assertEqual(response.data['defaultLowStockThreshold'], 100)
        self.assertEqual(Category.objects.get(name='tools').owner, self.admin)

        response = self.client.post('/api/v1/categories/', {'name': 'TOOLS'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_category_with_products_cannot_be_deleted(self):
        product = TestDataFactory.create_product()
        response = self.client.delete(f'/api/v1/categories/{product.category_id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertTrue(Category.objects.filter(pk=product.category_id).exists())
