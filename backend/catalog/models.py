from django.conf import settings
from django.db import models
from django.db.models import Q
from django.db.models.functions import Lower
from decimal import Decimal


class Category(models.Model):
    """Product categories, each owned by the admin who receives its low-stock alerts"""
    name = models.CharField(max_length=50, unique=True)
    description = models.CharField(max_length=200, blank=True)
    default_low_stock_threshold = models.PositiveIntegerField(default=100)
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='categories'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        self.name = (self.name or '').strip().lower()
        super().save(*args, **kwargs)

    class Meta:
        db_table = 'categories'
        verbose_name_plural = 'categories'
        ordering = ['name']


class Product(models.Model):
    """Product master. Bundles derive stock and price from their components."""
    name = models.CharField(max_length=100)
    sku = models.CharField(max_length=100, default='N/A', db_index=True)
    category = models.ForeignKey(Category, on_delete=models.PROTECT, related_name='products')
    description = models.TextField(blank=True)
    supplier = models.CharField(max_length=200, blank=True)
    image = models.URLField(blank=True)
    bin_location = models.CharField(max_length=100, default='Main')
    is_bundle = models.BooleanField(default=False, db_index=True)
    # Not authoritative for bundles, kept at 0 there
    stock = models.PositiveIntegerField(default=0)
    price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    low_stock_threshold = models.PositiveIntegerField(null=True, blank=True)
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='products'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name} ({self.sku or 'N/A'})"

    def save(self, *args, **kwargs):
        self.sku = (self.sku or 'N/A').strip().upper() or 'N/A'
        super().save(*args, **kwargs)

    class Meta:
        db_table = 'products'
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(Lower('name'), name='products_name_ci_unique'),
            models.CheckConstraint(condition=Q(stock__gte=0), name='products_stock_non_negative'),
            models.CheckConstraint(condition=Q(price__gte=0), name='products_price_non_negative'),
        ]


class BundleComponent(models.Model):
    """One component line of a bundle product"""
    bundle = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='bundle_components')
    component = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='used_in_bundles')
    quantity = models.PositiveIntegerField(default=1)
    position = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.bundle.name}: {self.quantity} x {self.component.name}"

    class Meta:
        db_table = 'bundle_components'
        ordering = ['position', 'id']
        unique_together = [['bundle', 'component']]
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gte=1), name='bundle_components_quantity_positive'),
        ]
