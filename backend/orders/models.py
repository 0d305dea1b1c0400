from django.conf import settings
from django.db import models
from django.utils import timezone
from decimal import Decimal


class Order(models.Model):
    """Client order. Line items and total are fixed when the order is placed."""
    STATUS_PENDING = 'Pending'
    STATUS_PROCESSING = 'Processing'
    STATUS_SHIPPED = 'Shipped'
    STATUS_DELIVERED = 'Delivered'
    STATUS_CANCELLED = 'Cancelled'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_PROCESSING, 'Processing'),
        (STATUS_SHIPPED, 'Shipped'),
        (STATUS_DELIVERED, 'Delivered'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='orders'
    )
    client_name = models.CharField(max_length=100)
    client_address = models.CharField(max_length=200)
    total_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    order_date = models.DateTimeField(default=timezone.now, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Order #{self.pk} - {self.client_name}"

    class Meta:
        db_table = 'orders'
        ordering = ['-order_date', '-id']


class OrderLineItem(models.Model):
    """Snapshot of one ordered product. product_id is kept even if the product is later deleted."""
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    product_id = models.BigIntegerField(db_index=True)
    name = models.CharField(max_length=100)
    category_id = models.BigIntegerField(null=True, blank=True)
    category_name = models.CharField(max_length=50, blank=True)
    is_bundle = models.BooleanField(default=False)
    quantity = models.PositiveIntegerField()
    price = models.DecimalField(max_digits=10, decimal_places=2)
    # Simple-product deductions this line caused: [{"productId": int, "quantity": int}]
    components = models.JSONField(default=list, blank=True)
    position = models.PositiveIntegerField(default=0)

    def __str__(self):
        return f"{self.quantity} x {self.name}"

    def get_line_total(self):
        return self.price * self.quantity

    class Meta:
        db_table = 'order_line_items'
        ordering = ['position', 'id']
