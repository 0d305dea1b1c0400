from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Extended user model with role and low-stock notification preferences"""
    ROLE_CHOICES = [
        ('admin', 'Admin'),
        ('client', 'Client'),
    ]

    phone = models.CharField(max_length=20, blank=True, null=True)
    address = models.CharField(max_length=200, blank=True)
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default='client', db_index=True)
    receive_low_stock_alerts = models.BooleanField(default=False)
    low_stock_alert_email = models.EmailField(blank=True, null=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    @property
    def is_admin(self):
        return self.role == 'admin' or self.is_staff or self.is_superuser

    @property
    def alert_email(self):
        """Address low-stock alerts go to: the dedicated alert email, else the account email"""
        return self.low_stock_alert_email or self.email

    class Meta:
        db_table = 'users'


class AuditLog(models.Model):
    """Audit log for critical operations"""
    ACTION_CHOICES = [
        ('create', 'Create'),
        ('update', 'Update'),
        ('delete', 'Delete'),
        ('order_place', 'Order Placed'),
        ('order_update', 'Order Updated'),
        ('order_delete', 'Order Deleted'),
        ('stock_deduct', 'Stock Deducted'),
        ('stock_restore', 'Stock Restored'),
        ('low_stock_alert', 'Low Stock Alert Sent'),
    ]

    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='audit_logs')
    action = models.CharField(max_length=50, choices=ACTION_CHOICES)
    model_name = models.CharField(max_length=100)
    object_id = models.CharField(max_length=100)
    object_name = models.CharField(max_length=255, blank=True, null=True, help_text="Human-readable name of the object (e.g., product name, client name)")
    object_reference = models.CharField(max_length=255, blank=True, null=True, help_text="Reference identifier (e.g., SKU, order number)")
    changes = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['-created_at'], name='audit_logs_created_6f1c2a_idx'),
            models.Index(fields=['action'], name='audit_logs_action_3b9e1d_idx'),
            models.Index(fields=['model_name'], name='audit_logs_model_n_8a4f0c_idx'),
            models.Index(fields=['object_reference'], name='audit_logs_object__c2d7e5_idx'),
        ]
