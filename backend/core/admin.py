from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import User, AuditLog


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ['username', 'email', 'role', 'receive_low_stock_alerts', 'is_active', 'date_joined']
    list_filter = ['role', 'receive_low_stock_alerts', 'is_active', 'is_staff']
    search_fields = ['username', 'email', 'first_name', 'last_name']
    ordering = ['username']
    fieldsets = BaseUserAdmin.fieldsets + (
        ('Inventory', {'fields': ('phone', 'address', 'role', 'receive_low_stock_alerts', 'low_stock_alert_email')}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ('Inventory', {'fields': ('role',)}),
    )


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ['user', 'action', 'model_name', 'object_id', 'object_name', 'created_at']
    list_filter = ['action', 'model_name', 'created_at']
    search_fields = ['user__username', 'model_name', 'object_id', 'object_name']
    ordering = ['-created_at']
    readonly_fields = ['user', 'action', 'model_name', 'object_id', 'object_name',
                       'object_reference', 'changes', 'ip_address', 'created_at']
