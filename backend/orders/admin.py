from django.contrib import admin
from .models import Order, OrderLineItem


class OrderLineItemInline(admin.TabularInline):
    model = OrderLineItem
    extra = 0
    can_delete = False
    readonly_fields = ['product_id', 'name', 'category_name', 'is_bundle', 'quantity', 'price', 'components']
    fields = readonly_fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['id', 'client_name', 'user', 'status', 'total_price', 'order_date']
    list_filter = ['status', 'order_date']
    search_fields = ['client_name', 'client_address', 'user__username']
    ordering = ['-order_date']
    readonly_fields = ['user', 'status', 'total_price', 'order_date', 'created_at', 'updated_at']
    inlines = [OrderLineItemInline]

    # Status changes and deletes go through the API so stock stays in step
    def has_delete_permission(self, request, obj=None):
        return False
