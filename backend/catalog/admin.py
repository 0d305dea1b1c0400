from django.contrib import admin
from .models import Category, Product, BundleComponent


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ['name', 'default_low_stock_threshold', 'owner', 'created_at']
    list_filter = ['created_at']
    search_fields = ['name']
    ordering = ['name']


class BundleComponentInline(admin.TabularInline):
    model = BundleComponent
    fk_name = 'bundle'
    extra = 0
    fields = ['component', 'quantity', 'position']
    readonly_fields = fields
    can_delete = False

    # Compositions are validated through the API only
    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['name', 'sku', 'category', 'is_bundle', 'stock', 'price', 'low_stock_threshold', 'updated_at']
    list_filter = ['is_bundle', 'category', 'created_at']
    search_fields = ['name', 'sku', 'description', 'supplier']
    ordering = ['name']
    readonly_fields = ['created_at', 'updated_at']
    inlines = [BundleComponentInline]
