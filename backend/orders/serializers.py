from rest_framework import serializers

from backend.core.exceptions import ValidationError
from .models import Order, OrderLineItem


class OrderLineItemSerializer(serializers.ModelSerializer):
    productId = serializers.IntegerField(source='product_id', read_only=True)
    category = serializers.SerializerMethodField()
    isBundle = serializers.BooleanField(source='is_bundle', read_only=True)
    price = serializers.DecimalField(max_digits=10, decimal_places=2, coerce_to_string=False, read_only=True)

    class Meta:
        model = OrderLineItem
        fields = ['productId', 'name', 'category', 'quantity', 'price', 'isBundle', 'components']
        read_only_fields = fields

    def get_category(self, obj):
        if obj.category_id is None:
            return None
        return {'_id': obj.category_id, 'name': obj.category_name}


class OrderSerializer(serializers.ModelSerializer):
    _id = serializers.IntegerField(source='pk', read_only=True)
    user = serializers.PrimaryKeyRelatedField(read_only=True)
    clientName = serializers.CharField(source='client_name', read_only=True)
    clientAddress = serializers.CharField(source='client_address', read_only=True)
    products = OrderLineItemSerializer(source='items', many=True, read_only=True)
    totalPrice = serializers.DecimalField(
        source='total_price', max_digits=12, decimal_places=2, coerce_to_string=False, read_only=True
    )
    orderDate = serializers.DateTimeField(source='order_date', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Order
        fields = ['_id', 'id', 'user', 'clientName', 'clientAddress', 'products', 'totalPrice', 'status',
                  'orderDate', 'createdAt', 'updatedAt']
        read_only_fields = fields


class OrderUpdateSerializer(serializers.Serializer):
    """Validates the mutable part of an order: status and client details"""
    IMMUTABLE_FIELDS = ('products', 'totalPrice', 'orderDate', 'user')

    status = serializers.ChoiceField(choices=Order.STATUS_CHOICES, required=False)
    clientName = serializers.CharField(source='client_name', max_length=100, required=False)
    clientAddress = serializers.CharField(source='client_address', max_length=200, required=False)

    def validate(self, attrs):
        blocked = [field for field in self.IMMUTABLE_FIELDS if field in self.initial_data]
        if blocked:
            raise ValidationError(
                f'Order {", ".join(blocked)} cannot be changed after the order is placed.', fields=blocked
            )
        return attrs
