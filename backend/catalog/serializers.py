import logging
from decimal import Decimal

from django.db import transaction
from rest_framework import serializers

from backend.core.exceptions import InvalidBundleComposition, ValidationError
from .bundles import dependent_bundle_ids, resolve, set_components, validate_composition
from .models import Category, Product

logger = logging.getLogger(__name__)


class CategorySerializer(serializers.ModelSerializer):
    _id = serializers.IntegerField(source='pk', read_only=True)
    defaultLowStockThreshold = serializers.IntegerField(
        source='default_low_stock_threshold', required=False, min_value=0
    )
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Category
        fields = ['_id', 'id', 'name', 'description', 'defaultLowStockThreshold', 'owner', 'createdAt', 'updatedAt']
        read_only_fields = ['owner']

    def validate_name(self, value):
        value = value.strip().lower()
        if not value:
            raise serializers.ValidationError('Category name is required.')
        existing = Category.objects.filter(name=value)
        if self.instance is not None:
            existing = existing.exclude(pk=self.instance.pk)
        if existing.exists():
            raise serializers.ValidationError('A category with this name already exists.')
        return value


class BundleComponentInputSerializer(serializers.Serializer):
    product = serializers.IntegerField()
    quantity = serializers.IntegerField()


def category_summary(category):
    if category is None:
        return None
    return {
        '_id': category.pk,
        'id': category.pk,
        'name': category.name,
        'defaultLowStockThreshold': category.default_low_stock_threshold,
    }


class ProductSerializer(serializers.ModelSerializer):
    """
    Product read/write serializer.

    Reads report resolved stock and price for bundles along with their
    populated components. Writes accept ``bundleComponents`` as
    ``[{product: <id>, quantity: <int>}]`` and validate the composition before
    anything is persisted.
    """
    _id = serializers.IntegerField(source='pk', read_only=True)
    category = serializers.PrimaryKeyRelatedField(queryset=Category.objects.all())
    binLocation = serializers.CharField(source='bin_location', required=False, max_length=100)
    isBundle = serializers.BooleanField(source='is_bundle', required=False)
    stock = serializers.IntegerField(required=False, min_value=0)
    price = serializers.DecimalField(
        max_digits=10, decimal_places=2, required=False, min_value=Decimal('0'), coerce_to_string=False
    )
    lowStockThreshold = serializers.IntegerField(
        source='low_stock_threshold', required=False, allow_null=True, min_value=0
    )
    bundleComponents = BundleComponentInputSerializer(many=True, write_only=True, required=False)
    owner = serializers.PrimaryKeyRelatedField(read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    lastUpdated = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Product
        fields = ['_id', 'id', 'name', 'sku', 'category', 'description', 'supplier', 'image', 'binLocation',
                  'isBundle', 'stock', 'price', 'lowStockThreshold', 'bundleComponents', 'owner',
                  'createdAt', 'lastUpdated']
        extra_kwargs = {
            'sku': {'required': False, 'allow_blank': True},
        }

    def validate_name(self, value):
        value = value.strip()
        existing = Product.objects.filter(name__iexact=value)
        if self.instance is not None:
            existing = existing.exclude(pk=self.instance.pk)
        if existing.exists():
            raise serializers.ValidationError('A product with this name already exists.')
        return value

    def validate(self, attrs):
        instance = self.instance
        is_bundle = attrs.get('is_bundle', instance.is_bundle if instance else False)
        components = attrs.get('bundleComponents')

        if is_bundle:
            if instance is not None and not instance.is_bundle and instance.used_in_bundles.exists():
                raise InvalidBundleComposition(
                    f'Product "{instance.name}" is a component of other bundles and cannot become a bundle.'
                )
            if components is None and (instance is None or not instance.is_bundle):
                raise InvalidBundleComposition('Bundle components must be a non-empty array.')
            if components is not None:
                pairs = [(item['product'], item['quantity']) for item in components]
                validate_composition(instance.pk if instance else None, pairs)
                attrs['bundleComponents'] = pairs
        else:
            if components:
                raise ValidationError('Only bundle products can have bundle components.')
            # New simple products and bundles turned simple carry no usable stock/price yet
            if instance is None or instance.is_bundle:
                missing = [field for field in ('stock', 'price') if field not in attrs]
                if not attrs.get('supplier'):
                    missing.append('supplier')
                if missing:
                    raise ValidationError(
                        f'Simple products require: {", ".join(missing)}.', fields=missing
                    )
        return attrs

    def create(self, validated_data):
        components = validated_data.pop('bundleComponents', None)
        with transaction.atomic():
            if validated_data.get('is_bundle'):
                validated_data['stock'] = 0
                validated_data['price'] = Decimal('0.00')
            product = Product.objects.create(**validated_data)
            if product.is_bundle:
                set_components(product, components)
        return product

    def update(self, instance, validated_data):
        components = validated_data.pop('bundleComponents', None)
        was_bundle = instance.is_bundle
        with transaction.atomic():
            for attr, value in validated_data.items():
                setattr(instance, attr, value)
            update_fields = set(validated_data) | {'updated_at'}
            if instance.is_bundle:
                instance.stock = 0
                instance.price = Decimal('0.00')
                update_fields |= {'stock', 'price'}
            # Write only submitted columns; stock may have moved since this row was read
            instance.save(update_fields=sorted(update_fields))

            if was_bundle and not instance.is_bundle:
                instance.bundle_components.all().delete()
            if instance.is_bundle and components is not None:
                set_components(instance, components)

        if not instance.is_bundle and {'stock', 'price'} & set(validated_data):
            dependents = dependent_bundle_ids(instance.pk)
            if dependents:
                logger.info("Product %s updated; affects bundles %s", instance.pk, dependents)
        return instance

    def to_representation(self, instance):
        data = super().to_representation(instance)
        resolved = resolve(instance)
        data['stock'] = resolved.stock
        data['price'] = resolved.price
        data['category'] = category_summary(instance.category)
        data['bundleComponents'] = [
            {
                'product': {
                    '_id': line.component.pk,
                    'id': line.component.pk,
                    'name': line.component.name,
                    'sku': line.component.sku,
                    'stock': line.component.stock,
                    'price': line.component.price,
                    'image': line.component.image,
                },
                'quantity': line.quantity,
            }
            for line in instance.bundle_components.all()
        ] if instance.is_bundle else []
        return data
