import logging

from django.db.models import ProtectedError, Sum
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from backend.core.exceptions import ValidationError
from backend.core.permissions import IsAdminOrReadOnly
from backend.core.utils import create_audit_log
from .models import Category, Product
from .serializers import CategorySerializer, ProductSerializer

logger = logging.getLogger(__name__)


def _product_queryset():
    return Product.objects.select_related('category').prefetch_related('bundle_components__component')


# Category views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsAdminOrReadOnly])
def category_list_create(request):
    """List all categories or create a new category"""
    if request.method == 'GET':
        categories = Category.objects.all()
        serializer = CategorySerializer(categories, many=True)
        return Response(serializer.data)

    serializer = CategorySerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    category = serializer.save(owner=request.user)
    create_audit_log(
        request=request,
        action='create',
        model_name='Category',
        object_id=category.id,
        object_name=category.name,
        changes={'defaultLowStockThreshold': category.default_low_stock_threshold},
    )
    return Response(serializer.data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, IsAdminOrReadOnly])
def category_detail(request, pk):
    """Retrieve, update or delete a category"""
    category = get_object_or_404(Category, pk=pk)

    if request.method == 'GET':
        return Response(CategorySerializer(category).data)
    elif request.method in ('PUT', 'PATCH'):
        serializer = CategorySerializer(category, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)
    else:  # DELETE
        category_name = category.name
        category_id = category.id
        try:
            category.delete()
        except ProtectedError:
            raise ValidationError(
                f'Category "{category_name}" still has products and cannot be deleted.'
            )
        create_audit_log(
            request=request,
            action='delete',
            model_name='Category',
            object_id=category_id,
            object_name=category_name,
        )
        return Response({'message': 'Category removed'}, status=status.HTTP_200_OK)


# Product views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsAdminOrReadOnly])
def product_list_create(request):
    """List all products with resolved bundle stock/price, or create a product"""
    if request.method == 'GET':
        serializer = ProductSerializer(_product_queryset(), many=True)
        return Response(serializer.data)

    serializer = ProductSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    product = serializer.save(owner=request.user)
    logger.info("Product %s created by %s (bundle=%s)", product.id, request.user.username, product.is_bundle)
    create_audit_log(
        request=request,
        action='create',
        model_name='Product',
        object_id=product.id,
        object_name=product.name,
        object_reference=product.sku,
        changes={'isBundle': product.is_bundle},
    )
    return Response(serializer.data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, IsAdminOrReadOnly])
def product_detail(request, pk):
    """Retrieve, update or delete a product"""
    product = get_object_or_404(_product_queryset(), pk=pk)

    if request.method == 'GET':
        return Response(ProductSerializer(product).data)
    elif request.method in ('PUT', 'PATCH'):
        tracked = ('name', 'sku', 'stock', 'price', 'is_bundle', 'low_stock_threshold')
        old_data = {field: getattr(product, field) for field in tracked}
        serializer = ProductSerializer(product, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        changes = {
            field: {'old': str(old_data[field]), 'new': str(getattr(product, field))}
            for field in tracked if old_data[field] != getattr(product, field)
        }
        if changes or 'bundleComponents' in request.data:
            create_audit_log(
                request=request,
                action='update',
                model_name='Product',
                object_id=product.id,
                object_name=product.name,
                object_reference=product.sku,
                changes=changes,
            )
        return Response(serializer.data)
    else:  # DELETE
        bundle_names = list(
            Product.objects.filter(bundle_components__component=product).values_list('name', flat=True)
        )
        if bundle_names:
            raise ValidationError(
                f'Product "{product.name}" is a component of bundle(s): {", ".join(bundle_names)} '
                f'and cannot be deleted.',
                bundles=bundle_names,
            )
        product_name = product.name
        product_sku = product.sku
        product_id = product.id
        product.delete()
        create_audit_log(
            request=request,
            action='delete',
            model_name='Product',
            object_id=product_id,
            object_name=product_name,
            object_reference=product_sku,
            changes={'name': product_name, 'sku': product_sku},
        )
        return Response({'message': 'Product removed'}, status=status.HTTP_200_OK)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def product_count(request):
    """Total number of products"""
    return Response({'count': Product.objects.count()})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def product_total_stock(request):
    """Units on hand across simple products; bundle stock is derived and not counted"""
    total = Product.objects.filter(is_bundle=False).aggregate(total=Sum('stock'))['total'] or 0
    return Response({'totalStock': total})
