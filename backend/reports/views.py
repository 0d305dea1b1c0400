import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from backend.core.permissions import IsAdminRole
from . import low_stock

logger = logging.getLogger('backend.reports')


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def low_stock_report(request):
    """Products at or below their effective low stock threshold"""
    data = [
        {
            '_id': item.product.pk,
            'name': item.product.name,
            'sku': item.product.sku,
            'stock': item.stock,
            'lowStockThreshold': item.threshold,
            'category': item.product.category.name if item.product.category_id else 'N/A',
            'binLocation': item.product.bin_location or 'N/A',
            'isBundle': item.product.is_bundle,
            'lastUpdated': item.product.updated_at,
        }
        for item in low_stock.list_low_stock()
    ]
    return Response(data)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def low_stock_count(request):
    return Response({'count': low_stock.low_stock_count()})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def send_low_stock_alert(request, product_id):
    """Manually send a low stock alert for one product"""
    result = low_stock.send_alert(product_id, user=request.user)
    return Response({'message': result.message}, status=status.HTTP_200_OK)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def send_all_low_stock_alerts(request):
    """Send the low stock digest to every subscribed administrator"""
    result = low_stock.send_all_alerts(user=request.user)
    return Response({
        'message': result.message,
        'sentCount': result.sent_count,
        'failedCount': result.failed_count,
        'details': result.details,
    })
