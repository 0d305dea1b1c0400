from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from backend.core.permissions import IsAdminRole
from . import services
from .serializers import OrderSerializer, OrderUpdateSerializer


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def order_place(request):
    """Place an order: ``{clientName, clientAddress, products: [{productId, quantity}]}``"""
    data = request.data
    order = services.place_order(
        request.user,
        data.get('products'),
        client_name=data.get('clientName'),
        client_address=data.get('clientAddress'),
    )
    return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def order_list(request):
    """Admins see every order, clients only their own"""
    orders = services.orders_for(request.user)
    return Response(OrderSerializer(orders, many=True).data)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def order_detail(request, pk):
    """Retrieve, update (status/client details) or delete an order"""
    order = services.get_order(pk, request.user)

    if request.method == 'GET':
        return Response(OrderSerializer(order).data)
    elif request.method in ('PUT', 'PATCH'):
        serializer = OrderUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        order = services.update_order(order, request.user, serializer.validated_data)
        order = services.get_order(order.pk, request.user)
        return Response(OrderSerializer(order).data)
    else:  # DELETE
        services.delete_order(order, request.user)
        return Response(
            {'message': 'Order deleted successfully and product stock restored.'},
            status=status.HTTP_200_OK,
        )


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def orders_today_count(request):
    return Response({'ordersToday': services.orders_today_count()})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def revenue_today(request):
    return Response({'revenueToday': services.revenue_today()})


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def pending_orders_count(request):
    return Response({'pendingOrders': services.pending_orders_count()})
