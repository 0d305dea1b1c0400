from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, AllowAny
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer, TokenRefreshSerializer
from rest_framework_simplejwt.exceptions import AuthenticationFailed, InvalidToken, TokenError
from django.contrib.auth import get_user_model
from django.shortcuts import get_object_or_404
from .models import AuditLog
from .permissions import IsAdminRole
from .serializers import UserSerializer, UserCreateSerializer, AuditLogSerializer

User = get_user_model()


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    def validate(self, attrs):
        data = super().validate(attrs)
        if not self.user.is_active:
            raise AuthenticationFailed('User account is disabled.')
        data['user'] = UserSerializer(self.user).data
        return data

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token['username'] = user.username
        token['role'] = 'admin' if user.is_admin else 'client'
        return token


class CustomTokenObtainPairView(TokenObtainPairView):
    serializer_class = CustomTokenObtainPairSerializer


class CustomTokenRefreshSerializer(TokenRefreshSerializer):
    """Token refresh that reports deleted users as an invalid token"""
    def validate(self, attrs):
        try:
            return super().validate(attrs)
        except (InvalidToken, TokenError):
            raise InvalidToken('Token is invalid or expired.')
        except User.DoesNotExist:
            raise InvalidToken('Token is invalid. User no longer exists.')


class CustomTokenRefreshView(TokenRefreshView):
    serializer_class = CustomTokenRefreshSerializer


@api_view(['POST'])
@permission_classes([AllowAny])
def register(request):
    """User registration endpoint"""
    serializer = UserCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    user = serializer.save()
    token = CustomTokenObtainPairSerializer.get_token(user)
    return Response({
        'user': UserSerializer(user).data,
        'access': str(token.access_token),
        'refresh': str(token),
    }, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH'])
@permission_classes([IsAuthenticated])
def user_me(request):
    """Get or update the current user, including low-stock alert preferences"""
    user = request.user
    if request.method == 'GET':
        data = UserSerializer(user).data
        data['is_admin'] = user.is_admin
        return Response(data)

    serializer = UserSerializer(user, data=request.data, partial=True)
    serializer.is_valid(raise_exception=True)
    serializer.save()
    return Response(serializer.data)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def user_list(request):
    """List all users"""
    users = User.objects.all().order_by('username')
    return Response(UserSerializer(users, many=True).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def audit_log_list(request):
    """List audit log entries, optionally filtered by action or model"""
    logs = AuditLog.objects.select_related('user')
    action = request.query_params.get('action')
    if action:
        logs = logs.filter(action=action)
    model_name = request.query_params.get('model_name')
    if model_name:
        logs = logs.filter(model_name=model_name)
    try:
        limit = min(int(request.query_params.get('limit', 100)), 500)
    except ValueError:
        limit = 100
    return Response(AuditLogSerializer(logs[:limit], many=True).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def audit_log_detail(request, pk):
    log = get_object_or_404(AuditLog.objects.select_related('user'), pk=pk)
    return Response(AuditLogSerializer(log).data)
