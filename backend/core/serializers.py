from rest_framework import serializers
from django.contrib.auth.password_validation import validate_password
from .models import User, AuditLog


class UserSerializer(serializers.ModelSerializer):
    _id = serializers.IntegerField(source='pk', read_only=True)
    receiveLowStockAlerts = serializers.BooleanField(source='receive_low_stock_alerts', required=False)
    lowStockAlertEmail = serializers.EmailField(
        source='low_stock_alert_email', required=False, allow_null=True, allow_blank=True
    )

    class Meta:
        model = User
        fields = ['_id', 'id', 'username', 'email', 'first_name', 'last_name', 'phone', 'address',
                  'role', 'receiveLowStockAlerts', 'lowStockAlertEmail', 'is_active', 'is_staff',
                  'created_at', 'updated_at']
        read_only_fields = ['role', 'is_staff', 'created_at', 'updated_at']


class UserCreateSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True, validators=[validate_password])
    password_confirm = serializers.CharField(write_only=True)

    class Meta:
        model = User
        fields = ['username', 'email', 'password', 'password_confirm', 'first_name', 'last_name', 'phone', 'address']

    def validate(self, attrs):
        if attrs['password'] != attrs['password_confirm']:
            raise serializers.ValidationError({"password": "Passwords don't match"})
        return attrs

    def create(self, validated_data):
        validated_data.pop('password_confirm')
        password = validated_data.pop('password')
        # Self-registered accounts are always clients
        user = User(**validated_data, is_active=True, role='client')
        user.set_password(password)
        user.save()
        return user


class AuditLogSerializer(serializers.ModelSerializer):
    user = UserSerializer(read_only=True)

    class Meta:
        model = AuditLog
        fields = ['id', 'user', 'action', 'model_name', 'object_id', 'object_name',
                  'object_reference', 'changes', 'ip_address', 'created_at']
