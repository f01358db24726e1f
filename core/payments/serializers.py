"""
Payments Serializers

Input validation for checkout and callback requests, and the read
representations of orders and entitlements returned to the frontend.

Author: DSP Development Team
Version: 1.0.0
"""

from rest_framework import serializers

from .models import Entitlement, Order


class CheckoutRequestSerializer(serializers.Serializer):
    course_id = serializers.IntegerField(min_value=1)


class CallbackRequestSerializer(serializers.Serializer):
    """Browser relay of the gateway's checkout result."""

    order_ref = serializers.CharField(max_length=40, required=False, allow_blank=True, default="")
    remote_order_id = serializers.CharField(max_length=64)
    remote_payment_id = serializers.CharField(max_length=64)
    remote_signature = serializers.CharField(max_length=256)


class FailureReportSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")
    description = serializers.CharField(max_length=512, required=False, allow_blank=True, default="")
    remote_payment_id = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")


class OrderSerializer(serializers.ModelSerializer):
    course_id = serializers.IntegerField(read_only=True)
    course_title = serializers.CharField(source="course.title", read_only=True)

    class Meta:
        model = Order
        fields = [
            "order_ref",
            "course_id",
            "course_title",
            "remote_order_id",
            "amount_minor_units",
            "currency",
            "status",
            "failure_reason",
            "created_at",
            "expires_at",
        ]
        read_only_fields = fields


class EntitlementSerializer(serializers.ModelSerializer):
    course_id = serializers.IntegerField(read_only=True)
    course_title = serializers.CharField(source="course.title", read_only=True)
    order_ref = serializers.CharField(source="order_id", read_only=True)

    class Meta:
        model = Entitlement
        fields = ["course_id", "course_title", "order_ref", "granted_at"]
        read_only_fields = fields
