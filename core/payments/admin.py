"""
Course Payments Django Admin Configuration

Read-only views on the payment pipeline for operations staff. Orders only
change status through the pipeline, so nothing here can edit, add or delete
orders, callbacks or entitlements.

Typical use: review FAILED orders together with the callbacks that caused them.

Author: DSP Development Team
Version: 1.0.0
"""

from django.contrib import admin
from django.db.models import QuerySet
from django.http import HttpRequest
from django.utils.translation import gettext_lazy as _

from .models import CallbackRecord, Entitlement, Order


class ReadOnlyAdminMixin:
    """Disables add, change and delete for audit-style models."""

    def has_add_permission(self, request: HttpRequest, obj=None) -> bool:
        return False

    def has_change_permission(self, request: HttpRequest, obj=None) -> bool:
        return False

    def has_delete_permission(self, request: HttpRequest, obj=None) -> bool:
        return False


@admin.register(Order)
class OrderAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """Order review with callback history lookup by reference."""

    list_display = (
        "order_ref",
        "buyer",
        "course",
        "amount_minor_units",
        "currency",
        "status",
        "created_at",
        "expires_at",
    )
    list_filter = ("status", "currency", "created_at")
    search_fields = ("order_ref", "remote_order_id", "remote_payment_id", "buyer__username", "buyer__email")
    date_hierarchy = "created_at"

    fieldsets = (
        (_("Order"), {"fields": ("order_ref", "buyer", "course", "amount_minor_units", "currency")}),
        (_("Gateway"), {"fields": ("remote_order_id", "remote_payment_id")}),
        (
            _("Status"),
            {
                "fields": ("status", "failure_reason", "created_at", "updated_at", "expires_at"),
                "description": _("Status changes only through the payment pipeline"),
            },
        ),
    )

    def get_queryset(self, request: HttpRequest) -> QuerySet:
        return super().get_queryset(request).select_related("buyer", "course")


@admin.register(CallbackRecord)
class CallbackRecordAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("id", "source", "order_ref", "remote_order_id", "remote_payment_id", "received_at")
    list_filter = ("source", "received_at")
    search_fields = ("order_ref", "remote_order_id", "remote_payment_id")
    readonly_fields = ("raw_payload",)


@admin.register(Entitlement)
class EntitlementAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("buyer", "course", "order", "granted_at")
    list_filter = ("course", "granted_at")
    search_fields = ("buyer__username", "buyer__email", "course__title", "order__order_ref")

    def get_queryset(self, request: HttpRequest) -> QuerySet:
        return super().get_queryset(request).select_related("buyer", "course", "order")
