from django.urls import path
from .views import (
    CheckoutConfigView,
    StartCheckoutView,
    PaymentCallbackView,
    PaymentWebhookView,
    OrderDetailView,
    OrderFailureView,
    EntitlementListView,
    EntitlementDetailView,
)

app_name = "payments"

urlpatterns = [
    path("config/", CheckoutConfigView.as_view(), name="checkout-config"),
    path("checkout/", StartCheckoutView.as_view(), name="checkout"),
    path("callback/", PaymentCallbackView.as_view(), name="callback"),
    path("webhook/", PaymentWebhookView.as_view(), name="webhook"),
    path("orders/<str:order_ref>/", OrderDetailView.as_view(), name="order-detail"),
    path("orders/<str:order_ref>/failure/", OrderFailureView.as_view(), name="order-failure"),
    path("entitlements/", EntitlementListView.as_view(), name="entitlement-list"),
    path("entitlements/<int:course_id>/", EntitlementDetailView.as_view(), name="entitlement-detail"),
]
