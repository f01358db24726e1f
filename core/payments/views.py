"""
Course Payments Views
=====================

REST API endpoints of the course checkout pipeline.

Endpoints
---------

1. CheckoutConfigView
   - URL: /api/payments/config/
   - Method: GET
   - Auth: None
   - Purpose:
       Returns the gateway key id and default currency so the frontend can
       initialize the checkout widget. Secrets never leave the backend.

2. StartCheckoutView
   - URL: /api/payments/checkout/
   - Method: POST
   - Body: {"course_id": 42}
   - Auth: Required
   - Purpose:
       Creates a local order for the authenticated buyer and the matching
       gateway order. Returns 201 with the order reference, gateway order id,
       amount and currency for the checkout widget.

3. PaymentCallbackView
   - URL: /api/payments/callback/
   - Method: POST
   - Body: {"order_ref", "remote_order_id", "remote_payment_id", "remote_signature"}
   - Auth: None (HMAC signed by the gateway)
   - Purpose:
       Browser relay of a completed checkout. Idempotent: replaying the same
       callback returns the original success.

4. PaymentWebhookView
   - URL: /api/payments/webhook/
   - Method: POST
   - Auth: None (X-Razorpay-Signature over the raw body)
   - Purpose:
       Server-to-server notification for payment.captured / order.paid.

5. OrderDetailView
   - URL: /api/payments/orders/<order_ref>/
   - Method: GET
   - Auth: Required, owner only
   - Purpose:
       Order status for polling; unfinished orders are reconciled with the
       gateway before answering.

6. OrderFailureView
   - URL: /api/payments/orders/<order_ref>/failure/
   - Method: POST
   - Auth: Required, owner only
   - Purpose:
       Client-side failure report. Stored for audit and followed by a
       reconciliation; the client's claim alone never fails an order.

7. EntitlementListView / EntitlementDetailView
   - URL: /api/payments/entitlements/ and /api/payments/entitlements/<course_id>/
   - Method: GET
   - Auth: Required
   - Purpose:
       Courses the buyer owns, and an access check for one course.

Security
--------
- The buyer is always ``request.user``; ids in request bodies are ignored.
- Callback and webhook signatures are verified with constant-time comparison.

Author: DSP Development Team
Version: 1.0.0
"""

import json
import logging

from django.conf import settings
from rest_framework import status
from rest_framework.exceptions import ParseError
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from . import verification
from .apps import get_gateway_client
from .checkout import start_checkout
from .entitlements import EntitlementWriter, has_entitlement
from .exceptions import PaymentException, UnknownOrder
from .models import CallbackRecord, Entitlement, Order
from .order_store import OrderStore
from .reconciliation import Reconciler
from .serializers import (
    CallbackRequestSerializer,
    CheckoutRequestSerializer,
    EntitlementSerializer,
    FailureReportSerializer,
    OrderSerializer,
)

logger = logging.getLogger(__name__)

WEBHOOK_SIGNATURE_HEADER = "HTTP_X_RAZORPAY_SIGNATURE"
WEBHOOK_PAYMENT_EVENTS = frozenset({"payment.captured", "order.paid"})


def _payload(request) -> dict:
    data = request.data
    return data.dict() if hasattr(data, "dict") else dict(data)


def _payment_entity(event: dict) -> dict:
    """Return ``payload.payment.entity`` of a gateway event, or raise ``ParseError``."""
    node = event
    for key in ("payload", "payment", "entity"):
        node = node.get(key) if isinstance(node, dict) else None
    if not isinstance(node, dict) or not node.get("order_id") or not node.get("id"):
        raise ParseError("Webhook event carries no payment entity")
    return node


class PaymentErrorMixin:
    """Renders ``PaymentException`` as a JSON error response."""

    def handle_exception(self, exc):
        if isinstance(exc, PaymentException):
            return Response(
                {
                    "error": exc.message,
                    "error_code": exc.error_code,
                    "status_code": exc.status_code,
                    "details": exc.details,
                },
                status=exc.status_code,
            )
        return super().handle_exception(exc)

    def get_store(self) -> OrderStore:
        return OrderStore()

    def get_writer(self) -> EntitlementWriter:
        return EntitlementWriter(get_gateway_client(), self.get_store())

    def get_reconciler(self) -> Reconciler:
        writer = self.get_writer()
        return Reconciler(writer.gateway, writer, writer.store)

    def get_owned_order(self, request, order_ref: str) -> Order:
        order = self.get_store().get(order_ref)
        if order.buyer_id != request.user.pk:
            # Same answer as a missing order, no existence leak.
            raise UnknownOrder(order_ref)
        return order


class CheckoutConfigView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        return Response(
            {
                "key_id": get_gateway_client().key_id,
                "currency": settings.PAYMENT_DEFAULT_CURRENCY,
            },
            status=status.HTTP_200_OK,
        )


class StartCheckoutView(PaymentErrorMixin, APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = CheckoutRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = start_checkout(
            request.user,
            serializer.validated_data["course_id"],
            get_gateway_client(),
            self.get_store(),
        )
        return Response(
            {
                "order_ref": order.order_ref,
                "remote_order_id": order.remote_order_id,
                "amount_minor_units": order.amount_minor_units,
                "currency": order.currency,
                "status": order.status,
                "expires_at": order.expires_at,
                "key_id": get_gateway_client().key_id,
            },
            status=status.HTTP_201_CREATED,
        )


class PaymentCallbackView(PaymentErrorMixin, APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        serializer = CallbackRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        outcome = self.get_writer().handle_callback(
            remote_order_id=data["remote_order_id"],
            remote_payment_id=data["remote_payment_id"],
            remote_signature=data["remote_signature"],
            order_ref=data["order_ref"],
            source=CallbackRecord.Source.CLIENT,
            raw_payload=_payload(request),
        )
        return Response(
            {
                "order_ref": outcome.order.order_ref,
                "status": outcome.order.status,
                "replayed": outcome.replayed,
            },
            status=status.HTTP_200_OK,
        )


class PaymentWebhookView(PaymentErrorMixin, APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        raw_body = request.body
        verification.verify_webhook_signature(
            raw_body,
            request.META.get(WEBHOOK_SIGNATURE_HEADER, ""),
            get_gateway_client().webhook_secret,
        )

        try:
            event = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise ParseError("Webhook body is not valid JSON")
        if not isinstance(event, dict):
            raise ParseError("Webhook body must be a JSON object")

        event_name = event.get("event", "")
        if event_name not in WEBHOOK_PAYMENT_EVENTS:
            logger.info("Webhook event %s ignored", event_name)
            return Response({"ignored": event_name}, status=status.HTTP_200_OK)

        payment = _payment_entity(event)
        remote_order_id = payment.get("order_id", "")
        remote_payment_id = payment.get("id", "")

        # The body signature already authenticates the event; the callback
        # signature is derived so the writer verifies it like any other source.
        gateway = get_gateway_client()
        signature = verification.compute_signature(remote_order_id, remote_payment_id, gateway.signing_secret)
        outcome = self.get_writer().handle_callback(
            remote_order_id=remote_order_id,
            remote_payment_id=remote_payment_id,
            remote_signature=signature,
            source=CallbackRecord.Source.WEBHOOK,
            reported_amount=payment.get("amount"),
            reported_currency=payment.get("currency"),
            raw_payload=event,
        )
        return Response(
            {
                "order_ref": outcome.order.order_ref,
                "status": outcome.order.status,
                "replayed": outcome.replayed,
            },
            status=status.HTTP_200_OK,
        )


class OrderDetailView(PaymentErrorMixin, APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, order_ref):
        order = self.get_owned_order(request, order_ref)
        if not order.is_terminal:
            order = self.get_reconciler().reconcile(order.order_ref)
        return Response(OrderSerializer(order).data, status=status.HTTP_200_OK)


class OrderFailureView(PaymentErrorMixin, APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request, order_ref):
        order = self.get_owned_order(request, order_ref)
        serializer = FailureReportSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        self.get_store().record_callback(
            source=CallbackRecord.Source.CLIENT_FAILURE,
            order_ref=order.order_ref,
            remote_order_id=order.remote_order_id or "",
            remote_payment_id=serializer.validated_data["remote_payment_id"],
            raw_payload=dict(serializer.validated_data),
        )
        logger.info(
            "Order %s: client reported failure %s",
            order.order_ref, serializer.validated_data["code"] or "(no code)",
        )
        # The widget may still retry on this gateway order; declined attempts do not close it.
        order = self.get_reconciler().reconcile(order.order_ref, settle_failures=False)
        return Response(OrderSerializer(order).data, status=status.HTTP_202_ACCEPTED)


class EntitlementListView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        entitlements = Entitlement.objects.filter(buyer=request.user).select_related("course")
        return Response(
            {"entitlements": EntitlementSerializer(entitlements, many=True).data},
            status=status.HTTP_200_OK,
        )


class EntitlementDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, course_id):
        return Response(
            {"course_id": course_id, "has_entitlement": has_entitlement(request.user, course_id)},
            status=status.HTTP_200_OK,
        )
