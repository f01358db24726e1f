"""
Payment callback verification.

Pure functions, no database or network access. A callback is authentic when
its signature equals HMAC-SHA256(secret, "<remote_order_id>|<remote_payment_id>")
and it is bound to the order that owns the remote order id with the amount and
currency recorded at checkout.

A correct signature alone is not enough: a valid signature for a cheaper
order must not complete a different order, so ``verify_order_binding``
checks the callback against the order it claims to pay.
"""

import hashlib
import hmac
from typing import Optional

from django.core.exceptions import ImproperlyConfigured

from .exceptions import AmountMismatch, InvalidSignature


def _require_secret(secret: str) -> bytes:
    if not secret:
        raise ImproperlyConfigured("Payment gateway signing secret is not configured")
    return secret.encode("utf-8")


def compute_signature(remote_order_id: str, remote_payment_id: str, secret: str) -> str:
    """HMAC-SHA256 hex digest over ``remote_order_id|remote_payment_id``."""
    message = f"{remote_order_id}|{remote_payment_id}".encode("utf-8")
    return hmac.new(_require_secret(secret), message, hashlib.sha256).hexdigest()


def signature_matches(remote_order_id: str, remote_payment_id: str, signature: str, secret: str) -> bool:
    expected = compute_signature(remote_order_id, remote_payment_id, secret)
    return hmac.compare_digest(expected, (signature or "").strip().lower())


def verify_signature(remote_order_id: str, remote_payment_id: str, signature: str, secret: str) -> None:
    """
    Raise ``InvalidSignature`` unless the signature matches.

    Raises:
        InvalidSignature: signature missing or different
        ImproperlyConfigured: no secret configured (an empty HMAC key would
            accept forged callbacks)
    """
    if not remote_order_id or not remote_payment_id:
        raise InvalidSignature("Callback is missing the remote order or payment id")
    if not signature_matches(remote_order_id, remote_payment_id, signature, secret):
        raise InvalidSignature()


def verify_order_binding(
    order,
    claimed_order_ref: Optional[str] = None,
    reported_amount: Optional[int] = None,
    reported_currency: Optional[str] = None,
) -> None:
    """
    Check that a callback really pays ``order``.

    Args:
        order: The order that owns the callback's remote order id
        claimed_order_ref: Local reference the callback says it pays, if any
        reported_amount: Amount the gateway reports as paid, if known
        reported_currency: Currency the gateway reports, if known

    Raises:
        AmountMismatch: the callback targets another order or the reported
            amount/currency differ from the recorded ones
    """
    if claimed_order_ref and claimed_order_ref != order.order_ref:
        raise AmountMismatch(
            "Remote order id belongs to a different order",
            details={"claimed_order_ref": claimed_order_ref},
        )
    if reported_amount is not None and int(reported_amount) != order.amount_minor_units:
        raise AmountMismatch(
            details={"expected": order.amount_minor_units, "reported": int(reported_amount)},
        )
    if reported_currency is not None and reported_currency.upper() != order.currency.upper():
        raise AmountMismatch(
            details={"expected_currency": order.currency, "reported_currency": reported_currency},
        )


def verify_callback(
    order,
    *,
    remote_order_id: str,
    remote_payment_id: str,
    remote_signature: str,
    secret: str,
    claimed_order_ref: Optional[str] = None,
    reported_amount: Optional[int] = None,
    reported_currency: Optional[str] = None,
) -> None:
    """Run signature and order-binding checks; raises on the first failure."""
    verify_signature(remote_order_id, remote_payment_id, remote_signature, secret)
    if remote_order_id != order.remote_order_id:
        raise AmountMismatch("Callback remote order id does not belong to this order")
    verify_order_binding(order, claimed_order_ref, reported_amount, reported_currency)


def verify_webhook_signature(raw_body: bytes, signature: str, secret: str) -> None:
    """Gateway webhooks sign the raw request body with the webhook secret."""
    expected = hmac.new(_require_secret(secret), raw_body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, (signature or "").strip().lower()):
        raise InvalidSignature("Webhook signature does not match")
