"""
Entitlement Writer

Turns an inbound payment callback into a course entitlement. A callback may
arrive from the browser, from a gateway webhook or from the reconciler, any
number of times and in any order; ``handle_callback`` is idempotent and the
compare-and-swap in ``OrderStore.transition`` decides which concurrent
caller performs each status change.

Processing steps:
1. Store the raw callback in the audit trail before anything else.
2. Resolve the order by its gateway order id.
3. Replays of an already completed payment succeed without side effects.
4. Orders that can no longer be paid are rejected (expiring them first
   when their checkout window has passed).
5. Verify signature and order binding; failures mark the order FAILED.
6. CREATED/AWAITING_CALLBACK -> VERIFIED, recording the payment id.
7. Grant the entitlement and move VERIFIED -> ENTITLED in one transaction.

Author: DSP Development Team
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from django.db import transaction
from django.utils import timezone

from . import verification
from .exceptions import (
    AmountMismatch,
    InvalidSignature,
    OrderNotPayable,
    StaleTransition,
    UnknownOrder,
    VerificationFailed,
)
from .models import CallbackRecord, Entitlement, Order
from .order_store import OrderStore

logger = logging.getLogger(__name__)


@dataclass
class CallbackOutcome:
    order: Order
    entitlement: Optional[Entitlement]
    replayed: bool = False


def has_entitlement(buyer, course) -> bool:
    """True when ``buyer`` has been granted access to ``course`` (instance or id)."""
    if buyer is None or not getattr(buyer, "is_authenticated", False):
        return False
    course_id = getattr(course, "pk", course)
    return Entitlement.objects.filter(buyer=buyer, course_id=course_id).exists()


class EntitlementWriter:
    """
    Idempotent callback handler.

    Attributes:
        MAX_PASSES: Re-reads allowed after losing a compare-and-swap race
    """

    MAX_PASSES = 3

    def __init__(self, gateway, store: Optional[OrderStore] = None) -> None:
        self.gateway = gateway
        self.store = store or OrderStore()

    def handle_callback(
        self,
        *,
        remote_order_id: str,
        remote_payment_id: str,
        remote_signature: str,
        order_ref: str = "",
        source: str = CallbackRecord.Source.CLIENT,
        reported_amount: Optional[int] = None,
        reported_currency: Optional[str] = None,
        raw_payload: Optional[Dict[str, Any]] = None,
        now=None,
    ) -> CallbackOutcome:
        """
        Process one payment callback.

        Args:
            remote_order_id: Gateway order id the payment belongs to
            remote_payment_id: Gateway payment id
            remote_signature: HMAC over ``remote_order_id|remote_payment_id``
            order_ref: Local reference the sender claims to pay (optional)
            source: Origin of the callback, stored in the audit trail
            reported_amount: Amount the gateway reported, if known
            reported_currency: Currency the gateway reported, if known
            raw_payload: Original request body for the audit trail

        Returns:
            CallbackOutcome with the final order and its entitlement

        Raises:
            UnknownOrder: no order owns ``remote_order_id``
            OrderNotPayable: the order is expired, failed or paid by another payment
            VerificationFailed: signature or order binding did not check out
        """
        # Audit first and outside any transaction: a rejected callback stays recorded.
        self.store.record_callback(
            source=source,
            order_ref=order_ref,
            remote_order_id=remote_order_id,
            remote_payment_id=remote_payment_id,
            remote_signature=remote_signature,
            raw_payload=raw_payload,
        )

        order = self.store.get_by_remote_order_id(remote_order_id)
        now = now or timezone.now()

        for _ in range(self.MAX_PASSES):
            outcome = self._settled_outcome(order, remote_order_id, remote_payment_id, remote_signature)
            if outcome is not None:
                return outcome

            if order.is_expired(now):
                self._expire(order)
                raise OrderNotPayable(order.order_ref, Order.Status.EXPIRED, "Checkout window has expired")

            self._verify(
                order,
                remote_order_id=remote_order_id,
                remote_payment_id=remote_payment_id,
                remote_signature=remote_signature,
                claimed_order_ref=order_ref,
                reported_amount=reported_amount,
                reported_currency=reported_currency,
            )

            try:
                order = self.store.transition(
                    order.order_ref,
                    order.status,
                    Order.Status.VERIFIED,
                    remote_payment_id=remote_payment_id,
                )
            except StaleTransition:
                logger.info("Order %s changed while verifying; re-reading", order.order_ref)
                order = self.store.get(order.order_ref)
                continue

            return self._grant(order)

        logger.error("Order %s: gave up after %s contended passes", order.order_ref, self.MAX_PASSES)
        raise OrderNotPayable(order.order_ref, order.status, "Order is being processed concurrently")

    def resume(self, order: Order) -> CallbackOutcome:
        """Finish an order left at VERIFIED (crash between verification and grant)."""
        if order.status != Order.Status.VERIFIED:
            raise OrderNotPayable(order.order_ref, order.status)
        logger.info("Resuming entitlement grant for verified order %s", order.order_ref)
        return self._grant(order)

    # --- steps ---

    def _settled_outcome(self, order, remote_order_id, remote_payment_id, remote_signature):
        """Outcome for orders already past verification, None if still payable."""
        status = order.status
        same_payment = bool(remote_payment_id) and order.remote_payment_id == remote_payment_id

        if status == Order.Status.ENTITLED and same_payment:
            if verification.signature_matches(
                remote_order_id, remote_payment_id, remote_signature, self.gateway.signing_secret
            ):
                logger.info("Order %s: replayed callback for payment %s", order.order_ref, remote_payment_id)
                return CallbackOutcome(order=order, entitlement=self._entitlement_of(order), replayed=True)
            logger.warning("Order %s: replay with bad signature rejected", order.order_ref)
            raise VerificationFailed(order.order_ref, InvalidSignature())

        if status == Order.Status.VERIFIED and same_payment:
            return self._grant(order)

        if status in Order.TERMINAL_STATUSES or status == Order.Status.VERIFIED:
            logger.warning(
                "Order %s: callback for payment %s rejected in status %s",
                order.order_ref, remote_payment_id, status,
            )
            raise OrderNotPayable(order.order_ref, status)

        return None

    def _verify(self, order, *, claimed_order_ref, **callback) -> None:
        try:
            verification.verify_callback(
                order,
                secret=self.gateway.signing_secret,
                claimed_order_ref=claimed_order_ref,
                **callback,
            )
        except (InvalidSignature, AmountMismatch) as reason:
            target = self._failure_target(order, claimed_order_ref)
            logger.warning(
                "Order %s: callback rejected (%s): %s",
                target.order_ref, reason.error_code, reason.message,
            )
            self._fail(target, reason)
            raise VerificationFailed(target.order_ref, reason)

    def _failure_target(self, order: Order, claimed_order_ref: str) -> Order:
        if claimed_order_ref and claimed_order_ref != order.order_ref:
            try:
                return self.store.get(claimed_order_ref)
            except UnknownOrder:
                pass
        return order

    def _fail(self, order: Order, reason) -> None:
        if order.status not in Order.PAYABLE_STATUSES:
            return
        try:
            self.store.transition(
                order.order_ref,
                order.status,
                Order.Status.FAILED,
                failure_reason=f"{reason.error_code}: {reason.message}"[:255],
            )
        except StaleTransition:
            logger.info("Order %s moved on before it could be marked failed", order.order_ref)

    def _expire(self, order: Order) -> None:
        try:
            self.store.transition(order.order_ref, order.status, Order.Status.EXPIRED)
        except StaleTransition:
            logger.info("Order %s moved on before it could expire", order.order_ref)

    def _grant(self, order: Order) -> CallbackOutcome:
        try:
            with transaction.atomic():
                entitlement, created = Entitlement.objects.get_or_create(
                    buyer_id=order.buyer_id,
                    course_id=order.course_id,
                    defaults={"order": order},
                )
                order = self.store.transition(order.order_ref, Order.Status.VERIFIED, Order.Status.ENTITLED)
        except StaleTransition:
            order = self.store.get(order.order_ref)
            if order.status == Order.Status.ENTITLED:
                logger.info("Order %s was entitled concurrently", order.order_ref)
                return CallbackOutcome(order=order, entitlement=self._entitlement_of(order), replayed=True)
            raise OrderNotPayable(order.order_ref, order.status)

        if created:
            logger.info(
                "Entitlement granted: buyer=%s course=%s order=%s",
                order.buyer_id, order.course_id, order.order_ref,
            )
        else:
            logger.info("Order %s: buyer already entitled to course %s", order.order_ref, order.course_id)
        return CallbackOutcome(order=order, entitlement=entitlement, replayed=False)

    @staticmethod
    def _entitlement_of(order: Order) -> Optional[Entitlement]:
        return Entitlement.objects.filter(buyer_id=order.buyer_id, course_id=order.course_id).first()
