"""
Reconciliation Path

Re-derives the outcome of checkouts whose callback never arrived (closed
tab, lost network, crash between verification and grant) by asking the
gateway directly. Runs periodically through the ``reconcile_orders``
management command and on demand when a buyer polls an order.

Author: DSP Development Team
Version: 1.0.0
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional, Tuple

from django.conf import settings
from django.utils import timezone

from . import verification
from .checkout import reject_order
from .exceptions import (
    GatewayRequestRejected,
    GatewayUnavailable,
    OrderNotPayable,
    StaleTransition,
    VerificationFailed,
)
from .gateway import RemotePaymentOutcome
from .models import CallbackRecord, Order
from .order_store import OrderStore

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    """Counters of one sweep, by resulting order status."""

    examined: int = 0
    changed: int = 0
    by_status: dict = field(default_factory=dict)
    errors: List[Tuple[str, str]] = field(default_factory=list)

    def add(self, before: str, order: Order) -> None:
        self.examined += 1
        if order.status != before:
            self.changed += 1
        self.by_status[order.status] = self.by_status.get(order.status, 0) + 1

    def add_error(self, order_ref: str, error: Exception) -> None:
        self.examined += 1
        self.errors.append((order_ref, str(error)))


class Reconciler:
    """
    Drives stuck orders to a final state using the gateway as the source of truth.

    Attributes:
        grace: Minimum order age before the gateway is queried
    """

    def __init__(self, gateway, writer, store: Optional[OrderStore] = None,
                 grace_seconds: Optional[int] = None) -> None:
        self.gateway = gateway
        self.writer = writer
        self.store = store or writer.store
        if grace_seconds is None:
            grace_seconds = settings.PAYMENT_RECONCILE_GRACE_SECONDS
        self.grace = timedelta(seconds=grace_seconds)

    def reconcile(self, order_ref: str, now=None, settle_failures: bool = True) -> Order:
        """
        Bring one order up to date and return it.

        Gateway outages are logged and leave the order untouched so the next
        pass can try again.

        When the gateway lists only failed payment attempts the order is
        FAILED, unless ``settle_failures`` is False: the checkout widget lets
        the buyer retry on the same gateway order, so a buyer-triggered check
        leaves it open until it is paid or expires. A payment captured after
        the sweep failed the order is rejected with ``OrderNotPayable`` and
        stays visible in the callback audit trail.
        """
        now = now or timezone.now()
        order = self.store.get(order_ref)

        if order.status == Order.Status.VERIFIED:
            return self.writer.resume(order).order

        if order.is_terminal:
            return order

        if order.is_expired(now):
            return self._expire(order)

        if now - order.created_at < self.grace:
            return order

        try:
            if not order.remote_order_id:
                return self._retry_remote_order(order)
            outcome = self.gateway.fetch_remote_status(order.remote_order_id)
        except (GatewayUnavailable, GatewayRequestRejected) as e:
            logger.warning("Reconcile %s deferred: %s", order.order_ref, e.message)
            return order

        if outcome.status == RemotePaymentOutcome.PAID:
            return self._complete(order, outcome)
        if outcome.status == RemotePaymentOutcome.FAILED and settle_failures:
            return self._fail(order, outcome)

        logger.debug("Reconcile %s: payment still pending at gateway", order.order_ref)
        return order

    def candidates(self, now=None, limit: Optional[int] = None):
        now = now or timezone.now()
        queryset = self.store.pending_orders(older_than=now - self.grace)
        return queryset[:limit] if limit else queryset

    def sweep(self, now=None, limit: Optional[int] = None) -> ReconcileReport:
        """Reconcile every pending order past the grace period."""
        now = now or timezone.now()
        report = ReconcileReport()
        for order_ref, status in self.candidates(now, limit).values_list("order_ref", "status"):
            try:
                order = self.reconcile(order_ref, now=now)
            except Exception as e:
                logger.exception("Reconcile %s failed", order_ref)
                report.add_error(order_ref, e)
                continue
            report.add(status, order)
        logger.info(
            "Reconciliation sweep: %s examined, %s changed, %s errors",
            report.examined, report.changed, len(report.errors),
        )
        return report

    # --- outcomes ---

    def _expire(self, order: Order) -> Order:
        try:
            order = self.store.transition(order.order_ref, order.status, Order.Status.EXPIRED)
            logger.info("Order %s expired unpaid", order.order_ref)
            return order
        except StaleTransition:
            return self.store.get(order.order_ref)

    def _retry_remote_order(self, order: Order) -> Order:
        # The earlier remote id, if any, never reached the client, so it cannot have been paid.
        logger.info("Order %s has no gateway order; retrying creation", order.order_ref)
        try:
            remote_order_id = self.gateway.create_remote_order(
                order.amount_minor_units, order.currency, order.order_ref
            )
        except GatewayRequestRejected as e:
            try:
                return reject_order(self.store, order, e)
            except StaleTransition:
                return self.store.get(order.order_ref)
        try:
            return self.store.attach_remote_order(order.order_ref, remote_order_id)
        except StaleTransition:
            return self.store.get(order.order_ref)

    def _complete(self, order: Order, outcome: RemotePaymentOutcome) -> Order:
        signature = verification.compute_signature(
            order.remote_order_id, outcome.payment_id, self.gateway.signing_secret
        )
        try:
            result = self.writer.handle_callback(
                remote_order_id=order.remote_order_id,
                remote_payment_id=outcome.payment_id,
                remote_signature=signature,
                order_ref=order.order_ref,
                source=CallbackRecord.Source.RECONCILIATION,
                reported_amount=outcome.amount_minor_units,
                reported_currency=outcome.currency,
                raw_payload={
                    "status": outcome.status,
                    "payment_id": outcome.payment_id,
                    "amount": outcome.amount_minor_units,
                    "currency": outcome.currency,
                },
            )
            return result.order
        except (VerificationFailed, OrderNotPayable) as e:
            logger.warning("Reconcile %s: gateway payment not applied: %s", order.order_ref, e.message)
            return self.store.get(order.order_ref)

    def _fail(self, order: Order, outcome: RemotePaymentOutcome) -> Order:
        try:
            order = self.store.transition(
                order.order_ref,
                order.status,
                Order.Status.FAILED,
                failure_reason=f"Gateway reports payment failed ({outcome.payment_id})",
            )
            logger.info("Order %s failed at gateway", order.order_ref)
            return order
        except StaleTransition:
            return self.store.get(order.order_ref)
