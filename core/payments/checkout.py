"""
Checkout service: local order first, remote order second.

The local order is committed before the gateway is called so a crash or
timeout in between leaves a CREATED order the reconciliation sweep can
finish or expire. No database lock is held while waiting for the gateway.
"""

import logging

from .exceptions import GatewayRequestRejected, GatewayUnavailable
from .models import Order
from .order_store import OrderStore

logger = logging.getLogger(__name__)

FAILURE_REASON_MAX_LENGTH = Order._meta.get_field("failure_reason").max_length


def start_checkout(buyer, course_id, gateway, store: OrderStore = None) -> Order:
    """
    Open a checkout for ``buyer`` and return the order awaiting payment.

    Raises:
        GatewayUnavailable: the local order stays CREATED and is retried or
            expired by reconciliation
        GatewayRequestRejected: the gateway refused the order outright; the
            local order is FAILED so the buyer can start a new checkout
    """
    store = store or OrderStore()
    order = store.create_order(buyer, course_id)

    try:
        remote_order_id = gateway.create_remote_order(
            order.amount_minor_units, order.currency, order.order_ref
        )
    except GatewayUnavailable:
        logger.warning("Order %s left CREATED: gateway unavailable during checkout", order.order_ref)
        raise
    except GatewayRequestRejected as e:
        reject_order(store, order, e)
        raise

    return store.attach_remote_order(order.order_ref, remote_order_id)


def reject_order(store: OrderStore, order: Order, error: GatewayRequestRejected) -> Order:
    """Fail a CREATED order whose gateway order was refused. Resending would be refused again."""
    logger.warning("Order %s failed: gateway rejected order creation: %s", order.order_ref, error.message)
    reason = f"Gateway rejected order: {error.message}"[:FAILURE_REASON_MAX_LENGTH]
    return store.transition(order.order_ref, Order.Status.CREATED, Order.Status.FAILED, failure_reason=reason)
