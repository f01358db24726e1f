"""
Order Store

Durable record of checkout attempts. The compare-and-swap ``transition``
is the only place that changes an order's status; it issues a single
``UPDATE ... WHERE order_ref = %s AND status = %s`` and reports a lost race
as ``StaleTransition`` instead of taking a lock.

Author: DSP Development Team
Version: 1.0.0
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional, Union

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from elearning.courses import catalog

from .exceptions import (
    AlreadyEntitled,
    CourseNotPurchasable,
    DuplicatePendingOrder,
    IllegalTransition,
    OrderNotPayable,
    StaleTransition,
    UnknownOrder,
)
from .models import CallbackRecord, Entitlement, Order

logger = logging.getLogger(__name__)

StatusArg = Union[str, Iterable[str]]


class OrderStore:
    """
    Persistence operations for orders and the callback audit trail.

    Attributes:
        TRANSITION_FIELDS: Columns that may be written together with a status change
    """

    TRANSITION_FIELDS = frozenset({"remote_order_id", "remote_payment_id", "failure_reason"})

    def __init__(self, ttl_minutes: Optional[int] = None) -> None:
        self.ttl = timedelta(
            minutes=ttl_minutes if ttl_minutes is not None else settings.PAYMENT_ORDER_TTL_MINUTES
        )

    # --- reads ---

    def get(self, order_ref: str) -> Order:
        try:
            return Order.objects.get(pk=order_ref)
        except Order.DoesNotExist:
            raise UnknownOrder(order_ref)

    def get_by_remote_order_id(self, remote_order_id: str) -> Order:
        if not remote_order_id:
            raise UnknownOrder(message="Callback carries no remote order id")
        try:
            return Order.objects.get(remote_order_id=remote_order_id)
        except Order.DoesNotExist:
            raise UnknownOrder(remote_order_id)

    def pending_orders(self, older_than: datetime):
        """Non-terminal orders created before ``older_than``, oldest first."""
        return Order.objects.filter(
            status__in=Order.OPEN_STATUSES,
            created_at__lt=older_than,
        ).order_by("created_at")

    def open_order_for(self, buyer, course) -> Optional[Order]:
        return Order.objects.filter(buyer=buyer, course=course, status__in=Order.OPEN_STATUSES).first()

    # --- writes ---

    def create_order(self, buyer, course_id, now: Optional[datetime] = None) -> Order:
        """
        Create a CREATED order priced from the catalog.

        Args:
            buyer: Authenticated user starting the checkout
            course_id: Catalog id of the course

        Returns:
            The persisted Order

        Raises:
            CourseNotFound: unknown course id
            CourseNotPurchasable: unpublished, free or outside its sales window
            AlreadyEntitled: the buyer already owns the course
            DuplicatePendingOrder: an unfinished order for the same course exists
        """
        course = catalog.get_course(course_id)

        if not catalog.is_purchasable(course.pk):
            raise CourseNotPurchasable(course.pk)

        if Entitlement.objects.filter(buyer=buyer, course=course).exists():
            raise AlreadyEntitled(details={"course_id": course.pk})

        existing = self.open_order_for(buyer, course)
        if existing is not None:
            raise DuplicatePendingOrder(existing.order_ref)

        amount, currency = catalog.price(course.pk)
        now = now or timezone.now()
        try:
            # Savepoint so a lost race does not poison an outer transaction.
            with transaction.atomic():
                order = Order.objects.create(
                    buyer=buyer,
                    course=course,
                    amount_minor_units=amount,
                    currency=currency.upper(),
                    status=Order.Status.CREATED,
                    created_at=now,
                    updated_at=now,
                    expires_at=now + self.ttl,
                )
        except IntegrityError:
            # The partial unique constraint caught a concurrent checkout.
            existing = self.open_order_for(buyer, course)
            raise DuplicatePendingOrder(existing.order_ref if existing else None)

        logger.info(
            "Order %s created: buyer=%s course=%s amount=%s %s",
            order.order_ref, buyer.pk, course.pk, amount, order.currency,
        )
        return order

    def transition(self, order_ref: str, from_status: StatusArg, to_status: str, **fields) -> Order:
        """
        Compare-and-swap the status of an order.

        Args:
            order_ref: Order to change
            from_status: Status (or collection of statuses) the caller observed
            to_status: Target status
            **fields: Extra columns to write in the same UPDATE
                (``remote_order_id``, ``remote_payment_id``, ``failure_reason``)

        Returns:
            The order as re-read after the update

        Raises:
            StaleTransition: the stored status is not ``from_status`` any more
            IllegalTransition: the state machine forbids the edge
            OrderNotPayable: ``remote_payment_id`` is already bound to another order
        """
        expected = {from_status} if isinstance(from_status, str) else set(from_status)
        for status in expected:
            if to_status not in Order.ALLOWED_TRANSITIONS.get(status, ()):
                raise IllegalTransition(f"{status} -> {to_status} is not allowed")

        unknown = set(fields) - self.TRANSITION_FIELDS
        if unknown:
            raise IllegalTransition(f"Fields cannot change with a transition: {sorted(unknown)}")

        queryset = Order.objects.filter(pk=order_ref, status__in=expected)
        if fields.get("remote_order_id"):
            queryset = queryset.filter(remote_order_id__isnull=True)

        try:
            with transaction.atomic():
                updated = queryset.update(status=to_status, updated_at=timezone.now(), **fields)
        except IntegrityError:
            logger.error(
                "Order %s: %s already recorded on another order",
                order_ref, {k: v for k, v in fields.items() if k.startswith("remote_")},
            )
            raise OrderNotPayable(order_ref, message="Payment is already recorded on another order")

        if updated == 0:
            if not Order.objects.filter(pk=order_ref).exists():
                raise UnknownOrder(order_ref)
            raise StaleTransition(order_ref, sorted(expected), to_status)

        logger.info("Order %s: %s -> %s", order_ref, "/".join(sorted(expected)), to_status)
        return self.get(order_ref)

    def attach_remote_order(self, order_ref: str, remote_order_id: str) -> Order:
        """Record the gateway order id once and move CREATED -> AWAITING_CALLBACK."""
        return self.transition(
            order_ref,
            Order.Status.CREATED,
            Order.Status.AWAITING_CALLBACK,
            remote_order_id=remote_order_id,
        )

    def record_callback(
        self,
        *,
        source: str,
        order_ref: str = "",
        remote_order_id: str = "",
        remote_payment_id: str = "",
        remote_signature: str = "",
        raw_payload: Optional[dict] = None,
    ) -> CallbackRecord:
        """Append an entry to the callback audit trail."""
        record = CallbackRecord.objects.create(
            source=source,
            order_ref=order_ref or "",
            remote_order_id=remote_order_id or "",
            remote_payment_id=remote_payment_id or "",
            remote_signature=remote_signature or "",
            raw_payload=raw_payload or {},
        )
        logger.info(
            "Callback #%s recorded (source=%s, order_ref=%s, remote_order_id=%s)",
            record.pk, source, order_ref, remote_order_id,
        )
        return record
