"""
Payment Pipeline Models
=======================

Persistent state of the checkout pipeline:

- Order: one checkout attempt, keyed by a locally generated reference.
  Status only moves forward (see ``Order.Status`` and
  ``ALLOWED_TRANSITIONS``); status changes go through
  ``core.payments.order_store.OrderStore.transition`` which performs a
  compare-and-swap ``UPDATE``.
- CallbackRecord: append-only audit trail of every inbound callback,
  stored before it is verified.
- Entitlement: durable grant of course access, unique per buyer and course.

Orders are never deleted; every relation pointing at an order uses
``on_delete=PROTECT``.

Author: DSP Development Team
Version: 1.0.0
"""

import secrets
from datetime import timedelta

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


def generate_order_ref() -> str:
    return f"ord_{secrets.token_hex(12)}"


class Order(models.Model):
    """
    A single checkout attempt of a buyer for a course.

    ``amount_minor_units`` and ``currency`` are copied from the catalog when
    the order is created and never change afterwards.
    """

    class Status(models.TextChoices):
        CREATED = "CREATED", _("Created")
        AWAITING_CALLBACK = "AWAITING_CALLBACK", _("Awaiting callback")
        VERIFIED = "VERIFIED", _("Verified")
        ENTITLED = "ENTITLED", _("Entitled")
        FAILED = "FAILED", _("Failed")
        EXPIRED = "EXPIRED", _("Expired")

    TERMINAL_STATUSES = frozenset({Status.ENTITLED, Status.FAILED, Status.EXPIRED})
    OPEN_STATUSES = frozenset({Status.CREATED, Status.AWAITING_CALLBACK, Status.VERIFIED})
    # Statuses in which the order can still expire or be verified
    PAYABLE_STATUSES = frozenset({Status.CREATED, Status.AWAITING_CALLBACK})

    # VERIFIED means the money is confirmed; the only way on is the entitlement.
    ALLOWED_TRANSITIONS = {
        Status.CREATED: {Status.AWAITING_CALLBACK, Status.VERIFIED, Status.FAILED, Status.EXPIRED},
        Status.AWAITING_CALLBACK: {Status.VERIFIED, Status.FAILED, Status.EXPIRED},
        Status.VERIFIED: {Status.ENTITLED},
        Status.ENTITLED: set(),
        Status.FAILED: set(),
        Status.EXPIRED: set(),
    }

    IMMUTABLE_FIELDS = ("buyer_id", "course_id", "amount_minor_units", "currency")

    order_ref = models.CharField(
        primary_key=True,
        max_length=40,
        default=generate_order_ref,
        editable=False,
        verbose_name=_("Order Reference"),
    )
    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="course_orders",
        verbose_name=_("Buyer"),
    )
    course = models.ForeignKey(
        "elearning.Course",
        on_delete=models.PROTECT,
        related_name="orders",
        verbose_name=_("Course"),
    )
    amount_minor_units = models.PositiveBigIntegerField(
        verbose_name=_("Amount (minor units)"),
    )
    currency = models.CharField(max_length=3, verbose_name=_("Currency"))

    remote_order_id = models.CharField(
        max_length=64,
        unique=True,
        null=True,
        blank=True,
        verbose_name=_("Gateway Order ID"),
        help_text=_("Assigned once by the payment gateway"),
    )
    remote_payment_id = models.CharField(
        max_length=64,
        unique=True,
        null=True,
        blank=True,
        verbose_name=_("Gateway Payment ID"),
        help_text=_("Recorded when the payment is verified"),
    )

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.CREATED,
        db_index=True,
        verbose_name=_("Status"),
    )
    failure_reason = models.CharField(max_length=255, blank=True, verbose_name=_("Failure Reason"))

    created_at = models.DateTimeField(default=timezone.now, verbose_name=_("Created At"))
    updated_at = models.DateTimeField(default=timezone.now, verbose_name=_("Updated At"))
    expires_at = models.DateTimeField(db_index=True, verbose_name=_("Expires At"))

    class Meta:
        verbose_name = _("Order")
        verbose_name_plural = _("Orders")
        db_table = "payments_order"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["buyer", "course", "status"], name="payments_order_buyer_idx"),
            models.Index(fields=["status", "created_at"], name="payments_order_sweep_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["buyer", "course"],
                condition=Q(status__in=["CREATED", "AWAITING_CALLBACK", "VERIFIED"]),
                name="payments_one_open_order_per_course",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.order_ref} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def is_expired(self, now=None) -> bool:
        return (now or timezone.now()) >= self.expires_at

    def save(self, *args, **kwargs):
        if self._state.adding:
            if self.expires_at is None:
                ttl = getattr(settings, "PAYMENT_ORDER_TTL_MINUTES", 30)
                self.expires_at = self.created_at + timedelta(minutes=ttl)
        else:
            stored = (
                type(self).objects.filter(pk=self.pk)
                .values(*self.IMMUTABLE_FIELDS)
                .first()
            )
            if stored:
                changed = [f for f in self.IMMUTABLE_FIELDS if stored[f] != getattr(self, f)]
                if changed:
                    raise ValidationError(
                        _("Immutable order fields cannot be changed: %(fields)s"),
                        params={"fields": ", ".join(changed)},
                    )
        super().save(*args, **kwargs)


class CallbackRecord(models.Model):
    """
    Append-only audit entry for an inbound payment callback.

    ``order_ref`` is the reference the callback claimed and deliberately not a
    foreign key: callbacks for unknown or mismatched orders are kept too.
    """

    class Source(models.TextChoices):
        CLIENT = "client", _("Browser relay")
        WEBHOOK = "webhook", _("Gateway webhook")
        RECONCILIATION = "reconciliation", _("Reconciliation")
        CLIENT_FAILURE = "client_failure", _("Client failure report")

    order_ref = models.CharField(max_length=40, blank=True, db_index=True)
    remote_order_id = models.CharField(max_length=64, blank=True, db_index=True)
    remote_payment_id = models.CharField(max_length=64, blank=True, db_index=True)
    remote_signature = models.CharField(max_length=256, blank=True)
    raw_payload = models.JSONField(default=dict, blank=True)
    source = models.CharField(max_length=20, choices=Source.choices, default=Source.CLIENT)
    received_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        verbose_name = _("Callback Record")
        verbose_name_plural = _("Callback Records")
        db_table = "payments_callback_record"
        ordering = ["-received_at", "-id"]

    def __str__(self) -> str:
        return f"{self.source} callback for {self.remote_order_id or self.order_ref}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError(_("Callback records are append-only"))
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError(_("Callback records are append-only"))


class Entitlement(models.Model):
    """Course access granted to a buyer by a paid order."""

    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="course_entitlements",
        verbose_name=_("Buyer"),
    )
    course = models.ForeignKey(
        "elearning.Course",
        on_delete=models.PROTECT,
        related_name="entitlements",
        verbose_name=_("Course"),
    )
    order = models.OneToOneField(
        Order,
        on_delete=models.PROTECT,
        related_name="entitlement",
        verbose_name=_("Order"),
    )
    granted_at = models.DateTimeField(default=timezone.now, verbose_name=_("Granted At"))

    class Meta:
        verbose_name = _("Entitlement")
        verbose_name_plural = _("Entitlements")
        db_table = "payments_entitlement"
        ordering = ["-granted_at"]
        constraints = [
            models.UniqueConstraint(fields=["buyer", "course"], name="payments_unique_entitlement"),
        ]

    def __str__(self) -> str:
        return f"{self.buyer} -> {self.course}"
