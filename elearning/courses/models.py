"""
E-Learning Course Catalog Models

This module defines the sellable course entity. Catalog maintenance happens
through the Django admin; the payment pipeline only reads the authoritative
price and availability of a course (see `elearning.courses.catalog`).

Models:
- Course: A purchasable course with its price in minor currency units

Author: DSP Development Team
Version: 1.0.0
"""

from django.conf import settings
from django.core.validators import MinLengthValidator
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


def default_currency() -> str:
    return getattr(settings, "PAYMENT_DEFAULT_CURRENCY", "INR")


class Course(models.Model):
    """
    A course that can be bought through the checkout pipeline.

    Prices are stored as integers in the currency's smallest unit
    (e.g. paise for INR), never as floats or decimals.

    Attributes:
        title: Unique course title
        description: Optional marketing description
        price_minor_units: Current authoritative price in minor units
        currency: ISO 4217 currency code
        is_published: Whether the course is visible and sellable
        purchasable_until: Optional end of the sales window

    Example:
        >>> course = Course.objects.create(
        ...     title="Full Stack Bootcamp",
        ...     price_minor_units=499900,
        ...     currency="INR",
        ... )
        >>> course.is_purchasable()
        True
    """

    title = models.CharField(
        max_length=200,
        unique=True,
        verbose_name=_("Course Title"),
        help_text=_("The unique title of the course"),
    )

    description = models.TextField(
        blank=True,
        verbose_name=_("Description"),
    )

    price_minor_units = models.PositiveBigIntegerField(
        verbose_name=_("Price (minor units)"),
        help_text=_("Price in the smallest currency unit, e.g. 499900 = INR 4,999.00"),
    )

    currency = models.CharField(
        max_length=3,
        default=default_currency,
        validators=[MinLengthValidator(3)],
        verbose_name=_("Currency"),
        help_text=_("ISO 4217 currency code"),
    )

    is_published = models.BooleanField(
        default=True,
        verbose_name=_("Published"),
        help_text=_("Unpublished courses cannot be bought"),
    )

    purchasable_until = models.DateTimeField(
        null=True,
        blank=True,
        verbose_name=_("Purchasable Until"),
        help_text=_("Optional end of the sales window"),
    )

    created_at = models.DateTimeField(auto_now_add=True, verbose_name=_("Created At"))
    updated_at = models.DateTimeField(auto_now=True, verbose_name=_("Updated At"))

    class Meta:
        verbose_name = _("Course")
        verbose_name_plural = _("Courses")
        ordering = ["title"]
        db_table = "elearning_course"

    def __str__(self) -> str:
        return self.title

    def save(self, *args, **kwargs):
        self.currency = (self.currency or "").upper()
        super().save(*args, **kwargs)

    def is_purchasable(self, now=None) -> bool:
        """
        Check whether the course can currently be bought.

        A course is purchasable when it is published, has a positive price
        and its sales window (if any) has not closed.
        """
        if not self.is_published or self.price_minor_units <= 0:
            return False
        if self.purchasable_until is not None:
            return (now or timezone.now()) < self.purchasable_until
        return True
