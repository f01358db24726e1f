"""
E-Learning Application Django Admin Configuration

Course catalog administration. Prices are entered in minor currency units;
changing a price never affects orders that were already created.

Author: DSP Development Team
Version: 1.0.0
"""

from django.contrib import admin
from django.db.models import Count, QuerySet
from django.http import HttpRequest
from django.utils.translation import gettext_lazy as _

from .models import Course


@admin.register(Course)
class CourseAdmin(admin.ModelAdmin):
    """
    Administration interface for sellable courses.

    Shows how many buyers own each course next to the current price.
    """

    list_display = ("title", "price_minor_units", "currency", "is_published", "purchasable_until", "buyer_count")
    list_filter = ("is_published", "currency")
    search_fields = ("title", "description")

    fieldsets = (
        (_("Basic Information"), {"fields": ("title", "description")}),
        (
            _("Pricing"),
            {
                "fields": ("price_minor_units", "currency"),
                "description": _("Price in the smallest currency unit, e.g. 499900 = INR 4,999.00"),
            },
        ),
        (_("Availability"), {"fields": ("is_published", "purchasable_until")}),
    )

    @admin.display(description=_("Buyers"), ordering="buyer_count")
    def buyer_count(self, instance: Course) -> int:
        return instance.buyer_count

    def get_queryset(self, request: HttpRequest) -> QuerySet:
        """Annotate entitlement counts for the list view."""
        return super().get_queryset(request).annotate(buyer_count=Count("entitlements"))
