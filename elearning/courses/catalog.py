"""
Course Catalog read API used by the payment pipeline.

The catalog is the single source of truth for prices. Callers outside the
e-learning app should use these functions instead of querying `Course`
directly so the payment code never depends on catalog internals.

All functions raise `CourseNotFound` for unknown course ids.
"""

from typing import Tuple

from core.payments.exceptions import CourseNotFound

from .models import Course


def get_course(course_id) -> Course:
    try:
        return Course.objects.get(pk=course_id)
    except (Course.DoesNotExist, ValueError, TypeError):
        raise CourseNotFound(course_id)


def price(course_id) -> Tuple[int, str]:
    """Return the authoritative ``(amount_minor_units, currency)`` of a course."""
    course = get_course(course_id)
    return course.price_minor_units, course.currency


def is_purchasable(course_id) -> bool:
    return get_course(course_id).is_purchasable()
