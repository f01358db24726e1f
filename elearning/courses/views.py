"""
Public course catalog endpoints.

Only published courses are listed; prices are shown in minor units exactly
as they will be charged.
"""

from django.db.models import Q
from django.utils import timezone
from rest_framework import generics
from rest_framework.permissions import AllowAny

from .models import Course
from .serializers import CourseSerializer


class PublishedCourseQuerysetMixin:
    def get_queryset(self):
        now = timezone.now()
        return Course.objects.filter(is_published=True).filter(
            Q(purchasable_until__isnull=True) | Q(purchasable_until__gt=now)
        )


class CourseListView(PublishedCourseQuerysetMixin, generics.ListAPIView):
    serializer_class = CourseSerializer
    permission_classes = [AllowAny]


class CourseDetailView(PublishedCourseQuerysetMixin, generics.RetrieveAPIView):
    serializer_class = CourseSerializer
    permission_classes = [AllowAny]
