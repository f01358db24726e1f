"""
URL configuration for the course payments backend.
"""

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/elearning/", include("elearning.urls")),
    path("api/payments/", include("core.payments.urls")),
]
